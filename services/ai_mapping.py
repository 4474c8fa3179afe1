"""
AI-assisted fallback for template fields the deterministic passes left unmapped.

One request per template: the field catalog (name + declared type), the full
intake record, and the names still unmapped. The reply must be a JSON object
keyed by exactly those names. Anything that goes wrong (timeout, provider error,
malformed JSON) comes back as an empty FallbackResult with an error string; this
class never raises.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from services.errors import CompletionError
from services.field_mapper import FallbackResult
from services.llm import TextCompletion
from schemas.forms import FormTemplate

logger = logging.getLogger(__name__)

MAPPING_SYSTEM_PROMPT = """You are a form-filling expert mapping loan-application data onto a regulatory PDF form.

RULES
- Return ONLY a valid JSON object. No markdown, no commentary, no trailing commas.
- Keys must be EXACTLY the requested field names, and every requested name must appear.
- Use null when the application data does not support a value. Never invent data.
- "boolean" fields take true/false. "numeric" fields take plain numbers (no currency symbols).
  "text" fields take strings.
- "repeated_group" fields take a list of row objects keyed by the listed column names,
  at most the stated number of rows.
- Split or combine values where the meaning is clear (e.g. a full name into a name field,
  a street/city/state/zip into one address field).
"""


def build_mapping_prompt(
    template: FormTemplate,
    record: dict[str, Any],
    unmapped: list[str],
    max_input_chars: int,
) -> str:
    catalog_lines = []
    for entry in template.catalog():
        line = f"- {entry['name']}: {entry['type']}"
        if "rows" in entry:
            line += f" (rows: {entry['rows']}; columns: {entry['columns']})"
        catalog_lines.append(line)

    data = json.dumps(record, indent=2, default=str, ensure_ascii=False)
    if len(data) > max_input_chars:
        data = data[:max_input_chars]

    return (
        f"FORM: {template.title}\n\n"
        f"FIELD CATALOG (name: type):\n" + "\n".join(catalog_lines) + "\n\n"
        f"REQUESTED FIELDS (return exactly these keys):\n{json.dumps(unmapped)}\n\n"
        f"APPLICATION DATA:\n{data}\n"
    )


def parse_mapping_response(raw: str) -> Optional[dict[str, Any]]:
    """Extract the JSON object from a model reply (tolerates ``` fences and surrounding prose)."""
    if not raw:
        return None
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        m = re.search(r"```(?:json)?\s*([\s\S]*?)```", cleaned)
        if m:
            cleaned = m.group(1).strip()
    if not cleaned.startswith("{"):
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end != -1 and end > start:
            cleaned = cleaned[start : end + 1].strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    # Some models wrap the answer: {"fields": {...}}
    inner = data.get("fields")
    if len(data) == 1 and isinstance(inner, dict):
        return inner
    return data


class AIFieldMappingFallback:
    def __init__(self, completion: TextCompletion, max_input_chars: int = 24_000):
        self._completion = completion
        self._max_input_chars = max_input_chars

    async def resolve(
        self,
        template: FormTemplate,
        record: dict[str, Any],
        unmapped: list[str],
    ) -> FallbackResult:
        if not unmapped:
            return FallbackResult()
        prompt = build_mapping_prompt(template, record, unmapped, self._max_input_chars)
        try:
            raw = await self._completion.complete(MAPPING_SYSTEM_PROMPT, prompt)
        except CompletionError as e:
            logger.warning("AI mapping unavailable for %s: %s", template.name, e)
            return FallbackResult(error=f"completion failed: {e}")
        except Exception as e:
            logger.exception("AI mapping call failed for %s", template.name)
            return FallbackResult(error=f"completion failed: {e}")

        parsed = parse_mapping_response(raw)
        if parsed is None:
            logger.warning("AI mapping for %s returned malformed JSON", template.name)
            return FallbackResult(error="malformed completion response")

        wanted = set(unmapped)
        values = {k: v for k, v in parsed.items() if k in wanted}
        logger.info(
            "AI mapping for %s answered %d of %d requested fields",
            template.name,
            sum(1 for v in values.values() if v is not None),
            len(unmapped),
        )
        return FallbackResult(values=values)
