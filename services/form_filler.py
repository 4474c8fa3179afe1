"""
Write a FieldMapping into a template PDF's AcroForm widgets and store the result.

Text widgets get the formatted value in /V and lose their stale /AP so viewers
regenerate the appearance (/NeedAppearances is set on the form). Checkboxes get
/V and /AS set to the widget's own on-state name, or /Off.
"""
from __future__ import annotations

import asyncio
import logging
import time
from io import BytesIO
from pathlib import Path
from typing import Any, Optional

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from pypdf.generic import DictionaryObject, NameObject, TextStringObject

from schemas.forms import FieldMapping, FillResult, FormTemplate
from services.errors import StorageError
from services.form_registry import FormRegistry
from services.storage import PDF_CONTENT_TYPE, ObjectStorage
from utils.coerce import CoercionError, coerce_boolean, format_for_pdf

logger = logging.getLogger(__name__)


def widget_values(template: FormTemplate, mapping: FieldMapping) -> dict[str, Any]:
    """Mapped values keyed by PDF widget name (groups expanded per cell, empty cells skipped)."""
    out: dict[str, Any] = {}
    for name, mf in mapping.fields.items():
        if not mf.mapped:
            continue
        field = template.field(name)
        if field.is_group:
            for row, cells in enumerate(mf.value or [], start=1):
                for column, value in cells.items():
                    if value is not None:
                        out[field.cell_name(row, column)] = value
        else:
            out[name] = mf.value
    return out


def _is_checked(value: Any) -> bool:
    try:
        return coerce_boolean(value)
    except CoercionError:
        return bool(value)


def _on_state(annot: DictionaryObject) -> str:
    ap = annot.get("/AP")
    if ap is not None:
        normal = ap.get_object().get("/N")
        if normal is not None:
            for state in normal.get_object().keys():
                if state != "/Off":
                    return str(state)
    return "/Yes"


def _field_of(annot: DictionaryObject) -> tuple[DictionaryObject, Optional[str]]:
    """The terminal field a widget belongs to (itself, or its /Parent for kids)."""
    if "/T" in annot:
        return annot, str(annot["/T"])
    parent = annot.get("/Parent")
    if parent is not None:
        parent = parent.get_object()
        if "/T" in parent:
            return parent, str(parent["/T"])
    return annot, None


def _widget_type(field: DictionaryObject, annot: DictionaryObject) -> Optional[str]:
    ft = field.get("/FT", annot.get("/FT"))
    return str(ft) if ft is not None else None


def fill_pdf(template_bytes: bytes, values: dict[str, Any]) -> tuple[bytes, list[str]]:
    """Fill ``values`` (keyed by widget name) into a PDF; returns the bytes and the names written."""
    reader = PdfReader(BytesIO(template_bytes))
    writer = PdfWriter(clone_from=reader)
    written: list[str] = []

    for page in writer.pages:
        if "/Annots" not in page:
            continue
        for annot_ref in page["/Annots"]:
            annot = annot_ref.get_object()
            if annot.get("/Subtype") != "/Widget":
                continue
            field, name = _field_of(annot)
            if name is None or name not in values:
                continue
            value = values[name]
            if _widget_type(field, annot) == "/Btn":
                state = _on_state(annot) if _is_checked(value) else "/Off"
                field[NameObject("/V")] = NameObject(state)
                annot[NameObject("/AS")] = NameObject(state)
            else:
                field[NameObject("/V")] = TextStringObject(format_for_pdf(value))
                if "/AP" in annot:
                    del annot["/AP"]
            if name not in written:
                written.append(name)

    writer.set_need_appearances_writer(True)

    buf = BytesIO()
    writer.write(buf)
    return buf.getvalue(), written


def list_widgets(template_bytes: bytes) -> list[dict[str, str]]:
    reader = PdfReader(BytesIO(template_bytes))
    fields = reader.get_fields() or {}
    out = []
    for name, field in fields.items():
        ft = field.get("/FT")
        out.append({"name": name, "type": {"/Tx": "text", "/Btn": "checkbox", "/Ch": "choice"}.get(ft, str(ft))})
    return out


class FormFiller:
    def __init__(self, templates_dir: Path, storage: ObjectStorage):
        self._templates_dir = Path(templates_dir)
        self._storage = storage

    def template_path(self, template: FormTemplate) -> Path:
        return self._templates_dir / template.filename

    async def _read_template(self, template: FormTemplate) -> bytes:
        return await asyncio.to_thread(self.template_path(template).read_bytes)

    async def fill(self, template: FormTemplate, mapping: FieldMapping, output_key: str) -> FillResult:
        start = time.perf_counter()

        def _failed(error: str) -> FillResult:
            logger.error("Filling %s failed: %s", template.name, error)
            return FillResult(
                success=False,
                template_name=template.name,
                unmapped_fields=mapping.unmapped_fields,
                error=error,
                processing_time_ms=int((time.perf_counter() - start) * 1000),
            )

        try:
            template_bytes = await self._read_template(template)
        except OSError as e:
            return _failed(f"Template not readable at {self.template_path(template)}: {e}")

        values = widget_values(template, mapping)
        try:
            data, written = await asyncio.to_thread(fill_pdf, template_bytes, values)
        except (PyPdfError, ValueError, KeyError, TypeError) as e:
            return _failed(f"Template PDF could not be processed: {e}")

        try:
            url = await self._storage.store(data, output_key, PDF_CONTENT_TYPE)
        except StorageError as e:
            return _failed(str(e))

        # Mapped fields with no widget in the PDF are reported alongside the unmapped ones
        written_set = set(written)
        unmapped = list(mapping.unmapped_fields)
        for name, mf in mapping.fields.items():
            if not mf.mapped:
                continue
            field = template.field(name)
            wanted = [n for n in field.pdf_field_names() if n in values]
            if wanted and not any(n in written_set for n in wanted):
                unmapped.append(name)

        elapsed = int((time.perf_counter() - start) * 1000)
        logger.info(
            "Filled %s: %d widgets written, %d fields unmapped (%d ms)",
            template.name,
            len(written),
            len(unmapped),
            elapsed,
        )
        return FillResult(
            success=True,
            template_name=template.name,
            written_fields=written,
            unmapped_fields=unmapped,
            output_key=output_key,
            output_url=url,
            processing_time_ms=elapsed,
        )

    async def inspect_template(self, template: FormTemplate) -> list[dict[str, str]]:
        """Widgets actually present in the template PDF. Raises OSError when the file is missing."""
        template_bytes = await self._read_template(template)
        return await asyncio.to_thread(list_widgets, template_bytes)

    async def check_templates(self, registry: FormRegistry) -> dict[str, list[str]]:
        """Log catalog fields whose widgets are absent from the template PDFs."""
        report: dict[str, list[str]] = {}
        for template in registry.templates():
            try:
                widgets = {w["name"] for w in await self.inspect_template(template)}
            except (OSError, PyPdfError) as e:
                logger.warning("Template %s unavailable: %s", template.name, e)
                report[template.name] = template.field_names()
                continue
            missing = [
                f.name for f in template.fields if not any(n in widgets for n in f.pdf_field_names())
            ]
            if missing:
                logger.warning("Template %s is missing widgets for %d fields: %s", template.name, len(missing), missing)
            report[template.name] = missing
        return report
