"""
Reconciles a loosely-structured intake record against one form template's field catalog.

Passes, in order, for every template field:
  1. exact      - case-insensitive key match on the record's top-level keys
  2. alias      - static alias table plus snake/camel spellings (top-level, then nested leaves)
  3. groups     - repeated-group fields take a list of row objects; each row is mapped
                  with passes 1-2 and the result is padded/truncated to the declared row count
  4. fallback   - everything still unmapped goes to the AI fallback in one batched call

Every value is coerced to the field's declared type; a value that does not coerce
does not count as a match. The resulting FieldMapping always has an entry for every
template field.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

from schemas.forms import FieldMapping, FieldSource, FormField, FormTemplate, MappedField, MappingDegradation
from utils.case import fold_key, index_keys, index_nested_leaves, spelling_variants
from utils.coerce import CoercionError, coerce_value

logger = logging.getLogger(__name__)

_MISSING = object()


class FallbackResult(BaseModel):
    values: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class MappingFallback(Protocol):
    async def resolve(
        self,
        template: FormTemplate,
        record: dict[str, Any],
        unmapped: list[str],
    ) -> FallbackResult: ...


def _lookup_keys(field: FormField) -> list[str]:
    return spelling_variants([field.name, *field.aliases])


def _coerce_scalar(field: FormField, value: Any) -> Any:
    return coerce_value(value, field.type)


def coerce_rows(group: FormField, value: Any) -> Optional[list[dict[str, Any]]]:
    """
    Map a list of row objects onto a repeated group.
    Returns exactly ``group.row_count`` rows. An empty list is a valid schedule with no
    entries. Returns None when ``value`` is not a list or none of its entries is a row object.
    Entries that are not row objects keep their position as empty rows.
    """
    if not isinstance(value, list):
        return None
    if value and not any(isinstance(r, dict) for r in value):
        return None

    rows: list[dict[str, Any]] = []
    for raw in value[: group.row_count]:
        row = group.empty_row()
        if not isinstance(raw, dict):
            rows.append(row)
            continue
        top = index_keys(raw)
        for column in group.columns:
            mf = _match_scalar(column, top, {})
            if mf.mapped:
                row[column.name] = mf.value
        rows.append(row)
    while len(rows) < group.row_count:
        rows.append(group.empty_row())
    return rows


def _match_scalar(field: FormField, top: dict[str, Any], nested: dict[str, Any]) -> MappedField:
    exact = top.get(fold_key(field.name), _MISSING)
    if exact is not _MISSING:
        try:
            return MappedField(value=_coerce_scalar(field, exact), source=FieldSource.EXACT, mapped=True)
        except CoercionError:
            pass

    for key in _lookup_keys(field):
        for index in (top, nested):
            if key not in index:
                continue
            try:
                return MappedField(value=_coerce_scalar(field, index[key]), source=FieldSource.HEURISTIC, mapped=True)
            except CoercionError:
                continue
    return MappedField()


def _match_group(field: FormField, top: dict[str, Any], nested: dict[str, Any]) -> MappedField:
    exact = top.get(fold_key(field.name), _MISSING)
    if exact is not _MISSING:
        rows = coerce_rows(field, exact)
        if rows is not None:
            return MappedField(value=rows, source=FieldSource.EXACT, mapped=True)

    for key in _lookup_keys(field):
        for index in (top, nested):
            if key not in index:
                continue
            rows = coerce_rows(field, index[key])
            if rows is not None:
                return MappedField(value=rows, source=FieldSource.HEURISTIC, mapped=True)
    return MappedField()


def _coerce_fallback_value(field: FormField, value: Any) -> MappedField:
    if value is None:
        return MappedField()
    if field.is_group:
        rows = coerce_rows(field, value)
        if rows is None:
            return MappedField()
        return MappedField(value=rows, source=FieldSource.AI_ASSISTED, mapped=True)
    try:
        return MappedField(value=_coerce_scalar(field, value), source=FieldSource.AI_ASSISTED, mapped=True)
    except CoercionError:
        return MappedField()


class FieldMapper:
    """
    Deterministic passes plus an optional batched fallback.
    A mapper without a fallback never leaves the process.
    """

    def __init__(self, fallback: Optional[MappingFallback] = None):
        self._fallback = fallback

    def map_deterministic(self, record: dict[str, Any], template: FormTemplate) -> FieldMapping:
        top = index_keys(record)
        nested = index_nested_leaves(record)
        fields: dict[str, MappedField] = {}
        for field in template.fields:
            if field.is_group:
                fields[field.name] = _match_group(field, top, nested)
            else:
                fields[field.name] = _match_scalar(field, top, nested)
        return FieldMapping(template_name=template.name, fields=fields)

    async def map(self, record: dict[str, Any], template: FormTemplate) -> FieldMapping:
        mapping = self.map_deterministic(record, template)
        unmapped = mapping.unmapped_fields
        if not unmapped or self._fallback is None:
            return mapping

        try:
            result = await self._fallback.resolve(template, record, unmapped)
        except Exception as e:
            logger.warning("Mapping fallback raised for %s: %s", template.name, e)
            result = FallbackResult(error=str(e) or type(e).__name__)

        still_unmapped: list[str] = []
        for name in unmapped:
            resolved = _coerce_fallback_value(template.field(name), result.values.get(name))
            if resolved.mapped:
                mapping.fields[name] = resolved
            else:
                still_unmapped.append(name)

        if result.error or still_unmapped:
            mapping.degradation = MappingDegradation(
                reason=result.error or "fallback left fields unresolved",
                fields=still_unmapped,
            )
            logger.warning(
                "Mapping degraded for %s: %d of %d fields unmapped after fallback (%s)",
                template.name,
                len(still_unmapped),
                len(template.fields),
                mapping.degradation.reason,
            )
        return mapping
