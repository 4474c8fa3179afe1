from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldType(str, Enum):
    TEXT = "text"
    BOOLEAN = "boolean"
    NUMERIC = "numeric"
    REPEATED_GROUP = "repeated_group"


class FieldSource(str, Enum):
    EXACT = "exact"
    HEURISTIC = "heuristic"
    AI_ASSISTED = "ai-assisted"


class FormField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: FieldType = FieldType.TEXT
    label: Optional[str] = None
    required: bool = False
    aliases: tuple[str, ...] = ()
    # Repeated groups only
    row_count: int = 0
    columns: tuple[FormField, ...] = ()

    @property
    def is_group(self) -> bool:
        return self.type == FieldType.REPEATED_GROUP

    def cell_name(self, row: int, column: str) -> str:
        """PDF widget name of one cell; rows are numbered from 1."""
        return f"{self.name}_{row}_{column}"

    def pdf_field_names(self) -> list[str]:
        if not self.is_group:
            return [self.name]
        return [self.cell_name(r, c.name) for r in range(1, self.row_count + 1) for c in self.columns]

    def empty_row(self) -> dict[str, Any]:
        return {c.name: None for c in self.columns}


FormField.model_rebuild()


class FormTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    title: str
    filename: str
    fields: tuple[FormField, ...]

    def field(self, name: str) -> FormField:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(f"{self.name} has no field {name!r}")

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def alias_table(self) -> dict[str, tuple[str, ...]]:
        return {f.name: f.aliases for f in self.fields if f.aliases}

    def catalog(self) -> list[dict[str, str]]:
        """Field name + declared type only (what the AI fallback is shown)."""
        out: list[dict[str, str]] = []
        for f in self.fields:
            entry = {"name": f.name, "type": f.type.value}
            if f.is_group:
                entry["rows"] = str(f.row_count)
                entry["columns"] = ", ".join(f"{c.name}:{c.type.value}" for c in f.columns)
            out.append(entry)
        return out

    def required_fields(self) -> list[str]:
        return [f.name for f in self.fields if f.required]

    def empty_values(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in self.fields:
            if f.is_group:
                out[f.name] = [f.empty_row() for _ in range(f.row_count)]
            elif f.type == FieldType.BOOLEAN:
                out[f.name] = False
            elif f.type == FieldType.NUMERIC:
                out[f.name] = None
            else:
                out[f.name] = ""
        return out


class MappedField(BaseModel):
    value: Any = None
    source: Optional[FieldSource] = None
    mapped: bool = False


class MappingDegradation(BaseModel):
    """Fallback was unavailable or only partially answered; not an error."""

    reason: str
    fields: list[str] = Field(default_factory=list)


class FieldMapping(BaseModel):
    template_name: str
    fields: dict[str, MappedField]
    degradation: Optional[MappingDegradation] = None

    @property
    def unmapped_fields(self) -> list[str]:
        return [name for name, f in self.fields.items() if not f.mapped]

    def mapped_values(self) -> dict[str, Any]:
        return {name: f.value for name, f in self.fields.items() if f.mapped}

    def sources(self) -> dict[str, Optional[FieldSource]]:
        return {name: f.source for name, f in self.fields.items()}


class FillResult(BaseModel):
    success: bool
    template_name: str
    written_fields: list[str] = Field(default_factory=list)
    unmapped_fields: list[str] = Field(default_factory=list)
    output_key: Optional[str] = None
    output_url: Optional[str] = None
    error: Optional[str] = None
    processing_time_ms: int = 0
