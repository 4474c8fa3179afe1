"""
Render a blank AcroForm PDF for a registered template: one labelled widget per
field (text widgets for text/numeric, checkboxes for boolean, one widget per
cell for repeated groups). Used by scripts/build_templates.py to bootstrap a
templates directory, and by the test suite.
"""
from __future__ import annotations

from io import BytesIO
from typing import Iterator

from pypdf import PdfWriter
from pypdf.generic import (
    ArrayObject,
    BooleanObject,
    DecodedStreamObject,
    DictionaryObject,
    FloatObject,
    IndirectObject,
    NameObject,
    NumberObject,
    TextStringObject,
)

from schemas.forms import FieldType, FormTemplate

PAGE_WIDTH = 612
PAGE_HEIGHT = 792
MARGIN = 36
ROW_HEIGHT = 18
LABEL_WIDTH = 300
BOX = 12


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _entries(template: FormTemplate) -> Iterator[tuple[str, str, bool]]:
    """(label, widget name, is_checkbox) in catalog order."""
    for field in template.fields:
        if field.is_group:
            for row in range(1, field.row_count + 1):
                for column in field.columns:
                    yield (
                        f"{field.label} #{row} - {column.label}",
                        field.cell_name(row, column.name),
                        column.type == FieldType.BOOLEAN,
                    )
        else:
            yield field.label or field.name, field.name, field.type == FieldType.BOOLEAN


def _rect(x0: float, y0: float, x1: float, y1: float) -> ArrayObject:
    return ArrayObject([FloatObject(x0), FloatObject(y0), FloatObject(x1), FloatObject(y1)])


def _appearance(writer: PdfWriter, content: bytes) -> IndirectObject:
    stream = DecodedStreamObject()
    stream.set_data(content)
    stream.update(
        {
            NameObject("/Type"): NameObject("/XObject"),
            NameObject("/Subtype"): NameObject("/Form"),
            NameObject("/BBox"): _rect(0, 0, BOX, BOX),
        }
    )
    return writer._add_object(stream)


def _text_widget(name: str, label: str, y: float) -> DictionaryObject:
    return DictionaryObject(
        {
            NameObject("/Type"): NameObject("/Annot"),
            NameObject("/Subtype"): NameObject("/Widget"),
            NameObject("/FT"): NameObject("/Tx"),
            NameObject("/T"): TextStringObject(name),
            NameObject("/TU"): TextStringObject(label),
            NameObject("/Rect"): _rect(MARGIN + LABEL_WIDTH, y, PAGE_WIDTH - MARGIN, y + 14),
            NameObject("/F"): NumberObject(4),
            NameObject("/V"): TextStringObject(""),
            NameObject("/DA"): TextStringObject("/Helv 9 Tf 0 g"),
        }
    )


def _checkbox_widget(writer: PdfWriter, name: str, label: str, y: float) -> DictionaryObject:
    on = _appearance(writer, b"0 g 2 2 8 8 re f")
    off = _appearance(writer, b"")
    x = MARGIN + LABEL_WIDTH
    return DictionaryObject(
        {
            NameObject("/Type"): NameObject("/Annot"),
            NameObject("/Subtype"): NameObject("/Widget"),
            NameObject("/FT"): NameObject("/Btn"),
            NameObject("/T"): TextStringObject(name),
            NameObject("/TU"): TextStringObject(label),
            NameObject("/Rect"): _rect(x, y, x + BOX, y + BOX),
            NameObject("/F"): NumberObject(4),
            NameObject("/V"): NameObject("/Off"),
            NameObject("/AS"): NameObject("/Off"),
            NameObject("/AP"): DictionaryObject(
                {NameObject("/N"): DictionaryObject({NameObject("/Yes"): on, NameObject("/Off"): off})}
            ),
            NameObject("/MK"): DictionaryObject(
                {NameObject("/BC"): ArrayObject([FloatObject(0), FloatObject(0), FloatObject(0)])}
            ),
        }
    )


def build_template_pdf(template: FormTemplate) -> bytes:
    writer = PdfWriter()
    font = writer._add_object(
        DictionaryObject(
            {
                NameObject("/Type"): NameObject("/Font"),
                NameObject("/Subtype"): NameObject("/Type1"),
                NameObject("/BaseFont"): NameObject("/Helvetica"),
                NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
            }
        )
    )
    fields = ArrayObject()
    entries = list(_entries(template))
    per_page = (PAGE_HEIGHT - 2 * MARGIN - ROW_HEIGHT) // ROW_HEIGHT

    for start in range(0, len(entries), per_page):
        page = writer.add_blank_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
        annots = ArrayObject()
        y = PAGE_HEIGHT - MARGIN - ROW_HEIGHT
        lines = [f"BT /F1 11 Tf {MARGIN} {y} Td ({_escape(template.title)}) Tj ET"]
        for label, name, is_checkbox in entries[start : start + per_page]:
            y -= ROW_HEIGHT
            lines.append(f"BT /F1 8 Tf {MARGIN} {y + 4} Td ({_escape(label)}) Tj ET")
            if is_checkbox:
                widget = _checkbox_widget(writer, name, label, y)
            else:
                widget = _text_widget(name, label, y)
            widget[NameObject("/P")] = page.indirect_reference
            ref = writer._add_object(widget)
            annots.append(ref)
            fields.append(ref)

        content = DecodedStreamObject()
        content.set_data("\n".join(lines).encode("latin-1", errors="replace"))
        page[NameObject("/Contents")] = writer._add_object(content)
        page[NameObject("/Resources")] = DictionaryObject(
            {NameObject("/Font"): DictionaryObject({NameObject("/F1"): font})}
        )
        page[NameObject("/Annots")] = annots

    writer.root_object[NameObject("/AcroForm")] = DictionaryObject(
        {
            NameObject("/Fields"): fields,
            NameObject("/NeedAppearances"): BooleanObject(True),
            NameObject("/DA"): TextStringObject("/Helv 0 Tf 0 g"),
            NameObject("/DR"): DictionaryObject(
                {NameObject("/Font"): DictionaryObject({NameObject("/Helv"): font})}
            ),
        }
    )

    buf = BytesIO()
    writer.write(buf)
    return buf.getvalue()
