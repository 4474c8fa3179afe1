"""
Coerce loosely-typed intake values to a form field's declared type, and format
coerced values for writing into PDF widgets.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from schemas.forms import FieldType

TRUE_TOKENS = frozenset({"true", "yes", "y", "1", "on", "checked", "x"})
FALSE_TOKENS = frozenset({"false", "no", "n", "0", "off", "unchecked"})

_CURRENCY_RE = re.compile(r"[\s$€£,]|usd", re.IGNORECASE)

Number = Union[int, float]


class CoercionError(ValueError):
    pass


def coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
    raise CoercionError(f"not a recognized boolean: {value!r}")


def coerce_numeric(value: Any) -> Number:
    if isinstance(value, bool):
        raise CoercionError("boolean is not numeric")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise CoercionError(f"not a finite number: {value!r}")
        return int(value) if value.is_integer() else value
    if not isinstance(value, str):
        raise CoercionError(f"not numeric: {value!r}")

    s = value.strip()
    negative = s.startswith("(") and s.endswith(")")
    if negative:
        s = s[1:-1]
    s = _CURRENCY_RE.sub("", s)
    if not s:
        raise CoercionError(f"not numeric: {value!r}")
    try:
        d = Decimal(s)
    except InvalidOperation:
        raise CoercionError(f"not numeric: {value!r}") from None
    if not d.is_finite():
        raise CoercionError(f"not a finite number: {value!r}")
    if negative:
        d = -d
    if d == d.to_integral_value():
        return int(d)
    return float(d)


def coerce_text(value: Any) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        s = value.strip()
        if s:
            return s
    raise CoercionError(f"not usable as text: {value!r}")


def coerce_value(value: Any, field_type: FieldType) -> Any:
    """Coerce one scalar to ``field_type``. Raises CoercionError (None is never valid)."""
    if value is None:
        raise CoercionError("missing value")
    if field_type == FieldType.BOOLEAN:
        return coerce_boolean(value)
    if field_type == FieldType.NUMERIC:
        return coerce_numeric(value)
    if field_type == FieldType.TEXT:
        return coerce_text(value)
    raise CoercionError(f"{field_type.value} is not a scalar type")


def format_number(value: Number) -> str:
    if isinstance(value, float) and not value.is_integer():
        return f"{value:.2f}"
    return str(int(value))


def format_for_pdf(value: Any) -> str:
    """Text written into a PDF text widget."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)
