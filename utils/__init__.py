"""Shared utilities for the backend."""
from utils.case import fold_key, index_keys, index_nested_leaves, spelling_variants, to_camel_key, to_snake_key
from utils.coerce import CoercionError, coerce_value, format_for_pdf

__all__ = [
    "to_camel_key",
    "to_snake_key",
    "fold_key",
    "spelling_variants",
    "index_keys",
    "index_nested_leaves",
    "CoercionError",
    "coerce_value",
    "format_for_pdf",
]
