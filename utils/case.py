"""
Key-spelling helpers for matching loosely-structured intake keys against form field names.
Uses Pydantic's alias_generators for consistency with schema validation.
"""
from typing import Any, Iterable

from pydantic.alias_generators import to_camel, to_snake


def to_camel_key(s: str) -> str:
    """Convert a single snake_case key to camelCase (first letter lower)."""
    return to_camel(s)


def to_snake_key(s: str) -> str:
    """Convert a single camelCase key to snake_case."""
    return to_snake(s)


def fold_key(s: str) -> str:
    """Case-insensitive comparison key."""
    return s.strip().casefold()


def spelling_variants(names: Iterable[str]) -> list[str]:
    """Each name plus its snake_case and camelCase spellings, folded and de-duplicated."""
    out: list[str] = []
    for name in names:
        for variant in (name, to_snake_key(name), to_camel_key(name)):
            k = fold_key(variant)
            if k and k not in out:
                out.append(k)
    return out


def index_keys(record: dict[str, Any]) -> dict[str, Any]:
    """
    Folded key -> value for the top-level keys of a record.
    When two keys fold to the same spelling the first one wins.
    """
    out: dict[str, Any] = {}
    for k, v in record.items():
        out.setdefault(fold_key(str(k)), v)
    return out


def index_nested_leaves(record: dict[str, Any]) -> dict[str, Any]:
    """Folded leaf key -> value for scalar/list values inside nested dicts (depth-first, first wins)."""
    out: dict[str, Any] = {}

    def _walk(obj: dict[str, Any]) -> None:
        for k, v in obj.items():
            if isinstance(v, dict):
                _walk(v)
            else:
                out.setdefault(fold_key(str(k)), v)

    for v in record.values():
        if isinstance(v, dict):
            _walk(v)
    return out
