"""
Source adapters by `kind`, the same names niche configs and `plan_kinds`
use ("greenhouse", "reliefweb", "serper", ...). Adapter modules register
themselves on import via `@register`.
"""

from __future__ import annotations

from .base import BaseSource

_SOURCES: dict[str, type[BaseSource]] = {}


def _key(kind: str | None) -> str:
    return (kind or "").strip().lower()


def register(cls: type[BaseSource]) -> type[BaseSource]:
    key = _key(getattr(cls, "kind", None))
    if not key:
        raise ValueError(f"{cls.__name__} has no `kind`; it cannot be planned into a run")
    taken = _SOURCES.get(key)
    if taken is not None and taken is not cls:
        raise ValueError(f"source kind {key!r} is already served by {taken.__name__}")
    _SOURCES[key] = cls
    return cls


def get(kind: str) -> type[BaseSource]:
    """Adapter class for `kind`; KeyError names the kinds that do exist."""
    try:
        return _SOURCES[_key(kind)]
    except KeyError:
        known = ", ".join(sorted(_SOURCES)) or "none"
        raise KeyError(f"unknown job source {kind!r} (known: {known})") from None


def all_kinds() -> dict[str, type[BaseSource]]:
    return dict(_SOURCES)
