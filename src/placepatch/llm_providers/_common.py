"""Helpers shared by the bundled provider adapters."""

from __future__ import annotations

from typing import Any, Mapping


def require_str(value: str, *, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must be a non-empty string")
    return stripped


def coerce_options(value: Mapping[str, Any] | None) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError("default options must be a mapping of keyword arguments")
    return dict(value)


def extract_attr(container: Any, name: str, default: Any | None = None) -> Any:
    """Read ``name`` from SDK objects and plain dictionaries alike."""

    if isinstance(container, Mapping):
        return container.get(name, default)
    return getattr(container, name, default)
