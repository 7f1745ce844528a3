"""Patch document wire format exchanged with patch generators."""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import PlacePatchError

_FENCE_PATTERN = re.compile(r"```(?:[A-Za-z0-9_-]+)?\s*\n?(.*?)```", re.DOTALL)
_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)
_PREVIEW_LIMIT = 200


class PatchParseError(PlacePatchError, ValueError):
    """Raised when text cannot be interpreted as a patch document."""


class PropertySpec(BaseModel):
    """Declared type tag and raw JSON value of one property."""

    model_config = ConfigDict(populate_by_name=True)

    type_tag: str = Field(alias="type")
    value: Any


class InstanceDescription(BaseModel):
    """An instance to create, together with its nested children."""

    model_config = ConfigDict(populate_by_name=True)

    class_name: str = Field(alias="class")
    name: str
    properties: dict[str, PropertySpec] = Field(default_factory=dict)
    children: list["InstanceDescription"] = Field(default_factory=list)
    target_parent: str | None = None

    def count_instances(self) -> int:
        """Return how many instances this description materializes."""

        return 1 + sum(child.count_instances() for child in self.children)


InstanceDescription.model_rebuild()


class PatchDocument(BaseModel):
    """Additions and removals to apply to a place.

    Removals listed in ``subtract`` are applied before any addition.
    """

    add: list[InstanceDescription]
    subtract: list[str] = Field(default_factory=list)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "PatchDocument":
        """Validate an already decoded JSON object.

        Raises:
            PatchParseError: If ``payload`` does not match the patch shape.
        """

        if not isinstance(payload, Mapping):
            raise PatchParseError("Patch document must be a JSON object")
        try:
            return cls.model_validate(dict(payload))
        except ValidationError as exc:
            raise PatchParseError(_describe_validation_error(exc)) from exc

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON-serialisable wire representation."""

        return self.model_dump(by_alias=True)

    def is_empty(self) -> bool:
        return not self.add and not self.subtract


def extract_json_text(text: str) -> str:
    """Strip Markdown fences or surrounding prose from a JSON payload."""

    stripped = text.strip()
    fenced = _FENCE_PATTERN.search(stripped)
    if fenced:
        stripped = fenced.group(1).strip()
    if stripped.startswith("{"):
        return stripped
    match = _OBJECT_PATTERN.search(stripped)
    if match:
        return match.group()
    return stripped


def parse_patch(text: str) -> PatchDocument:
    """Parse generator output into a :class:`PatchDocument`.

    Raises:
        PatchParseError: If the text is empty, is not JSON, or does not match
            the patch document shape.
    """

    if not isinstance(text, str):
        raise TypeError(f"patch text must be a string, got {type(text)!r}")
    if not text.strip():
        raise PatchParseError("Patch text is empty")

    payload_text = extract_json_text(text)
    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        raise PatchParseError(
            f"Patch text is not valid JSON ({exc.msg} at line {exc.lineno}, "
            f"column {exc.colno}). Received: {_preview(payload_text)}"
        ) from exc
    return PatchDocument.from_mapping(payload)


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ())) or "(root)"
        problems.append(f"{location}: {detail.get('msg', 'invalid value')}")
    return "Invalid patch document: " + "; ".join(problems)


def _preview(text: str) -> str:
    if len(text) > _PREVIEW_LIMIT:
        return text[:_PREVIEW_LIMIT] + "..."
    return text


__all__ = [
    "InstanceDescription",
    "PatchDocument",
    "PatchParseError",
    "PropertySpec",
    "extract_json_text",
    "parse_patch",
]
