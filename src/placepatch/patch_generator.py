"""Prompt an LLM for a patch document describing an edit to a place."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Sequence

from .graph import Ref, SceneGraph
from .llm import (
    LLMClient,
    LLMErrorClassifier,
    LLMMessage,
    LLMResponse,
    LLMRetryPolicy,
    call_with_retries,
)
from .patch import PatchDocument, parse_patch
from .paths import path_of
from .properties import InstanceLink, OpaqueProperty, encode_property

logger = logging.getLogger(__name__)

MATERIALS: Mapping[str, int] = {
    "Plastic": 256,
    "SmoothPlastic": 272,
    "Neon": 288,
    "Wood": 512,
    "WoodPlanks": 528,
    "Marble": 784,
    "Basalt": 788,
    "Slate": 800,
    "CrackedLava": 804,
    "Concrete": 816,
    "Limestone": 820,
    "Granite": 832,
    "Pavement": 836,
    "Brick": 848,
    "Pebble": 864,
    "Cobblestone": 880,
    "Rock": 896,
    "Sandstone": 912,
    "CorrodedMetal": 1040,
    "DiamondPlate": 1056,
    "Foil": 1072,
    "Metal": 1088,
    "Grass": 1280,
    "LeafyGrass": 1284,
    "Sand": 1296,
    "Fabric": 1312,
    "Snow": 1328,
    "Mud": 1344,
    "Ground": 1360,
    "Asphalt": 1376,
    "Salt": 1392,
    "Ice": 1536,
    "Glacier": 1552,
    "Glass": 1568,
    "ForceField": 1584,
    "Air": 1792,
    "Water": 2048,
    "Cardboard": 2304,
    "Carpet": 2305,
    "CeramicTiles": 2306,
    "ClayRoofTiles": 2307,
    "RoofShingles": 2308,
    "Leather": 2309,
    "Plaster": 2310,
    "Rubber": 2311,
}

EXAMPLE_PATCH: Mapping[str, Any] = {
    "add": [
        {
            "class": "Part",
            "name": "Base",
            "target_parent": "Workspace/House",
            "properties": {
                "CFrame": {
                    "type": "CFrame",
                    "value": {
                        "position": [10.0, 5.0, 0.0],
                        "rotation": [1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0],
                    },
                },
                "Size": {"type": "Vector3", "value": [10.0, 5.0, 10.0]},
                "BrickColor": {"type": "BrickColor", "value": 194},
                "Material": {"type": "Enum", "value": 256},
                "Color": {"type": "Color3", "value": [1.0, 1.0, 1.0]},
            },
            "children": [
                {
                    "class": "Decal",
                    "name": "Painting",
                    "properties": {
                        "Texture": {"type": "String", "value": "rbxassetid://123456"}
                    },
                    "children": [],
                }
            ],
        }
    ],
    "subtract": ["Workspace/House/Door", "Workspace/Tree/Window"],
}

_RULES = """\
You edit Roblox places by answering with a single JSON patch document.

Rules:
- Respond with raw JSON only. No Markdown code fences, no commentary.
- The document has two keys: "add" (a list of instances to create) and
  "subtract" (a list of paths of instances to remove).
- Every instance has a "class" and a "name". Name is not a property.
- Use "target_parent" on the outer-most added instances to pick where they go.
  Nested instances go in "children" and need no target_parent.
- When asked to modify or rewrite something, remove the old instance in
  "subtract" and add the new version in "add".
- Group related parts together under a Model.

Paths:
- Paths are instance names separated by forward slashes and start at a
  top-level service, for example "Workspace", "Workspace/Models/House" or
  "StarterPlayer/StarterPlayerScripts".
- Names in a path must match the existing instances exactly. Use the place
  outline to find them.
- Server scripts belong in "ServerScriptService". Client scripts belong in
  "StarterPlayer/StarterPlayerScripts" or "StarterPlayer/StarterCharacterScripts".

Property encoding ({"type": ..., "value": ...}):
- Vector3 and Color3: an array of 3 numbers. Color3 components are 0 to 1.
- CFrame: {"position": [x, y, z], "rotation": [9 numbers, row-major]}.
- UDim2: an array of 4 values, [xScale, xOffset, yScale, yOffset].
- BrickColor: a palette number, never 0.
- Enum: a non-negative integer. Font enums are between 0 and 45.
- Bool, Float, Int and String carry plain JSON values.
- Script source code goes in the "Source" property as a String.
"""


def _material_table() -> str:
    rows = "\n".join(f"- {name}: {value}" for name, value in MATERIALS.items())
    return f"Material is an Enum. Valid values:\n{rows}"


def default_system_prompt() -> str:
    """Return the system prompt used when none is supplied."""

    example = json.dumps(EXAMPLE_PATCH, indent=2)
    return f"{_RULES}\n{_material_table()}\n\nExample patch:\n{example}"


def _format_value(graph: SceneGraph, value: Any) -> str:
    if isinstance(value, InstanceLink):
        if value.target is None or value.target not in graph:
            return "Ref (none)"
        return f"Ref -> {path_of(graph, value.target)}"
    if isinstance(value, OpaqueProperty):
        return f"<{value.kind}>"
    tag, payload = encode_property(value)
    return f"{tag} {json.dumps(payload, separators=(',', ':'))}"


def _outline_lines(
    graph: SceneGraph,
    ref: Ref,
    depth: int,
    *,
    include_properties: bool,
    max_depth: int | None,
) -> Iterator[str]:
    instance = graph.get(ref)
    indent = "  " * depth
    yield f"{indent}{instance.name} ({instance.class_name})"
    if include_properties:
        for name in sorted(instance.properties):
            if name == "Source":
                yield f"{indent}    .Source = <{len(str(instance.properties[name]))} chars>"
                continue
            yield f"{indent}    .{name} = {_format_value(graph, instance.properties[name])}"
    if max_depth is not None and depth >= max_depth:
        if instance.children:
            yield f"{indent}  ... {len(instance.children)} more"
        return
    for child in instance.children:
        yield from _outline_lines(
            graph,
            child,
            depth + 1,
            include_properties=include_properties,
            max_depth=max_depth,
        )


def render_outline(
    graph: SceneGraph,
    *,
    include_properties: bool = True,
    max_depth: int | None = None,
) -> str:
    """Render the place as an indented ``Name (Class)`` tree.

    The root itself is omitted; its children start at column zero. Script
    sources are summarised by length so large places stay within the
    model's context window.
    """

    lines: list[str] = []
    for child in graph.children(graph.root_ref):
        lines.extend(
            _outline_lines(
                graph,
                child,
                0,
                include_properties=include_properties,
                max_depth=max_depth,
            )
        )
    return "\n".join(lines) if lines else "(empty place)"


@dataclass
class PatchGenerator:
    """Turn natural-language instructions into :class:`PatchDocument` objects."""

    llm_client: LLMClient
    system_prompt: str | None = None
    temperature: float | None = 0.8
    retry_policy: LLMRetryPolicy | None = None
    error_classifier: LLMErrorClassifier | None = None
    sleep: Callable[[float], None] | None = None
    include_properties: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.llm_client, LLMClient):
            raise TypeError("llm_client must be an LLMClient instance")
        if self.system_prompt is None:
            self.system_prompt = default_system_prompt()
        elif not isinstance(self.system_prompt, str):
            raise TypeError("system_prompt must be a string")
        else:
            stripped = self.system_prompt.strip()
            if not stripped:
                raise ValueError("system_prompt must be a non-empty string")
            self.system_prompt = stripped

    def build_messages(
        self,
        graph: SceneGraph,
        instruction: str,
        context: str | None = None,
    ) -> Sequence[LLMMessage]:
        if not isinstance(instruction, str) or not instruction.strip():
            raise ValueError("instruction must be a non-empty string")

        sections = [
            "Current place outline:",
            render_outline(graph, include_properties=self.include_properties),
        ]
        if context is not None and context.strip():
            sections.extend(["", "Additional context:", context.strip()])
        sections.extend(["", "Instruction:", instruction.strip()])
        return [
            LLMMessage(role="system", content=self.system_prompt),
            LLMMessage(role="user", content="\n".join(sections)),
        ]

    def generate(
        self,
        graph: SceneGraph,
        instruction: str,
        context: str | None = None,
    ) -> PatchDocument:
        """Ask the model for a patch implementing ``instruction`` on ``graph``.

        Raises:
            LLMClientError: The provider failed after any retries.
            PatchParseError: The model's answer is not a valid patch.
        """

        messages = self.build_messages(graph, instruction, context)
        start_time = time.time()
        response: LLMResponse = call_with_retries(
            lambda: self.llm_client.complete(messages, temperature=self.temperature),
            retry_policy=self.retry_policy,
            classifier=self.error_classifier,
            sleep=self.sleep,
        )
        logger.debug(
            "Patch generated in %.2fs (model=%s, tokens=%s)",
            time.time() - start_time,
            response.metadata.get("model", "unknown"),
            response.usage.get("total_tokens", "unknown"),
        )
        return parse_patch(response.message.content)


__all__ = [
    "EXAMPLE_PATCH",
    "MATERIALS",
    "PatchGenerator",
    "default_system_prompt",
    "render_outline",
]
