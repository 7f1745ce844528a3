"""Tests for :mod:`placepatch.patch_generator`."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from placepatch.graph import SceneGraph
from placepatch.llm import LLMClientError, LLMRetryPolicy
from placepatch.patch import PatchParseError
from placepatch.patch_generator import (
    EXAMPLE_PATCH,
    MATERIALS,
    PatchGenerator,
    default_system_prompt,
    render_outline,
)
from placepatch.properties import BrickColor, InstanceLink, OpaqueProperty, Vector3

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from tests.conftest import MockLLMClient

_PATCH_TEXT = json.dumps(
    {"add": [{"class": "Part", "name": "Shed", "target_parent": "Workspace"}]}
)


def test_render_outline_indents_children(house_graph: SceneGraph) -> None:
    outline = render_outline(house_graph)

    assert outline.splitlines() == [
        "Workspace (Workspace)",
        "  House (Model)",
        "    Door (Part)",
        "    Window (Part)",
        "Lighting (Lighting)",
    ]


def test_render_outline_lists_properties_and_summarises_sources() -> None:
    graph = SceneGraph()
    workspace = graph.insert(graph.root_ref, class_name="Workspace")
    graph.insert(
        workspace,
        class_name="Part",
        name="Base",
        properties={"Size": Vector3(4, 1, 2), "BrickColor": BrickColor(194)},
    )
    graph.insert(
        workspace,
        class_name="Script",
        name="Spin",
        properties={"Source": "while true do end"},
    )

    lines = render_outline(graph).splitlines()

    assert lines == [
        "Workspace (Workspace)",
        "  Base (Part)",
        "      .BrickColor = BrickColor 194",
        "      .Size = Vector3 [4.0,1.0,2.0]",
        "  Spin (Script)",
        "      .Source = <17 chars>",
    ]
    assert "Base (Part)" in render_outline(graph, include_properties=False)
    assert ".Size" not in render_outline(graph, include_properties=False)


def test_render_outline_describes_links_and_kept_values() -> None:
    graph = SceneGraph()
    workspace = graph.insert(graph.root_ref, class_name="Workspace")
    camera = graph.insert(workspace, class_name="Camera")
    graph.get(workspace).properties.update(
        {
            "CurrentCamera": InstanceLink(camera),
            "Terrain": InstanceLink(None),
            "Texture": OpaqueProperty(kind="Content", payload="<Content />"),
        }
    )

    lines = render_outline(graph).splitlines()

    assert lines[:4] == [
        "Workspace (Workspace)",
        "    .CurrentCamera = Ref -> Workspace/Camera",
        "    .Terrain = Ref (none)",
        "    .Texture = <Content>",
    ]


def test_render_outline_depth_limit(house_graph: SceneGraph) -> None:
    outline = render_outline(house_graph, max_depth=0)

    assert outline.splitlines() == [
        "Workspace (Workspace)",
        "  ... 1 more",
        "Lighting (Lighting)",
    ]
    assert render_outline(SceneGraph()) == "(empty place)"


def test_default_prompt_documents_the_patch_format() -> None:
    prompt = default_system_prompt()

    assert "[xScale, xOffset, yScale, yOffset]" in prompt
    assert "SmoothPlastic: 272" in prompt
    assert json.dumps(EXAMPLE_PATCH, indent=2) in prompt
    assert len(MATERIALS) == 45


def test_generate_sends_outline_context_and_instruction(
    house_graph: SceneGraph, make_mock_llm_client: Any
) -> None:
    client: MockLLMClient = make_mock_llm_client([_PATCH_TEXT])
    generator = PatchGenerator(llm_client=client)

    patch = generator.generate(house_graph, "  Add a shed  ", context="Style: rustic")

    assert patch.add[0].name == "Shed"
    system, user = client.calls[0]
    assert system.role == "system"
    assert system.content == default_system_prompt().strip()
    assert user.role == "user"
    assert "House (Model)" in user.content
    assert "Additional context:\nStyle: rustic" in user.content
    assert user.content.endswith("Instruction:\nAdd a shed")
    assert client.temperatures == [0.8]


def test_generate_without_context_omits_section(
    house_graph: SceneGraph, make_mock_llm_client: Any
) -> None:
    client: MockLLMClient = make_mock_llm_client([_PATCH_TEXT])
    generator = PatchGenerator(llm_client=client, temperature=None)

    generator.generate(house_graph, "Add a shed", context="   ")

    assert "Additional context" not in client.calls[0][1].content
    assert client.temperatures == [None]


def test_generate_accepts_fenced_answers(
    house_graph: SceneGraph, make_mock_llm_client: Any
) -> None:
    client: MockLLMClient = make_mock_llm_client([f"```json\n{_PATCH_TEXT}\n```"])

    patch = PatchGenerator(llm_client=client).generate(house_graph, "Add a shed")

    assert patch.add[0].target_parent == "Workspace"


def test_generate_raises_parse_error_for_bad_answers(
    house_graph: SceneGraph, make_mock_llm_client: Any
) -> None:
    client: MockLLMClient = make_mock_llm_client(["I cannot help with that."])

    with pytest.raises(PatchParseError):
        PatchGenerator(llm_client=client).generate(house_graph, "Add a shed")


def test_generate_retries_transient_failures(
    house_graph: SceneGraph, make_mock_llm_client: Any
) -> None:
    transient = LLMClientError("provider failed")
    transient.__cause__ = TimeoutError("slow")
    client: MockLLMClient = make_mock_llm_client([transient, _PATCH_TEXT])
    delays: list[float] = []
    generator = PatchGenerator(
        llm_client=client,
        retry_policy=LLMRetryPolicy(max_attempts=2, initial_backoff=0.5),
        sleep=delays.append,
    )

    patch = generator.generate(house_graph, "Add a shed")

    assert patch.add[0].name == "Shed"
    assert delays == [0.5]
    assert len(client.calls) == 2


def test_generator_validation(mock_llm_client: Any, house_graph: SceneGraph) -> None:
    with pytest.raises(TypeError):
        PatchGenerator(llm_client=object())  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        PatchGenerator(llm_client=mock_llm_client, system_prompt="  ")
    generator = PatchGenerator(llm_client=mock_llm_client, system_prompt=" Custom ")
    assert generator.system_prompt == "Custom"
    with pytest.raises(ValueError):
        generator.generate(house_graph, "   ")
