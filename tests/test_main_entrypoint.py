"""Tests covering the CLI entry point and its flag handling."""

from __future__ import annotations

import builtins
import json
import sys
from pathlib import Path
from textwrap import dedent
from typing import Iterator

import pytest

from main import main
from placepatch import SceneGraph, load_place, resolve_path, save_place

_SHED_PATCH = {
    "add": [
        {
            "class": "Part",
            "name": "Shed",
            "target_parent": "Workspace/House",
            "properties": {"Size": {"type": "Vector3", "value": [4, 3, 4]}},
        }
    ],
    "subtract": ["Workspace/House/Door"],
}


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "PLACEPATCH_LLM_PROVIDER",
        "PLACEPATCH_MODEL",
        "PLACEPATCH_TEMPERATURE",
        "PLACEPATCH_MAX_OUTPUT_TOKENS",
        "GEMINI_API_KEY",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def place_file(tmp_path: Path, house_graph: SceneGraph) -> Path:
    path = tmp_path / "place.json"
    save_place(path, house_graph)
    return path


@pytest.fixture()
def fake_provider(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[str]:
    """Install an importable provider module that always answers with a patch."""

    module_path = tmp_path / "fake_patch_provider.py"
    module_path.write_text(
        dedent(
            f"""
            from placepatch.llm import LLMClient, LLMMessage, LLMResponse

            PATCH = {json.dumps(json.dumps(_SHED_PATCH))}
            PROMPTS = []


            class FakeClient(LLMClient):
                def __init__(self, answer: str = PATCH) -> None:
                    self.answer = answer

                def complete(self, messages, *, temperature=None):
                    PROMPTS.append(messages[-1].content)
                    return LLMResponse(
                        LLMMessage(role="assistant", content=self.answer),
                        metadata={{"model": "fake"}},
                    )


            def build_client(**options):
                return FakeClient(**options)
            """
        ),
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    yield "fake_patch_provider:build_client"
    sys.modules.pop("fake_patch_provider", None)


def test_patch_file_is_applied_and_saved(place_file: Path, tmp_path: Path, capsys) -> None:
    patch_path = tmp_path / "patch.json"
    patch_path.write_text(json.dumps(_SHED_PATCH), encoding="utf-8")

    main(["--file", str(place_file), "--patch", str(patch_path)])

    output = capsys.readouterr().out
    assert "Successfully parsed place file!" in output
    assert "1 created, 1 removed" in output
    graph = load_place(place_file)
    assert resolve_path(graph, graph.root_ref, "Workspace/House/Shed") is not None
    assert resolve_path(graph, graph.root_ref, "Workspace/House/Door") is None


def test_dry_run_leaves_file_untouched(place_file: Path, tmp_path: Path, capsys) -> None:
    patch_path = tmp_path / "patch.json"
    patch_path.write_text(json.dumps(_SHED_PATCH), encoding="utf-8")
    before = place_file.read_bytes()

    main(["--file", str(place_file), "--patch", str(patch_path), "--dry-run"])

    assert place_file.read_bytes() == before
    assert "Dry run" in capsys.readouterr().out


def test_invalid_patch_file_exits_with_error(place_file: Path, tmp_path: Path, capsys) -> None:
    patch_path = tmp_path / "patch.json"
    patch_path.write_text('{"subtract": []}', encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        main(["--file", str(place_file), "--patch", str(patch_path)])

    assert excinfo.value.code == 1
    assert "Failed to apply patch" in capsys.readouterr().out


def test_patch_cannot_be_combined_with_prompt(place_file: Path, tmp_path: Path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(
            [
                "--file",
                str(place_file),
                "--patch",
                str(tmp_path / "patch.json"),
                "--prompt",
                "Add a shed",
            ]
        )

    assert excinfo.value.code == 2
    assert "--patch cannot be combined" in capsys.readouterr().out


def test_unreadable_place_exits_early(tmp_path: Path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--file", str(tmp_path / "place.rbxl"), "--patch", "p.json"])

    assert excinfo.value.code == 2
    assert "Failed to load place" in capsys.readouterr().out


def test_context_file_must_be_markdown(place_file: Path, tmp_path: Path, capsys) -> None:
    context = tmp_path / "notes.txt"
    context.write_text("rustic", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        main(["--file", str(place_file), "--context", str(context), "--prompt", "x"])

    assert excinfo.value.code == 2
    assert ".md extension" in capsys.readouterr().out


def test_prompt_uses_selected_provider(
    place_file: Path, tmp_path: Path, fake_provider: str, capsys
) -> None:
    context = tmp_path / "style.md"
    context.write_text("# Style\nEverything is wooden.", encoding="utf-8")

    main(
        [
            "--file",
            str(place_file),
            "--llm-provider",
            fake_provider,
            "--context",
            str(context),
            "--prompt",
            "Replace the door with a shed",
        ]
    )

    output = capsys.readouterr().out
    assert "Loaded context from" in output
    assert "Processing prompt: Replace the door with a shed" in output
    assert f"Updated place file: {place_file}" in output
    graph = load_place(place_file)
    shed = resolve_path(graph, graph.root_ref, "Workspace/House/Shed")
    assert shed is not None

    prompts = sys.modules["fake_patch_provider"].PROMPTS
    assert "Everything is wooden." in prompts[0]
    assert prompts[0].endswith("Replace the door with a shed")


def test_prompt_with_bad_model_answer_exits(
    place_file: Path, fake_provider: str, capsys
) -> None:
    before = place_file.read_bytes()

    with pytest.raises(SystemExit) as excinfo:
        main(
            [
                "--file",
                str(place_file),
                "--llm-provider",
                fake_provider,
                "--llm-option",
                "answer=no patch for you",
                "--prompt",
                "Add a shed",
            ]
        )

    assert excinfo.value.code == 1
    assert "Error modifying place" in capsys.readouterr().out
    assert place_file.read_bytes() == before


def test_unknown_provider_exits(place_file: Path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--file", str(place_file), "--llm-provider", "nonexistent", "--prompt", "x"])

    assert excinfo.value.code == 2
    assert "Failed to initialise LLM provider 'nonexistent'" in capsys.readouterr().out


def test_interactive_mode_runs_until_quit(
    place_file: Path, fake_provider: str, monkeypatch: pytest.MonkeyPatch, capsys
) -> None:
    inputs = iter(["", "Add a shed", "quit"])
    monkeypatch.setattr(builtins, "input", lambda prompt="": next(inputs))

    main(["--file", str(place_file), "--llm-provider", fake_provider])

    output = capsys.readouterr().out
    assert "INTERACTIVE MODE" in output
    assert "Prompt is empty" in output
    assert "Exiting interactive mode" in output
    graph = load_place(place_file)
    assert resolve_path(graph, graph.root_ref, "Workspace/House/Shed") is not None
