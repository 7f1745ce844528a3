"""Tests for the LLM provider registry utilities."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Sequence

import pytest

from placepatch.llm import LLMClient, LLMMessage, LLMResponse
from placepatch.llm_provider_registry import LLMProviderRegistry, parse_cli_options
from placepatch.llm_providers import (
    GeminiClient,
    OpenAIChatClient,
    register_builtin_providers,
)


class DummyClient(LLMClient):
    def __init__(self, **config: Any) -> None:
        self.config = config

    def complete(
        self, messages: Sequence[LLMMessage], *, temperature: float | None = None
    ) -> LLMResponse:
        return LLMResponse(LLMMessage(role="assistant", content="dummy"))


@pytest.fixture()
def registry() -> LLMProviderRegistry:
    return LLMProviderRegistry()


def _registered_factory(**options: Any) -> DummyClient:
    return DummyClient(**options)


def test_register_and_create_provider(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)
    client = registry.create("Dummy", api_key="secret")
    assert isinstance(client, DummyClient)
    assert client.config == {"api_key": "secret"}


def test_register_duplicate_name(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)
    with pytest.raises(ValueError):
        registry.register("DUMMY", _registered_factory)


def test_create_unknown_provider(registry: LLMProviderRegistry) -> None:
    with pytest.raises(KeyError):
        registry.create("unknown")


def test_factory_must_return_llm_client(registry: LLMProviderRegistry) -> None:
    registry.register("broken", lambda **_: object())
    with pytest.raises(TypeError):
        registry.create("broken")


def test_create_from_cli_parses_options(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)
    client = registry.create_from_cli("dummy", ["temperature=0.4", "model=flash"])
    assert isinstance(client, DummyClient)
    assert client.config == {"temperature": 0.4, "model": "flash"}


def test_dynamic_import_by_module_path(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, registry: LLMProviderRegistry
) -> None:
    module_path = tmp_path / "custom_patch_provider.py"
    module_path.write_text(
        "from placepatch.llm import LLMClient, LLMMessage, LLMResponse\n"
        "\n"
        "class Echo(LLMClient):\n"
        "    def __init__(self, **options):\n"
        "        self.options = options\n"
        "\n"
        "    def complete(self, messages, *, temperature=None):\n"
        "        return LLMResponse(LLMMessage(role='assistant', content='{\"add\": []}'))\n"
        "\n"
        "def build(**options):\n"
        "    return Echo(**options)\n",
        encoding="utf-8",
    )
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.delitem(sys.modules, "custom_patch_provider", raising=False)

    client = registry.create("custom_patch_provider:build", flavour="plain")
    assert client.options == {"flavour": "plain"}  # type: ignore[attr-defined]

    with pytest.raises(LookupError):
        registry.create("custom_patch_provider:missing")
    with pytest.raises(LookupError):
        registry.create("no_such_module_for_tests:build")


def test_builtin_providers_are_registered(registry: LLMProviderRegistry) -> None:
    register_builtin_providers(registry)
    assert registry.available_providers() == ["gemini", "openai"]

    gemini = registry.create("gemini", client=object())
    openai = registry.create("openai", client=object())
    assert isinstance(gemini, GeminiClient)
    assert isinstance(openai, OpenAIChatClient)


def test_parse_cli_options_reads_json_values() -> None:
    options = parse_cli_options(
        ["count=3", "flag=true", "name=gemini-pro", 'extra={"a": 1}', "empty="]
    )
    assert options == {
        "count": 3,
        "flag": True,
        "name": "gemini-pro",
        "extra": {"a": 1},
        "empty": "",
    }


@pytest.mark.parametrize("entries", [["novalue"], ["=1"], ["a=1", "a=2"]])
def test_parse_cli_options_rejects_malformed_entries(entries: list[str]) -> None:
    with pytest.raises(ValueError):
        parse_cli_options(entries)
