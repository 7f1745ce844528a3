"""Lookup of :class:`LLMClient` factories by name or import path."""

from __future__ import annotations

import importlib
import json
from typing import Any, Callable, Dict, Sequence

from .llm import LLMClient

ProviderFactory = Callable[..., LLMClient]


class LLMProviderRegistry:
    """Resolve provider factories registered by name or given as ``module:attr``."""

    def __init__(self) -> None:
        self._providers: Dict[str, ProviderFactory] = {}
        self._imported: Dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """Register ``factory`` under the case-insensitive ``name``."""

        key = _normalise_name(name)
        if key in self._providers:
            raise ValueError(f"Provider '{name}' is already registered")
        if not callable(factory):
            raise TypeError("factory must be callable")
        self._providers[key] = factory

    def available_providers(self) -> Sequence[str]:
        return sorted(self._providers)

    def create(self, identifier: str, **options: Any) -> LLMClient:
        """Build the provider named by ``identifier`` with ``options``."""

        client = self._resolve_factory(identifier)(**options)
        if not isinstance(client, LLMClient):
            raise TypeError("Provider factory did not return an LLMClient instance")
        return client

    def create_from_cli(
        self, provider: str, option_strings: Sequence[str] | None = None
    ) -> LLMClient:
        """Build a provider from CLI style ``key=value`` option strings."""

        options = parse_cli_options(option_strings) if option_strings else {}
        return self.create(provider, **options)

    def _resolve_factory(self, identifier: str) -> ProviderFactory:
        name = _validate_identifier(identifier)
        registered = self._providers.get(name.lower())
        if registered is not None:
            return registered
        if name in self._imported:
            return self._imported[name]
        if ":" not in name and "." not in name:
            raise KeyError(f"No provider registered under '{identifier}'")

        factory = _import_factory(name)
        self._imported[name] = factory
        return factory


def parse_cli_options(option_strings: Sequence[str]) -> Dict[str, Any]:
    """Parse ``key=value`` strings; values are read as JSON when possible."""

    options: Dict[str, Any] = {}
    for entry in option_strings:
        if not isinstance(entry, str):
            raise TypeError("CLI option entries must be strings")
        key, sep, raw_value = entry.partition("=")
        key = key.strip()
        if not sep:
            raise ValueError(f"CLI option '{entry}' must be in 'key=value' format")
        if not key:
            raise ValueError("CLI option keys must be non-empty")
        if key in options:
            raise ValueError(f"CLI option '{key}' provided multiple times")
        options[key] = _parse_cli_value(raw_value.strip())
    return options


def _import_factory(identifier: str) -> ProviderFactory:
    if ":" in identifier:
        module_name, _, attr_name = identifier.partition(":")
    else:
        module_name, _, attr_name = identifier.rpartition(".")
    if not module_name or not attr_name:
        raise ValueError("Dynamic provider identifiers must include a module and attribute")

    try:
        module = importlib.import_module(module_name)
    except ModuleNotFoundError as exc:
        raise LookupError(f"Could not import provider module '{module_name}'") from exc
    factory = getattr(module, attr_name, None)
    if factory is None:
        raise LookupError(f"Factory '{attr_name}' not found in module '{module_name}'")
    if not callable(factory):
        raise TypeError(f"'{identifier}' is not callable")
    return factory


def _normalise_name(name: str) -> str:
    return _validate_identifier(name).lower()


def _validate_identifier(identifier: str) -> str:
    if not isinstance(identifier, str):
        raise TypeError("provider identifier must be a string")
    stripped = identifier.strip()
    if not stripped:
        raise ValueError("provider identifier must be non-empty")
    return stripped


def _parse_cli_value(value: str) -> Any:
    if not value:
        return ""
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


__all__ = ["LLMProviderRegistry", "ProviderFactory", "parse_cli_options"]
