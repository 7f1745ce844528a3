"""Implementations of :class:`~placepatch.llm.LLMClient` for hosted models."""

from __future__ import annotations

from .gemini import DEFAULT_GEMINI_MODEL, GeminiClient
from .openai import DEFAULT_OPENAI_MODEL, OpenAIChatClient
from ..llm_provider_registry import LLMProviderRegistry


def register_builtin_providers(registry: LLMProviderRegistry) -> None:
    """Register the bundled provider adapters with ``registry``."""

    registry.register("gemini", lambda **options: GeminiClient(**options))
    registry.register("openai", lambda **options: OpenAIChatClient(**options))


__all__ = [
    "DEFAULT_GEMINI_MODEL",
    "DEFAULT_OPENAI_MODEL",
    "GeminiClient",
    "OpenAIChatClient",
    "register_builtin_providers",
]
