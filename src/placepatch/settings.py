"""Configuration helpers for the placepatch command-line tool."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping


def _normalise_optional(value: str | None) -> str | None:
    if value is None:
        return None

    trimmed = value.strip()
    return trimmed or None


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _parse_temperature(raw: str | None) -> float | None:
    trimmed = _normalise_optional(raw)
    if trimmed is None:
        return None
    try:
        parsed = float(trimmed)
    except ValueError as exc:
        raise ValueError("PLACEPATCH_TEMPERATURE must be a number.") from exc
    if not 0.0 <= parsed <= 2.0:
        raise ValueError("PLACEPATCH_TEMPERATURE must be between 0 and 2.")
    return parsed


def _parse_token_limit(raw: str | None) -> int | None:
    trimmed = _normalise_optional(raw)
    if trimmed is None:
        return None
    try:
        parsed = int(trimmed)
    except ValueError as exc:
        raise ValueError(
            "PLACEPATCH_MAX_OUTPUT_TOKENS must be a positive integer."
        ) from exc
    if parsed < 1:
        raise ValueError("PLACEPATCH_MAX_OUTPUT_TOKENS must be greater than zero.")
    return parsed


@dataclass(frozen=True)
class PlacePatchSettings:
    """Settings for the LLM-backed patch workflow.

    Values come from environment variables so API keys never need to be
    passed on the command line. Empty strings are treated as if the variable
    was unset. Command-line flags take precedence over these values.
    """

    llm_provider: str = "gemini"
    model: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    gemini_api_key: str | None = None
    openai_api_key: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PlacePatchSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        return cls(
            llm_provider=_normalise_string(
                source.get("PLACEPATCH_LLM_PROVIDER"), default="gemini"
            ),
            model=_normalise_optional(source.get("PLACEPATCH_MODEL")),
            temperature=_parse_temperature(source.get("PLACEPATCH_TEMPERATURE")),
            max_output_tokens=_parse_token_limit(
                source.get("PLACEPATCH_MAX_OUTPUT_TOKENS")
            ),
            gemini_api_key=_normalise_optional(source.get("GEMINI_API_KEY")),
            openai_api_key=_normalise_optional(source.get("OPENAI_API_KEY")),
        )

    def provider_options(self, provider: str | None = None) -> Dict[str, Any]:
        """Return constructor options for the built-in ``provider`` adapter.

        Providers loaded from ``module:factory`` paths receive no options
        from the environment; configure them with ``--llm-option``.
        """

        name = (provider or self.llm_provider).strip().lower()
        options: Dict[str, Any] = {}
        if name not in ("gemini", "openai"):
            return options
        if self.model is not None:
            options["model"] = self.model
        if name == "gemini":
            if self.gemini_api_key is not None:
                options["api_key"] = self.gemini_api_key
            if self.max_output_tokens is not None:
                options["max_output_tokens"] = self.max_output_tokens
        elif name == "openai":
            if self.openai_api_key is not None:
                options["api_key"] = self.openai_api_key
            if self.max_output_tokens is not None:
                options["default_options"] = {"max_tokens": self.max_output_tokens}
        return options


__all__ = ["PlacePatchSettings"]
