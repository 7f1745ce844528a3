"""Adapter exposing Google Gemini models as an :class:`LLMClient`."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..llm import LLMClient, LLMClientError, LLMMessage, LLMResponse
from ._common import coerce_options, extract_attr, require_str

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash"

_USAGE_FIELDS = {
    "prompt_token_count": "prompt_tokens",
    "candidates_token_count": "completion_tokens",
    "total_token_count": "total_tokens",
}


class GeminiClient(LLMClient):
    """:class:`LLMClient` backed by the ``google-genai`` SDK.

    System messages become the request's system instruction; assistant
    messages are sent with Gemini's ``model`` role. Responses are requested
    as ``application/json``.
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_GEMINI_MODEL,
        api_key: str | None = None,
        client: Any | None = None,
        max_output_tokens: int | None = 8000,
        default_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._model = require_str(model, field_name="model")
        config: dict[str, Any] = {"response_mime_type": "application/json"}
        if max_output_tokens is not None:
            config["max_output_tokens"] = max_output_tokens
        config.update(coerce_options(default_options))
        self._default_config = config

        if client is None:
            try:
                from google import genai
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise ImportError(
                    "GeminiClient requires the 'google-genai' package. "
                    "Install it with 'pip install google-genai'."
                ) from exc
            client = genai.Client(api_key=api_key)
        self._client = client

    def complete(
        self,
        messages: Sequence[LLMMessage],
        *,
        temperature: float | None = None,
    ) -> LLMResponse:
        config = dict(self._default_config)
        if temperature is not None:
            config["temperature"] = temperature

        system_parts = [m.content for m in messages if m.role == "system"]
        if system_parts:
            config["system_instruction"] = "\n\n".join(system_parts)
        contents = [
            {
                "role": "model" if message.role == "assistant" else "user",
                "parts": [{"text": message.content}],
            }
            for message in messages
            if message.role != "system"
        ]
        if not contents:
            raise ValueError("GeminiClient requires at least one non-system message")

        try:
            response = self._client.models.generate_content(
                model=self._model, contents=contents, config=config
            )
        except Exception as exc:
            raise LLMClientError("Gemini generation failed") from exc

        text = extract_attr(response, "text")
        if not isinstance(text, str) or not text.strip():
            raise LLMClientError("Gemini response did not include textual content")

        usage: dict[str, int] = {}
        usage_metadata = extract_attr(response, "usage_metadata")
        if usage_metadata is not None:
            for source, target in _USAGE_FIELDS.items():
                count = extract_attr(usage_metadata, source)
                if isinstance(count, int):
                    usage[target] = count

        metadata = {"model": self._model}
        version = extract_attr(response, "model_version")
        if isinstance(version, str) and version:
            metadata["model"] = version

        return LLMResponse(
            message=LLMMessage(role="assistant", content=text),
            usage=usage,
            metadata=metadata,
        )


__all__ = ["DEFAULT_GEMINI_MODEL", "GeminiClient"]
