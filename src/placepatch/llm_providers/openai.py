"""Adapter exposing OpenAI chat completions as an :class:`LLMClient`."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..llm import LLMClient, LLMClientError, LLMMessage, LLMResponse
from ._common import coerce_options, extract_attr, require_str

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


def _message_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, Sequence):
        parts = [
            str(item.get("text", ""))
            for item in payload
            if isinstance(item, Mapping) and item.get("type") == "text"
        ]
        if parts:
            return "".join(parts)
    raise LLMClientError("OpenAI response did not include textual content")


class OpenAIChatClient(LLMClient):
    """:class:`LLMClient` backed by the ``openai`` SDK.

    Patches are requested in JSON mode so the model answers with a bare
    object. Pass ``default_options={"response_format": None}`` to disable it
    for models without JSON mode.
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_OPENAI_MODEL,
        api_key: str | None = None,
        client: Any | None = None,
        default_options: Mapping[str, Any] | None = None,
        **client_options: Any,
    ) -> None:
        self._model = require_str(model, field_name="model")
        options = {"response_format": {"type": "json_object"}}
        options.update(coerce_options(default_options))
        self._default_options = {
            key: value for key, value in options.items() if value is not None
        }

        if client is None:
            try:
                from openai import OpenAI
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise ImportError(
                    "OpenAIChatClient requires the 'openai' package. "
                    "Install it with 'pip install openai'."
                ) from exc

            init_kwargs: dict[str, Any] = dict(client_options)
            if api_key is not None:
                init_kwargs["api_key"] = api_key
            client = OpenAI(**init_kwargs)
        elif client_options:
            raise TypeError("client_options cannot be combined with a client instance")
        self._client = client

    def complete(
        self,
        messages: Sequence[LLMMessage],
        *,
        temperature: float | None = None,
    ) -> LLMResponse:
        request_kwargs = dict(self._default_options)
        if temperature is not None:
            request_kwargs["temperature"] = temperature

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": message.role, "content": message.content}
                    for message in messages
                ],
                **request_kwargs,
            )
        except Exception as exc:
            raise LLMClientError("OpenAI completion failed") from exc

        choices = extract_attr(response, "choices")
        if not choices:
            raise LLMClientError("OpenAI completion returned no choices")
        message = extract_attr(choices[0], "message")
        if message is None:
            raise LLMClientError("OpenAI completion missing message payload")

        metadata: dict[str, str] = {}
        for key in ("id", "model"):
            value = extract_attr(response, key)
            if isinstance(value, str) and value:
                metadata[key] = value

        usage_payload = extract_attr(response, "usage") or {}
        usage: dict[str, int] = {}
        for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
            count = extract_attr(usage_payload, key)
            if isinstance(count, int):
                usage[key] = count

        return LLMResponse(
            message=LLMMessage(
                role=extract_attr(message, "role", "assistant") or "assistant",
                content=_message_text(extract_attr(message, "content")),
            ),
            usage=usage,
            metadata=metadata,
        )


__all__ = ["DEFAULT_OPENAI_MODEL", "OpenAIChatClient"]
