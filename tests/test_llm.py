"""Tests for the provider-neutral LLM primitives and retry helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from placepatch.llm import (
    LLMClientError,
    LLMErrorCategory,
    LLMErrorClassifier,
    LLMMessage,
    LLMResponse,
    LLMRetryPolicy,
    call_with_retries,
    default_error_classifier,
)

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from tests.conftest import MockLLMClient


def test_message_normalises_role_and_content() -> None:
    message = LLMMessage(role=" User ", content="  hello ")

    assert message.role == "user"
    assert message.content == "hello"


@pytest.mark.parametrize("content", ["", "   "])
def test_message_rejects_blank_content(content: str) -> None:
    with pytest.raises(ValueError):
        LLMMessage(role="user", content=content)


def test_response_freezes_usage_and_metadata() -> None:
    response = LLMResponse(
        LLMMessage(role="assistant", content="{}"),
        usage={"total_tokens": 12},
        metadata={"model": "demo", "attempt": 2},  # type: ignore[dict-item]
    )

    assert response.usage == {"total_tokens": 12}
    assert response.metadata == {"model": "demo", "attempt": "2"}
    with pytest.raises(TypeError):
        response.usage["total_tokens"] = 1  # type: ignore[index]


def test_response_rejects_non_integer_usage() -> None:
    with pytest.raises(TypeError):
        LLMResponse(LLMMessage(role="assistant", content="x"), usage={"tokens": "12"})  # type: ignore[dict-item]


def test_complete_prompt_sends_single_user_message(make_mock_llm_client: Any) -> None:
    client: MockLLMClient = make_mock_llm_client(["done"])

    response = client.complete_prompt("Build a house", temperature=0.2)

    assert response.message.content == "done"
    assert client.calls == [[LLMMessage(role="user", content="Build a house")]]
    assert client.temperatures == [0.2]


def test_classifier_follows_cause_chain() -> None:
    classifier = default_error_classifier()
    try:
        try:
            raise TimeoutError("slow")
        except TimeoutError as exc:
            raise LLMClientError("provider failed") from exc
    except LLMClientError as wrapped:
        error = wrapped

    assert classifier.classify(error) is LLMErrorCategory.TRANSIENT
    assert classifier.classify(ValueError("bad")) is LLMErrorCategory.FATAL


def test_classifier_register_validates_types() -> None:
    classifier = LLMErrorClassifier()

    with pytest.raises(ValueError):
        classifier.register(LLMErrorCategory.RATE_LIMIT)
    with pytest.raises(TypeError):
        classifier.register(LLMErrorCategory.RATE_LIMIT, "429")  # type: ignore[arg-type]


def test_retry_policy_backoff_is_capped() -> None:
    policy = LLMRetryPolicy(initial_backoff=1.0, backoff_multiplier=3.0, max_backoff=5.0)

    assert policy.compute_backoff(1) == 1.0
    assert policy.compute_backoff(2) == 3.0
    assert policy.compute_backoff(3) == 5.0


def test_retry_policy_jitter_uses_random_source() -> None:
    policy = LLMRetryPolicy(initial_backoff=2.0, jitter=0.5)

    assert policy.compute_backoff(1, random_func=lambda: 1.0) == 3.0
    assert policy.compute_backoff(1, random_func=lambda: 0.0) == 1.0


def test_retry_policy_validation() -> None:
    with pytest.raises(ValueError):
        LLMRetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        LLMRetryPolicy(backoff_multiplier=0.5)


def test_call_with_retries_recovers_from_transient_errors(make_mock_llm_client: Any) -> None:
    client: MockLLMClient = make_mock_llm_client(
        [ConnectionError("reset"), TimeoutError("slow"), "ok"]
    )
    delays: list[float] = []

    response = call_with_retries(
        lambda: client.complete_prompt("hi"),
        retry_policy=LLMRetryPolicy(max_attempts=3, initial_backoff=0.1),
        sleep=delays.append,
    )

    assert response.message.content == "ok"
    assert delays == [0.1, 0.2]


def test_call_with_retries_gives_up_after_max_attempts(make_mock_llm_client: Any) -> None:
    client: MockLLMClient = make_mock_llm_client([TimeoutError("1"), TimeoutError("2")])

    with pytest.raises(TimeoutError, match="2"):
        call_with_retries(
            lambda: client.complete_prompt("hi"),
            retry_policy=LLMRetryPolicy(max_attempts=2, initial_backoff=0),
            sleep=lambda _: None,
        )
    assert len(client.calls) == 2


def test_call_with_retries_does_not_retry_fatal_errors(make_mock_llm_client: Any) -> None:
    client: MockLLMClient = make_mock_llm_client([LLMClientError("bad key"), "never"])

    with pytest.raises(LLMClientError):
        call_with_retries(lambda: client.complete_prompt("hi"), sleep=lambda _: None)
    assert len(client.calls) == 1
