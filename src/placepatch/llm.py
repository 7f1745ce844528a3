"""Provider-neutral chat interface used to request patches from an LLM."""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Sequence, TypeVar

from .errors import PlacePatchError


def _validate_text(value: str, *, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")

    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must be a non-empty string")
    return stripped


@dataclass(frozen=True)
class LLMMessage:
    """A single chat message sent to or received from a provider."""

    role: str
    content: str

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "role", _validate_text(self.role, field_name="role").lower()
        )
        object.__setattr__(
            self, "content", _validate_text(self.content, field_name="content")
        )


@dataclass(frozen=True)
class LLMResponse:
    """The message a provider returned plus its usage counters and metadata."""

    message: LLMMessage
    usage: Mapping[str, int] = field(default_factory=dict)
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        usage = {}
        for key, value in (self.usage or {}).items():
            if not isinstance(value, int):
                raise TypeError(f"usage value must be an int, got {type(value)!r}")
            usage[_validate_text(str(key), field_name="usage key")] = value
        metadata = {
            _validate_text(str(key), field_name="metadata key"): str(value)
            for key, value in (self.metadata or {}).items()
        }
        object.__setattr__(self, "usage", MappingProxyType(usage))
        object.__setattr__(self, "metadata", MappingProxyType(metadata))


class LLMClient(ABC):
    """Interface implemented by every provider adapter."""

    @abstractmethod
    def complete(
        self, messages: Sequence[LLMMessage], *, temperature: float | None = None
    ) -> LLMResponse:
        """Return the provider's reply to ``messages``."""

    def complete_prompt(
        self, prompt: str, *, temperature: float | None = None
    ) -> LLMResponse:
        """Send ``prompt`` as a single user message."""

        return self.complete(
            [LLMMessage(role="user", content=prompt)], temperature=temperature
        )


class LLMClientError(PlacePatchError):
    """Raised when a provider call fails."""


class LLMErrorCategory(str, Enum):
    """Classification of provider failures for retry decisions."""

    TRANSIENT = "transient"
    RATE_LIMIT = "rate_limit"
    FATAL = "fatal"

    def is_retryable(self) -> bool:
        return self in {LLMErrorCategory.TRANSIENT, LLMErrorCategory.RATE_LIMIT}


class LLMErrorClassifier:
    """Map exceptions onto :class:`LLMErrorCategory` values by type."""

    def __init__(
        self, *, default_category: LLMErrorCategory = LLMErrorCategory.FATAL
    ) -> None:
        self._default_category = default_category
        self._rules: list[tuple[type[Exception], LLMErrorCategory]] = []

    def register(
        self, category: LLMErrorCategory, *exception_types: type[Exception]
    ) -> None:
        if not exception_types:
            raise ValueError("at least one exception type must be provided")
        for exc_type in exception_types:
            if not isinstance(exc_type, type) or not issubclass(exc_type, Exception):
                raise TypeError(f"expected an Exception subclass, got {exc_type!r}")
            self._rules.append((exc_type, category))

    def classify(self, error: BaseException) -> LLMErrorCategory:
        """Return the category of ``error`` or of the first cause that matches.

        Adapters wrap SDK failures in :class:`LLMClientError`, so the cause
        chain is searched as well.
        """

        current: BaseException | None = error
        while current is not None:
            for exc_type, category in self._rules:
                if isinstance(current, exc_type):
                    return category
            current = current.__cause__
        return self._default_category


def default_error_classifier() -> LLMErrorClassifier:
    """Classifier treating timeouts and dropped connections as transient."""

    classifier = LLMErrorClassifier()
    classifier.register(LLMErrorCategory.TRANSIENT, TimeoutError, ConnectionError)
    return classifier


@dataclass(frozen=True)
class LLMRetryPolicy:
    """Exponential backoff settings for provider calls."""

    max_attempts: int = 3
    initial_backoff: float = 0.5
    backoff_multiplier: float = 2.0
    max_backoff: float = 30.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_backoff < 0 or self.max_backoff < 0 or self.jitter < 0:
            raise ValueError("backoff settings must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def compute_backoff(
        self, attempt: int, *, random_func: Callable[[], float] | None = None
    ) -> float:
        """Return the delay to wait after failed ``attempt`` (1-indexed)."""

        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        delay = min(
            self.initial_backoff * self.backoff_multiplier ** (attempt - 1),
            self.max_backoff,
        )
        if self.jitter <= 0 or delay == 0:
            return delay
        rng = random_func or random.random
        return max(0.0, delay + (rng() * 2 - 1) * delay * self.jitter)


T = TypeVar("T")


def call_with_retries(
    operation: Callable[[], T],
    *,
    retry_policy: LLMRetryPolicy | None = None,
    classifier: LLMErrorClassifier | None = None,
    sleep: Callable[[float], None] | None = None,
) -> T:
    """Run ``operation``, retrying failures the classifier marks retryable."""

    policy = retry_policy or LLMRetryPolicy()
    error_classifier = classifier or default_error_classifier()
    sleep_fn = sleep or time.sleep

    attempt = 1
    while True:
        try:
            return operation()
        except Exception as error:
            category = error_classifier.classify(error)
            if not category.is_retryable() or attempt >= policy.max_attempts:
                raise
            delay = policy.compute_backoff(attempt)
            if delay > 0:
                sleep_fn(delay)
            attempt += 1


__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMErrorCategory",
    "LLMErrorClassifier",
    "LLMMessage",
    "LLMResponse",
    "LLMRetryPolicy",
    "call_with_retries",
    "default_error_classifier",
]
