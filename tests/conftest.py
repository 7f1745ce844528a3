"""Test configuration for the placepatch project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from collections.abc import Mapping, Sequence
from typing import Any

import pytest

from placepatch.graph import SceneGraph
from placepatch.llm import LLMClient, LLMMessage, LLMResponse


class MockLLMClient(LLMClient):
    """Deterministic LLM client used in tests to avoid real API calls."""

    def __init__(
        self,
        responses: Sequence[LLMResponse | str | Exception] | None = None,
    ) -> None:
        self.calls: list[list[LLMMessage]] = []
        self.temperatures: list[float | None] = []
        self._responses: list[LLMResponse | Exception] = []

        if responses:
            for response in responses:
                self.queue_response(response)

    def queue_response(
        self,
        response: LLMResponse | str | Exception,
        *,
        role: str = "assistant",
        usage: Mapping[str, int] | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Append a response (or an error to raise) for the next call."""

        if isinstance(response, (LLMResponse, Exception)):
            payload = response
        else:
            message = LLMMessage(role=role, content=response)
            payload = LLMResponse(
                message=message,
                usage=dict(usage or {}),
                metadata=dict(metadata or {}),
            )

        self._responses.append(payload)

    def complete(
        self,
        messages: Sequence[LLMMessage],
        *,
        temperature: float | None = None,
    ) -> LLMResponse:
        self.calls.append(list(messages))
        self.temperatures.append(temperature)
        if not self._responses:
            raise AssertionError(
                "MockLLMClient expected a queued response but none remain",
            )

        payload = self._responses.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return payload


@pytest.fixture()
def mock_llm_client() -> MockLLMClient:
    """Return a deterministic mock client for use in tests."""

    return MockLLMClient()


@pytest.fixture()
def make_mock_llm_client() -> Any:
    """Factory fixture for creating mock LLM clients with canned responses."""

    def _factory(
        responses: Sequence[LLMResponse | str | Exception] | None = None,
    ) -> MockLLMClient:
        return MockLLMClient(responses=responses)

    return _factory


@pytest.fixture()
def house_graph() -> SceneGraph:
    """A small place: Workspace/House/{Door, Window} plus Lighting."""

    graph = SceneGraph()
    workspace = graph.insert(graph.root_ref, class_name="Workspace")
    house = graph.insert(workspace, class_name="Model", name="House")
    graph.insert(house, class_name="Part", name="Door")
    graph.insert(house, class_name="Part", name="Window")
    graph.insert(graph.root_ref, class_name="Lighting")
    return graph


__all__ = ["MockLLMClient", "mock_llm_client", "make_mock_llm_client", "house_graph"]
