"""
Shared fakes for the KPC assistant tests.

No test talks to a real Ollama instance or a real kpc-mcp-server.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from kpc_assistant.core.capability import (
    BackendStatus,
    CapabilityDescriptor,
    CapabilityResult,
    GenerationRecord,
    ResultSegment,
)
from kpc_assistant.core.capability_registry import default_catalog
from kpc_assistant.core.config import AssistantSettings
from kpc_assistant.core.errors import TransportError


def text_result(text: str) -> CapabilityResult:
    return CapabilityResult(segments=(ResultSegment("text", text),))


class FakeBackend:
    """
    Deterministic stand-in for OllamaClient.

    `responses` is consumed in order by generate() and stream_generate(); when
    it runs out, `default_response` is used. Streaming splits the text into
    chunks of `chunk_size` characters.
    """

    model = "fake-model"
    base_url = "http://fake-ollama:11434"

    def __init__(self, available: bool = True, responses: Optional[List[str]] = None,
                 default_response: str = "", chunk_size: int = 3):
        self.available = available
        self.responses = list(responses or [])
        self.default_response = default_response
        self.chunk_size = chunk_size
        self.prompts: List[str] = []
        self.labels: List[str] = []
        self.probe_count = 0
        self.generate_error: Optional[BaseException] = None
        self.closed = False

    def _next(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.generate_error is not None:
            raise self.generate_error
        if self.responses:
            return self.responses.pop(0)
        return self.default_response

    def check_available(self) -> BackendStatus:
        self.probe_count += 1
        return BackendStatus(available=self.available, detail="" if self.available else "down")

    def generate(self, prompt: str, label: str = "generate") -> str:
        self.labels.append(label)
        return self._next(prompt)

    def stream_generate(self, prompt: str, cancel_event=None):
        text = self._next(prompt)
        for i in range(0, len(text), self.chunk_size):
            yield GenerationRecord(text=text[i:i + self.chunk_size], is_final=False)
        yield GenerationRecord(text="", is_final=True)

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    """
    Stand-in for CapabilityTransport. Results are keyed by remote tool name.
    """

    def __init__(self, results: Optional[Dict[str, Any]] = None):
        self.results = dict(results or {})
        self.calls: List[tuple] = []
        self.connected = False
        self.connect_count = 0
        self.disconnect_count = 0
        self.remote_tools: List[CapabilityDescriptor] = []

    def connect(self) -> None:
        self.connect_count += 1
        self.connected = True

    def disconnect(self) -> None:
        if self.connected:
            self.disconnect_count += 1
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    def call(self, name: str, arguments=None) -> CapabilityResult:
        if not self.connected:
            self.connect()
        self.calls.append((name, dict(arguments or {})))
        outcome = self.results.get(name, CapabilityResult.empty())
        if isinstance(outcome, BaseException):
            if isinstance(outcome, TransportError):
                self.connected = False
            raise outcome
        if isinstance(outcome, str):
            return text_result(outcome)
        return outcome

    def list_capabilities(self) -> List[CapabilityDescriptor]:
        return list(self.remote_tools)


@pytest.fixture
def catalog():
    return default_catalog()


@pytest.fixture
def settings():
    return AssistantSettings(ollama_url="http://fake-ollama:11434", model="fake-model",
                             max_retries=0, retry_base_delay_s=0.0)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def transport():
    return FakeTransport()
