"""
Error taxonomy for the assistant.

Where each error is handled:
- ConfigurationError: fatal at startup, never retried.
- TransportError: surfaced by chat()/chat_stream() as an apology message;
  the transport resets to Disconnected so a later call reconnects.
- ParseError: recovered inside the call parser, downgraded to "no call".
- BackendUnavailableError: converted upstream into the rule fallback or a
  canned message. The availability probe reports it as a value instead.
- CapabilityExecutionError: converted into a descriptive string result.
- BackendRequestError: the backend answered the probe but a generate
  request failed; handled like any other error at the chat boundary.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    TRANSPORT = "transport"
    PARSE = "parse"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_REQUEST = "backend_request"
    CAPABILITY_EXECUTION = "capability_execution"


class AssistantError(RuntimeError):
    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, details: str):
        self.details = details
        super().__init__(f"[{self.kind.value}] {details}")


class ConfigurationError(AssistantError):
    kind = ErrorKind.CONFIGURATION


class TransportError(AssistantError):
    kind = ErrorKind.TRANSPORT


class ParseError(AssistantError):
    kind = ErrorKind.PARSE


class BackendUnavailableError(AssistantError):
    kind = ErrorKind.BACKEND_UNAVAILABLE


class BackendRequestError(AssistantError):
    kind = ErrorKind.BACKEND_REQUEST


class CapabilityExecutionError(AssistantError):
    kind = ErrorKind.CAPABILITY_EXECUTION

    def __init__(self, capability: str, details: str):
        self.capability = capability
        super().__init__(f"{capability}: {details}")
        self.details = details
