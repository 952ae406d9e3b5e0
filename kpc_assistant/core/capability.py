"""
Capability data model.

Defines the shapes that flow between the classifier, the transport and the
answer composer. Calls and results live for a single dispatch only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class CapabilityDescriptor:
    """
    Describes a capability: what it does, which arguments it takes, and a few
    utterances that should route to it.

    remote_name is the tool name on the capability server; it defaults to name.
    empty_message is what the user sees when the capability returns nothing.
    """
    name: str
    description: str
    parameters: Dict[str, str] = field(default_factory=dict)
    examples: Tuple[str, ...] = ()
    required: Tuple[str, ...] = ()
    defaults: Dict[str, Any] = field(default_factory=dict)
    remote_name: Optional[str] = None
    empty_message: str = "未获取到结果"

    @property
    def tool_name(self) -> str:
        return self.remote_name or self.name

    def validate_arguments(self, arguments: Dict[str, Any]) -> Tuple[bool, List[str]]:
        """
        Validate that all required arguments are present and non-empty.
        Returns (is_valid, missing_fields).
        """
        missing = []
        for name in self.required:
            value = arguments.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return len(missing) == 0, missing

    def prepare_arguments(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply defaults and drop arguments whose value is None.
        """
        prepared = dict(self.defaults)
        for key, value in (arguments or {}).items():
            if value is None:
                continue
            prepared[key] = value
        return prepared

    def describe(self) -> str:
        """
        Render this descriptor as a prompt block.
        """
        lines = [f"- {self.name}: {self.description}"]
        if self.parameters:
            lines.append("  参数:")
            for param, text in self.parameters.items():
                marker = "（必填）" if param in self.required else ""
                lines.append(f"    - {param}{marker}: {text}")
        else:
            lines.append("  参数: 无")
        if self.examples:
            lines.append("  示例问题: " + "；".join(self.examples))
        return "\n".join(lines)


@dataclass
class CapabilityCall:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResultSegment:
    kind: str
    text: str


@dataclass(frozen=True)
class CapabilityResult:
    """
    Ordered content returned by one capability call.

    A result without any text segment counts as "no content".
    """
    segments: Tuple[ResultSegment, ...] = ()
    is_error: bool = False

    @classmethod
    def empty(cls) -> "CapabilityResult":
        return cls(segments=())

    @classmethod
    def from_content(cls, content: Any, is_error: bool = False) -> "CapabilityResult":
        """
        Build a result from the raw `content` list of a tools/call response.
        Malformed entries are skipped; a malformed list yields an empty result.
        """
        if not isinstance(content, list):
            return cls.empty()
        segments = []
        for item in content:
            if not isinstance(item, dict):
                continue
            kind = str(item.get("type") or "")
            text = item.get("text")
            segments.append(ResultSegment(kind=kind, text=text if isinstance(text, str) else ""))
        return cls(segments=tuple(segments), is_error=bool(is_error))

    @property
    def text(self) -> str:
        return "\n".join(s.text for s in self.segments if s.kind == "text" and s.text)

    @property
    def has_content(self) -> bool:
        return bool(self.text.strip())


@dataclass
class GenerationRecord:
    """
    One decoded record from the generative backend. In buffered mode there is
    a single final record; in streaming mode one per NDJSON line.
    """
    text: str
    is_final: bool
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "GenerationRecord":
        text = payload.get("response")
        metadata = {k: v for k, v in payload.items() if k not in ("response", "done")}
        return cls(
            text=text if isinstance(text, str) else "",
            is_final=bool(payload.get("done")),
            metadata=metadata,
        )


@dataclass(frozen=True)
class BackendStatus:
    """
    Outcome of a liveness probe. Unavailability is a value, never an exception.
    """
    available: bool
    detail: str = ""
    status_code: Optional[int] = None

    def __bool__(self) -> bool:
        return self.available
