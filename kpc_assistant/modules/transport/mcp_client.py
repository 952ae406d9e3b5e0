"""
mcp_client.py

Capability transport: lifecycle of the subprocess-hosted capability server.

Connection handling is lazy. call() and list_capabilities() connect on first
use, and a channel whose process died is replaced on the next call. State
changes go through a single guarded transition function:

    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTING   -> DISCONNECTED   (connect failed)
    CONNECTED    -> DISCONNECTED   (disconnect() or transport failure)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from kpc_assistant.core.capability import (
    CapabilityDescriptor,
    CapabilityResult,
    ConnectionState,
)
from kpc_assistant.core.config import (
    MCP_CLIENT_NAME,
    MCP_CLIENT_VERSION,
    MCP_CONNECT_TIMEOUT_SECONDS,
    MCP_PROTOCOL_VERSION,
    MCP_REQUEST_TIMEOUT_SECONDS,
    MCP_SERVER_COMMAND,
    MCP_SHUTDOWN_GRACE_SECONDS,
)
from kpc_assistant.core.errors import (
    CapabilityExecutionError,
    ConfigurationError,
    TransportError,
)
from kpc_assistant.modules.transport.stdio_channel import StdioChannel

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED},
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED},
}


def parse_server_command(command: Optional[str]) -> Tuple[str, List[str]]:
    """
    Split a configured command line on whitespace into (executable, args).
    Raises ConfigurationError when there is no executable token.
    """
    parts = (command or "").split()
    if not parts or not parts[0]:
        raise ConfigurationError("Server command is empty or undefined")
    return parts[0], parts[1:]


class CapabilityTransport:
    def __init__(
        self,
        server_command: str = MCP_SERVER_COMMAND,
        connect_timeout_s: Optional[float] = MCP_CONNECT_TIMEOUT_SECONDS,
        request_timeout_s: Optional[float] = MCP_REQUEST_TIMEOUT_SECONDS,
        forward_stderr: bool = True,
        channel_factory: Callable[..., Any] = StdioChannel,
    ):
        self.server_command = server_command
        self.connect_timeout_s = connect_timeout_s
        self.request_timeout_s = request_timeout_s
        self.forward_stderr = forward_stderr
        self._channel_factory = channel_factory

        self._state = ConnectionState.DISCONNECTED
        self._channel = None
        self._lock = threading.RLock()
        self.server_info: Dict[str, Any] = {}

    # =========================
    # State machine
    # =========================

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _transition(self, target: ConnectionState) -> None:
        current = self._state
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise RuntimeError(f"Illegal transport transition {current.value} -> {target.value}")
        logger.debug("Transport state %s -> %s", current.value, target.value)
        self._state = target

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    # =========================
    # Lifecycle
    # =========================

    def connect(self) -> None:
        with self._lock:
            if self._state == ConnectionState.CONNECTED:
                return

            executable, args = parse_server_command(self.server_command)
            logger.info("Connecting to capability server: %s %s", executable, " ".join(args))
            self._transition(ConnectionState.CONNECTING)
            start = time.monotonic()

            channel = None
            try:
                channel = self._channel_factory(
                    executable,
                    args,
                    forward_stderr=self.forward_stderr,
                    shutdown_grace_s=MCP_SHUTDOWN_GRACE_SECONDS,
                )
                channel.start()
                response = channel.request(
                    "initialize",
                    {
                        "protocolVersion": MCP_PROTOCOL_VERSION,
                        "capabilities": {},
                        "clientInfo": {"name": MCP_CLIENT_NAME, "version": MCP_CLIENT_VERSION},
                    },
                    timeout=self.connect_timeout_s,
                )
                if "error" in response:
                    raise TransportError(f"initialize rejected: {_error_text(response)}")
                channel.notify("notifications/initialized", {})
            except Exception as exc:
                if channel is not None:
                    _close_quietly(channel)
                self._transition(ConnectionState.DISCONNECTED)
                logger.error("Failed to connect to capability server: %s", exc)
                if isinstance(exc, TransportError):
                    raise
                raise TransportError(f"Failed to connect to capability server: {exc}") from exc

            result = response.get("result")
            self.server_info = result.get("serverInfo", {}) if isinstance(result, dict) else {}
            self._channel = channel
            self._transition(ConnectionState.CONNECTED)
            logger.info(
                "Connected to capability server %s in %.2fs",
                self.server_info.get("name") or executable,
                time.monotonic() - start,
            )

    def disconnect(self) -> None:
        """
        Close the channel and release the child process. No-op when not connected.
        """
        with self._lock:
            if self._state != ConnectionState.CONNECTED:
                return
            channel = self._channel
            self._channel = None
            try:
                if channel is not None:
                    channel.close()
            except Exception as exc:
                logger.error("Error while closing capability server channel: %s", exc)
            finally:
                self._transition(ConnectionState.DISCONNECTED)
            logger.info("Disconnected from capability server")

    def _reset_after_failure(self, channel) -> None:
        with self._lock:
            # a failure on a channel that was already replaced must not close its successor
            if self._state != ConnectionState.CONNECTED or self._channel is not channel:
                return
            self._channel = None
            if channel is not None:
                _close_quietly(channel)
            self._transition(ConnectionState.DISCONNECTED)
            logger.warning("Capability transport reset to disconnected after a failure")

    def _ensure_connected(self):
        with self._lock:
            channel = self._channel
            if self._state == ConnectionState.CONNECTED and channel is not None and not channel.alive:
                logger.warning("Capability server is gone; reconnecting")
                self._reset_after_failure(channel)
            if self._state != ConnectionState.CONNECTED:
                self.connect()
            return self._channel

    # =========================
    # Operations
    # =========================

    def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> CapabilityResult:
        """
        Invoke one remote capability.

        Malformed or empty responses come back as an empty result. A JSON-RPC
        error raises CapabilityExecutionError; a broken channel raises
        TransportError and resets the state; a timeout raises TimeoutError and
        leaves the state alone.
        """
        channel = self._ensure_connected()
        start = time.monotonic()
        try:
            response = channel.request(
                "tools/call",
                {"name": name, "arguments": arguments or {}},
                timeout=self.request_timeout_s,
            )
        except TransportError:
            self._reset_after_failure(channel)
            raise
        finally:
            logger.debug("tools/call %s took %.3fs", name, time.monotonic() - start)

        if "error" in response:
            raise CapabilityExecutionError(name, _error_text(response))

        result = response.get("result")
        if not isinstance(result, dict):
            logger.warning("Malformed tools/call response for %s; treating as no content", name)
            return CapabilityResult.empty()
        return CapabilityResult.from_content(result.get("content"), is_error=result.get("isError", False))

    def list_capabilities(self) -> List[CapabilityDescriptor]:
        """
        Ask the server for its declared tools. Returns [] if it cannot answer.
        """
        descriptors: List[CapabilityDescriptor] = []
        cursor = None
        channel = None
        try:
            channel = self._ensure_connected()
            while True:
                params = {"cursor": cursor} if cursor else {}
                response = channel.request("tools/list", params, timeout=self.request_timeout_s)
                result = response.get("result")
                if "error" in response or not isinstance(result, dict):
                    logger.warning("tools/list failed: %s", _error_text(response))
                    return descriptors
                for tool in result.get("tools") or []:
                    descriptor = _descriptor_from_tool(tool)
                    if descriptor is not None:
                        descriptors.append(descriptor)
                cursor = result.get("nextCursor")
                if not cursor:
                    break
        except TransportError as exc:
            logger.error("Failed to list capabilities: %s", exc)
            if channel is not None:
                self._reset_after_failure(channel)
            return []
        except (ConfigurationError, TimeoutError) as exc:
            logger.error("Failed to list capabilities: %s", exc)
            return []
        return descriptors


def _descriptor_from_tool(tool: Any) -> Optional[CapabilityDescriptor]:
    if not isinstance(tool, dict) or not isinstance(tool.get("name"), str):
        return None
    schema = tool.get("inputSchema") if isinstance(tool.get("inputSchema"), dict) else {}
    properties = schema.get("properties") if isinstance(schema.get("properties"), dict) else {}
    parameters = {}
    for param, prop in properties.items():
        text = prop.get("description") if isinstance(prop, dict) else None
        parameters[param] = str(text or "")
    required = schema.get("required") if isinstance(schema.get("required"), list) else []
    return CapabilityDescriptor(
        name=tool["name"],
        description=str(tool.get("description") or ""),
        parameters=parameters,
        required=tuple(str(r) for r in required),
    )


def _error_text(response: Dict[str, Any]) -> str:
    error = response.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error or "malformed response")


def _close_quietly(channel) -> None:
    try:
        channel.close()
    except Exception as exc:
        logger.debug("Ignoring error while closing channel: %s", exc)
