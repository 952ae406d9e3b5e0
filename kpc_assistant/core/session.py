"""
Assistant session - the single entry point the hosting process talks to.

A session owns one catalog, one capability transport and one backend client,
and wires them into the classifier and answer composer. Hosts construct it
explicitly (no module-level instance) and must call shutdown() so the
capability server process is not orphaned.
"""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional

from kpc_assistant.core.capability import BackendStatus, CapabilityCall, CapabilityDescriptor
from kpc_assistant.core.capability_registry import CapabilityCatalog, default_catalog
from kpc_assistant.core.config import AssistantSettings
from kpc_assistant.core.observability import (
    generate_execution_id,
    get_logger,
    set_execution_context,
)
from kpc_assistant.modules.chat.chat_pipeline import AnswerComposer, ChunkSink
from kpc_assistant.modules.llm.ollama_client import OllamaClient
from kpc_assistant.modules.router.classifier import IntentClassifier
from kpc_assistant.modules.transport.mcp_client import CapabilityTransport

logger = get_logger("session")


class AssistantSession:
    def __init__(
        self,
        settings: Optional[AssistantSettings] = None,
        catalog: Optional[CapabilityCatalog] = None,
        transport: Optional[CapabilityTransport] = None,
        backend: Optional[OllamaClient] = None,
    ):
        self.settings = settings or AssistantSettings.from_env()
        self.session_id = generate_execution_id()
        self.catalog = catalog or default_catalog()
        self.transport = transport or CapabilityTransport(
            server_command=self.settings.server_command,
            connect_timeout_s=self.settings.mcp_connect_timeout_s,
            request_timeout_s=self.settings.mcp_request_timeout_s,
            forward_stderr=self.settings.forward_stderr,
        )
        self.backend = backend or OllamaClient(self.settings)
        self.classifier = IntentClassifier(self.catalog, self.backend, self.settings)
        self.composer = AnswerComposer(self.classifier, self.transport, self.backend, self.catalog)
        self._shutdown_lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "AssistantSession":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # =========================
    # Lifecycle
    # =========================

    def initialize(self) -> BackendStatus:
        """
        Connect the capability transport and probe the backend.

        Raises ConfigurationError / TransportError when the capability server
        cannot be started; an unreachable backend only logs a warning.
        """
        set_execution_context(session_id_val=self.session_id)
        logger.info("Initializing KPC assistant session %s", self.session_id)
        self.transport.connect()
        status = self.backend.check_available()
        if not status:
            logger.warning(
                "Ollama is not available at %s (%s); running in capability-only mode",
                self.settings.ollama_url,
                status.detail or "no detail",
            )
        logger.info("KPC assistant session ready")
        return status

    def shutdown(self) -> None:
        """
        Disconnect the capability server and release the HTTP session.
        Safe to call more than once, including from signal handlers.
        """
        with self._shutdown_lock:
            if self._closed:
                return
            self._closed = True
        logger.info("Shutting down KPC assistant session %s", self.session_id)
        self.transport.disconnect()
        close = getattr(self.backend, "close", None)
        if callable(close):
            close()

    # =========================
    # Dispatch
    # =========================

    def _begin_dispatch(self) -> str:
        exec_id = generate_execution_id()
        set_execution_context(exec_id, self.session_id)
        return exec_id

    def chat(self, utterance: str) -> str:
        self._begin_dispatch()
        logger.info("Chat request received")
        return self.composer.chat(utterance)

    def chat_stream(
        self,
        utterance: str,
        on_chunk: ChunkSink,
        on_status: Optional[ChunkSink] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Stream the answer to on_chunk. Pass on_status to receive the capability
        status notice separately; otherwise it arrives as the first chunk.
        """
        self._begin_dispatch()
        logger.info("Streaming chat request received")
        self.composer.chat_stream(utterance, on_chunk, on_status=on_status, cancel_event=cancel_event)

    def run_capability(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """
        Direct capability call, bypassing classification. Unknown names raise
        KeyError; transport failures propagate.
        """
        self._begin_dispatch()
        descriptor = self.catalog.get(name)
        return self.composer.run_capability(CapabilityCall(descriptor.name, dict(arguments or {})))

    def list_remote_capabilities(self) -> List[CapabilityDescriptor]:
        return self.transport.list_capabilities()

    # =========================
    # Health
    # =========================

    def is_backend_available(self) -> bool:
        return bool(self.backend.check_available())

    def is_transport_connected(self) -> bool:
        return self.transport.is_connected()
