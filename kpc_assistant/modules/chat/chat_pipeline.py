"""
chat_pipeline.py

Answer composition for the KPC assistant.

Both protocols share one decision tree:

    classify -> (capability call) -> backend up?  -> synthesize from result
                                  -> backend down -> raw capability text
             -> (no call)         -> backend up?  -> direct answer
                                  -> backend down -> canned explanation

chat() returns the final string. chat_stream() pushes text deltas to a sink
as they arrive. Given the same backend output both produce the same text.
Neither raises: any failure becomes one apology message.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from kpc_assistant.core.capability import CapabilityCall
from kpc_assistant.core.capability_registry import CapabilityCatalog
from kpc_assistant.core.errors import BackendUnavailableError, CapabilityExecutionError
from kpc_assistant.core.observability import (
    STAGE_ANSWER,
    STAGE_CAPABILITY,
    STAGE_CLASSIFY,
    STAGE_SYNTHESIZE,
    dispatch_stage,
)
from kpc_assistant.modules.chat.prompts import (
    ERROR_MESSAGE,
    STATUS_NOTICE,
    TOOL_FAILURE_MESSAGE,
    UNKNOWN_TOOL_MESSAGE,
    backend_unavailable_message,
    build_direct_answer_prompt,
    build_synthesis_prompt,
)
from kpc_assistant.modules.common.io_guards import clamp_tool_output, sanitize_chat_input

logger = logging.getLogger(__name__)

ChunkSink = Callable[[str], None]


class AnswerComposer:
    def __init__(self, classifier, transport, backend, catalog: CapabilityCatalog):
        self.classifier = classifier
        self.transport = transport
        self.backend = backend
        self.catalog = catalog

    # =========================
    # Capability execution
    # =========================

    def run_capability(self, call: CapabilityCall) -> str:
        """
        Execute one call and return text for the user.

        Remote failures and empty results come back as descriptive strings.
        Transport failures and timeouts propagate.
        """
        descriptor = self.catalog.resolve(call.name)
        if descriptor is None:
            return UNKNOWN_TOOL_MESSAGE % call.name

        arguments = descriptor.prepare_arguments(call.arguments)
        start = time.monotonic()
        with dispatch_stage(STAGE_CAPABILITY):
            try:
                result = self.transport.call(descriptor.tool_name, arguments)
            except CapabilityExecutionError as exc:
                logger.warning("Capability %s failed: %s", descriptor.name, exc.details)
                return TOOL_FAILURE_MESSAGE % exc.details
            finally:
                logger.info("Capability %s took %.3fs", descriptor.name, time.monotonic() - start)

        if result.is_error:
            return TOOL_FAILURE_MESSAGE % (result.text or descriptor.empty_message)
        if not result.has_content:
            return descriptor.empty_message
        return result.text

    def _unavailable(self, utterance: str) -> str:
        return backend_unavailable_message(utterance, self.backend.model, self.backend.base_url)

    def _classify(self, text: str):
        with dispatch_stage(STAGE_CLASSIFY):
            return self.classifier.classify(text)

    # =========================
    # Buffered protocol
    # =========================

    def chat(self, utterance: str) -> str:
        text = sanitize_chat_input(utterance)
        try:
            call = self._classify(text)
            if call is not None:
                tool_text = self.run_capability(call)
                if not self.backend.check_available():
                    return tool_text
                try:
                    with dispatch_stage(STAGE_SYNTHESIZE):
                        return self.backend.generate(
                            build_synthesis_prompt(text, clamp_tool_output(tool_text)), label="synthesize"
                        )
                except BackendUnavailableError:
                    return tool_text

            if not self.backend.check_available():
                return self._unavailable(text)
            try:
                with dispatch_stage(STAGE_ANSWER):
                    return self.backend.generate(build_direct_answer_prompt(text), label="answer")
            except BackendUnavailableError:
                return self._unavailable(text)
        except Exception as exc:
            logger.exception("Chat failed: %s", exc)
            return ERROR_MESSAGE % exc

    # =========================
    # Streaming protocol
    # =========================

    def chat_stream(
        self,
        utterance: str,
        on_chunk: ChunkSink,
        on_status: Optional[ChunkSink] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Streamed variant of chat(). The status notice for a capability call
        goes to on_status when given, otherwise to on_chunk as the first chunk.
        Only with a separate on_status do the concatenated chunks equal what
        chat() returns for the same backend output; without one they carry
        the notice as a prefix.
        """
        text = sanitize_chat_input(utterance)
        try:
            call = self._classify(text)
            if call is not None:
                (on_status or on_chunk)(STATUS_NOTICE % call.name)
                tool_text = self.run_capability(call)
                if not self.backend.check_available():
                    on_chunk(tool_text)
                    return
                prompt = build_synthesis_prompt(text, clamp_tool_output(tool_text))
                self._stream(prompt, on_chunk, cancel_event, fallback=tool_text, stage=STAGE_SYNTHESIZE)
                return

            if not self.backend.check_available():
                on_chunk(self._unavailable(text))
                return
            self._stream(build_direct_answer_prompt(text), on_chunk, cancel_event,
                         fallback=self._unavailable(text), stage=STAGE_ANSWER)
        except Exception as exc:
            logger.exception("Streaming chat failed: %s", exc)
            self._emit_error(on_chunk, exc)

    def _stream(self, prompt: str, on_chunk: ChunkSink,
                cancel_event: Optional[threading.Event], fallback: str, stage: str) -> None:
        start = time.monotonic()
        emitted = 0
        try:
            with dispatch_stage(stage):
                for record in self.backend.stream_generate(prompt, cancel_event=cancel_event):
                    if record.text:
                        emitted += 1
                        on_chunk(record.text)
        except BackendUnavailableError:
            if emitted:
                raise
            on_chunk(fallback)
            return
        logger.info("Streamed %d chunks in %.3fs", emitted, time.monotonic() - start)

    @staticmethod
    def _emit_error(on_chunk: ChunkSink, exc: BaseException) -> None:
        try:
            on_chunk(ERROR_MESSAGE % exc)
        except Exception as sink_exc:
            logger.error("Could not deliver error message to caller: %s", sink_exc)
