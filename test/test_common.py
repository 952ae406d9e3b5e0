"""
Shared helpers: retries/timeouts, guardrails, configuration, logging setup.
"""

import logging
import time

import pytest

from kpc_assistant.core import config
from kpc_assistant.core.config import AssistantSettings
from kpc_assistant.core.errors import CapabilityExecutionError, ConfigurationError, ErrorKind, TransportError
from kpc_assistant.core.observability import (
    STAGE_CAPABILITY,
    DispatchContextFilter,
    dispatch_stage,
    execution_id,
    generate_execution_id,
    get_logger,
    set_execution_context,
    setup_logging,
    stage,
)
from kpc_assistant.modules.common.io_guards import (
    MAX_CHAT_INPUT_CHARS,
    clamp_text,
    clamp_tool_output,
    sanitize_chat_input,
)
from kpc_assistant.modules.common.timeout_policy import default_is_retryable_error, run_with_retries


class TestRunWithRetries:
    """
    Tests for the bounded retry helper.
    """

    def test_transient_error_retried(self):
        """
        Test that a transient failure is retried and the result returned.
        """
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise ConnectionResetError("connection reset by peer")
            return "ok"

        assert run_with_retries(flaky, "test", max_retries=2, base_delay_s=0, timeout_s=None) == "ok"
        assert len(attempts) == 2

    def test_permanent_error_not_retried(self):
        """
        Test that a non-transient error is raised immediately.
        """
        attempts = []

        def broken():
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            run_with_retries(broken, "test", max_retries=3, base_delay_s=0, timeout_s=None)
        assert len(attempts) == 1

    def test_timeout(self):
        """
        Test that a hung attempt raises TimeoutError without waiting for it.
        """
        start = time.monotonic()
        with pytest.raises(TimeoutError):
            run_with_retries(lambda: time.sleep(2), "test", max_retries=0, base_delay_s=0, timeout_s=0.1)
        assert time.monotonic() - start < 1.5

    def test_timing_callback(self):
        """
        Test that every attempt is reported, and callback errors are ignored.
        """
        seen = []

        def cb(label, duration, status, error):
            seen.append((label, status))
            raise RuntimeError("callback failure is ignored")

        run_with_retries(lambda: 1, "probe", max_retries=0, base_delay_s=0, timeout_s=None, timing_cb=cb)
        assert seen == [("probe", "ok")]

    def test_retryable_heuristic(self):
        """
        Test the default transient error heuristic.
        """
        assert default_is_retryable_error(TimeoutError())
        assert default_is_retryable_error(OSError("Connection aborted"))
        assert not default_is_retryable_error(KeyError("x"))


class TestGuardrails:
    """
    Tests for prompt size guardrails.
    """

    def test_sanitize_strips_and_clamps(self):
        """
        Test that long utterances are cut with a marker.
        """
        assert sanitize_chat_input("  hi  ") == "hi"
        long = sanitize_chat_input("x" * (MAX_CHAT_INPUT_CHARS + 10))
        assert long.startswith("x" * MAX_CHAT_INPUT_CHARS)
        assert long.endswith("[Chat input truncated]")

    def test_clamp_non_string(self):
        """
        Test that None and numbers are handled.
        """
        assert sanitize_chat_input(None) == ""
        assert clamp_text(12345, 3, "n") == "123\n\n[n truncated]"
        assert clamp_tool_output("short") == "short"


class TestConfiguration:
    """
    Tests for environment overrides and settings.
    """

    def test_env_override(self, monkeypatch):
        """
        Test that KPC_* variables override the defaults.
        """
        monkeypatch.setenv("KPC_OLLAMA_URL", "http://gpu-box:11434")
        monkeypatch.setenv("KPC_CHAT_MODEL", "qwen3:14b")
        monkeypatch.setenv("KPC_OLLAMA_RETRIES", "3")
        settings = AssistantSettings.from_env()
        assert settings.ollama_url == "http://gpu-box:11434"
        assert settings.model == "qwen3:14b"
        assert settings.max_retries == 3

    def test_bad_numeric_override(self, monkeypatch, caplog):
        """
        Test that an invalid number falls back to the default with a warning.
        """
        monkeypatch.setenv("KPC_PROBE_TIMEOUT", "soon")
        with caplog.at_level(logging.WARNING):
            settings = AssistantSettings.from_env()
        assert settings.probe_timeout_s == config.OLLAMA_PROBE_TIMEOUT_SECONDS
        assert "KPC_PROBE_TIMEOUT" in caplog.text

    def test_streaming_options_omit_token_budget(self):
        """
        Test the generation options for both modes.
        """
        settings = AssistantSettings(extra_options={"seed": 7})
        assert "num_predict" in settings.generation_options()
        streaming = settings.generation_options(streaming=True)
        assert "num_predict" not in streaming
        assert streaming["seed"] == 7


class TestErrorsAndLogging:
    """
    Tests for the error taxonomy and observability helpers.
    """

    def test_error_kind_in_message(self):
        """
        Test that errors carry their kind and details.
        """
        err = ConfigurationError("Server command is empty or undefined")
        assert err.kind is ErrorKind.CONFIGURATION
        assert err.details == "Server command is empty or undefined"
        assert str(err) == "[configuration] Server command is empty or undefined"
        assert isinstance(TransportError("x"), RuntimeError)

    def test_capability_error_keeps_remote_details(self):
        """
        Test that the remote message stays bare while the exception text names the tool.
        """
        err = CapabilityExecutionError("get_kpc_stats", "index missing")
        assert err.capability == "get_kpc_stats"
        assert err.details == "index missing"
        assert str(err) == "[capability_execution] get_kpc_stats: index missing"

    def test_execution_context(self):
        """
        Test that execution ids are short and stored in the context.
        """
        exec_id = generate_execution_id()
        assert len(exec_id) == 8
        set_execution_context(exec_id, "session-1")
        assert execution_id.get() == exec_id

    def test_setup_logging_formats_plain_records(self):
        """
        Test that records from plain loggers format without a component field.
        """
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("DEBUG")
            handler = root.handlers[0]
            record = logging.LogRecord("kpc_assistant.modules.llm", logging.INFO, __file__, 1, "probe ok", None, None)
            assert all(f.filter(record) for f in handler.filters)
            assert record.component == "llm"
            assert record.stage == "-"
            assert "probe ok" in handler.format(record)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_component_logger(self):
        """
        Test that component loggers tag their records.
        """
        adapter = get_logger("session")
        assert adapter.logger.name == "kpc_assistant.session"
        _, kwargs = adapter.process("ready", {})
        assert kwargs["extra"]["component"] == "session"

    def test_dispatch_stage_tags_records(self):
        """
        Test that records logged inside a stage carry it, and the stage is restored after.
        """
        filt = DispatchContextFilter()
        set_execution_context("abcd1234")
        with dispatch_stage(STAGE_CAPABILITY):
            record = logging.LogRecord("kpc_assistant.modules.transport.mcp_client", logging.INFO,
                                       __file__, 1, "tools/call", None, None)
            filt.filter(record)
        assert record.stage == "capability"
        assert record.execution_id == "abcd1234"
        assert record.component == "mcp_client"
        assert stage.get() is None
