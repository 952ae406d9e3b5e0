import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict

"""
Central configuration for the KPC component assistant.
Backend URL, model name, capability server command and timeouts live here.

Every constant can be overridden through a KPC_* environment variable.
AssistantSettings carries the per-session copy of these values.
"""

logger = logging.getLogger(__name__)


def _env_str(name: str, default: str) -> str:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using default of %s.", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using default of %s.", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ---- Generative backend (Ollama HTTP endpoint) ----
OLLAMA_URL = _env_str("KPC_OLLAMA_URL", "http://127.0.0.1:11434")
CHAT_MODEL_NAME = _env_str("KPC_CHAT_MODEL", "qwen3:8b")

# Sampling options sent with every generate request.
GENERATION_TEMPERATURE = _env_float("KPC_TEMPERATURE", 0.1)
GENERATION_TOP_P = _env_float("KPC_TOP_P", 0.9)
GENERATION_NUM_PREDICT = _env_int("KPC_NUM_PREDICT", 2048)

# ---- Capability server (MCP over stdio) ----
MCP_SERVER_COMMAND = _env_str("KPC_MCP_SERVER_COMMAND", "kpc-mcp-server")
MCP_CLIENT_NAME = "kpc-ai-assistant"
MCP_CLIENT_VERSION = "1.0.0"
MCP_PROTOCOL_VERSION = "2024-11-05"

# ---- Timeouts (seconds) ----
# Liveness probe against /api/tags. Kept short: it gates every decision point.
OLLAMA_PROBE_TIMEOUT_SECONDS = _env_float("KPC_PROBE_TIMEOUT", 3.0)
# Timeout for a buffered generate call (per attempt).
OLLAMA_REQUEST_TIMEOUT_SECONDS = _env_float("KPC_OLLAMA_TIMEOUT", 120.0)
# Connect timeout for streaming; read timeout applies between chunks.
OLLAMA_STREAM_CONNECT_TIMEOUT_SECONDS = _env_float("KPC_STREAM_CONNECT_TIMEOUT", 10.0)
OLLAMA_STREAM_READ_TIMEOUT_SECONDS = _env_float("KPC_STREAM_READ_TIMEOUT", 120.0)
# Retries for buffered generate on transient errors (total attempts = retries + 1).
OLLAMA_MAX_RETRIES = _env_int("KPC_OLLAMA_RETRIES", 1)
OLLAMA_RETRY_BASE_DELAY_SECONDS = 1.0

MCP_CONNECT_TIMEOUT_SECONDS = _env_float("KPC_MCP_CONNECT_TIMEOUT", 30.0)
MCP_REQUEST_TIMEOUT_SECONDS = _env_float("KPC_MCP_REQUEST_TIMEOUT", 60.0)
MCP_SHUTDOWN_GRACE_SECONDS = 2.0

# ---- Feature toggles ----
# When False the classifier skips the backend and only uses keyword rules.
LLM_CLASSIFIER_ENABLED = _env_bool("KPC_LLM_CLASSIFIER", True)
# Forward the capability server's stderr to the log.
MCP_FORWARD_STDERR = _env_bool("KPC_MCP_FORWARD_STDERR", True)

# ---- HTTP API ----
API_HOST = _env_str("KPC_API_HOST", "127.0.0.1")
API_PORT = _env_int("KPC_API_PORT", _env_int("PORT", 3000))

# ---- Logging ----
LOG_LEVEL = _env_str("KPC_LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class AssistantSettings:
    """
    Per-session settings. Defaults come from the module constants above.
    """
    ollama_url: str = OLLAMA_URL
    model: str = CHAT_MODEL_NAME
    server_command: str = MCP_SERVER_COMMAND
    temperature: float = GENERATION_TEMPERATURE
    top_p: float = GENERATION_TOP_P
    num_predict: int = GENERATION_NUM_PREDICT
    probe_timeout_s: float = OLLAMA_PROBE_TIMEOUT_SECONDS
    request_timeout_s: float = OLLAMA_REQUEST_TIMEOUT_SECONDS
    stream_connect_timeout_s: float = OLLAMA_STREAM_CONNECT_TIMEOUT_SECONDS
    stream_read_timeout_s: float = OLLAMA_STREAM_READ_TIMEOUT_SECONDS
    max_retries: int = OLLAMA_MAX_RETRIES
    retry_base_delay_s: float = OLLAMA_RETRY_BASE_DELAY_SECONDS
    mcp_connect_timeout_s: float = MCP_CONNECT_TIMEOUT_SECONDS
    mcp_request_timeout_s: float = MCP_REQUEST_TIMEOUT_SECONDS
    llm_classifier_enabled: bool = LLM_CLASSIFIER_ENABLED
    forward_stderr: bool = MCP_FORWARD_STDERR
    extra_options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "AssistantSettings":
        return cls(
            ollama_url=_env_str("KPC_OLLAMA_URL", OLLAMA_URL),
            model=_env_str("KPC_CHAT_MODEL", CHAT_MODEL_NAME),
            server_command=_env_str("KPC_MCP_SERVER_COMMAND", MCP_SERVER_COMMAND),
            temperature=_env_float("KPC_TEMPERATURE", GENERATION_TEMPERATURE),
            top_p=_env_float("KPC_TOP_P", GENERATION_TOP_P),
            num_predict=_env_int("KPC_NUM_PREDICT", GENERATION_NUM_PREDICT),
            probe_timeout_s=_env_float("KPC_PROBE_TIMEOUT", OLLAMA_PROBE_TIMEOUT_SECONDS),
            request_timeout_s=_env_float("KPC_OLLAMA_TIMEOUT", OLLAMA_REQUEST_TIMEOUT_SECONDS),
            stream_connect_timeout_s=_env_float(
                "KPC_STREAM_CONNECT_TIMEOUT", OLLAMA_STREAM_CONNECT_TIMEOUT_SECONDS
            ),
            stream_read_timeout_s=_env_float(
                "KPC_STREAM_READ_TIMEOUT", OLLAMA_STREAM_READ_TIMEOUT_SECONDS
            ),
            max_retries=_env_int("KPC_OLLAMA_RETRIES", OLLAMA_MAX_RETRIES),
            mcp_connect_timeout_s=_env_float("KPC_MCP_CONNECT_TIMEOUT", MCP_CONNECT_TIMEOUT_SECONDS),
            mcp_request_timeout_s=_env_float("KPC_MCP_REQUEST_TIMEOUT", MCP_REQUEST_TIMEOUT_SECONDS),
            llm_classifier_enabled=_env_bool("KPC_LLM_CLASSIFIER", LLM_CLASSIFIER_ENABLED),
            forward_stderr=_env_bool("KPC_MCP_FORWARD_STDERR", MCP_FORWARD_STDERR),
        )

    def generation_options(self, streaming: bool = False) -> Dict[str, Any]:
        """
        Sampling options for /api/generate. Streaming requests leave the
        token budget to the backend.
        """
        options: Dict[str, Any] = {
            "temperature": self.temperature,
            "top_p": self.top_p,
        }
        if not streaming:
            options["num_predict"] = self.num_predict
        options.update(self.extra_options)
        return options
