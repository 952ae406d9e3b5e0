"""
Generative backend client (Ollama HTTP API).

- check_available(): liveness probe against /api/tags, never raises.
- generate(): buffered /api/generate call, one JSON object back.
- stream_generate(): /api/generate with stream=true, newline-delimited JSON
  records decoded as the bytes arrive.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional

import requests

from kpc_assistant.core.capability import BackendStatus, GenerationRecord
from kpc_assistant.core.config import AssistantSettings
from kpc_assistant.core.errors import BackendRequestError, BackendUnavailableError
from kpc_assistant.modules.common.timeout_policy import run_with_retries

logger = logging.getLogger(__name__)


class NDJSONDecoder:
    """
    Incremental decoder for newline-delimited JSON.

    Bytes are buffered until a newline arrives, so a record (or a multi-byte
    character) split across reads is decoded only once it is complete.
    Lines that are not JSON objects are skipped.
    """

    def __init__(self):
        self._buffer = b""

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        if not data:
            return []
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b"\n")
        return [obj for obj in (self._decode(line) for line in lines) if obj is not None]

    def flush(self) -> List[Dict[str, Any]]:
        rest, self._buffer = self._buffer, b""
        obj = self._decode(rest)
        return [obj] if obj is not None else []

    @staticmethod
    def _decode(line: bytes) -> Optional[Dict[str, Any]]:
        line = line.strip()
        if not line:
            return None
        try:
            obj = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.debug("Skipping undecodable stream line: %r", line[:200])
            return None
        return obj if isinstance(obj, dict) else None


class OllamaClient:
    def __init__(self, settings: Optional[AssistantSettings] = None,
                 http: Optional[requests.Session] = None):
        self.settings = settings or AssistantSettings()
        self._http = http or requests.Session()

    @property
    def base_url(self) -> str:
        return self.settings.ollama_url.rstrip("/")

    @property
    def model(self) -> str:
        return self.settings.model

    # =========================
    # Liveness probe
    # =========================

    def check_available(self) -> BackendStatus:
        """
        Lightweight liveness check. Any failure is reported as unavailable.
        """
        url = f"{self.base_url}/api/tags"
        try:
            resp = self._http.get(url, timeout=self.settings.probe_timeout_s)
        except requests.RequestException as exc:
            logger.debug("Backend probe failed: %s", exc)
            return BackendStatus(available=False, detail=str(exc))
        except Exception as exc:
            logger.warning("Backend probe raised unexpectedly: %s", exc)
            return BackendStatus(available=False, detail=str(exc))

        if not resp.ok:
            logger.debug("Backend probe returned HTTP %s", resp.status_code)
            return BackendStatus(available=False, detail=resp.reason or "", status_code=resp.status_code)
        return BackendStatus(available=True, status_code=resp.status_code)

    # =========================
    # Buffered generation
    # =========================

    def _payload(self, prompt: str, streaming: bool) -> Dict[str, Any]:
        return {
            "model": self.settings.model,
            "prompt": prompt,
            "stream": streaming,
            "options": self.settings.generation_options(streaming=streaming),
        }

    def _post_generate(self, prompt: str) -> GenerationRecord:
        url = f"{self.base_url}/api/generate"
        try:
            resp = self._http.post(
                url,
                json=self._payload(prompt, streaming=False),
                timeout=self.settings.request_timeout_s,
            )
        except requests.Timeout as exc:
            raise TimeoutError(f"Ollama request timed out: {exc}") from exc
        except requests.ConnectionError as exc:
            raise BackendUnavailableError(f"Cannot reach Ollama at {self.base_url}: {exc}") from exc

        if not resp.ok:
            raise BackendRequestError(f"Ollama API error: {resp.status_code} {resp.reason}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise BackendRequestError(f"Ollama returned a non-JSON body: {exc}") from exc
        if not isinstance(data, dict):
            raise BackendRequestError("Ollama returned an unexpected JSON value")
        return GenerationRecord.from_payload(data)

    def generate_record(self, prompt: str, label: str = "generate") -> GenerationRecord:
        return run_with_retries(
            fn=lambda: self._post_generate(prompt),
            label=label,
            max_retries=self.settings.max_retries,
            base_delay_s=self.settings.retry_base_delay_s,
            timeout_s=self.settings.request_timeout_s,
        )

    def generate(self, prompt: str, label: str = "generate") -> str:
        return self.generate_record(prompt, label=label).text

    # =========================
    # Streaming generation
    # =========================

    def stream_generate(self, prompt: str,
                        cancel_event: Optional[threading.Event] = None) -> Iterator[GenerationRecord]:
        """
        Yield records as the backend produces them. Stops at the record with
        done=true, when the body ends, or when cancel_event is set; the
        response is closed in every case.
        """
        url = f"{self.base_url}/api/generate"
        timeout = (self.settings.stream_connect_timeout_s, self.settings.stream_read_timeout_s)
        try:
            resp = self._http.post(url, json=self._payload(prompt, streaming=True),
                                   stream=True, timeout=timeout)
        except requests.Timeout as exc:
            raise TimeoutError(f"Ollama stream timed out: {exc}") from exc
        except requests.ConnectionError as exc:
            raise BackendUnavailableError(f"Cannot reach Ollama at {self.base_url}: {exc}") from exc

        with resp:
            if not resp.ok:
                raise BackendRequestError(f"Ollama API error: {resp.status_code} {resp.reason}")

            decoder = NDJSONDecoder()
            chunks = resp.iter_content(chunk_size=None)
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Stream cancelled by caller")
                    return
                try:
                    chunk = next(chunks)
                except StopIteration:
                    break
                except requests.RequestException as exc:
                    raise BackendRequestError(f"Ollama stream broke: {exc}") from exc

                for payload in decoder.feed(chunk):
                    record = GenerationRecord.from_payload(payload)
                    yield record
                    if record.is_final:
                        return

            for payload in decoder.flush():
                yield GenerationRecord.from_payload(payload)

    def close(self) -> None:
        self._http.close()
