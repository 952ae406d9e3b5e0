"""
stdio_channel.py

Newline-delimited JSON-RPC 2.0 over a child process's stdin/stdout.

- stdout carries protocol messages only; a reader thread decodes each line
  and hands responses back to the waiting caller by request id.
- stderr is forwarded to the log and never parsed.
- When the child exits or a pipe breaks, every pending request fails with
  TransportError.
"""

from __future__ import annotations

import itertools
import json
import logging
import subprocess
import threading
from typing import Any, Dict, List, Optional

from kpc_assistant.core.errors import TransportError

logger = logging.getLogger(__name__)

# stderr lines containing these markers are logged at INFO, the rest at DEBUG.
_STDERR_STATUS_MARKERS = ("已启动", "等待请求", "started", "listening")


class _PendingRequest:
    __slots__ = ("event", "response", "error")

    def __init__(self):
        self.event = threading.Event()
        self.response: Optional[Dict[str, Any]] = None
        self.error: Optional[BaseException] = None


class StdioChannel:
    """
    Bidirectional request/response channel to a spawned child process.
    """

    def __init__(
        self,
        executable: str,
        args: Optional[List[str]] = None,
        forward_stderr: bool = True,
        env: Optional[Dict[str, str]] = None,
        shutdown_grace_s: float = 2.0,
    ):
        self.executable = executable
        self.args = list(args or [])
        self.forward_stderr = forward_stderr
        self.env = env
        self.shutdown_grace_s = shutdown_grace_s

        self._process: Optional[subprocess.Popen] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, _PendingRequest] = {}
        self._pending_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._closed = threading.Event()
        self._threads: List[threading.Thread] = []

    # =========================
    # Lifecycle
    # =========================

    def start(self) -> None:
        cmd = [self.executable] + self.args
        logger.info("Starting capability server: %s", " ".join(cmd))
        try:
            self._process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if self.forward_stderr else subprocess.DEVNULL,
                env=self.env,
                shell=False,
            )
        except (OSError, ValueError) as exc:
            self._closed.set()
            raise TransportError(f"Failed to start capability server '{self.executable}': {exc}") from exc

        reader = threading.Thread(target=self._read_stdout, name="mcp-stdout", daemon=True)
        reader.start()
        self._threads.append(reader)

        if self.forward_stderr:
            err_reader = threading.Thread(target=self._read_stderr, name="mcp-stderr", daemon=True)
            err_reader.start()
            self._threads.append(err_reader)

    @property
    def alive(self) -> bool:
        return (
            self._process is not None
            and not self._closed.is_set()
            and self._process.poll() is None
        )

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def close(self) -> None:
        """
        Close stdin, give the child a moment to exit, then terminate/kill it.
        Safe to call more than once.
        """
        self._closed.set()
        process = self._process
        if process is not None:
            try:
                if process.stdin and not process.stdin.closed:
                    process.stdin.close()
            except OSError:
                pass

            if process.poll() is None:
                try:
                    process.wait(timeout=self.shutdown_grace_s)
                except subprocess.TimeoutExpired:
                    process.terminate()
                    try:
                        process.wait(timeout=self.shutdown_grace_s)
                    except subprocess.TimeoutExpired:
                        logger.warning("Capability server did not terminate; killing pid %s", process.pid)
                        process.kill()
                        process.wait()

        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=self.shutdown_grace_s)
        self._threads = []

        self._fail_pending(TransportError("Channel closed"))

    # =========================
    # Messaging
    # =========================

    def request(self, method: str, params: Optional[Dict[str, Any]] = None,
                timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Send one request and wait for its response message.

        Returns the whole response (with either "result" or "error").
        Raises TransportError if the channel fails and TimeoutError if no
        response arrives in time. A timeout only drops this request.
        """
        if not self.alive:
            raise TransportError("Capability server is not running")

        request_id = next(self._ids)
        pending = _PendingRequest()
        with self._pending_lock:
            self._pending[request_id] = pending

        message: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params

        try:
            self._write(message)
        except TransportError:
            with self._pending_lock:
                self._pending.pop(request_id, None)
            raise

        if not pending.event.wait(timeout):
            with self._pending_lock:
                self._pending.pop(request_id, None)
            raise TimeoutError(f"No response to '{method}' within {timeout}s")

        if pending.error is not None:
            raise pending.error
        return pending.response or {}

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        self._write(message)

    def _write(self, message: Dict[str, Any]) -> None:
        process = self._process
        if process is None or process.stdin is None or self._closed.is_set():
            raise TransportError("Capability server is not running")
        data = (json.dumps(message, ensure_ascii=False) + "\n").encode("utf-8")
        with self._write_lock:
            try:
                process.stdin.write(data)
                process.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as exc:
                raise TransportError(f"Failed to write to capability server: {exc}") from exc

    # =========================
    # Reader threads
    # =========================

    def _read_stdout(self) -> None:
        process = self._process
        stream = process.stdout
        try:
            for raw in iter(stream.readline, b""):
                line = raw.strip()
                if not line:
                    continue
                try:
                    message = json.loads(line.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    logger.debug("Skipping non-JSON line on stdio transport: %r", line[:200])
                    continue
                if not isinstance(message, dict):
                    logger.debug("Skipping JSON value that is not an object on stdio transport")
                    continue
                self._dispatch(message)
        except (OSError, ValueError) as exc:
            logger.debug("stdout reader stopped: %s", exc)
        finally:
            code = process.poll()
            if not self._closed.is_set():
                logger.warning("Capability server closed its output (exit code %s)", code)
            self._closed.set()
            self._fail_pending(TransportError(f"Capability server exited (exit code {code})"))

    def _read_stderr(self) -> None:
        stream = self._process.stderr
        try:
            for raw in iter(stream.readline, b""):
                text = raw.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                if any(marker in text for marker in _STDERR_STATUS_MARKERS):
                    logger.info("Capability server status: %s", text)
                else:
                    logger.debug("Capability server stderr: %s", text)
        except (OSError, ValueError):
            pass

    def _dispatch(self, message: Dict[str, Any]) -> None:
        msg_id = message.get("id")
        if "method" in message:
            if msg_id is None:
                logger.debug("Ignoring server notification: %s", message.get("method"))
                return
            self._answer_server_request(msg_id, message.get("method"))
            return

        if msg_id is None:
            return
        with self._pending_lock:
            pending = self._pending.pop(msg_id, None)
        if pending is None:
            logger.debug("Dropping response for unknown request id %r", msg_id)
            return
        pending.response = message
        pending.event.set()

    def _answer_server_request(self, msg_id: Any, method: Any) -> None:
        if method == "ping":
            reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": msg_id, "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": msg_id,
                "error": {"code": -32601, "message": f"Method not supported by client: {method}"},
            }
        try:
            self._write(reply)
        except TransportError as exc:
            logger.debug("Could not answer server request %r: %s", method, exc)

    def _fail_pending(self, error: BaseException) -> None:
        with self._pending_lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for item in pending:
            item.error = error
            item.event.set()
