from __future__ import annotations

"""
timeout_policy.py

Shared timeout + retry helper for backend-bound calls.

Wraps a zero-arg callable with:

- a bounded wait per attempt (builtin TimeoutError on expiry)
- bounded retries with exponential backoff for transient errors
- an optional timing callback for observability

Status values passed to timing_cb:

- "ok"      -> fn completed successfully
- "timeout" -> the attempt hit the timeout
- "error"   -> fn raised an exception
- "give_up" -> final failure after exhausting retries

This helper only ever raises the original fn exception or TimeoutError.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def default_is_retryable_error(exc: BaseException) -> bool:
    """
    Small heuristic for retryable errors.

    Callers can provide their own predicate if they want to be stricter/looser.
    """
    if isinstance(exc, (TimeoutError, FuturesTimeoutError)):
        return True

    text = repr(exc).lower()
    transient_markers = [
        "timeout",
        "timed out",
        "temporarily unavailable",
        "connection aborted",
        "connection reset",
        "broken pipe",
        "network is unreachable",
    ]
    return any(m in text for m in transient_markers)


def log_timing(label: str, duration_s: float, status: str, error: Optional[str]) -> None:
    """
    Default timing callback: one log line per attempt.
    """
    if status == "ok":
        logger.info("%s finished in %.3fs", label, duration_s)
    elif status == "give_up":
        logger.warning("%s gave up: %s", label, error)
    else:
        logger.warning("%s %s after %.3fs: %s", label, status, duration_s, error)


def _call_with_timeout(fn: Callable[[], T], timeout_s: float) -> T:
    executor = ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(fn)
        try:
            return future.result(timeout=timeout_s)
        except FuturesTimeoutError:
            future.cancel()
            raise TimeoutError(f"Timed out after {timeout_s}s")
    finally:
        # Do not block on a hung worker; it is abandoned.
        executor.shutdown(wait=False)


def run_with_retries(
    fn: Callable[[], T],
    label: str,
    max_retries: int,
    base_delay_s: float,
    timeout_s: Optional[float],
    timing_cb: Optional[Callable[[str, float, str, Optional[str]], None]] = log_timing,
    is_retryable_error: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """
    Run fn with timeout + retry semantics.

    Parameters:
        fn:
            Zero-argument callable performing the work.

        label:
            Short identifier used for timing_cb (e.g. "classify", "answer").

        max_retries:
            Number of retries AFTER the initial attempt.
            Total attempts = max_retries + 1. Use 0 to disable retries.

        base_delay_s:
            Initial sleep between retries. Each retry doubles it.

        timeout_s:
            Per-attempt timeout in seconds. None or <= 0 means no timeout.

        timing_cb:
            Optional callback(label, duration_s, status, error_text).
            Exceptions raised by it are ignored.

        is_retryable_error:
            Optional predicate(exc) -> bool deciding if we should retry.
            If None, uses default_is_retryable_error.

    Returns:
        The value returned by fn() if any attempt succeeds.

    Raises:
        The last exception from fn() (or TimeoutError) if all attempts fail.
    """
    if max_retries < 0:
        max_retries = 0
    if base_delay_s < 0:
        base_delay_s = 0.0

    retry_pred = is_retryable_error or default_is_retryable_error
    delay = float(base_delay_s)

    last_exc: Optional[BaseException] = None

    for attempt in range(max_retries + 1):
        start = time.monotonic()

        try:
            if timeout_s and timeout_s > 0:
                result = _call_with_timeout(fn, timeout_s)
            else:
                result = fn()

            _notify(timing_cb, label, time.monotonic() - start, "ok", None)
            return result

        except TimeoutError as exc:
            last_exc = exc
            status = "timeout"
            error_text = str(exc) or "timeout"
        except Exception as exc:
            last_exc = exc
            status = "error"
            error_text = str(exc) or exc.__class__.__name__

        _notify(timing_cb, label, time.monotonic() - start, status, error_text)

        if attempt < max_retries and retry_pred(last_exc):
            if delay > 0:
                time.sleep(delay)
                delay *= 2.0
            continue

        _notify(timing_cb, label, 0.0, "give_up", error_text)
        raise last_exc

    raise RuntimeError(f"{label}: run_with_retries failed with unknown error state")


def _notify(timing_cb, label: str, duration: float, status: str, error: Optional[str]) -> None:
    if not timing_cb:
        return
    try:
        timing_cb(label, duration, status, error)
    except Exception:
        pass
