# Overview: Retry/backoff and per-attempt timeout helpers for backend calls.

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable


DEFAULT_BACKOFF_BASE = 1.5
DEFAULT_BACKOFF_MAX = 5.0


class AttemptTimeout(TimeoutError):
    """A single attempt ran past its time budget."""
    code = "TIMEOUT"


@dataclass
class RetryOutcome:
    result: Any = None
    error: BaseException | None = None
    attempts: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def backoff_delay(
    attempt: int,
    base: float = DEFAULT_BACKOFF_BASE,
    cap: float = DEFAULT_BACKOFF_MAX,
) -> float:
    """Delay after failed attempt N (1-based): min(base * 2^(N-1), cap)."""
    return min(base * (2 ** (max(attempt, 1) - 1)), cap)


def is_timeout_error(exc: BaseException | None) -> bool:
    if exc is None:
        return False
    if isinstance(exc, TimeoutError):
        return True
    message = str(exc).lower()
    return "timeout" in message or "timed out" in message


def run_with_timeout(func: Callable[[], Any], timeout: float | None) -> Any:
    """
    Run func, giving up after timeout seconds.

    The call runs on a worker thread; on timeout the worker is abandoned,
    not killed, so func must tolerate finishing late. timeout=None runs
    func inline on the calling thread.
    """
    if timeout is None:
        return func()

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="trashdrop-attempt")
    future = executor.submit(func)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        raise AttemptTimeout(f"Operation timed out after {timeout:g}s") from None
    finally:
        executor.shutdown(wait=False)


def with_retry(
    func: Callable[[], Any],
    *,
    timeout: float | None = 10.0,
    max_retries: int = 3,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    backoff_max: float = DEFAULT_BACKOFF_MAX,
    should_retry: Callable[[BaseException], bool] | None = None,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome:
    """
    Call func until it returns, up to max_retries attempts.

    Any exception is a failed attempt. should_retry(exc) returning False ends
    the loop early (permanent errors). Nothing is raised: the outcome carries
    the last error verbatim, the attempt count and whether it was a timeout.
    """
    attempts_allowed = max(int(max_retries or 1), 1)
    last_exc: BaseException | None = None
    attempt = 0

    for attempt in range(1, attempts_allowed + 1):
        try:
            result = run_with_timeout(func, timeout)
            return RetryOutcome(result=result, attempts=attempt)
        except Exception as exc:
            last_exc = exc

        if attempt >= attempts_allowed:
            break
        if should_retry is not None and not should_retry(last_exc):
            break

        delay = backoff_delay(attempt, backoff_base, backoff_max)
        if on_retry is not None:
            on_retry(attempt, last_exc, delay)
        sleep(delay)

    return RetryOutcome(
        error=last_exc,
        attempts=attempt,
        timed_out=is_timeout_error(last_exc),
    )
