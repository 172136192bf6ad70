from __future__ import annotations

import time
from typing import Callable

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_fixed

# Defaults used by the calendar/button waits: up to 5 seconds, checked every 0.1s.
POLL_INTERVAL_SECONDS = 0.1
POLL_MAX_ATTEMPTS = 50


def _not_found(value: object) -> bool:
    return not value


def _sleep(seconds: float) -> None:
    # Resolved at call time so tests can patch time.sleep with a fake clock.
    time.sleep(seconds)


def poll_until(
    predicate: Callable[[], object],
    *,
    interval: float = POLL_INTERVAL_SECONDS,
    max_attempts: int = POLL_MAX_ATTEMPTS,
) -> bool:
    """Call ``predicate`` until it returns something truthy.

    Returns True as soon as it does, False once ``max_attempts`` calls came back empty.
    Exceptions raised by ``predicate`` are not retried.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(interval),
        retry=retry_if_result(_not_found),
        retry_error_callback=lambda _state: False,
        sleep=_sleep,
    )
    return bool(retrying(predicate))


def settle(seconds: float) -> None:
    """Last-chance render window after a bounded wait ran out."""
    _sleep(seconds)
