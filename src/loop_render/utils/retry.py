from __future__ import annotations

import random
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any


def backoff_delay(attempt: int, *, base: float, cap: float, jitter: bool = True) -> float:
    """Delay before retry number `attempt` (0-based): min(cap, base * 2**attempt)."""
    delay = min(float(cap), float(base) * (2 ** max(0, int(attempt))))
    if jitter:
        delay = delay * (0.5 + random.random())
    return max(0.0, delay)


def retry_call(
    fn: Callable[[], Any],
    *,
    retries: int = 3,
    base: float = 0.5,
    cap: float = 8.0,
    jitter: bool = True,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> Any:
    """
    Call fn() with capped exponential backoff (+ optional jitter).

    retries: number of retry attempts (so total calls = 1 + retries)
    retry_on: only these exception types are retried; anything else propagates at once
    """
    attempt = 0
    while True:
        try:
            return fn()
        except retry_on as ex:
            if attempt >= int(retries):
                raise
            delay = backoff_delay(attempt, base=base, cap=cap, jitter=jitter)
            attempt += 1
            if on_retry is not None:
                with suppress(Exception):
                    on_retry(attempt, delay, ex)
            time.sleep(delay)
