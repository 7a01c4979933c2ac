# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/rate_limit_retry/retry_state.py
"""
Per-request retry state machine.

A RetryState is owned by exactly one task driving one upstream request.
It is created when the request starts, advanced only by
wait_and_increment(), and dropped when the request finishes. It is never
shared, so it needs no lock.

Usage:
    state = RetryState(policy)

    while True:
        chunk = await read_upstream()
        if not detect_rate_limit_in_sse(chunk):
            break
        if not state.can_retry():
            raise UpstreamRateLimited()  # caller's decision
        await state.wait_and_increment()
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .backoff_policy import DEFAULT_BACKOFF_POLICY, BackoffPolicy, calculate_backoff

lib_logger = logging.getLogger("rate_limit_retry")


@dataclass(frozen=True)
class RetryEvent:
    """
    Emitted right before a backoff wait starts.

    Attributes:
        attempt: 1-based number of the retry being waited for
        max_retries: Retry budget of the policy
        delay: Seconds the state is about to sleep
    """

    attempt: int
    max_retries: int
    delay: float

    def __str__(self) -> str:
        return (
            f"RetryEvent(attempt={self.attempt}/{self.max_retries}, "
            f"delay={self.delay:.2f}s)"
        )


RetryObserver = Callable[[RetryEvent], None]
SleepFunc = Callable[[float], Awaitable[None]]


def log_retry_event(event: RetryEvent) -> None:
    """Observer that reports a retry wait through the library logger."""
    lib_logger.info(
        "Rate limit detected in upstream stream, retrying in %.1fs (attempt %d/%d)",
        event.delay,
        event.attempt,
        event.max_retries,
    )


class RetryState:
    """
    Attempt counter bound to a BackoffPolicy.

    ``attempt`` counts completed backoff waits. It only moves forward, by
    exactly one per wait that ran to completion.
    """

    def __init__(
        self,
        policy: BackoffPolicy = DEFAULT_BACKOFF_POLICY,
        *,
        rng: Optional[random.Random] = None,
        sleep: Optional[SleepFunc] = None,
        on_retry: Optional[RetryObserver] = None,
    ):
        """
        Args:
            policy: Retry limits and backoff curve (held by reference)
            rng: Random source for jitter; the module generator if omitted
            sleep: Async sleep used for the backoff wait (default asyncio.sleep)
            on_retry: Observer called with a RetryEvent before each wait
        """
        self.policy = policy
        self.attempt = 0
        self._rng = rng
        self._sleep = sleep or asyncio.sleep
        self._on_retry = on_retry

    def __repr__(self) -> str:
        return f"RetryState(attempt={self.attempt}, policy={self.policy!r})"

    @property
    def remaining_retries(self) -> int:
        return max(0, self.policy.max_retries - self.attempt)

    def can_retry(self) -> bool:
        """True while fewer than max_retries waits have completed."""
        return self.attempt < self.policy.max_retries

    def calculate_backoff(self) -> float:
        """Delay in seconds for the current attempt. Does not advance the state."""
        return calculate_backoff(self.policy, self.attempt, self._rng)

    async def wait_and_increment(self) -> None:
        """
        Sleep for the current backoff delay, then count the attempt.

        The counter is incremented only after the sleep returns. If the
        task is cancelled mid-sleep, CancelledError propagates and the
        counter keeps its previous value.
        """
        delay = self.calculate_backoff()
        self._notify(RetryEvent(self.attempt + 1, self.policy.max_retries, delay))

        await self._sleep(delay)
        self.attempt += 1

    def _notify(self, event: RetryEvent) -> None:
        if self._on_retry is None:
            return
        try:
            self._on_retry(event)
        except Exception as e:
            lib_logger.warning(f"Retry observer failed for {event}: {e}")
