# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/rate_limit_retry/backoff_policy.py
"""
Backoff policy for retrying upstream requests that were rate limited
inside a streaming response body.

The policy is plain immutable data. The delay curve is computed by
calculate_backoff(), which takes its random source as a parameter so
tests can pin jitter with a seeded random.Random.

Delay for attempt ``a`` (0-based):

    capped = min(initial_backoff * backoff_multiplier ** a, max_backoff)
    delay  = max(0, capped + capped * jitter_factor * (U - 0.5))

with U uniform in [0, 1), so the delay stays within
[capped * (1 - jitter/2), capped * (1 + jitter/2)].
"""

import dataclasses
import logging
import math
import os
import random
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidBackoffPolicyError

lib_logger = logging.getLogger("rate_limit_retry")


# Defaults (overridable via environment, see BackoffPolicy.from_env)
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_BACKOFF = 30.0  # seconds
DEFAULT_JITTER_FACTOR = 0.1  # 10% spread around the capped delay

DEFAULT_ENV_PREFIX = "RATE_LIMIT_RETRY"


def _env_int(key: str, default: int) -> int:
    """Get integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    """Get float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Retry limits and backoff curve shape.

    Attributes:
        max_retries: Maximum number of backoff waits per request (>= 0)
        initial_backoff: Delay before the first retry, in seconds (> 0)
        backoff_multiplier: Growth factor per attempt (>= 1.0)
        max_backoff: Upper bound on the un-jittered delay (>= initial_backoff)
        jitter_factor: Relative width of the random spread, 0.0-1.0
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_backoff: float = DEFAULT_MAX_BACKOFF
    jitter_factor: float = DEFAULT_JITTER_FACTOR

    def __post_init__(self) -> None:
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int):
            raise InvalidBackoffPolicyError(
                "max_retries", self.max_retries, "max_retries must be an integer"
            )
        if self.max_retries < 0:
            raise InvalidBackoffPolicyError(
                "max_retries", self.max_retries, "max_retries must be >= 0"
            )
        # Written as "not (x > y)" so NaN is rejected too
        if not (self.initial_backoff > 0) or math.isinf(self.initial_backoff):
            raise InvalidBackoffPolicyError(
                "initial_backoff",
                self.initial_backoff,
                "initial_backoff must be a positive, finite number of seconds",
            )
        if not (self.backoff_multiplier >= 1.0):
            raise InvalidBackoffPolicyError(
                "backoff_multiplier",
                self.backoff_multiplier,
                "backoff_multiplier must be >= 1.0",
            )
        if not (self.max_backoff >= self.initial_backoff):
            raise InvalidBackoffPolicyError(
                "max_backoff",
                self.max_backoff,
                f"max_backoff must be >= initial_backoff ({self.initial_backoff})",
            )
        if math.isinf(self.max_backoff):
            raise InvalidBackoffPolicyError(
                "max_backoff",
                self.max_backoff,
                "max_backoff must be a finite number of seconds",
            )
        if not (0.0 <= self.jitter_factor <= 1.0):
            raise InvalidBackoffPolicyError(
                "jitter_factor",
                self.jitter_factor,
                "jitter_factor must be within [0.0, 1.0]",
            )

    @classmethod
    def from_env(cls, prefix: str = DEFAULT_ENV_PREFIX) -> "BackoffPolicy":
        """
        Build a policy from environment variables.

        Env vars (with the default prefix):
            RATE_LIMIT_RETRY_MAX_RETRIES - maximum retries per request
            RATE_LIMIT_RETRY_INITIAL_BACKOFF - first delay in seconds
            RATE_LIMIT_RETRY_BACKOFF_MULTIPLIER - growth factor per attempt
            RATE_LIMIT_RETRY_MAX_BACKOFF - delay cap in seconds
            RATE_LIMIT_RETRY_JITTER_FACTOR - jitter spread, 0.0-1.0

        Unparseable values fall back to the defaults. Parseable but
        out-of-range values raise InvalidBackoffPolicyError.
        """
        policy = cls(
            max_retries=_env_int(f"{prefix}_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            initial_backoff=_env_float(
                f"{prefix}_INITIAL_BACKOFF", DEFAULT_INITIAL_BACKOFF
            ),
            backoff_multiplier=_env_float(
                f"{prefix}_BACKOFF_MULTIPLIER", DEFAULT_BACKOFF_MULTIPLIER
            ),
            max_backoff=_env_float(f"{prefix}_MAX_BACKOFF", DEFAULT_MAX_BACKOFF),
            jitter_factor=_env_float(
                f"{prefix}_JITTER_FACTOR", DEFAULT_JITTER_FACTOR
            ),
        )
        lib_logger.debug(f"Loaded backoff policy from environment: {policy}")
        return policy

    def with_overrides(self, **changes) -> "BackoffPolicy":
        """Return a new, validated policy with the given fields replaced."""
        return dataclasses.replace(self, **changes)


DEFAULT_BACKOFF_POLICY = BackoffPolicy()


def calculate_backoff(
    policy: BackoffPolicy,
    attempt: int,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Compute the jittered delay before retry number ``attempt`` (0-based).

    Args:
        policy: Backoff curve to follow
        attempt: Number of completed waits so far
        rng: Random source exposing ``random()``; the module-level
             generator is used when omitted

    Returns:
        Delay in seconds (float, never negative)
    """
    try:
        base = policy.initial_backoff * (policy.backoff_multiplier ** attempt)
    except OverflowError:
        base = math.inf

    capped = min(base, policy.max_backoff)

    if policy.jitter_factor == 0:
        return max(0.0, capped)

    u = (rng or random).random()
    jitter_amount = capped * policy.jitter_factor * (u - 0.5)
    return max(0.0, capped + jitter_amount)
