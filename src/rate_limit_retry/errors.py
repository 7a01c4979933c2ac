# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Any, Optional


class RateLimitRetryError(Exception):
    """Base class for errors raised by the rate limit retry layer."""

    pass


class InvalidBackoffPolicyError(RateLimitRetryError, ValueError):
    """
    Raised when a BackoffPolicy is constructed with an out-of-range field.

    Attributes:
        field: Name of the offending policy field
        value: The rejected value
        message: Human-readable message about the error
    """

    def __init__(self, field: str, value: Any, message: str = ""):
        self.field = field
        self.value = value
        self.message = message or f"Invalid backoff policy value {field}={value!r}"
        super().__init__(self.message)


class RateLimitRetriesExhaustedError(RateLimitRetryError):
    """
    Raised by the streaming forwarder when the upstream keeps answering with
    an embedded rate limit message and no retries are left.

    The retry core never raises this; exhaustion there is just
    ``can_retry() == False``. The forwarder turns it into an exception so the
    proxy can surface a terminal error to the original client.

    Attributes:
        upstream_message: The rate limit text extracted from the last stream
        attempts: Number of completed backoff waits before giving up
        message: Human-readable message about the error
    """

    def __init__(
        self,
        upstream_message: Optional[str],
        attempts: int,
        message: str = "",
    ):
        self.upstream_message = upstream_message
        self.attempts = attempts
        self.message = message or (
            f"Upstream still rate limited after {attempts} retr"
            f"{'y' if attempts == 1 else 'ies'}: {upstream_message or 'no message'}"
        )
        super().__init__(self.message)
