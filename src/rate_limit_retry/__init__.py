# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
from typing import TYPE_CHECKING

from .backoff_policy import DEFAULT_BACKOFF_POLICY, BackoffPolicy, calculate_backoff
from .errors import (
    InvalidBackoffPolicyError,
    RateLimitRetriesExhaustedError,
    RateLimitRetryError,
)
from .retry_state import RetryEvent, RetryState, log_retry_event
from .sse_buffer import SSERateLimitScanner
from .sse_scanner import (
    ExtractedError,
    detect_rate_limit_in_sse,
    extract_error_text,
    find_rate_limit_in_sse,
    is_rate_limit_error,
)

# For type checkers, import the httpx-backed forwarder statically
# At runtime, it's lazy-loaded via __getattr__
if TYPE_CHECKING:
    from .forwarder import stream_with_rate_limit_retry

logging.getLogger("rate_limit_retry").addHandler(logging.NullHandler())

__all__ = [
    "BackoffPolicy",
    "DEFAULT_BACKOFF_POLICY",
    "calculate_backoff",
    "RetryState",
    "RetryEvent",
    "log_retry_event",
    "ExtractedError",
    "extract_error_text",
    "is_rate_limit_error",
    "find_rate_limit_in_sse",
    "detect_rate_limit_in_sse",
    "SSERateLimitScanner",
    "RateLimitRetryError",
    "InvalidBackoffPolicyError",
    "RateLimitRetriesExhaustedError",
    "stream_with_rate_limit_retry",
]


def __getattr__(name):
    """Lazy-load the streaming forwarder so the core does not import httpx."""
    if name == "stream_with_rate_limit_retry":
        from .forwarder import stream_with_rate_limit_retry

        return stream_with_rate_limit_retry
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
