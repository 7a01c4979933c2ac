# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/rate_limit_retry/forwarder.py
"""
Streaming forwarder that re-issues upstream requests when the provider
answers with a rate limit message inside a 200 SSE body.

Output is held back until the first data line that carries generated
output (see sse_buffer.is_stream_content: non-blank extracted text, or any
parsed payload other than the message_start / content_block_start / ping
preamble), or until holdback_chars of scanned text have accumulated. A rate limit hit while output is still held back is invisible
to the client, so the request is retried after a backoff wait. Once text
has been released, a late rate limit message is forwarded as is.

Only text the scanner has already examined is ever yielded, i.e. whole
lines; a trailing partial line is released when the stream ends.
"""

import logging
import random
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .backoff_policy import DEFAULT_BACKOFF_POLICY, BackoffPolicy
from .errors import RateLimitRetriesExhaustedError
from .retry_state import RetryObserver, RetryState, SleepFunc, log_retry_event
from .sse_buffer import SSERateLimitScanner

lib_logger = logging.getLogger("rate_limit_retry")

DEFAULT_HOLDBACK_CHARS = 8 * 1024


async def stream_with_rate_limit_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    policy: Optional[BackoffPolicy] = None,
    headers: Optional[Dict[str, str]] = None,
    json: Optional[Any] = None,
    content: Optional[Any] = None,
    holdback_chars: int = DEFAULT_HOLDBACK_CHARS,
    rng: Optional[random.Random] = None,
    sleep: Optional[SleepFunc] = None,
    on_retry: Optional[RetryObserver] = log_retry_event,
) -> AsyncIterator[str]:
    """
    Stream an upstream SSE response, retrying on embedded rate limit errors.

    Args:
        client: HTTP client used for every attempt
        method: HTTP method (usually "POST")
        url: Upstream URL
        policy: Retry limits and backoff curve (default policy if omitted)
        headers: Request headers, re-sent on every attempt
        json: JSON request body
        content: Raw request body (alternative to json)
        holdback_chars: Scanned text to buffer before releasing output
                        when no content line has been seen yet
        rng: Random source for backoff jitter
        sleep: Async sleep for backoff waits (default asyncio.sleep)
        on_retry: Observer called before each backoff wait

    Yields:
        Decoded SSE text from the first attempt that was not rate limited

    Raises:
        RateLimitRetriesExhaustedError: Still rate limited after max_retries waits
        httpx.HTTPStatusError: Upstream answered with an error status
    """
    state = RetryState(
        policy or DEFAULT_BACKOFF_POLICY, rng=rng, sleep=sleep, on_retry=on_retry
    )
    scanner = SSERateLimitScanner()

    while True:
        scanner.reset()
        hit = None
        held = ""
        released = False

        async with client.stream(
            method, url, headers=headers, json=json, content=content
        ) as response:
            if response.is_error:
                await response.aread()
                response.raise_for_status()

            async for text in response.aiter_text():
                found = scanner.feed(text)
                if found is not None and not released:
                    hit = found
                    break
                if found is not None:
                    lib_logger.warning(
                        "Rate limit message arrived after output was sent to the "
                        f"client, forwarding it: {found.text[:200]}"
                    )

                held += text
                scanned = len(held) - len(scanner.buffered)
                if not released and (scanner.content_seen or scanned >= holdback_chars):
                    released = True
                if released and scanned > 0:
                    yield held[:scanned]
                    held = held[scanned:]
            else:
                found = scanner.flush()
                if found is None or released:
                    if found is not None:
                        lib_logger.warning(
                            "Rate limit message at end of stream after output was "
                            f"sent to the client, forwarding it: {found.text[:200]}"
                        )
                    if held:
                        yield held
                    return
                hit = found

        if not state.can_retry():
            raise RateLimitRetriesExhaustedError(hit.text, state.attempt)

        await state.wait_and_increment()
        lib_logger.debug(
            f"Re-issuing {method} {url} after rate limit "
            f"(retry {state.attempt}/{state.policy.max_retries})"
        )
