# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/rate_limit_retry/sse_buffer.py
"""
Line-buffering wrapper around the stateless SSE scanner.

Network reads do not respect SSE line boundaries, so a JSON payload can be
split across two chunks. SSERateLimitScanner keeps the trailing partial
line of each chunk and only scans lines once their newline has arrived.
"""

import logging
from typing import Optional

from .sse_scanner import (
    ExtractedError,
    SSEDataLine,
    is_rate_limit_error,
    iter_sse_lines,
    parse_sse_line,
)

lib_logger = logging.getLogger("rate_limit_retry")

DEFAULT_MAX_BUFFER_CHARS = 1024 * 1024

# Anthropic events sent before any generated text
PREAMBLE_EVENT_TYPES = frozenset({"message_start", "content_block_start", "ping"})


def is_stream_content(data_line: SSEDataLine) -> bool:
    """
    Checks if a data line carries generated output rather than stream setup.

    Extracted text counts only when it is non-blank. Otherwise any parsed
    payload counts (e.g. OpenAI ``choices`` chunks) except the Anthropic
    preamble events.
    """
    if data_line.extracted is not None:
        return bool(data_line.extracted.text.strip())
    value = data_line.value
    event_type = value.get("type") if isinstance(value, dict) else None
    if isinstance(event_type, str) and event_type in PREAMBLE_EVENT_TYPES:
        return False
    return True


class SSERateLimitScanner:
    """
    Stateful, single-owner scanner for one upstream response.

    Usage:
        scanner = SSERateLimitScanner()
        async for text in response.aiter_text():
            hit = scanner.feed(text)
            if hit:
                ...
        hit = scanner.flush()
    """

    def __init__(self, max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS):
        self._max_buffer_chars = max_buffer_chars
        self._partial = ""
        self._detected: Optional[ExtractedError] = None
        self._content_seen = False

    @property
    def detected(self) -> Optional[ExtractedError]:
        """First rate limit hit since construction or the last reset()."""
        return self._detected

    @property
    def content_seen(self) -> bool:
        """True once a scanned data line carried output (see is_stream_content)."""
        return self._content_seen

    @property
    def buffered(self) -> str:
        return self._partial

    def feed(self, chunk: str) -> Optional[ExtractedError]:
        """
        Scan every line completed by this chunk.

        Returns:
            The first rate limit hit found in this call, or None
        """
        if not chunk:
            return None

        data = self._partial + chunk
        # Without a newline rpartition leaves everything in ``partial``
        complete, sep, partial = data.rpartition("\n")
        self._partial = partial
        hit = self._scan(complete) if sep else None

        if hit is None and len(self._partial) > self._max_buffer_chars:
            lib_logger.warning(
                f"SSE partial line exceeded {self._max_buffer_chars} chars "
                "without a newline, scanning and discarding it"
            )
            hit = self._scan(self._partial)
            self._partial = ""

        return hit

    def flush(self) -> Optional[ExtractedError]:
        """Scan whatever is left once the stream has ended."""
        remaining, self._partial = self._partial, ""
        if not remaining:
            return None
        return self._scan(remaining)

    def reset(self) -> None:
        """Forget buffered text and previous hits (before re-issuing a request)."""
        self._partial = ""
        self._detected = None
        self._content_seen = False

    def _scan(self, text: str) -> Optional[ExtractedError]:
        for line in iter_sse_lines(text):
            data_line = parse_sse_line(line)
            if data_line is None:
                continue
            extracted = data_line.extracted
            if extracted is not None and is_rate_limit_error(extracted.text):
                lib_logger.debug(
                    f"Rate limit signal in SSE {extracted.source}: {extracted.text[:200]}"
                )
                if self._detected is None:
                    self._detected = extracted
                return extracted
            if is_stream_content(data_line):
                self._content_seen = True
        return None
