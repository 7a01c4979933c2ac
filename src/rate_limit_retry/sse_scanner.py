# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/rate_limit_retry/sse_scanner.py
"""
Detection of rate limit errors embedded in SSE (Server-Sent Events) bodies.

Some upstream providers report throttling as ordinary stream content with a
200 status instead of a 429, e.g.:

    event: content_block_delta
    data: {"type":"content_block_delta","delta":{"text":"Rate limit error, please wait"}}

Everything here is synchronous, stateless and side-effect free. Payloads
are parsed with orjson; a payload that is not JSON is classified as raw text.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional

import orjson

lib_logger = logging.getLogger("rate_limit_retry")


DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
RATE_LIMIT_MARKER = "rate limit"

# Source tag used when the payload was not JSON
RAW_SOURCE = "raw"


@dataclass(frozen=True)
class ExtractedError:
    """
    Candidate error text pulled out of one SSE data line.

    Attributes:
        text: The extracted message
        source: Field path it came from ("error", "error.message",
                "error.detail", "delta.text", "message") or "raw"
    """

    text: str
    source: str


def is_rate_limit_error(text: str) -> bool:
    """Checks if the text mentions a rate limit (case-insensitive)."""
    return RATE_LIMIT_MARKER in text.lower()


def _text_field(obj: Any, key: str) -> Optional[str]:
    if isinstance(obj, dict):
        value = obj.get(key)
        if isinstance(value, str):
            return value
    return None


def extract_error_text(value: Any) -> Optional[ExtractedError]:
    """
    Find a representative error or content string in a parsed payload.

    Checked in order, first string hit wins:
    1. ``error`` when it is a plain string
    2. ``error.message``
    3. ``error.detail``
    4. ``delta.text`` (token delta events)
    5. top-level ``message``

    Args:
        value: Parsed JSON value (any type)

    Returns:
        ExtractedError, or None if no candidate field holds text
    """
    if not isinstance(value, dict):
        return None

    error = value.get("error")
    if isinstance(error, str):
        return ExtractedError(error, "error")
    if isinstance(error, dict):
        message = _text_field(error, "message")
        if message is not None:
            return ExtractedError(message, "error.message")
        detail = _text_field(error, "detail")
        if detail is not None:
            return ExtractedError(detail, "error.detail")

    delta_text = _text_field(value.get("delta"), "text")
    if delta_text is not None:
        return ExtractedError(delta_text, "delta.text")

    message = _text_field(value, "message")
    if message is not None:
        return ExtractedError(message, "message")

    return None


def iter_sse_lines(chunk: str) -> Iterator[str]:
    """Yield the lines of a chunk, tolerating CRLF line endings."""
    for line in chunk.split("\n"):
        yield line[:-1] if line.endswith("\r") else line


@dataclass(frozen=True)
class SSEDataLine:
    """
    One ``data:`` line of an event stream, parsed.

    Attributes:
        payload: Text after the ``data: `` prefix
        value: Parsed JSON value, or None when the payload is not JSON
        is_json: Whether the payload parsed as JSON
        extracted: Candidate error text, if any
    """

    payload: str
    value: Any
    is_json: bool
    extracted: Optional[ExtractedError]


def parse_sse_line(line: str) -> Optional[SSEDataLine]:
    """
    Parse a single SSE line.

    Returns None for non-data lines (``event:``, comments, blanks) and for
    the ``[DONE]`` sentinel.
    """
    if not line.startswith(DATA_PREFIX):
        return None

    payload = line[len(DATA_PREFIX):]
    if payload.strip() == DONE_SENTINEL:
        return None

    try:
        parsed = orjson.loads(payload)
    except orjson.JSONDecodeError:
        return SSEDataLine(payload, None, False, ExtractedError(payload, RAW_SOURCE))

    return SSEDataLine(payload, parsed, True, extract_error_text(parsed))


def scan_sse_line(line: str) -> Optional[ExtractedError]:
    """
    Extract the candidate error text from a single SSE line.

    Returns None for non-data lines, for the ``[DONE]`` sentinel, and for
    JSON payloads without a text field. A payload that is not valid JSON
    is returned whole as raw text.
    """
    data_line = parse_sse_line(line)
    return data_line.extracted if data_line is not None else None


def find_rate_limit_in_sse(chunk: str) -> Optional[ExtractedError]:
    """
    Scan a chunk of SSE text and return the first rate limit message.

    The chunk must contain complete lines; nothing is buffered between
    calls. Use SSERateLimitScanner for streams whose reads split lines.
    """
    for line in iter_sse_lines(chunk):
        extracted = scan_sse_line(line)
        if extracted is not None and is_rate_limit_error(extracted.text):
            lib_logger.debug(
                f"Rate limit signal in SSE {extracted.source}: {extracted.text[:200]}"
            )
            return extracted
    return None


def detect_rate_limit_in_sse(chunk: str) -> bool:
    """Checks if any data line of the chunk carries a rate limit message."""
    return find_rate_limit_in_sse(chunk) is not None
