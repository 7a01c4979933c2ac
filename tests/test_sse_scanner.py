import pytest

from rate_limit_retry import (
    ExtractedError,
    detect_rate_limit_in_sse,
    extract_error_text,
    find_rate_limit_in_sse,
    is_rate_limit_error,
)
from rate_limit_retry.sse_scanner import scan_sse_line


RATE_LIMITED_STREAM = """event: message_start
data: {"type":"message_start","message":{"role":"assistant","stop_sequence":null,"usage":{"output_tokens":0,"input_tokens":0},"stop_reason":null,"model":"error","id":"msg_e76873af-d47","type":"message","content":[]}}

event: content_block_start
data: {"type":"content_block_start","index":0,"content_block":{"text":"","type":"text"}}

event: content_block_delta
data: {"type":"content_block_delta","index":0,"delta":{"text":"Rate limit error, please wait before trying again","type":"text_delta"}}
"""

CLEAN_STREAM = """event: content_block_delta
data: {"type":"content_block_delta","index":0,"delta":{"text":"Hello, how can I help you?","type":"text_delta"}}
"""


@pytest.mark.parametrize(
    "text",
    [
        "Rate limit error, please wait",
        "RATE LIMIT EXCEEDED",
        "You have exceeded the rate limit",
    ],
)
def test_rate_limit_text_detected(text):
    assert is_rate_limit_error(text)


@pytest.mark.parametrize(
    "text", ["Internal server error", "Authentication failed", "rate_limit_exceeded", ""]
)
def test_other_text_not_detected(text):
    assert not is_rate_limit_error(text)


def test_extract_error_string():
    assert extract_error_text({"error": "Rate limit"}) == ExtractedError("Rate limit", "error")


def test_extract_error_message_before_detail():
    value = {"error": {"message": "slow down", "detail": "rate limit"}}
    assert extract_error_text(value) == ExtractedError("slow down", "error.message")


def test_extract_error_detail():
    value = {"error": {"code": 429, "detail": "rate limit hit"}}
    assert extract_error_text(value) == ExtractedError("rate limit hit", "error.detail")


def test_extract_falls_through_non_text_error():
    value = {"error": {"code": 429}, "delta": {"text": "partial"}, "message": "m"}
    assert extract_error_text(value) == ExtractedError("partial", "delta.text")


def test_extract_top_level_message():
    value = {"error": None, "delta": {"text": 5}, "message": "Rate limit reached"}
    assert extract_error_text(value) == ExtractedError("Rate limit reached", "message")


@pytest.mark.parametrize(
    "value",
    [
        {"type": "ping"},
        {"message": {"role": "assistant"}},
        ["rate limit"],
        "rate limit",
        42,
        None,
    ],
)
def test_extract_absent(value):
    assert extract_error_text(value) is None


def test_scan_line_ignores_non_data_lines():
    assert scan_sse_line("event: error") is None
    assert scan_sse_line(": keep-alive rate limit") is None
    assert scan_sse_line("") is None


def test_scan_line_raw_fallback():
    assert scan_sse_line("data: Rate limit reached, slow down") == ExtractedError(
        "Rate limit reached, slow down", "raw"
    )


def test_detects_rate_limit_in_delta_text():
    assert detect_rate_limit_in_sse(RATE_LIMITED_STREAM)


def test_clean_stream_not_detected():
    assert not detect_rate_limit_in_sse(CLEAN_STREAM)


@pytest.mark.parametrize("chunk", ["data: [DONE]\n", "data:  [DONE]  \n\n", "data: [DONE]"])
def test_done_sentinel_never_matches(chunk):
    assert not detect_rate_limit_in_sse(chunk)


def test_single_delta_scenarios():
    hit = 'data: {"delta":{"text":"Rate limit error, please wait"}}\n'
    miss = 'data: {"delta":{"text":"Hello, how can I help you?"}}\n'
    assert detect_rate_limit_in_sse(hit)
    assert not detect_rate_limit_in_sse(miss)


def test_raw_payload_uppercase():
    assert detect_rate_limit_in_sse("event: error\ndata: RATE LIMIT EXCEEDED\n\n")


def test_unrelated_structured_content_not_detected():
    chunk = (
        'data: {"choices":[{"delta":{"content":"rate limit"}}]}\n'
        'data: {"usage":{"prompt_tokens":10}}\n'
        "data: [DONE]\n"
    )
    assert not detect_rate_limit_in_sse(chunk)


def test_openai_style_error_object():
    chunk = 'data: {"error":{"message":"Rate limit reached for gpt-4o","type":"requests"}}\r\n\r\n'
    assert find_rate_limit_in_sse(chunk) == ExtractedError(
        "Rate limit reached for gpt-4o", "error.message"
    )


def test_data_prefix_requires_space():
    assert not detect_rate_limit_in_sse('data:{"error":"rate limit"}\n')


def test_returns_first_match():
    chunk = 'data: {"error":"rate limit one"}\ndata: {"error":"rate limit two"}\n'
    assert find_rate_limit_in_sse(chunk).text == "rate limit one"


def test_empty_chunk():
    assert find_rate_limit_in_sse("") is None
