from __future__ import annotations

import json
import threading

import httpx
import pytest

from candy.runtime.llm.client_httpx_errors import wrap_httpx_exception
from candy.runtime.llm.errors import (
    CancellationToken,
    ErrorCode,
    LLMRequestError,
    TooManyContinuationsError,
    classify_http_error,
    classify_stream_error,
    extract_error_message,
    matches_context_limit,
    parse_retry_after,
)
from candy.runtime.llm.types import ProviderKind


def _body(message: str) -> str:
    return json.dumps({"error": {"message": message, "type": "invalid_request_error"}})


@pytest.mark.parametrize(
    ("status", "body", "code", "retryable", "continuation"),
    [
        (429, _body("Rate limit reached for requests"), ErrorCode.RATE_LIMIT, True, False),
        (400, _body("This model's maximum context length is 8192 tokens"), ErrorCode.CONTEXT_LIMIT, False, True),
        (400, _body("Invalid value for 'temperature'"), ErrorCode.BAD_REQUEST, False, False),
        (401, _body("Incorrect API key provided"), ErrorCode.AUTH, False, False),
        (403, _body("Forbidden"), ErrorCode.PERMISSION, False, False),
        (404, _body("The model does not exist"), ErrorCode.NOT_FOUND, False, False),
        (500, _body("Internal server error"), ErrorCode.SERVER_ERROR, True, False),
        (503, "upstream connect error", ErrorCode.SERVER_ERROR, True, False),
        (418, _body("teapot"), ErrorCode.API_ERROR, False, False),
    ],
)
def test_classify_http_error(status, body, code, retryable, continuation):
    err = classify_http_error(status, body, provider_kind=ProviderKind.OPENAI, model="gpt-4o")
    assert err.code is code
    assert err.retryable is retryable
    assert err.needs_continuation is continuation
    assert err.status_code == status
    assert err.provider_kind is ProviderKind.OPENAI


def test_gemini_resource_exhausted_on_400_is_a_context_limit():
    body = json.dumps([{"error": {"code": 400, "message": "Request payload size exceeds the limit", "status": "RESOURCE_EXHAUSTED"}}])
    err = classify_http_error(400, body, provider_kind=ProviderKind.GEMINI)
    assert err.code is ErrorCode.CONTEXT_LIMIT


def test_rate_limit_carries_retry_after():
    err = classify_http_error(429, _body("slow down"), headers={"retry-after": "7"})
    assert err.retry_after_s == 7.0
    assert str(err) == "Rate limit exceeded: slow down"

    err = classify_http_error(429, _body("Please try again in 1.5s."))
    assert err.retry_after_s == pytest.approx(2.0)


def test_parse_retry_after_units():
    assert parse_retry_after(None, "try again in 250ms") == pytest.approx(0.75)
    assert parse_retry_after({"retry-after": "not-a-number"}, "nothing here") is None
    assert parse_retry_after({}, "") is None


def test_extract_error_message_envelopes():
    assert extract_error_message(_body("boom")) == "boom"
    assert extract_error_message(json.dumps([{"error": {"message": "gem"}}])) == "gem"
    assert extract_error_message(json.dumps({"error": "flat"})) == "flat"
    assert extract_error_message(json.dumps({"message": "top"})) == "top"
    assert extract_error_message("plain text") == "plain text"
    assert len(extract_error_message("x" * 5000)) == 1000


def test_context_limit_phrases_are_case_insensitive():
    assert matches_context_limit("Input Too Long for requested model")
    assert matches_context_limit("CONTEXT WINDOW overflow")
    assert not matches_context_limit("invalid api key")


@pytest.mark.parametrize(
    ("message", "code"),
    [
        ("Overloaded", ErrorCode.SERVER_ERROR),
        ("Internal error encountered.", ErrorCode.SERVER_ERROR),
        ("Rate limit reached", ErrorCode.RATE_LIMIT),
        ("prompt is too long: maximum context length", ErrorCode.CONTEXT_LIMIT),
        ("something odd", ErrorCode.API_ERROR),
    ],
)
def test_classify_stream_error(message, code):
    assert classify_stream_error(message).code is code


def test_wrap_httpx_exceptions():
    request = httpx.Request("POST", "https://example.invalid/v1/chat/completions")

    timeout = wrap_httpx_exception(
        httpx.ReadTimeout("read timed out", request=request),
        provider_kind=ProviderKind.OPENAI,
        model="m",
        operation="stream",
    )
    assert timeout.code is ErrorCode.TIMEOUT
    assert timeout.needs_continuation
    assert not timeout.retryable

    network = wrap_httpx_exception(
        httpx.ConnectError("connection refused", request=request),
        provider_kind=ProviderKind.OPENAI,
        model="m",
        operation="stream",
    )
    assert network.code is ErrorCode.NETWORK_ERROR
    assert network.retryable
    assert isinstance(network.__cause__, httpx.ConnectError)

    existing = LLMRequestError("x", code=ErrorCode.AUTH)
    assert wrap_httpx_exception(existing, provider_kind=ProviderKind.OPENAI, model=None, operation="stream") is existing


def test_cancellation_token_wait_returns_early():
    token = CancellationToken()
    assert token.wait(0) is False

    threading.Timer(0.01, token.cancel).start()
    assert token.wait(5.0) is True
    assert token.cancelled


def test_too_many_continuations_message():
    assert str(TooManyContinuationsError(10)) == "Too many continuations (10). Stopping."
