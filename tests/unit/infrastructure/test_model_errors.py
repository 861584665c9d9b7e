"""Tests for model error classification."""

import asyncio

import httpx
import openai
import pytest

from src.infrastructure.llm.errors import (
    ModelErrorKind,
    classify_model_error,
    extract_error_message,
    is_context_limit_message,
    is_network_message,
)


def _status_error(status_code: int, body: dict) -> openai.APIStatusError:
    request = httpx.Request("POST", "http://model:11434/v1/chat/completions")
    response = httpx.Response(status_code, json=body, request=request)
    return openai.APIStatusError("error", response=response, body=body)


# --- message patterns ---

@pytest.mark.parametrize("text", [
    "This model's maximum context length is 8192 tokens",
    "input length exceeds the context window",
    "Too many tokens in prompt",
    "prompt is too long",
])
def test_context_limit_messages(text):
    assert is_context_limit_message(text)


@pytest.mark.parametrize("text", [
    "connect ECONNREFUSED 127.0.0.1:11434",
    "getaddrinfo ENOTFOUND model",
    "fetch failed",
    "Temporary failure in name resolution",
])
def test_network_messages(text):
    assert is_network_message(text)


def test_plain_message_is_neither():
    assert not is_context_limit_message("model not found")
    assert not is_network_message("model not found")


# --- error body extraction ---

def test_extract_error_message_shapes():
    assert extract_error_message({"error": "boom"}) == "boom"
    assert extract_error_message({"error": {"message": "nested"}}) == "nested"
    assert extract_error_message('{"error": "from text"}') == "from text"
    assert extract_error_message("not json") == "not json"
    assert extract_error_message(b'{"message": "bytes"}') == "bytes"
    assert extract_error_message(None) == ""


# --- classify_model_error ---

def test_timeouts_classified_before_connection_errors():
    request = httpx.Request("POST", "http://model/v1/chat/completions")
    assert classify_model_error(asyncio.TimeoutError()) == ModelErrorKind.TIMEOUT
    assert classify_model_error(openai.APITimeoutError(request=request)) == ModelErrorKind.TIMEOUT


def test_connection_errors_are_network():
    request = httpx.Request("POST", "http://model/v1/chat/completions")
    assert classify_model_error(openai.APIConnectionError(request=request)) == ModelErrorKind.NETWORK
    assert classify_model_error(ConnectionRefusedError()) == ModelErrorKind.NETWORK


def test_status_error_with_context_phrase_is_payload_too_large():
    exc = _status_error(400, {"error": {"message": "maximum context length exceeded"}})
    assert classify_model_error(exc) == ModelErrorKind.PAYLOAD_TOO_LARGE


def test_other_status_error_is_service_error():
    exc = _status_error(404, {"error": "model 'x' not found"})
    assert classify_model_error(exc) == ModelErrorKind.SERVICE_ERROR


def test_generic_exception_falls_back_to_text_patterns():
    assert classify_model_error(RuntimeError("context window overflow")) == ModelErrorKind.PAYLOAD_TOO_LARGE
    assert classify_model_error(RuntimeError("socket ECONNREFUSED")) == ModelErrorKind.NETWORK
    assert classify_model_error(ValueError("no choices")) == ModelErrorKind.SERVICE_ERROR


def test_cause_chain_is_inspected():
    try:
        try:
            raise OSError("EHOSTUNREACH")
        except OSError as inner:
            raise RuntimeError("request failed") from inner
    except RuntimeError as outer:
        assert classify_model_error(outer) == ModelErrorKind.NETWORK
