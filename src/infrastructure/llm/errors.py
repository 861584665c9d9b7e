"""
Model Error Classification
==========================

Maps raw failures from the model service (exceptions, HTTP error bodies,
socket error codes) to a closed set of error kinds that drive failover.

Pattern lists are kept as module constants so the classifier can be
tested in isolation from the clients that use it.
"""

import asyncio
import json
from enum import Enum
from typing import Any, Iterable, Optional

import httpx
import openai


class ModelErrorKind(str, Enum):
    """How a failed model call should be treated by the host loop."""
    PAYLOAD_TOO_LARGE = "payload_too_large"  # fatal, do not try other hosts
    TIMEOUT = "timeout"                      # transient, try next attempt/host
    NETWORK = "network"                      # transient, try next attempt/host
    SERVICE_ERROR = "service_error"          # fatal, reachable host said no


CONTEXT_LIMIT_PATTERNS = (
    "context length",
    "exceeds the context",
    "context window",
    "input length exceeds",
    "too many tokens",
    "maximum context",
    "prompt is too long",
)

NETWORK_ERROR_CODES = (
    "econnrefused",
    "enotfound",
    "etimedout",
    "ehostunreach",
    "eai_again",
)

NETWORK_ERROR_PHRASES = (
    "fetch failed",
    "failed to fetch",
    "networkerror",
    "network",
    "connection refused",
    "connection error",
    "name or service not known",
    "temporary failure in name resolution",
    "nodename nor servname",
    "timed out",
)

TIMEOUT_TYPES = (
    asyncio.TimeoutError,
    TimeoutError,
    openai.APITimeoutError,
    httpx.TimeoutException,
)

NETWORK_TYPES = (
    openai.APIConnectionError,
    httpx.TransportError,
    ConnectionError,
)


def _contains_any(text: str, patterns: Iterable[str]) -> bool:
    return any(p in text for p in patterns)


def is_context_limit_message(text: Optional[str]) -> bool:
    """True when an error text reports a context/length-limit violation."""
    return _contains_any((text or "").lower(), CONTEXT_LIMIT_PATTERNS)


def is_network_message(text: Optional[str]) -> bool:
    """True when an error text looks like a reachability failure."""
    lowered = (text or "").lower()
    return _contains_any(lowered, NETWORK_ERROR_CODES) or _contains_any(lowered, NETWORK_ERROR_PHRASES)


def extract_error_message(body: Any) -> str:
    """
    Pull the human-readable error out of a model service error body.

    Accepts a decoded JSON body or raw text. Handles both the native
    ``{"error": "..."}`` shape and the OpenAI-compatible
    ``{"error": {"message": "..."}}`` shape, falling back to the raw text.
    """
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            decoded = json.loads(body)
        except ValueError:
            return body
        if not isinstance(decoded, dict):
            return body
        body = decoded

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, str):
            return error
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(body.get("message"), str):
            return body["message"]
        return json.dumps(body)

    return "" if body is None else str(body)


def status_error_message(exc: openai.APIStatusError) -> str:
    """Best available error text for a non-2xx response."""
    message = extract_error_message(exc.body) if exc.body is not None else ""
    if not message:
        try:
            message = extract_error_message(exc.response.text)
        except (httpx.ResponseNotRead, UnicodeDecodeError):
            message = ""
    return message or exc.message


def _error_chain_text(exc: BaseException) -> str:
    parts = [str(exc)]
    code = getattr(exc, "code", None) or getattr(exc, "errno", None)
    if code is not None:
        parts.append(str(code))
    cause = exc.__cause__ or exc.__context__
    if cause is not None:
        parts.append(str(cause))
        cause_code = getattr(cause, "code", None) or getattr(cause, "errno", None)
        if cause_code is not None:
            parts.append(str(cause_code))
    return " ".join(parts)


def classify_model_error(exc: BaseException) -> ModelErrorKind:
    """
    Classify a failed model call.

    Args:
        exc: The exception raised by the call (or by its timeout guard)

    Returns:
        ModelErrorKind for the failover loop
    """
    # Timeouts first: the SDK's timeout error subclasses its connection error
    if isinstance(exc, TIMEOUT_TYPES):
        return ModelErrorKind.TIMEOUT

    if isinstance(exc, openai.APIStatusError):
        if is_context_limit_message(status_error_message(exc)):
            return ModelErrorKind.PAYLOAD_TOO_LARGE
        return ModelErrorKind.SERVICE_ERROR

    if isinstance(exc, NETWORK_TYPES):
        return ModelErrorKind.NETWORK

    text = _error_chain_text(exc)
    if is_context_limit_message(text):
        return ModelErrorKind.PAYLOAD_TOO_LARGE
    if is_network_message(text):
        return ModelErrorKind.NETWORK
    return ModelErrorKind.SERVICE_ERROR
