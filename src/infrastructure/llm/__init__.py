"""
LLM Client Infrastructure
==========================

Embedding and chat clients for an Ollama-compatible model service.

Both clients speak the OpenAI-compatible API through ``AsyncOpenAI`` and
share one host-iteration skeleton: candidate hosts are the configured
primary followed by fixed local fallbacks, each host gets a bounded number
of attempts, and every attempt is capped by a timeout that cancels the
in-flight call. They differ in how a failed attempt is treated:

- Embedding: any failure is retried, then the next host is tried.
- Chat: context-limit errors fail immediately, timeouts and network
  errors move on, any other error response is terminal.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
from openai import APIStatusError, AsyncOpenAI

from src.config import UsageEventType, settings
from src.core import (
    ModelResponseException,
    ModelTimeoutException,
    PayloadTooLargeException,
    ServiceUnavailableException,
)
from src.infrastructure.llm.errors import (
    ModelErrorKind,
    classify_model_error,
    status_error_message,
)
from src.infrastructure.tenancy import IUsageSink
from src.shared.infrastructure.effects import BackgroundEffects
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Ollama ignores the key, the SDK requires one
PLACEHOLDER_API_KEY = "ollama"


@dataclass
class EmbeddingUsage:
    """Who to bill for an embedding call."""
    tenant_id: str
    user_id: Optional[str] = None
    source_id: Optional[str] = None
    job_id: Optional[str] = None
    mode: Optional[str] = None

    def to_meta(self) -> dict:
        return {"sourceId": self.source_id, "jobId": self.job_id, "mode": self.mode}


class IEmbeddingClient(ABC):
    """Text to fixed-dimension vector."""

    @abstractmethod
    async def embed(self, text: str, usage: Optional[EmbeddingUsage] = None) -> List[float]:
        """Embed text; empty text yields an empty vector."""


class IChatClient(ABC):
    """Structured prompt to free text."""

    @abstractmethod
    async def chat(self, messages: List[dict]) -> str:
        """Return the assistant message content."""


class ModelServiceClient:
    """
    Shared host pool for the model service.

    One AsyncOpenAI client is created lazily per host. SDK-level retries are
    disabled so that attempt counting stays in this layer.
    """

    def __init__(
        self,
        hosts: Optional[List[str]] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.hosts = list(dict.fromkeys(h.rstrip("/") for h in (hosts or settings.model_hosts)))
        self.timeout_seconds = timeout_seconds or settings.model_timeout_seconds
        self._http_client = http_client
        self._clients: Dict[str, AsyncOpenAI] = {}

    def client_for(self, host: str) -> AsyncOpenAI:
        client = self._clients.get(host)
        if client is None:
            client = AsyncOpenAI(
                base_url=f"{host}/v1",
                api_key=PLACEHOLDER_API_KEY,
                timeout=self.timeout_seconds,
                max_retries=0,
                http_client=self._http_client,
            )
            self._clients[host] = client
        return client

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


class OllamaEmbeddingClient(IEmbeddingClient):
    """
    Embedding client with per-host retries and multi-host failover.

    Exactly len(hosts) * retries attempts are made before giving up.
    """

    def __init__(
        self,
        pool: ModelServiceClient,
        model: Optional[str] = None,
        retries: Optional[int] = None,
        usage_sink: Optional[IUsageSink] = None,
        effects: Optional[BackgroundEffects] = None,
    ):
        self._pool = pool
        self._model = model or settings.embed_model
        self._retries = max(1, retries or settings.embed_retries)
        self._usage_sink = usage_sink
        self._effects = effects or BackgroundEffects()

    @staticmethod
    def clean(text: str) -> str:
        return " ".join((text or "").split())

    async def _call(self, host: str, text: str) -> List[float]:
        client = self._pool.client_for(host)
        response = await asyncio.wait_for(
            client.embeddings.create(model=self._model, input=text, encoding_format="float"),
            timeout=self._pool.timeout_seconds,
        )
        if not response.data:
            return []
        return [float(x) for x in response.data[0].embedding]

    async def embed(self, text: str, usage: Optional[EmbeddingUsage] = None) -> List[float]:
        """
        Embed text.

        Args:
            text: Raw text; whitespace is collapsed before sending
            usage: Optional billing context for the usage event

        Returns:
            The embedding vector (possibly empty if the service returned none)

        Raises:
            ServiceUnavailableException: If every host and attempt failed
        """
        cleaned = self.clean(text)
        if not cleaned:
            return []

        last_error: Optional[BaseException] = None
        for host in self._pool.hosts:
            for attempt in range(1, self._retries + 1):
                try:
                    vector = await self._call(host, cleaned)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    last_error = e
                    logger.warning(
                        "Embedding attempt failed",
                        extra={
                            "host": host,
                            "attempt": attempt,
                            "model": self._model,
                            "error_kind": classify_model_error(e).value,
                            "error": str(e),
                        },
                    )
                    continue

                self._emit_usage(usage)
                return vector

        raise ServiceUnavailableException(
            f"Embeddings unavailable (tried {', '.join(self._pool.hosts)}; model={self._model}). "
            f"Last error: {last_error}",
            hosts_tried=self._pool.hosts,
            last_error=str(last_error),
            details={"model": self._model},
        )

    def _emit_usage(self, usage: Optional[EmbeddingUsage]) -> None:
        if usage is None or self._usage_sink is None or not usage.tenant_id:
            return
        self._effects.spawn(
            "kb_embedding_usage",
            self._usage_sink.log_event,
            usage.tenant_id,
            usage.user_id,
            UsageEventType.KB_EMBEDDING,
            1,
            usage.to_meta(),
        )


class OllamaChatClient(IChatClient):
    """
    Chat client that separates payload-too-large, timeout, unreachable and
    service-error outcomes.
    """

    def __init__(
        self,
        pool: ModelServiceClient,
        model: Optional[str] = None,
        retries: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self._pool = pool
        self._model = model or settings.chat_model
        self._retries = max(1, retries or settings.chat_retries)
        self._temperature = temperature

    async def _call(self, host: str, messages: List[dict]) -> str:
        client = self._pool.client_for(host)
        kwargs = {"model": self._model, "messages": messages, "stream": False}
        if self._temperature is not None:
            kwargs["temperature"] = self._temperature
        response = await asyncio.wait_for(
            client.chat.completions.create(**kwargs),
            timeout=self._pool.timeout_seconds,
        )
        if not response.choices:
            raise ValueError("Model response contained no choices")
        return (response.choices[0].message.content or "").strip()

    async def chat(self, messages: List[dict]) -> str:
        """
        Run one chat completion.

        Raises:
            PayloadTooLargeException: Prompt exceeds the model context
            ModelResponseException: A reachable host returned another error
            ModelTimeoutException: Hosts exhausted, last failure a timeout
            ServiceUnavailableException: Hosts exhausted, last failure network
        """
        last_error: Optional[BaseException] = None
        last_kind: Optional[ModelErrorKind] = None

        for host in self._pool.hosts:
            for attempt in range(1, self._retries + 1):
                start = time.perf_counter()
                try:
                    content = await self._call(host, messages)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    kind = classify_model_error(e)
                    last_error, last_kind = e, kind

                    if kind == ModelErrorKind.PAYLOAD_TOO_LARGE:
                        model_error = self._error_text(e)
                        logger.warning(
                            "Chat prompt exceeds model context",
                            extra={"host": host, "model": self._model, "error": model_error},
                        )
                        raise PayloadTooLargeException(
                            "LLM context limit exceeded (prompt too long).",
                            model=self._model,
                            model_error=model_error,
                        ) from e

                    if kind == ModelErrorKind.SERVICE_ERROR:
                        status_code = getattr(e, "status_code", None)
                        logger.error(
                            "Chat host returned an error response",
                            extra={"host": host, "model": self._model, "status": status_code},
                        )
                        raise ModelResponseException(
                            host=host,
                            status_code=status_code,
                            body=self._error_text(e),
                            model=self._model,
                        ) from e

                    logger.warning(
                        "Chat attempt failed, trying next",
                        extra={
                            "host": host,
                            "attempt": attempt,
                            "model": self._model,
                            "error_kind": kind.value,
                            "error": str(e),
                        },
                    )
                    continue

                logger.info(
                    "Chat completion succeeded",
                    extra={
                        "host": host,
                        "model": self._model,
                        "latency_ms": int((time.perf_counter() - start) * 1000),
                    },
                )
                return content

        if last_kind == ModelErrorKind.TIMEOUT:
            raise ModelTimeoutException(
                "LLM request timed out (model service took too long).",
                timeout_seconds=self._pool.timeout_seconds,
                details={"hosts_tried": self._pool.hosts, "model": self._model},
            )

        raise ServiceUnavailableException(
            "Model service is not reachable. Start it with: 'ollama serve'.",
            hosts_tried=self._pool.hosts,
            last_error=str(last_error),
            details={"model": self._model},
        )

    @staticmethod
    def _error_text(exc: BaseException) -> str:
        if isinstance(exc, APIStatusError):
            return status_error_message(exc)
        return str(exc)


__all__ = [
    "EmbeddingUsage",
    "IEmbeddingClient",
    "IChatClient",
    "ModelServiceClient",
    "OllamaEmbeddingClient",
    "OllamaChatClient",
    "ModelErrorKind",
    "classify_model_error",
]
