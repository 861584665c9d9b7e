"""
Vector Store Infrastructure
============================

Milvus index of chunk embeddings, scoped per tenant.

Only vectors and the scalar fields needed for filtering live here; chunk
content, ordinal and source metadata stay in the relational store and are
joined by chunk id after a search.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from pymilvus import DataType, MilvusClient

from src.config import settings
from src.core import VectorStoreException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

ID_MAX_LENGTH = 64


@dataclass
class VectorHit:
    """Result from vector search."""
    chunk_id: str
    source_id: str
    similarity: float


class IChunkVectorIndex(ABC):
    """
    Interface for chunk embedding storage and nearest-neighbour search.

    Following Interface Segregation and Dependency Inversion principles.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create the collection if needed."""

    @abstractmethod
    async def upsert(self, tenant_id: str, source_id: str, chunk_id: str, vector: List[float]) -> None:
        """Attach a vector to a chunk."""

    @abstractmethod
    async def delete_source(self, tenant_id: str, source_id: str) -> None:
        """Remove every vector belonging to a source."""

    @abstractmethod
    async def search(self, tenant_id: str, vector: List[float], top_k: int) -> List[VectorHit]:
        """Top-k chunks for the tenant, most similar first."""


def _quote(value: str) -> str:
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class MilvusChunkIndex(IChunkVectorIndex):
    """
    Milvus implementation using the COSINE metric.

    With COSINE, the ``distance`` Milvus reports is the cosine similarity
    itself, so it is passed through unchanged.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        token: Optional[str] = None,
        collection_name: Optional[str] = None,
        dimension: Optional[int] = None,
        client: Optional[MilvusClient] = None,
    ):
        self._uri = uri or settings.milvus_uri
        self._token = settings.milvus_token if token is None else token
        self._collection_name = collection_name or settings.milvus_collection_name
        self._dimension = dimension or settings.embedding_dimension
        self._client = client
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Connect and create the collection with its index if it does not exist."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            try:
                await asyncio.to_thread(self._initialize_sync)
            except Exception as e:
                raise VectorStoreException(f"Failed to initialize Milvus: {str(e)}")
            self._initialized = True
            logger.info(
                "Milvus chunk index ready",
                extra={"collection": self._collection_name, "dimension": self._dimension}
            )

    def _initialize_sync(self) -> None:
        if self._client is None:
            if self._token:
                self._client = MilvusClient(uri=self._uri, token=self._token)
            else:
                self._client = MilvusClient(uri=self._uri)

        if self._client.has_collection(self._collection_name):
            return

        schema = MilvusClient.create_schema(auto_id=False, enable_dynamic_field=False)
        schema.add_field(field_name="id", datatype=DataType.VARCHAR, is_primary=True, max_length=ID_MAX_LENGTH)
        schema.add_field(field_name="tenant_id", datatype=DataType.VARCHAR, max_length=ID_MAX_LENGTH)
        schema.add_field(field_name="source_id", datatype=DataType.VARCHAR, max_length=ID_MAX_LENGTH)
        schema.add_field(field_name="vector", datatype=DataType.FLOAT_VECTOR, dim=self._dimension)

        index_params = self._client.prepare_index_params()
        index_params.add_index(field_name="vector", index_type="AUTOINDEX", metric_type="COSINE")

        self._client.create_collection(
            collection_name=self._collection_name,
            schema=schema,
            index_params=index_params,
        )

    async def upsert(self, tenant_id: str, source_id: str, chunk_id: str, vector: List[float]) -> None:
        await self.initialize()
        if len(vector) != self._dimension:
            raise VectorStoreException(
                f"Embedding dimension {len(vector)} does not match index dimension {self._dimension}",
                {"chunk_id": chunk_id}
            )
        row = {
            "id": chunk_id,
            "tenant_id": tenant_id,
            "source_id": source_id,
            "vector": vector,
        }
        try:
            await asyncio.to_thread(
                self._client.upsert,
                collection_name=self._collection_name,
                data=[row],
            )
        except Exception as e:
            raise VectorStoreException(f"Failed to store embedding: {str(e)}", {"chunk_id": chunk_id})

    async def delete_source(self, tenant_id: str, source_id: str) -> None:
        await self.initialize()
        expr = f"tenant_id == {_quote(tenant_id)} and source_id == {_quote(source_id)}"
        try:
            await asyncio.to_thread(
                self._client.delete,
                collection_name=self._collection_name,
                filter=expr,
            )
        except Exception as e:
            raise VectorStoreException(f"Failed to delete embeddings: {str(e)}", {"source_id": source_id})

    async def search(self, tenant_id: str, vector: List[float], top_k: int) -> List[VectorHit]:
        """
        Search for the nearest chunks of one tenant.

        Raises:
            VectorStoreException: If search fails
        """
        await self.initialize()
        try:
            results = await asyncio.to_thread(
                self._client.search,
                collection_name=self._collection_name,
                data=[vector],
                limit=top_k,
                filter=f"tenant_id == {_quote(tenant_id)}",
                output_fields=["source_id"],
                search_params={"metric_type": "COSINE"},
            )
        except Exception as e:
            raise VectorStoreException(f"Search failed: {str(e)}")

        hits: List[VectorHit] = []
        if results and len(results) > 0:
            for hit in results[0]:
                entity = hit.get("entity") or {}
                hits.append(VectorHit(
                    chunk_id=str(hit["id"]),
                    source_id=str(entity.get("source_id", "")),
                    similarity=float(hit["distance"]),
                ))
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits

    async def close(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)
            self._client = None
            self._initialized = False


__all__ = ["VectorHit", "IChunkVectorIndex", "MilvusChunkIndex"]
