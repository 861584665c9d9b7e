"""Shared pytest fixtures."""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from src.infrastructure.database import build_session_maker, create_tables
from src.knowledge.application import KnowledgeStore, RetrievalService
from src.knowledge.infrastructure import (
    SQLAlchemyChunkRepository,
    SQLAlchemyJobRepository,
    SQLAlchemySourceRepository,
)
from tests.fakes import FakeVectorIndex, KeywordEmbedder


@pytest.fixture
def session_factory(tmp_path):
    """File-based SQLite database with every table created.

    NullPool keeps connections from outliving the event loop of each
    ``asyncio.run`` call.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    asyncio.run(create_tables(engine))
    yield build_session_maker(engine)
    asyncio.run(engine.dispose())


@pytest.fixture
def sources(session_factory):
    return SQLAlchemySourceRepository(session_factory)


@pytest.fixture
def jobs(session_factory):
    return SQLAlchemyJobRepository(session_factory)


@pytest.fixture
def chunks(session_factory):
    return SQLAlchemyChunkRepository(session_factory)


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def vector_index():
    return FakeVectorIndex()


@pytest.fixture
def store(chunks, vector_index, embedder):
    return KnowledgeStore(chunks, vector_index, embedder)


@pytest.fixture
def retrieval(store):
    return RetrievalService(store)
