"""Tests for chunk replacement and similarity search."""

import asyncio

import pytest

from src.knowledge.application import KnowledgeStore, RetrievalService, clamp_top_k
from src.knowledge.domain import ChunkInput
from tests.fakes import KeywordEmbedder


def make_source(sources, tenant_id="t1", filename="faq.txt"):
    return asyncio.run(sources.create(tenant_id, filename, "text/plain", 10))


def inputs(*contents):
    return [ChunkInput(content=c, ordinal=i) for i, c in enumerate(contents)]


# --- replace_chunks ---

def test_replace_chunks_embeds_and_indexes_every_chunk(sources, chunks, store, vector_index):
    source = make_source(sources)
    progress = []

    async def on_progress(fraction):
        progress.append(fraction)

    result = asyncio.run(store.replace_chunks(
        "t1", source.id, inputs("reset your password", "refund policy"), on_progress
    ))

    assert (result.inserted, result.embedded) == (2, 2)
    assert progress == [0.5, 1.0]
    rows = asyncio.run(chunks.list_for_source("t1", source.id))
    assert [r.ordinal for r in rows] == [0, 1]
    assert all(r.embedded for r in rows)
    assert set(vector_index.vectors) == {r.id for r in rows}


def test_replace_chunks_twice_leaves_only_latest_set(sources, chunks, store, vector_index):
    source = make_source(sources)

    async def scenario():
        await store.replace_chunks("t1", source.id, inputs("old one", "old two", "old three"))
        await store.replace_chunks("t1", source.id, inputs("new login help"))
        return await chunks.list_for_source("t1", source.id)

    rows = asyncio.run(scenario())
    assert [r.content for r in rows] == ["new login help"]
    assert set(vector_index.vectors) == {rows[0].id}


def test_empty_vector_leaves_chunk_unembedded(sources, chunks, vector_index):
    class SilentEmbedder(KeywordEmbedder):
        async def embed(self, text, usage=None):
            return []

    store = KnowledgeStore(chunks, vector_index, SilentEmbedder())
    source = make_source(sources)

    result = asyncio.run(store.replace_chunks("t1", source.id, inputs("anything")))

    assert (result.inserted, result.embedded) == (1, 0)
    assert vector_index.vectors == {}


def test_embedding_error_propagates(sources, chunks, vector_index):
    store = KnowledgeStore(chunks, vector_index, KeywordEmbedder(fail_on="broken"))
    source = make_source(sources)

    with pytest.raises(RuntimeError):
        asyncio.run(store.replace_chunks("t1", source.id, inputs("fine", "broken chunk")))


# --- query ---

def test_query_orders_by_similarity_and_joins_source(sources, store):
    source = make_source(sources, filename="login.md")
    asyncio.run(store.replace_chunks("t1", source.id, inputs(
        "refund invoice refund",
        "login password reset login",
    )))

    hits = asyncio.run(store.query("t1", "forgot my login password", top_k=2))

    assert [h.ordinal for h in hits] == [1, 0]
    assert hits[0].filename == "login.md"
    assert hits[0].similarity >= hits[1].similarity


def test_query_is_tenant_isolated(sources, store):
    mine = make_source(sources, tenant_id="t1")
    theirs = make_source(sources, tenant_id="t2")

    async def scenario():
        await store.replace_chunks("t1", mine.id, inputs("login help"))
        await store.replace_chunks("t2", theirs.id, inputs("login help for t2"))
        return await store.query("t1", "login", top_k=5)

    hits = asyncio.run(scenario())
    assert [h.source_id for h in hits] == [mine.id]


def test_blank_query_skips_index(store, vector_index):
    assert asyncio.run(store.query("t1", "   ", top_k=5)) == []
    assert vector_index.search_calls == 0


def test_orphan_vectors_are_skipped(sources, store, vector_index):
    source = make_source(sources)
    asyncio.run(store.replace_chunks("t1", source.id, inputs("login help")))
    vector_index.vectors["00000000-0000-0000-0000-000000000000"] = ("t1", source.id, [1.0, 1, 1, 1, 1, 1, 1])

    hits = asyncio.run(store.query("t1", "login", top_k=5))

    assert len(hits) == 1
    assert hits[0].content == "login help"


# --- retrieval ---

@pytest.mark.parametrize("requested,expected", [(None, 5), (0, 1), (-3, 1), (7, 7), (500, 20)])
def test_clamp_top_k(requested, expected):
    assert clamp_top_k(requested) == expected


def test_retrieval_bills_query_embedding(sources, store, embedder):
    source = make_source(sources)
    asyncio.run(store.replace_chunks("t1", source.id, inputs("login help")))
    retrieval = RetrievalService(store)

    asyncio.run(retrieval.query("t1", "login", user_id="u1"))

    text, usage = embedder.calls[-1]
    assert text == "login"
    assert (usage.tenant_id, usage.user_id, usage.mode) == ("t1", "u1", "query")
