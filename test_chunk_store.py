#!/usr/bin/env python3
"""
Tests for the Chroma-backed chunk store.
"""
import asyncio
import uuid
from unittest.mock import MagicMock

import pytest

from studyrag.rag.chunk_store import ChunkStore, get_or_create_collection
from studyrag.rag.errors import RetrievalTransportError, StorageError
from studyrag.rag.models import Chunk


def _query_result(rows):
    """Build a Chroma query() result from (id, text, doc_id, distance) tuples."""
    return {
        "ids": [[r[0] for r in rows]],
        "documents": [[r[1] for r in rows]],
        "metadatas": [[{"doc_id": r[2], "ordinal": i} for i, r in enumerate(rows)]],
        "distances": [[r[3] for r in rows]],
    }


def test_insert_writes_rows_with_metadata():
    collection = MagicMock()
    store = ChunkStore(collection)
    rows = [
        Chunk(id="c1", doc_id="doc-1", text="alpha", embedding=[0.1, 0.2], ordinal=0),
        Chunk(id="", doc_id="doc-1", text="beta", embedding=[0.3, 0.4], ordinal=1),
    ]

    count = asyncio.run(store.insert(rows, ingest_id="run-1"))

    assert count == 2
    kwargs = collection.add.call_args.kwargs
    assert kwargs["ids"][0] == "c1"
    assert kwargs["ids"][1]  # generated
    assert kwargs["documents"] == ["alpha", "beta"]
    assert kwargs["embeddings"] == [[0.1, 0.2], [0.3, 0.4]]
    assert kwargs["metadatas"] == [
        {"doc_id": "doc-1", "ordinal": 0, "ingest_id": "run-1"},
        {"doc_id": "doc-1", "ordinal": 1, "ingest_id": "run-1"},
    ]
    assert rows[1].id == kwargs["ids"][1]


def test_insert_rejects_rows_without_embedding():
    store = ChunkStore(MagicMock())
    with pytest.raises(StorageError):
        asyncio.run(store.insert([Chunk(id="c1", doc_id="doc-1", text="alpha")]))


def test_insert_failure_is_storage_error():
    collection = MagicMock()
    collection.add.side_effect = RuntimeError("disk full")
    store = ChunkStore(collection)

    with pytest.raises(StorageError, match="disk full"):
        asyncio.run(store.insert([Chunk(id="c1", doc_id="d", text="t", embedding=[1.0])]))


def test_search_scopes_filters_and_orders():
    collection = MagicMock()
    collection.query.return_value = _query_result([
        ("b", "second", "doc-1", 0.30),
        ("a", "first", "doc-1", 0.10),
        ("c", "weak", "doc-1", 0.95),
    ])
    store = ChunkStore(collection, match_threshold=0.2)

    hits = asyncio.run(store.search([0.1, 0.2], top_k=3, doc_filter="doc-1"))

    assert [h.id for h in hits] == ["a", "b"]
    assert hits[0].score == pytest.approx(0.9)
    kwargs = collection.query.call_args.kwargs
    assert kwargs["where"] == {"doc_id": "doc-1"}
    assert kwargs["n_results"] == 3


def test_global_search_has_no_where_clause():
    collection = MagicMock()
    collection.query.return_value = _query_result([])
    store = ChunkStore(collection)

    assert asyncio.run(store.search([0.1], top_k=5)) == []
    assert "where" not in collection.query.call_args.kwargs


def test_search_failure_is_retrieval_error():
    collection = MagicMock()
    collection.query.side_effect = ConnectionError("store unreachable")
    store = ChunkStore(collection)

    with pytest.raises(RetrievalTransportError):
        asyncio.run(store.search([0.1], top_k=5, doc_filter="doc-1"))


def test_fallback_first_returns_lowest_ordinal():
    collection = MagicMock()
    collection.get.return_value = {
        "ids": ["c3", "c1", "c2"],
        "documents": ["third", "first", "second"],
        "metadatas": [
            {"doc_id": "doc-1", "ordinal": 2},
            {"doc_id": "doc-1", "ordinal": 0},
            {"doc_id": "doc-1", "ordinal": 1},
        ],
    }
    store = ChunkStore(collection)

    chunk = asyncio.run(store.fallback_first("doc-1"))

    assert chunk.id == "c1"
    assert chunk.text == "first"
    assert collection.get.call_args.kwargs["where"] == {"doc_id": "doc-1"}


def test_fallback_first_of_unknown_document():
    collection = MagicMock()
    collection.get.return_value = {"ids": [], "documents": [], "metadatas": []}
    assert asyncio.run(ChunkStore(collection).fallback_first("missing")) is None


def test_next_ordinal_continues_after_existing_rows():
    collection = MagicMock()
    collection.get.return_value = {"ids": ["a", "b"], "metadatas": [{"ordinal": 4}, {"ordinal": 9}]}
    assert asyncio.run(ChunkStore(collection).next_ordinal("doc-1")) == 10

    collection.get.return_value = {"ids": [], "metadatas": []}
    assert asyncio.run(ChunkStore(collection).next_ordinal("doc-2")) == 0


def test_delete_document_removes_matching_ids():
    collection = MagicMock()
    collection.get.return_value = {"ids": ["a", "b"]}
    store = ChunkStore(collection)

    assert asyncio.run(store.delete_document("doc-1")) == 2
    collection.delete.assert_called_once_with(ids=["a", "b"])


def test_chroma_round_trip():
    chromadb = pytest.importorskip("chromadb")
    client = chromadb.EphemeralClient()
    collection = get_or_create_collection(client, f"test_{uuid.uuid4().hex[:12]}")
    store = ChunkStore(collection, match_threshold=0.5)

    async def run():
        await store.insert([
            Chunk(id="", doc_id="doc-a", text="cells", embedding=[1.0, 0.0, 0.0], ordinal=0),
            Chunk(id="", doc_id="doc-a", text="tissues", embedding=[0.0, 1.0, 0.0], ordinal=1),
            Chunk(id="", doc_id="doc-b", text="organs", embedding=[0.9, 0.1, 0.0], ordinal=0),
        ])
        scoped = await store.search([1.0, 0.0, 0.0], top_k=2, doc_filter="doc-a")
        everywhere = await store.search([1.0, 0.0, 0.0], top_k=3)
        first = await store.fallback_first("doc-a")
        return scoped, everywhere, first

    scoped, everywhere, first = asyncio.run(run())

    assert [h.text for h in scoped] == ["cells"]
    assert [h.text for h in everywhere] == ["cells", "organs"]
    assert first.text == "cells"
    assert asyncio.run(store.count("doc-a")) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
