#!/usr/bin/env python3
"""
Tests for the ingestion pipeline using an in-memory chunk store.
"""
import asyncio
import uuid
from unittest.mock import patch

import pytest

from studyrag.rag.embedder import EmbeddingBatcher
from studyrag.rag.errors import (
    DocumentTooLargeError,
    EmbeddingFormatError,
    EmptyTextError,
    ExtractionError,
    StorageError,
)
from studyrag.rag.ingest import Ingestor
from studyrag.rag.retry import RetryPolicy

PARAGRAPH = (
    "Photosynthesis converts light energy into chemical energy stored in glucose. "
    "Chlorophyll in the chloroplasts absorbs mostly red and blue light. "
    "The light reactions split water and release oxygen as a by-product. "
    "The Calvin cycle then fixes carbon dioxide into three-carbon sugars."
)


class MemoryStore:
    """Minimal stand-in for ChunkStore that keeps rows in a list."""

    def __init__(self, fail_on_insert: int = None):
        self.rows = []
        self.inserts = 0
        self.fail_on_insert = fail_on_insert

    async def insert(self, rows, ingest_id=None):
        self.inserts += 1
        if self.fail_on_insert == self.inserts:
            raise StorageError("constraint violation")
        for row in rows:
            self.rows.append((row, ingest_id))
        return len(rows)

    async def next_ordinal(self, doc_id):
        ordinals = [row.ordinal for row, _ in self.rows if row.doc_id == doc_id]
        return max(ordinals) + 1 if ordinals else 0

    async def delete_document(self, doc_id):
        before = len(self.rows)
        self.rows = [(row, run) for row, run in self.rows if row.doc_id != doc_id]
        return before - len(self.rows)

    async def delete_ingest(self, ingest_id):
        before = len(self.rows)
        self.rows = [(row, run) for row, run in self.rows if run != ingest_id]
        return before - len(self.rows)

    def texts(self, doc_id):
        return [row.text for row, _ in sorted(self.rows, key=lambda r: r[0].ordinal) if row.doc_id == doc_id]


class CountingService:
    def __init__(self, fail_on_call: int = None):
        self.calls = 0
        self.fail_on_call = fail_on_call

    async def embed(self, texts):
        self.calls += 1
        if self.fail_on_call == self.calls:
            return [{"not": "an embedding"} for _ in texts]
        return [[float(len(t)), 1.0, 0.5] for t in texts]


def _ingestor(store=None, service=None, **kwargs):
    batcher = EmbeddingBatcher(
        service or CountingService(),
        batch_size=kwargs.pop("batch_size", 20),
        concurrency=kwargs.pop("concurrency", 5),
        retry_policy=RetryPolicy(max_attempts=2, backoff=0),
    )
    return Ingestor(batcher, store or MemoryStore(), **kwargs)


def test_symbols_only_text_falls_back_to_single_chunk():
    store = MemoryStore()
    result = asyncio.run(_ingestor(store).ingest_text("  ... !!! ### !!! ...  ", doc_id="doc-1"))

    assert result.chunks_inserted == 1
    assert store.texts("doc-1") == ["... !!! ### !!! ..."]


@pytest.mark.parametrize("text", [
    "Hi.",
    "%%%% ---- %%%%",
    PARAGRAPH,
    "\n\n".join([PARAGRAPH] * 12),
    "1 2 3 4 5 6 7 8 9 " * 100,
])
def test_non_empty_text_always_stores_a_chunk(text):
    store = MemoryStore()
    result = asyncio.run(_ingestor(store).ingest_text(text))

    assert result.chunks_inserted >= 1
    assert len(store.rows) == result.chunks_inserted
    assert all(row.embedding for row, _ in store.rows)


def test_generated_doc_id():
    result = asyncio.run(_ingestor().ingest_text(PARAGRAPH))
    assert uuid.UUID(result.doc_id)
    assert result.to_dict() == {"docId": result.doc_id, "chunksInserted": 1}


def test_empty_text_is_rejected_before_embedding():
    service = CountingService()
    with pytest.raises(EmptyTextError):
        asyncio.run(_ingestor(service=service).ingest_text("  \n "))
    assert service.calls == 0


def test_oversized_document_is_rejected():
    ingestor = _ingestor(max_text_length=1000)
    with pytest.raises(DocumentTooLargeError):
        asyncio.run(ingestor.ingest_text("a" * 1001))


def test_45_chunks_are_inserted_in_three_batches_with_ordinals():
    store = MemoryStore()
    service = CountingService()
    ingestor = _ingestor(store, service)
    texts = [f"chunk {i} " + "x" * 100 for i in range(45)]

    with patch.object(ingestor, "prepare_chunks", return_value=texts):
        result = asyncio.run(ingestor.ingest_text("ignored", doc_id="doc-1"))

    assert result.chunks_inserted == 45
    assert service.calls == 3
    assert store.inserts == 3
    assert store.texts("doc-1") == texts
    assert sorted(row.ordinal for row, _ in store.rows) == list(range(45))


def test_failed_batch_leaves_earlier_batches_persisted():
    store = MemoryStore()
    ingestor = _ingestor(store, CountingService(fail_on_call=2), concurrency=1)
    texts = [f"chunk {i} " + "x" * 100 for i in range(45)]

    with patch.object(ingestor, "prepare_chunks", return_value=texts):
        with pytest.raises(EmbeddingFormatError):
            asyncio.run(ingestor.ingest_text("ignored", doc_id="doc-1"))

    assert len(store.rows) == 20


def test_rollback_on_failure_removes_partial_rows():
    store = MemoryStore(fail_on_insert=2)
    ingestor = _ingestor(store, concurrency=1, rollback_on_failure=True)
    texts = [f"chunk {i} " + "x" * 100 for i in range(45)]

    with patch.object(ingestor, "prepare_chunks", return_value=texts):
        with pytest.raises(StorageError):
            asyncio.run(ingestor.ingest_text("ignored", doc_id="doc-1"))

    assert store.rows == []


def test_failed_rollback_keeps_original_error():
    class BrokenRollbackStore(MemoryStore):
        async def delete_ingest(self, ingest_id):
            raise StorageError("rollback refused")

    store = BrokenRollbackStore()
    service = CountingService(fail_on_call=2)
    ingestor = _ingestor(store, service, concurrency=1, rollback_on_failure=True)
    texts = [f"chunk {i} " + "x" * 100 for i in range(45)]

    with patch.object(ingestor, "prepare_chunks", return_value=texts):
        with pytest.raises(EmbeddingFormatError):
            asyncio.run(ingestor.ingest_text("ignored", doc_id="doc-1"))

    assert len(store.rows) == 20


def test_reingesting_appends_with_continuing_ordinals():
    store = MemoryStore()
    ingestor = _ingestor(store)

    asyncio.run(ingestor.ingest_text(PARAGRAPH, doc_id="doc-1"))
    asyncio.run(ingestor.ingest_text(PARAGRAPH, doc_id="doc-1"))

    assert [row.ordinal for row, _ in store.rows] == [0, 1]


def test_replace_mode_drops_previous_rows():
    store = MemoryStore()
    ingestor = _ingestor(store, on_conflict="replace")

    asyncio.run(ingestor.ingest_text(PARAGRAPH, doc_id="doc-1"))
    asyncio.run(ingestor.ingest_text(PARAGRAPH.upper(), doc_id="doc-1"))

    assert store.texts("doc-1") == [PARAGRAPH.upper()]


def test_invalid_conflict_mode():
    with pytest.raises(ValueError):
        _ingestor(on_conflict="merge")


def test_extractor_failure_is_wrapped():
    async def broken_extractor():
        raise OSError("corrupt PDF")

    with pytest.raises(ExtractionError) as excinfo:
        asyncio.run(_ingestor().ingest_source(broken_extractor))
    assert isinstance(excinfo.value.__cause__, OSError)
    assert excinfo.value.stage == "extraction"


def test_extractor_output_is_ingested():
    store = MemoryStore()

    async def extractor():
        return PARAGRAPH

    result = asyncio.run(_ingestor(store).ingest_source(extractor, doc_id="doc-9"))
    assert result.chunks_inserted == 1
    assert store.texts("doc-9") == [PARAGRAPH]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
