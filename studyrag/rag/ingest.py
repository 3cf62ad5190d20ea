"""
Ingestion pipeline: text -> chunks -> noise filter -> embeddings -> chunk store.

Each embedded batch is written as soon as it is ready, inside the batcher's
concurrency slot. If a later batch fails, rows from earlier batches stay in
the store unless rollback_on_failure is set, in which case the rows of the
failed run are deleted before the error is raised.
"""

import logging
import uuid
from typing import Awaitable, Callable, List, Optional

from .chunk_store import ChunkStore
from .chunker import DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP, chunk_text
from .embedder import EmbeddingBatcher
from .errors import DocumentTooLargeError, EmptyTextError, ExtractionError, RagError
from .models import Chunk, IngestionResult
from .noise_filter import MIN_CHUNK_LENGTH, filter_chunks

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 500_000
ON_CONFLICT_MODES = ("append", "replace")

TextExtractor = Callable[[], Awaitable[str]]


class Ingestor:
    def __init__(
        self,
        batcher: EmbeddingBatcher,
        store: ChunkStore,
        max_text_length: int = MAX_TEXT_LENGTH,
        target_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
        min_chunk_length: int = MIN_CHUNK_LENGTH,
        on_conflict: str = "append",
        rollback_on_failure: bool = False,
    ):
        if on_conflict not in ON_CONFLICT_MODES:
            raise ValueError(f"on_conflict must be one of {ON_CONFLICT_MODES}, got {on_conflict!r}")
        self.batcher = batcher
        self.store = store
        self.max_text_length = max_text_length
        self.target_size = target_size
        self.overlap = overlap
        self.min_chunk_length = min_chunk_length
        self.on_conflict = on_conflict
        self.rollback_on_failure = rollback_on_failure

    def prepare_chunks(self, text: str) -> List[str]:
        """Validate the text and return the chunks that will be embedded."""
        if not text or not text.strip():
            raise EmptyTextError("No text to ingest")
        if len(text) > self.max_text_length:
            raise DocumentTooLargeError(
                f"Text too large. Max {self.max_text_length:,} characters allowed "
                f"(got {len(text):,})"
            )

        chunks = chunk_text(text, self.target_size, self.overlap)
        return filter_chunks(chunks, text, min_length=self.min_chunk_length)

    async def ingest_text(self, text: str, doc_id: Optional[str] = None) -> IngestionResult:
        """Chunk, embed and store a document's text.

        Args:
            text: Extracted document text.
            doc_id: Document identifier; a uuid4 is generated when omitted.

        Returns:
            IngestionResult with the docId and the number of rows written.

        Raises:
            EmptyTextError, DocumentTooLargeError: Before any work is done.
            EmbeddingError, StorageError: When a batch fails.
        """
        texts = self.prepare_chunks(text)
        doc_id = doc_id or str(uuid.uuid4())
        ingest_id = str(uuid.uuid4())

        if self.on_conflict == "replace":
            removed = await self.store.delete_document(doc_id)
            if removed:
                logger.info(f"[INGEST] Replacing doc {doc_id}: removed {removed} existing chunks")
            first_ordinal = 0
        else:
            first_ordinal = await self.store.next_ordinal(doc_id)

        logger.info(
            f"[INGEST] Ingesting doc {doc_id}: {len(text):,} chars -> {len(texts)} chunks "
            f"(ingest_id={ingest_id})"
        )

        inserted = 0
        batch_size = self.batcher.batch_size

        async def store_batch(index: int, batch: List[str], vectors: List[List[float]]) -> None:
            nonlocal inserted
            base = first_ordinal + index * batch_size
            rows = [
                Chunk(id=str(uuid.uuid4()), doc_id=doc_id, text=chunk, embedding=vector, ordinal=base + i)
                for i, (chunk, vector) in enumerate(zip(batch, vectors))
            ]
            inserted += await self.store.insert(rows, ingest_id=ingest_id)

        try:
            await self.batcher.map_batches(texts, on_batch=store_batch)
        except RagError as e:
            logger.error(f"[INGEST] Doc {doc_id} failed at {e.stage} after {inserted} chunks stored: {e}")
            if self.rollback_on_failure and inserted:
                try:
                    removed = await self.store.delete_ingest(ingest_id)
                    logger.warning(f"[INGEST] Rolled back {removed} chunks of failed ingest {ingest_id}")
                except RagError as rollback_error:
                    logger.error(
                        f"[INGEST] Rollback of ingest {ingest_id} failed, partial rows remain: {rollback_error}"
                    )
            raise

        logger.info(f"[INGEST] Doc {doc_id} complete: {inserted} chunks stored")
        return IngestionResult(doc_id=doc_id, chunks_inserted=inserted)

    async def ingest_source(self, extract: TextExtractor, doc_id: Optional[str] = None) -> IngestionResult:
        """Run a text extractor and ingest its output.

        Raises:
            ExtractionError: Wrapping whatever the extractor raised.
        """
        try:
            text = await extract()
        except Exception as e:
            raise ExtractionError(f"Failed to extract text: {e}") from e
        return await self.ingest_text(text, doc_id=doc_id)
