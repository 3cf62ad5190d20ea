"""
ChromaDB persistent collection management for document chunks.

Stores one row per chunk (text, embedding, doc_id, ordinal) and runs
similarity search scoped to a document. Inserts are append-only: re-ingesting
a docId adds rows unless the caller deletes the document first.

Chroma's client is synchronous; every call is moved off the event loop with
asyncio.to_thread.
"""

import asyncio
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

from .errors import RetrievalTransportError, StorageError
from .models import Chunk, SearchHit

logger = logging.getLogger(__name__)

COLLECTION_NAME = "document_chunks"
DEFAULT_MATCH_THRESHOLD = 0.2


def get_chroma_client(persist_dir: str):
    """Get a persistent ChromaDB client.

    Args:
        persist_dir: Directory for persistent storage (created if missing).

    Returns:
        ChromaDB PersistentClient instance.
    """
    import chromadb

    os.makedirs(persist_dir, exist_ok=True)
    return chromadb.PersistentClient(path=persist_dir)


def get_or_create_collection(client, name: str = COLLECTION_NAME):
    """Get or create the chunk collection.

    Uses cosine distance so that ``1 - distance`` is the similarity score.
    """
    return client.get_or_create_collection(
        name=name,
        metadata={"hnsw:space": "cosine"},
    )


class ChunkStore:
    """Chunk persistence and similarity search over a Chroma collection."""

    def __init__(self, collection, match_threshold: float = DEFAULT_MATCH_THRESHOLD):
        self.collection = collection
        self.match_threshold = match_threshold

    async def insert(self, rows: List[Chunk], ingest_id: Optional[str] = None) -> int:
        """Append chunk rows.

        Args:
            rows: Chunks with their embeddings already computed.
            ingest_id: Optional tag for every row, used to undo one ingestion run.

        Returns:
            Number of rows written.

        Raises:
            StorageError: If a row is incomplete or the write fails.
        """
        if not rows:
            return 0

        for row in rows:
            if not row.doc_id:
                raise StorageError("Chunk row is missing doc_id")
            if not row.embedding:
                raise StorageError(f"Chunk row {row.id or '?'} has no embedding")

        ids = [row.id or str(uuid.uuid4()) for row in rows]
        metadatas = []
        for row in rows:
            metadata: Dict[str, Any] = {"doc_id": row.doc_id, "ordinal": row.ordinal}
            if ingest_id:
                metadata["ingest_id"] = ingest_id
            metadatas.append(metadata)

        try:
            await asyncio.to_thread(
                self.collection.add,
                ids=ids,
                embeddings=[list(row.embedding) for row in rows],
                documents=[row.text for row in rows],
                metadatas=metadatas,
            )
        except Exception as e:
            raise StorageError(f"Failed to insert {len(rows)} chunks: {e}") from e

        for row, row_id in zip(rows, ids):
            row.id = row_id

        logger.info(f"[CHUNK_STORE] Inserted {len(ids)} chunks for doc {rows[0].doc_id}")
        return len(ids)

    async def search(
        self,
        query_embedding: List[float],
        top_k: int,
        doc_filter: Optional[str] = None,
    ) -> List[SearchHit]:
        """Return up to ``top_k`` rows most similar to ``query_embedding``.

        Rows whose score falls below ``match_threshold`` are dropped. Results
        are ordered by descending score.

        Raises:
            RetrievalTransportError: If the store cannot be queried.
        """
        if top_k < 1:
            return []

        kwargs: Dict[str, Any] = {
            "query_embeddings": [list(query_embedding)],
            "n_results": top_k,
            "include": ["documents", "metadatas", "distances"],
        }
        if doc_filter:
            kwargs["where"] = {"doc_id": doc_filter}

        try:
            results = await asyncio.to_thread(self.collection.query, **kwargs)
        except Exception as e:
            raise RetrievalTransportError(f"Chunk search failed: {e}") from e

        hits = []
        if results and results.get("ids") and results["ids"][0]:
            for i, chunk_id in enumerate(results["ids"][0]):
                metadata = results["metadatas"][0][i] or {}
                score = 1.0 - float(results["distances"][0][i])
                if score < self.match_threshold:
                    continue
                hits.append(SearchHit(
                    id=chunk_id,
                    text=results["documents"][0][i] or "",
                    doc_id=metadata.get("doc_id", ""),
                    score=score,
                ))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        logger.info(
            f"[CHUNK_STORE] Search returned {len(hits)} chunks "
            f"(top_k={top_k}, doc_filter={doc_filter or 'global'})"
        )
        return hits

    async def fallback_first(self, doc_id: str) -> Optional[Chunk]:
        """Return the lowest-ordinal chunk of a document, or None if it has none."""
        chunks = await self.list_chunks(doc_id)
        return chunks[0] if chunks else None

    async def list_chunks(self, doc_id: str) -> List[Chunk]:
        """All chunks of a document ordered by ordinal."""
        try:
            results = await asyncio.to_thread(
                self.collection.get,
                where={"doc_id": doc_id},
                include=["documents", "metadatas"],
            )
        except Exception as e:
            raise RetrievalTransportError(f"Failed to read chunks for doc {doc_id}: {e}") from e

        chunks = []
        for i, chunk_id in enumerate(results.get("ids") or []):
            metadata = results["metadatas"][i] or {}
            chunks.append(Chunk(
                id=chunk_id,
                doc_id=metadata.get("doc_id", doc_id),
                text=results["documents"][i] or "",
                ordinal=int(metadata.get("ordinal", 0)),
            ))
        chunks.sort(key=lambda c: c.ordinal)
        return chunks

    async def next_ordinal(self, doc_id: str) -> int:
        """Ordinal to give the next chunk appended to ``doc_id``."""
        try:
            results = await asyncio.to_thread(
                self.collection.get,
                where={"doc_id": doc_id},
                include=["metadatas"],
            )
        except Exception as e:
            raise StorageError(f"Failed to read ordinals for doc {doc_id}: {e}") from e

        ordinals = [int((m or {}).get("ordinal", 0)) for m in results.get("metadatas") or []]
        return max(ordinals) + 1 if ordinals else 0

    async def count(self, doc_id: Optional[str] = None) -> int:
        if doc_id is None:
            return await asyncio.to_thread(self.collection.count)
        results = await asyncio.to_thread(self.collection.get, where={"doc_id": doc_id}, include=[])
        return len(results.get("ids") or [])

    async def delete_document(self, doc_id: str) -> int:
        """Delete every chunk of a document. Returns the number of rows removed."""
        return await self._delete_where({"doc_id": doc_id}, f"doc {doc_id}")

    async def delete_ingest(self, ingest_id: str) -> int:
        """Delete the rows written by one ingestion run."""
        return await self._delete_where({"ingest_id": ingest_id}, f"ingest run {ingest_id}")

    async def _delete_where(self, where: Dict[str, Any], label: str) -> int:
        try:
            results = await asyncio.to_thread(self.collection.get, where=where, include=[])
            ids = results.get("ids") or []
            if ids:
                await asyncio.to_thread(self.collection.delete, ids=ids)
        except Exception as e:
            raise StorageError(f"Failed to delete chunks of {label}: {e}") from e

        logger.info(f"[CHUNK_STORE] Deleted {len(ids)} chunks of {label}")
        return len(ids)
