"""
Retriever module: answer a question from stored document chunks.

Embeds the query, searches the chunk store (scoped to a document when one is
given), falls back to the document's first chunk when search finds nothing,
builds a grounded prompt and asks the language model. The chunks used are
returned with the answer so callers can show citations.
"""

import json
import logging
from typing import Any, List, Optional

from .chunk_store import ChunkStore
from .embedder import EmbeddingBatcher
from .errors import EmbeddingError, RetrievalTransportError
from .models import Chunk, Message, RetrievalResult
from .prompt import build_messages, build_rag_prompt

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 10


def normalize_doc_id(value: Any) -> Optional[str]:
    """Coerce a docId received from a client into a single string.

    Accepts a string, a list (first element wins), a JSON-encoded list such
    as ``'["abc"]'``, or None.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else None

    doc_id = str(value).strip()
    if doc_id.startswith("[") and doc_id.endswith("]"):
        try:
            parsed = json.loads(doc_id)
        except ValueError:
            return doc_id
        if isinstance(parsed, list):
            return str(parsed[0]) if parsed else None
    return doc_id or None


class Retriever:
    def __init__(self, batcher: EmbeddingBatcher, store: ChunkStore, llm, default_top_k: int = DEFAULT_TOP_K):
        self.batcher = batcher
        self.store = store
        self.llm = llm
        self.default_top_k = default_top_k

    async def find_chunks(self, query: str, top_k: int, doc_id: Optional[str] = None) -> List[Chunk]:
        """Embed the query and return the chunks to ground the answer on."""
        try:
            query_embedding = await self.batcher.embed_one(query)
        except EmbeddingError as e:
            raise RetrievalTransportError(f"Could not embed query: {e}", stage=e.stage) from e

        hits = await self.store.search(query_embedding, top_k, doc_filter=doc_id)
        chunks = [hit.to_chunk() for hit in hits if hit.text and hit.text.strip()]

        if not chunks and doc_id:
            fallback = await self.store.fallback_first(doc_id)
            if fallback is not None:
                logger.info(f"[RETRIEVER] Search empty for doc {doc_id}; using first chunk {fallback.id}")
                chunks = [fallback]

        return chunks[:top_k]

    async def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        doc_id: Optional[str] = None,
        history: Optional[List[Message]] = None,
        reference: Optional[str] = None,
        raw_chunks: Optional[List[str]] = None,
    ) -> RetrievalResult:
        """Answer ``query`` grounded on retrieved chunks.

        Args:
            query: The user's question.
            top_k: Maximum number of chunks to use.
            doc_id: Restrict retrieval to one document.
            history: Prior conversation messages, passed through unchanged.
            reference: Text the user highlighted, quoted in the prompt.
            raw_chunks: Caller-supplied context (e.g. the current web page);
                        skips embedding and search entirely.

        Returns:
            RetrievalResult with the answer and the chunks it was grounded on.

        Raises:
            ValueError: If the query is blank or top_k is below 1.
            RetrievalTransportError: If embedding, the store, or the model fails.
        """
        if not query or not query.strip():
            raise ValueError("Query must not be empty")
        if top_k is None:
            top_k = self.default_top_k
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")
        doc_id = normalize_doc_id(doc_id)

        if raw_chunks:
            chunks = [
                Chunk(id=f"raw-{i}", doc_id="", text=text)
                for i, text in enumerate(raw_chunks)
                if text and text.strip()
            ][:top_k]
        else:
            chunks = await self.find_chunks(query, top_k, doc_id)

        if not chunks:
            logger.warning(f"[RETRIEVER] No chunks retrieved for query: {query[:80]}")

        prompt = build_rag_prompt(query, chunks, reference)
        messages = build_messages(prompt, history)
        answer = await self.llm.complete(messages)

        logger.info(
            f"[RETRIEVER] Answered with {len(chunks)} chunks "
            f"(doc={doc_id or 'global'}) for query: {query[:80]}"
        )
        return RetrievalResult(answer=answer, chunks=chunks)
