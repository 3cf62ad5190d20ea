"""
Builds the pipeline objects from studyrag.config.

Clients are created once here and handed to the components that use them;
nothing in the rag package reaches for a global client on its own.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .. import config
from ..llm_client import ChatModel, get_openai_client
from .chunk_store import ChunkStore, get_chroma_client, get_or_create_collection
from .embedder import EmbeddingBatcher, HttpEmbeddingService, OpenAIEmbeddingService
from .ingest import Ingestor
from .retriever import Retriever
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class RagServices:
    batcher: EmbeddingBatcher
    store: ChunkStore
    ingestor: Ingestor
    retriever: Retriever
    http_client: Optional[httpx.AsyncClient] = None

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()


def build_embedding_service(http_client: Optional[httpx.AsyncClient] = None):
    if config.EMBEDDING_PROVIDER == "http":
        if not config.EMBEDDING_ENDPOINT:
            raise ValueError("EMBEDDING_ENDPOINT is required when EMBEDDING_PROVIDER=http")
        return HttpEmbeddingService(
            http_client or httpx.AsyncClient(),
            endpoint=config.EMBEDDING_ENDPOINT,
            model=config.EMBEDDING_MODEL,
            api_key=config.EMBEDDING_API_KEY,
            dimensions=config.EMBEDDING_DIMENSIONS,
        )
    if config.EMBEDDING_PROVIDER != "openai":
        raise ValueError(f"Unknown EMBEDDING_PROVIDER: {config.EMBEDDING_PROVIDER}")
    return OpenAIEmbeddingService(
        get_openai_client(config.EMBEDDING_API_KEY),
        model=config.EMBEDDING_MODEL,
        dimensions=config.EMBEDDING_DIMENSIONS,
    )


def build_services(collection=None) -> RagServices:
    """Wire batcher, store, ingestor and retriever from configuration.

    Args:
        collection: Optional pre-existing Chroma collection (defaults to the
                    persistent collection under CHROMA_PERSIST_DIR).
    """
    http_client = None
    if config.EMBEDDING_PROVIDER == "http":
        http_client = httpx.AsyncClient()

    batcher = EmbeddingBatcher(
        build_embedding_service(http_client),
        batch_size=config.EMBEDDING_BATCH_SIZE,
        concurrency=config.EMBEDDING_CONCURRENCY,
        timeout=config.EMBEDDING_TIMEOUT_SECONDS,
        retry_policy=RetryPolicy(
            max_attempts=config.EMBEDDING_MAX_ATTEMPTS,
            backoff=config.EMBEDDING_BACKOFF_SECONDS,
        ),
        dimensions=config.EMBEDDING_DIMENSIONS,
    )

    if collection is None:
        client = get_chroma_client(config.CHROMA_PERSIST_DIR)
        collection = get_or_create_collection(client, config.CHROMA_COLLECTION)
    store = ChunkStore(collection, match_threshold=config.MATCH_THRESHOLD)

    ingestor = Ingestor(
        batcher,
        store,
        max_text_length=config.MAX_TEXT_LENGTH,
        target_size=config.CHUNK_SIZE,
        overlap=config.CHUNK_OVERLAP,
        min_chunk_length=config.MIN_CHUNK_LENGTH,
        on_conflict=config.INGEST_ON_CONFLICT,
        rollback_on_failure=config.INGEST_ROLLBACK_ON_FAILURE,
    )

    llm = ChatModel(
        get_openai_client(config.CHAT_API_KEY, config.CHAT_BASE_URL),
        model=config.CHAT_MODEL,
        temperature=config.CHAT_TEMPERATURE,
        timeout=config.CHAT_TIMEOUT_SECONDS,
    )
    retriever = Retriever(batcher, store, llm, default_top_k=config.DEFAULT_TOP_K)

    logger.info(
        f"[FACTORY] Services ready: embeddings={config.EMBEDDING_PROVIDER}/{config.EMBEDDING_MODEL}, "
        f"chat={config.CHAT_MODEL}, collection={config.CHROMA_COLLECTION}"
    )
    return RagServices(batcher=batcher, store=store, ingestor=ingestor, retriever=retriever, http_client=http_client)
