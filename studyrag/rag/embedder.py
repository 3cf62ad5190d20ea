"""
Embedder module for converting chunk text into embedding vectors.

Texts are grouped into fixed-size batches and sent to the embedding service
through a bounded pool (at most ``concurrency`` batches in flight) so large
documents do not trip upstream rate limits. Every call is bounded by a timeout
and retried per a RetryPolicy on transport failures. Payloads are decoded by
embedding_response before any vector leaves this module.
"""

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from .embedding_response import normalize_embedding
from .errors import EmbeddingFormatError, EmbeddingTransportError
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_BATCH_SIZE = 20
DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRY_POLICY = RetryPolicy(max_attempts=2, backoff=0.5)

# Failures worth a second attempt: any HTTP or SDK-level error from the service
TRANSPORT_ERRORS = (
    openai.OpenAIError,
    httpx.HTTPError,
    ConnectionError,
)

BatchCallback = Callable[[int, List[str], List[List[float]]], Awaitable[Any]]


class OpenAIEmbeddingService:
    """Embedding service backed by the OpenAI embeddings endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str = EMBEDDING_MODEL, dimensions: Optional[int] = None):
        self.client = client
        self.model = model
        self.dimensions = dimensions

    async def embed(self, texts: List[str]) -> List[Any]:
        kwargs = {"model": self.model, "input": texts}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        response = await self.client.embeddings.create(**kwargs)

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(f"[EMBEDDER] {self.model}: {len(texts)} inputs, {usage.total_tokens} tokens")
        return list(response.data)


class HttpEmbeddingService:
    """Embedding service for self-hosted servers that accept ``{model, input}``.

    Servers answer with one of: ``{"data": [...]}``, ``{"embeddings": [...]}``,
    a single ``{"embedding": [...]}`` object, or a bare array. Each item is
    left undecoded; the batcher decodes it.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        model: str = EMBEDDING_MODEL,
        api_key: Optional[str] = None,
        dimensions: Optional[int] = None,
    ):
        self.client = client
        self.endpoint = endpoint
        self.model = model
        self.api_key = api_key
        self.dimensions = dimensions

    async def embed(self, texts: List[str]) -> List[Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = await self.client.post(
            self.endpoint,
            json={"model": self.model, "input": texts},
            headers=headers,
        )
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError as e:
            content_type = response.headers.get("content-type", "unknown")
            raise EmbeddingFormatError(
                f"Embedding response is not JSON (status {response.status_code}, {content_type})"
            ) from e
        return self._split_items(payload, len(texts))

    @staticmethod
    def _split_items(payload: Any, expected: int) -> List[Any]:
        if isinstance(payload, dict):
            for key in ("data", "embeddings"):
                if isinstance(payload.get(key), list):
                    return payload[key]
            # A single keyed object answers a single input
            return [payload]
        if isinstance(payload, list):
            if expected == 1 and payload and not isinstance(payload[0], (list, dict)):
                return [payload]
            return payload
        raise EmbeddingFormatError(f"Unexpected embedding response body: {type(payload).__name__}")


class EmbeddingBatcher:
    """Bounded-concurrency, retrying front end to an embedding service."""

    def __init__(
        self,
        service,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        dimensions: Optional[int] = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.service = service
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.timeout = timeout
        self.retry_policy = retry_policy
        self.dimensions = dimensions or getattr(service, "dimensions", None)

    def make_batches(self, texts: List[str]) -> List[List[str]]:
        """Split texts into ``ceil(len(texts) / batch_size)`` contiguous batches."""
        return [texts[i:i + self.batch_size] for i in range(0, len(texts), self.batch_size)]

    async def embed_one(self, text: str) -> List[float]:
        """Embed a single query string."""
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        vectors = await self._embed_with_retry([text], operation="query embedding")
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed texts, returning vectors in the same order as the input."""
        return await self.map_batches(texts)

    async def map_batches(
        self,
        texts: List[str],
        on_batch: Optional[BatchCallback] = None,
    ) -> List[List[float]]:
        """Embed all texts batch by batch with at most ``concurrency`` in flight.

        ``on_batch(index, batch_texts, vectors)`` is awaited inside the batch's
        concurrency slot, right after that batch is embedded. After the first
        failure no further batch starts; batches already running finish, then
        the first error is raised.

        Returns:
            All vectors, flattened in input order.
        """
        if not texts:
            return []

        batches = self.make_batches(texts)
        total = len(batches)
        semaphore = asyncio.Semaphore(self.concurrency)
        results: List[List[List[float]]] = [[] for _ in batches]
        failures: List[BaseException] = []

        logger.info(
            f"[EMBEDDER] Embedding {len(texts)} texts in {total} batches "
            f"(batch_size={self.batch_size}, concurrency={self.concurrency})"
        )

        async def run(index: int, batch: List[str]) -> None:
            async with semaphore:
                if failures:
                    logger.info(f"[EMBEDDER] Skipping batch {index + 1}/{total} after earlier failure")
                    return
                try:
                    logger.info(f"[EMBEDDER] Processing batch {index + 1}/{total} ({len(batch)} texts)")
                    vectors = await self._embed_with_retry(batch, operation=f"batch {index + 1}/{total}")
                    if on_batch is not None:
                        await on_batch(index, batch, vectors)
                    results[index] = vectors
                except Exception as e:
                    logger.error(f"[EMBEDDER] Batch {index + 1}/{total} failed: {e}")
                    failures.append(e)

        await asyncio.gather(*(run(i, batch) for i, batch in enumerate(batches)))

        if failures:
            raise failures[0]

        return [vector for batch_vectors in results for vector in batch_vectors]

    async def _embed_with_retry(self, texts: List[str], operation: str) -> List[List[float]]:
        return await call_with_retry(
            lambda: self._embed_once(texts),
            self.retry_policy,
            retry_on=(EmbeddingTransportError,),
            operation=f"embedding {operation}",
        )

    async def _embed_once(self, texts: List[str]) -> List[List[float]]:
        try:
            raw_items = await asyncio.wait_for(self.service.embed(texts), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingTransportError(f"Embedding request timed out after {self.timeout}s") from e
        except TRANSPORT_ERRORS as e:
            raise EmbeddingTransportError(f"Embedding request failed: {e}") from e

        if raw_items is None or len(raw_items) != len(texts):
            got = "none" if raw_items is None else len(raw_items)
            raise EmbeddingFormatError(f"Embedding service returned {got} vectors for {len(texts)} inputs")

        vectors = [normalize_embedding(item) for item in raw_items]
        for vector in vectors:
            self._check_dimensions(vector)
        return vectors

    def _check_dimensions(self, vector: List[float]) -> None:
        if self.dimensions is None:
            # First vector seen fixes the dimension for every later comparison
            self.dimensions = len(vector)
            logger.info(f"[EMBEDDER] Embedding dimension fixed at {self.dimensions}")
        elif len(vector) != self.dimensions:
            raise EmbeddingFormatError(
                f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
            )
