"""
Error taxonomy for the ingestion and retrieval pipeline.

Every error carries the pipeline stage that raised it so the HTTP layer can
report which step failed. Ingestion errors reject an upload; retrieval errors
reject a query rather than producing a degraded answer.
"""


class RagError(Exception):
    """Base class for all pipeline errors."""

    stage = "pipeline"

    def __init__(self, message: str, stage: str = None):
        super().__init__(message)
        if stage:
            self.stage = stage


class IngestionError(RagError):
    stage = "ingestion"


class ExtractionError(IngestionError):
    """The upstream text extractor failed; the original cause is chained."""

    stage = "extraction"


class EmptyTextError(IngestionError):
    stage = "validation"


class DocumentTooLargeError(IngestionError):
    stage = "validation"


class StorageError(IngestionError):
    """Writing chunk rows to the vector store failed."""

    stage = "storage"


class EmbeddingError(RagError):
    stage = "embedding"


class EmbeddingFormatError(EmbeddingError):
    """The embedding service returned a payload of unrecognized shape."""


class EmbeddingTransportError(EmbeddingError):
    """Timeout, network failure or non-2xx status from the embedding service."""


class RetrievalTransportError(RagError):
    """Vector store or language model unreachable at query time."""

    stage = "retrieval"
