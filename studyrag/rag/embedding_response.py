"""
Decoding of embedding service payloads.

Embedding backends disagree on response shape. Each payload is decoded once,
at the service boundary, into one of three variants, and every variant
exposes the same flat ``vector``:

    FlatEmbedding     [0.1, 0.2, ...]
    NestedEmbedding   [[0.1, 0.2, ...], ...]      (first row is used)
    KeyedEmbedding    {"embedding": [0.1, 0.2, ...]}
"""

from dataclasses import dataclass
from numbers import Real
from typing import Any, List, Mapping, Sequence, Tuple, Union

from .errors import EmbeddingFormatError


@dataclass(frozen=True)
class FlatEmbedding:
    vector: Tuple[float, ...]


@dataclass(frozen=True)
class NestedEmbedding:
    vector: Tuple[float, ...]


@dataclass(frozen=True)
class KeyedEmbedding:
    vector: Tuple[float, ...]


EmbeddingResponse = Union[FlatEmbedding, NestedEmbedding, KeyedEmbedding]


def _is_number(value: Any) -> bool:
    # bool is a subclass of int but never a valid embedding component
    return isinstance(value, Real) and not isinstance(value, bool)


def _as_vector(values: Any) -> Tuple[float, ...]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise EmbeddingFormatError(f"Expected a numeric array, got {type(values).__name__}")
    if not values:
        raise EmbeddingFormatError("Embedding vector is empty")
    if not all(_is_number(v) for v in values):
        raise EmbeddingFormatError("Embedding vector contains non-numeric values")
    return tuple(float(v) for v in values)


def decode_embedding(raw: Any) -> EmbeddingResponse:
    """Decide which documented shape ``raw`` has and decode it.

    Raises:
        EmbeddingFormatError: If ``raw`` matches none of the shapes.
    """
    if isinstance(raw, list):
        if raw and isinstance(raw[0], list):
            return NestedEmbedding(_as_vector(raw[0]))
        if raw and _is_number(raw[0]):
            return FlatEmbedding(_as_vector(raw))
        raise EmbeddingFormatError("Unexpected embedding format: empty or non-numeric array")

    if isinstance(raw, Mapping):
        if "embedding" not in raw:
            raise EmbeddingFormatError(
                f"Unexpected embedding format: object without 'embedding' (keys: {sorted(raw)[:5]})"
            )
        return KeyedEmbedding(_as_vector(raw["embedding"]))

    # SDK response items (e.g. openai.types.Embedding) expose the vector as an attribute
    embedding = getattr(raw, "embedding", None)
    if embedding is not None:
        return KeyedEmbedding(_as_vector(embedding))

    raise EmbeddingFormatError(f"Unexpected embedding format: {type(raw).__name__}")


def normalize_embedding(raw: Any) -> List[float]:
    """Decode ``raw`` and return its flat vector."""
    return list(decode_embedding(raw).vector)
