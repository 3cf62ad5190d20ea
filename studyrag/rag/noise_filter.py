"""
Noise filter for chunks produced by the chunker.

Bad OCR, stripped HTML and symbol tables produce chunks that carry no
retrievable meaning. They are dropped before embedding. If every chunk of a
document is noisy, the whole trimmed text is kept as a single chunk so a
document is never ingested with zero rows.
"""

import logging
from typing import Iterable, List

logger = logging.getLogger(__name__)

MIN_CHUNK_LENGTH = 100
MIN_ALPHA_RATIO = 0.6


def is_noisy(
    chunk: str,
    min_length: int = MIN_CHUNK_LENGTH,
    min_alpha_ratio: float = MIN_ALPHA_RATIO,
) -> bool:
    """Return True if a chunk is unlikely to carry meaningful content."""
    if not chunk:
        return True
    trimmed = chunk.strip()
    if len(trimmed) < min_length:
        return True
    letters = sum(1 for ch in trimmed if ch.isalpha())
    if letters == 0:
        return True
    return letters / len(trimmed) < min_alpha_ratio


def filter_chunks(
    chunks: Iterable[str],
    original_text: str,
    min_length: int = MIN_CHUNK_LENGTH,
    min_alpha_ratio: float = MIN_ALPHA_RATIO,
) -> List[str]:
    """Drop noisy chunks, falling back to the whole text when none survive.

    Args:
        chunks: Chunk strings in document order.
        original_text: The full document text used for the fallback.
        min_length: Minimum trimmed length of a kept chunk.
        min_alpha_ratio: Minimum share of alphabetic characters.

    Returns:
        Kept chunks in order, or ``[original_text.strip()]`` if all were noisy.
        Empty only when the original text itself is blank.
    """
    chunks = [c for c in chunks if c and c.strip()]
    kept = [c for c in chunks if not is_noisy(c, min_length, min_alpha_ratio)]

    if len(kept) < len(chunks):
        logger.info(f"[NOISE_FILTER] Dropped {len(chunks) - len(kept)}/{len(chunks)} noisy chunks")

    if not kept and original_text and original_text.strip():
        logger.warning(
            "[NOISE_FILTER] All chunks filtered out as noise; "
            "falling back to the original text as one chunk"
        )
        kept = [original_text.strip()]

    return kept
