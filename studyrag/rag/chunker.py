"""
Chunker module for splitting extracted document text into overlapping chunks.

Text is split on blank lines into paragraphs, paragraphs into sentences, and
sentences are packed into chunks of at most ``target_size`` characters. Each new
chunk is seeded with the tail of the previous one so that context spanning a
boundary is present in both chunks.
"""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 800
DEFAULT_OVERLAP = 300

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
# Approximate sentence boundary: end punctuation followed by whitespace
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> List[str]:
    """Split text into paragraphs, then paragraphs into sentences.

    Args:
        text: Raw document text.

    Returns:
        Non-empty, stripped sentences in document order.
    """
    sentences = []
    for paragraph in _PARAGRAPH_BREAK.split(text):
        for sentence in _SENTENCE_BREAK.split(paragraph):
            sentence = sentence.strip()
            if sentence:
                sentences.append(sentence)
    return sentences


def chunk_text(
    text: str,
    target_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> List[str]:
    """Split text into overlapping chunks of roughly ``target_size`` characters.

    Sentences are never split. A sentence longer than ``target_size`` is emitted
    as its own oversized chunk. When the overlap tail plus the next sentence
    would not fit, the tail is shortened so the chunk stays within the target.

    Args:
        text: Document text to split.
        target_size: Maximum characters per chunk.
        overlap: Characters of the previous chunk carried into the next one.

    Returns:
        Ordered list of chunk strings; empty for blank input.

    Raises:
        ValueError: If target_size/overlap are out of range.
    """
    if target_size <= 0:
        raise ValueError(f"target_size must be positive, got {target_size}")
    if overlap < 0 or overlap >= target_size:
        raise ValueError(f"overlap must be in [0, target_size), got {overlap}")

    if not text or not text.strip():
        return []

    stripped = text.strip()
    if len(stripped) <= target_size:
        return [stripped]

    chunks: List[str] = []
    current = ""
    # True while `current` holds sentences no emitted chunk contains yet
    pending = False

    for sentence in split_sentences(text):
        if len(sentence) > target_size:
            # Oversized sentence stands alone; the following chunk overlaps it
            if pending:
                chunks.append(current)
            chunks.append(sentence)
            current = _tail(sentence, overlap)
            pending = False
            continue

        if not current:
            current = sentence
            pending = True
            continue

        if len(current) + 1 + len(sentence) <= target_size:
            current = f"{current} {sentence}"
            pending = True
            continue

        if pending:
            chunks.append(current)

        room = target_size - len(sentence) - 1
        tail = _tail(current, min(overlap, room))
        current = f"{tail} {sentence}" if tail else sentence
        pending = True

    if pending:
        chunks.append(current)

    logger.debug(
        f"[CHUNKER] Split {len(stripped):,} chars into {len(chunks)} chunks "
        f"(target={target_size}, overlap={overlap})"
    )
    return chunks


def _tail(text: str, size: int) -> str:
    if size <= 0:
        return ""
    return text[-size:].lstrip()
