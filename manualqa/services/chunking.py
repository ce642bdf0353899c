"""
Chunking Service

Splits extracted document text into overlapping fixed-size word windows
suitable for embedding and retrieval.

Windows start every ``chunk_size - chunk_overlap`` words, each holding up
to ``chunk_size`` words, so consecutive windows share exactly
``chunk_overlap`` words (the last window may be shorter).
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: int = 300
DEFAULT_CHUNK_OVERLAP: int = 50


def _validate(chunk_size: int, chunk_overlap: int) -> None:
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise ValueError(f"chunk_overlap must not be negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise ValueError(
            f"chunk_overlap ({chunk_overlap}) must be less than "
            f"chunk_size ({chunk_size})"
        )


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """
    Split ``text`` into overlapping word windows.

    Returns:
        Ordered chunk strings, words joined by single spaces. Empty for
        text without any words.

    Raises:
        ValueError: If the size/overlap pair cannot make progress.
    """
    _validate(chunk_size, chunk_overlap)

    words = text.split()
    step = chunk_size - chunk_overlap
    chunks: list[str] = []
    for start in range(0, len(words), step):
        window = " ".join(words[start : start + chunk_size])
        if window.strip():
            chunks.append(window)
    return chunks


class WordChunker:
    """
    Configured word-window splitter.

    Usage::

        chunker = WordChunker()
        chunks = chunker.chunk(document_text)

    Args:
        chunk_size: Maximum words per chunk.
        chunk_overlap: Words shared between consecutive chunks.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        _validate(chunk_size, chunk_overlap)
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    @property
    def chunk_size(self) -> int:
        """Maximum words per chunk."""
        return self._chunk_size

    @property
    def chunk_overlap(self) -> int:
        """Words shared between consecutive chunks."""
        return self._chunk_overlap

    def chunk(self, text: str) -> list[str]:
        chunks = chunk_text(text, self._chunk_size, self._chunk_overlap)
        logger.info(
            "Split %d chars into %d chunks (size=%d, overlap=%d)",
            len(text),
            len(chunks),
            self._chunk_size,
            self._chunk_overlap,
        )
        return chunks
