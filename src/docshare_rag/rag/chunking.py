"""Sentence-based text chunking for the RAG pipeline."""

import re

SENTENCE_BOUNDARY = re.compile(r"[.!?]+")

# Overlap is measured in words, assuming roughly five characters per word
CHARS_PER_OVERLAP_WORD = 5


def split_sentences(text: str) -> list[str]:
    """Split text on runs of '.', '!' and '?', dropping empty pieces.

    The boundary punctuation is consumed by the split.
    """
    return [s.strip() for s in SENTENCE_BOUNDARY.split(text) if s.strip()]


def split_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[str]:
    """Greedily pack sentences into chunks of about ``chunk_size`` characters.

    When the next sentence would overflow the running chunk, the chunk is
    closed and the next one is seeded with the last ``overlap // 5`` words of
    the closed chunk. A sentence longer than ``chunk_size`` becomes a chunk on
    its own and is never truncated.

    Args:
        text: The extracted document text.
        chunk_size: Maximum characters per chunk before overlap is added.
        overlap: Approximate number of overlapping characters between chunks.

    Returns:
        Ordered list of non-empty chunk strings.
    """
    if overlap < 0:
        raise ValueError("overlap must be non-negative")
    if not text or not text.strip() or chunk_size <= 0:
        return []

    overlap_words = overlap // CHARS_PER_OVERLAP_WORD
    chunks = []
    current = ""

    for sentence in split_sentences(text):
        if len(current) + len(sentence) > chunk_size and current:
            chunks.append(current.strip())
            tail = current.split(" ")[-overlap_words:] if overlap_words else []
            current = " ".join(tail + [sentence])
        else:
            current = f"{current} {sentence}" if current else sentence

    if current.strip():
        chunks.append(current.strip())

    return chunks
