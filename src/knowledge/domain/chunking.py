"""
Text Chunking
=============

Pure functions turning document text into ordered, overlapping segments.

Two modes:
- ``chunk_paragraphs``: paragraph-aware packing used by the indexing worker.
- ``chunk_sliding``: fixed window over the whole text, no paragraph awareness.

Both are deterministic and return an empty list for blank input.
"""

import re
from typing import List

PARAGRAPH_BREAK = re.compile(r"\n{2,}")

DEFAULT_PARAGRAPH_CHUNK_SIZE = 1200
DEFAULT_PARAGRAPH_OVERLAP = 200
DEFAULT_SLIDING_CHUNK_SIZE = 1200
DEFAULT_SLIDING_OVERLAP = 150


def _validate(chunk_size: int, overlap: int) -> None:
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    if overlap < 0:
        raise ValueError("overlap must not be negative")


def split_paragraphs(text: str) -> List[str]:
    """Blank-line delimited paragraphs, trimmed, empties dropped."""
    cleaned = (text or "").replace("\r", "")
    return [p.strip() for p in PARAGRAPH_BREAK.split(cleaned) if p.strip()]


def chunk_paragraphs(
    text: str,
    chunk_size: int = DEFAULT_PARAGRAPH_CHUNK_SIZE,
    overlap: int = DEFAULT_PARAGRAPH_OVERLAP,
) -> List[str]:
    """
    Pack paragraphs into chunks of at most ``chunk_size`` characters.

    Paragraphs are joined with a blank line while they fit. A paragraph
    that alone exceeds the limit is hard-sliced into ``chunk_size`` windows
    advancing by ``chunk_size - overlap``. When ``overlap`` is positive and
    more than one chunk results, each chunk after the first is prefixed
    with the last ``overlap`` characters of the previous chunk and a newline.

    Args:
        text: Raw document text
        chunk_size: Target maximum characters per chunk (before overlap)
        overlap: Characters carried over between adjacent chunks

    Returns:
        Ordered list of chunk strings
    """
    _validate(chunk_size, overlap)

    out: List[str] = []
    buf = ""

    for para in split_paragraphs(text):
        joined_len = (len(buf) + 2 if buf else 0) + len(para)
        if joined_len <= chunk_size:
            buf = f"{buf}\n\n{para}" if buf else para
            continue

        if buf:
            out.append(buf.strip())
            buf = ""

        if len(para) <= chunk_size:
            buf = para
            continue

        step = max(1, chunk_size - overlap)
        for start in range(0, len(para), step):
            out.append(para[start:start + chunk_size])

    if buf.strip():
        out.append(buf.strip())

    if overlap > 0 and len(out) > 1:
        with_overlap = [out[0]]
        for previous, current in zip(out, out[1:]):
            tail = previous[-overlap:]
            with_overlap.append(f"{tail}\n{current}" if tail else current)
        return with_overlap

    return out


def chunk_sliding(
    text: str,
    chunk_size: int = DEFAULT_SLIDING_CHUNK_SIZE,
    overlap: int = DEFAULT_SLIDING_OVERLAP,
) -> List[str]:
    """
    Slide a fixed window over the cleaned text.

    The window advances to ``end - overlap`` after each slice and stops once
    it reaches the end of the text. Slices are trimmed; blank ones dropped.
    """
    _validate(chunk_size, overlap)

    cleaned = (text or "").replace("\r\n", "\n").strip()
    if not cleaned:
        return []

    chunks: List[str] = []
    i = 0
    while i < len(cleaned):
        end = min(i + chunk_size, len(cleaned))
        piece = cleaned[i:end].strip()
        if piece:
            chunks.append(piece)
        if end >= len(cleaned):
            break
        # overlap >= chunk_size would never advance
        i = max(i + 1, end - overlap)

    return chunks
