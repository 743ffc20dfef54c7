"""
Chunk text normalization.

Bounds every candidate's length before similarity and formatting work:
whitespace runs collapse to one space, the result is stripped and then
hard-truncated.
"""

import re
from dataclasses import replace
from typing import Iterable, List

from .chunks import ContextChunk

CHUNK_MAX_CHARS = 800

_WHITESPACE_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces and strip."""
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def truncate_chunk_text(text: str, max_chars: int = CHUNK_MAX_CHARS) -> str:
    """
    Normalize whitespace, then truncate to max_chars characters.

    Example:
        >>> truncate_chunk_text("  Payment   terms\\n\\napply ", max_chars=12)
        'Payment term'
    """
    collapsed = collapse_whitespace(text)
    return collapsed[:max_chars] if len(collapsed) > max_chars else collapsed


def normalize_chunk(chunk: ContextChunk, max_chars: int = CHUNK_MAX_CHARS) -> ContextChunk:
    """Return a new chunk with bounded, whitespace-normalized text."""
    return replace(chunk, text=truncate_chunk_text(chunk.text, max_chars))


def normalize_chunks(
    chunks: Iterable[ContextChunk], max_chars: int = CHUNK_MAX_CHARS
) -> List[ContextChunk]:
    return [normalize_chunk(c, max_chars) for c in chunks]
