"""
Near-duplicate chunk removal.

Uses word-set Jaccard overlap, so two passages that differ only in
punctuation, case or a handful of words collapse to the first one seen.
"""

import logging
import re
from typing import Collection, Iterable, List, Tuple

from .chunks import ContextChunk

logger = logging.getLogger(__name__)

DEDUP_JACCARD_THRESHOLD = 0.9

_WORD_RE = re.compile(r"[a-z0-9]+")


def tokenize_words(text: str) -> List[str]:
    """Lowercase and extract alphanumeric runs."""
    return _WORD_RE.findall((text or "").lower())


def jaccard_overlap(a_tokens: Collection[str], b_tokens: Collection[str]) -> float:
    """
    Jaccard similarity of two token collections, treated as sets.

    Returns:
        |A ∩ B| / |A ∪ B|, or 0.0 if either side is empty
    """
    a = set(a_tokens)
    b = set(b_tokens)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def drop_near_duplicates(
    chunks: Iterable[ContextChunk],
    threshold: float = DEDUP_JACCARD_THRESHOLD,
) -> List[ContextChunk]:
    """
    Drop chunks that nearly duplicate an earlier chunk.

    A chunk is kept only if its highest overlap with every chunk kept so far
    is strictly below threshold. First occurrence wins.

    Args:
        chunks: Chunks in priority order
        threshold: Jaccard overlap at which a chunk counts as a duplicate

    Returns:
        Kept chunks, in input order
    """
    kept: List[Tuple[ContextChunk, frozenset]] = []
    dropped = 0

    for chunk in chunks:
        tokens = frozenset(tokenize_words(chunk.text))
        if any(jaccard_overlap(tokens, k_tokens) >= threshold for _, k_tokens in kept):
            dropped += 1
            continue
        kept.append((chunk, tokens))

    if dropped:
        logger.debug(f"Dropped {dropped} near-duplicate chunks")

    return [chunk for chunk, _ in kept]
