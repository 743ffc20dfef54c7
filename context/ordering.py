"""
Candidate ordering strategies.

Strategies:
- relevance_descending: highest score first, id breaks ties
- diverse_mmr: greedy maximal-marginal-relevance with a per-source cap
- pass_through: keep the incoming order (truncation only)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from shared.errors import ContextValidationError

from .chunks import SALIENCE_SOURCE, ContextChunk
from .dedupe import jaccard_overlap, tokenize_words

logger = logging.getLogger(__name__)

MMR_ALPHA = 0.7
MMR_PER_SOURCE_CAP = 3


class TrimStrategy(str, Enum):
    RELEVANCE_DESCENDING = "relevance_descending"
    DIVERSE_MMR = "diverse_mmr"
    PASS_THROUGH = "pass_through"

    @classmethod
    def parse(cls, value) -> "TrimStrategy":
        """Resolve a strategy name, accepting the legacy connector names."""
        if isinstance(value, cls):
            return value
        name = str(value or "").strip().lower()
        if not name:
            return cls.RELEVANCE_DESCENDING
        name = _STRATEGY_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise ContextValidationError(f"Unknown trim strategy: {value!r}") from None


_STRATEGY_ALIASES = {
    "drop_low_score": TrimStrategy.RELEVANCE_DESCENDING.value,
    "truncate_chars": TrimStrategy.PASS_THROUGH.value,
}


def order_by_relevance(chunks: Sequence[ContextChunk]) -> List[ContextChunk]:
    """Sort by (-score, id)."""
    return sorted(chunks, key=lambda c: (-c.effective_score, c.id))


# -------------------------
# MMR
# -------------------------

Scored = Tuple[ContextChunk, FrozenSet[str]]


@dataclass(frozen=True)
class MMRState:
    """
    One snapshot of the greedy MMR loop.

    remaining: candidates not yet placed, with their token sets
    kept: placed candidates, in selection order
    per_source: how many kept chunks each source has contributed
    """

    remaining: Tuple[Scored, ...]
    kept: Tuple[Scored, ...] = ()
    per_source: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def start(cls, chunks: Sequence[ContextChunk]) -> "MMRState":
        return cls(remaining=tuple((c, frozenset(tokenize_words(c.text))) for c in chunks))

    @property
    def kept_chunks(self) -> List[ContextChunk]:
        return [c for c, _ in self.kept]


def _source_key(chunk: ContextChunk) -> str:
    return chunk.source or ""


def mmr_step(
    state: MMRState,
    alpha: float = MMR_ALPHA,
    per_source_cap: Optional[int] = MMR_PER_SOURCE_CAP,
    exempt_source: str = SALIENCE_SOURCE,
) -> Optional[MMRState]:
    """
    Pick the next chunk by adjusted score.

    adjusted = alpha * score - (1 - alpha) * max overlap with kept chunks.
    The first candidate with the highest adjusted score wins.

    Returns:
        The next state, or None when nothing eligible remains
    """
    best_index = None
    best_adjusted = float("-inf")

    for i, (cand, tokens) in enumerate(state.remaining):
        src = _source_key(cand)
        if (
            per_source_cap is not None
            and state.per_source.get(src, 0) >= per_source_cap
            and src != exempt_source
        ):
            continue

        overlap = max(
            (jaccard_overlap(tokens, k_tokens) for _, k_tokens in state.kept),
            default=0.0,
        )
        adjusted = alpha * cand.effective_score - (1.0 - alpha) * overlap
        if adjusted > best_adjusted:
            best_index = i
            best_adjusted = adjusted

    if best_index is None:
        return None

    picked = state.remaining[best_index]
    src = _source_key(picked[0])
    per_source: Dict[str, int] = dict(state.per_source)
    per_source[src] = per_source.get(src, 0) + 1

    return MMRState(
        remaining=state.remaining[:best_index] + state.remaining[best_index + 1:],
        kept=state.kept + (picked,),
        per_source=per_source,
    )


def mmr_diverse_order(
    chunks: Sequence[ContextChunk],
    alpha: float = MMR_ALPHA,
    per_source_cap: Optional[int] = MMR_PER_SOURCE_CAP,
    exempt_source: str = SALIENCE_SOURCE,
) -> List[ContextChunk]:
    """
    Diversity-aware ordering.

    Candidates from a source that already has per_source_cap kept chunks
    are left out of the result.

    Args:
        chunks: Candidates, usually pre-sorted by relevance
        alpha: Relevance weight (1 - alpha weighs redundancy)
        per_source_cap: Max chunks per source, None for no cap
        exempt_source: Source never subject to the cap

    Returns:
        Chunks in MMR order
    """
    state = MMRState.start(chunks)
    while state.remaining:
        next_state = mmr_step(state, alpha, per_source_cap, exempt_source)
        if next_state is None:
            break
        state = next_state

    if state.remaining:
        logger.debug(f"MMR source cap excluded {len(state.remaining)} chunks")

    return state.kept_chunks


def order_chunks(chunks: Sequence[ContextChunk], strategy) -> List[ContextChunk]:
    """Order candidates with the given strategy (name or TrimStrategy)."""
    strategy = TrimStrategy.parse(strategy)

    if strategy == TrimStrategy.DIVERSE_MMR:
        return mmr_diverse_order(order_by_relevance(chunks))
    if strategy == TrimStrategy.RELEVANCE_DESCENDING:
        return order_by_relevance(chunks)
    return list(chunks)
