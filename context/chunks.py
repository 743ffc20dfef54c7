"""
Context chunk value objects.

A chunk is one retrieved passage handed to the engine by the upstream
retriever/ranker. Chunks are frozen; every transformation in this package
returns new chunks via dataclasses.replace.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

# Source tag reserved for the pinned (salience) passage
SALIENCE_SOURCE = "salience"
DEFAULT_SALIENCE_ID = "salience"


@dataclass(frozen=True)
class ContextChunk:
    """A single retrieved passage."""

    id: str
    text: str = ""
    source: Optional[str] = None
    uri: Optional[str] = None
    score: Optional[float] = None
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        # Read-only view over a private copy
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))

    @property
    def effective_score(self) -> float:
        """Score used for ordering; a missing score ranks as 0.0."""
        return float(self.score) if self.score is not None else 0.0

    @property
    def is_pinned(self) -> bool:
        return self.source == SALIENCE_SOURCE

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], index: int = 0) -> "ContextChunk":
        """
        Build a chunk from a loose mapping (retriever output, JSON body).

        Args:
            payload: Mapping with id/text/source/uri/score/metadata keys
            index: Position in the candidate list, used for a fallback id

        Returns:
            ContextChunk
        """
        score = payload.get("score")
        return cls(
            id=str(payload.get("id") or f"chunk-{index + 1}"),
            text=str(payload.get("text") or ""),
            source=payload.get("source") or None,
            uri=payload.get("uri") or None,
            score=float(score) if score is not None else None,
            metadata=dict(payload.get("metadata") or {}),
        )


def make_pinned_chunk(
    text: Optional[str],
    chunk_id: Optional[str] = None,
    score: Optional[float] = None,
) -> Optional[ContextChunk]:
    """
    Build the pinned salience chunk, or None when no usable text is given.

    Args:
        text: Salience span from a prior step
        chunk_id: Id shown in citations (default "salience")
        score: Pseudo-score (default 1.0)
    """
    stripped = (text or "").strip()
    if not stripped:
        return None
    return ContextChunk(
        id=chunk_id or DEFAULT_SALIENCE_ID,
        text=stripped,
        source=SALIENCE_SOURCE,
        score=1.0 if score is None else float(score),
    )
