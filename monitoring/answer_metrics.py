"""
Per-invocation answer metrics.

Tracks:
- Candidate pool size and score distribution
- Selection outcome (chunks kept, countTokens calls and failures)
- Generation usage (prompt/output/total tokens)
- Wall-clock duration
"""

import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from context.chunks import ContextChunk

from generation.base import UsageMetadata


@dataclass
class AnswerMetrics:
    """Metrics for a single answer invocation."""

    action: str
    ok: bool
    duration_ms: int
    namespace: Optional[str] = None
    model: Optional[str] = None
    retrieved_contexts: int = 0
    max_contexts_requested: Optional[int] = None
    retrieval_top_score: Optional[float] = None
    retrieval_avg_score: Optional[float] = None
    chunks_selected: int = 0
    budget_tokens: Optional[int] = None
    count_tokens_calls: int = 0
    count_tokens_failures: int = 0
    used_pinned_fallback: bool = False
    prompt_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    temperature: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_kv(self) -> List[Dict[str, str]]:
        """Flatten to [{"key", "value"}] pairs for sinks that only take strings."""
        return [
            {"key": k, "value": "" if v is None else str(v)}
            for k, v in self.to_dict().items()
        ]


def retrieval_stats(chunks: Sequence[ContextChunk]) -> Dict[str, Any]:
    """Pool size and score distribution of the candidates."""
    scores = [c.effective_score for c in chunks]
    return {
        "retrieved_contexts": len(chunks),
        "retrieval_top_score": max(scores) if scores else None,
        "retrieval_avg_score": (sum(scores) / len(scores)) if scores else None,
    }


def usage_stats(usage: Optional[UsageMetadata]) -> Dict[str, Optional[int]]:
    usage = usage or UsageMetadata()
    return {
        "prompt_tokens": usage.prompt_token_count,
        "output_tokens": usage.candidates_token_count,
        "total_tokens": usage.total_token_count,
    }


def elapsed_ms(started_at: float) -> int:
    """Milliseconds since a time.monotonic() reading."""
    return int((time.monotonic() - started_at) * 1000)
