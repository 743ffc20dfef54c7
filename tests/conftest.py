"""
Shared fixtures for the context engine tests.

Provides fake oracles:
- FakeTokenCounter: derives a token total from how many chunks a prompt holds
- FakeGenerator: replays queued replies and records every request
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence, Union

import pytest

from context.chunks import ContextChunk
from context.context_builder import CHUNK_SEPARATOR
from deployment.circuit_breaker import reset_breakers
from generation.base import (
    GenerationRequest,
    GenerationResponse,
    TokenCountRequest,
    UsageMetadata,
)
from shared.config import SelectionConfig

# =============================================================================
# Helpers
# =============================================================================


def chunks_in_prompt(content: str) -> int:
    """Number of rendered chunks in a "Question: ... Context: ..." prompt."""
    _, _, context = content.partition("\n\nContext:\n")
    if not context:
        return 0
    return context.count(CHUNK_SEPARATOR) + 1


def make_chunks(n: int, source: Optional[str] = None, prefix: str = "c") -> List[ContextChunk]:
    """n chunks with distinct vocabularies and descending scores."""
    return [
        ContextChunk(
            id=f"{prefix}{i}",
            text=f"topic{i} detail{i} fact{i} note{i}",
            source=source,
            score=round(1.0 - i * 0.01, 4),
        )
        for i in range(n)
    ]


class FakeTokenCounter:
    """
    Token counter driven by the number of chunks in the prompt.

    fits_up_to: prompts with at most this many chunks report 100 tokens,
    larger prompts report 100_000. errors: exceptions raised on the
    matching call numbers (1-based).
    """

    def __init__(
        self,
        fits_up_to: Optional[int] = None,
        total: Optional[Callable[[TokenCountRequest], int]] = None,
        errors: Optional[dict] = None,
    ):
        self.fits_up_to = fits_up_to
        self.total = total
        self.errors = errors or {}
        self.requests: List[TokenCountRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def count_tokens(self, request: TokenCountRequest) -> int:
        self.requests.append(request)
        error = self.errors.get(self.calls)
        if error is not None:
            raise error
        if self.total is not None:
            return self.total(request)
        if self.fits_up_to is None:
            return 100
        return 100 if chunks_in_prompt(request.content) <= self.fits_up_to else 100_000


class FakeGenerator:
    """Replays queued replies (text or exception) and records requests."""

    def __init__(self, replies: Sequence[Union[str, Exception]] = ('{"answer": "ok"}',)):
        self.replies = list(replies)
        self.requests: List[GenerationRequest] = []

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return GenerationResponse(
            text=reply,
            model=request.model,
            usage=UsageMetadata(
                prompt_token_count=120, candidates_token_count=30, total_token_count=150
            ),
            response_id="resp-1",
        )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _fresh_breakers():
    reset_breakers()
    yield
    reset_breakers()


@pytest.fixture
def selection_config() -> SelectionConfig:
    return SelectionConfig(
        trim_strategy="relevance_descending",
        max_prompt_tokens=3000,
        reserve_output_tokens=512,
        max_chunks=20,
        oracle_failure_policy="conservative",
        oracle_retry_attempts=1,
    )


@pytest.fixture
def token_counter() -> FakeTokenCounter:
    return FakeTokenCounter()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()
