"""
Pydantic schemas for API request/response models.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ContextChunkIn(BaseModel):
    """A retrieved chunk as supplied by the caller."""

    id: Optional[str] = Field(default=None, description="Chunk id; defaults to chunk-N")
    text: str = Field(..., description="Chunk text")
    source: Optional[str] = Field(default=None, description="Dataset, email, kb, ...")
    uri: Optional[str] = Field(default=None, description="Link to the source document")
    score: Optional[float] = Field(default=None, description="Retriever relevance score")
    metadata: Optional[Dict[str, Any]] = None


class SelectionOptions(BaseModel):
    """Per-request overrides of the configured selection settings."""

    trim_strategy: Optional[str] = Field(
        default=None,
        description="relevance_descending, diverse_mmr or pass_through "
        "(legacy: drop_low_score, truncate_chars)",
    )
    max_prompt_tokens: Optional[int] = Field(default=None, ge=1)
    reserve_output_tokens: Optional[int] = Field(default=None, ge=0)
    max_chunks: Optional[int] = Field(default=None, description="Clamped to 1..100")
    oracle_failure_policy: Optional[str] = Field(
        default=None, description="conservative, optimistic or retry_then_conservative"
    )


class ContextRequest(SelectionOptions):
    """Request model for context selection without generation."""

    question: str = Field(..., description="The user's question")
    context_chunks: List[ContextChunkIn] = Field(default_factory=list)
    model: Optional[str] = Field(default=None, description="Generation model")
    count_tokens_model: Optional[str] = Field(
        default=None, description="Model for countTokens (defaults to model)"
    )
    system_preamble: Optional[str] = None
    salience_text: Optional[str] = Field(
        default=None, description="Short span to prioritize, pinned ahead of the chunks"
    )
    salience_id: Optional[str] = Field(default=None, description='Citation id (default "salience")')
    salience_score: Optional[float] = Field(default=None, description="Pseudo-score (default 1.0)")


class AnswerRequest(ContextRequest):
    """Request model for grounded answering."""

    temperature: Optional[float] = Field(default=None, description="Default 0")


class SelectedChunkOut(BaseModel):
    id: str
    source: Optional[str] = None
    uri: Optional[str] = None
    score: Optional[float] = None


class ContextResponse(BaseModel):
    """Response model for context selection."""

    context: str
    system_instruction: str
    selected: List[SelectedChunkOut]
    budget_tokens: int
    count_tokens_calls: int
    count_tokens_failures: int
    used_pinned_fallback: bool


class CitationOut(BaseModel):
    chunk_id: Optional[str] = None
    source: Optional[str] = None
    uri: Optional[str] = None
    score: Optional[float] = None


class UsageOut(BaseModel):
    promptTokenCount: Optional[int] = None
    candidatesTokenCount: Optional[int] = None
    totalTokenCount: Optional[int] = None


class AnswerResponse(BaseModel):
    """Response model for grounded answering."""

    answer: str
    citations: List[CitationOut] = Field(default_factory=list)
    responseId: Optional[str] = None
    usage: UsageOut = Field(default_factory=UsageOut)
    selected_chunk_ids: List[str] = Field(default_factory=list)
    metrics: Optional[Dict[str, Any]] = None
    metrics_kv: Optional[List[Dict[str, str]]] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    oracle_provider: str
    breakers: Dict[str, Dict[str, Any]]
