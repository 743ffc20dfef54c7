"""
Context Selection Module.

Treat prompt context as a resource with a budget.

This module handles:
- Chunk normalization and near-duplicate removal
- Relevance, diversity (MMR) and pass-through ordering
- Longest-prefix selection against a countTokens oracle
- Context and prompt formatting with citable chunk ids

Usage:
    from context import PrefixBudgetSelector, TokenBudget, order_chunks

    ordered = order_chunks(chunks, "diverse_mmr")
    budget = TokenBudget(max_prompt_tokens=3000, reserve_output_tokens=512)
    selector = PrefixBudgetSelector(counter, budget.usable_prompt_tokens, model="gemini-2.0-flash")
    selection = selector.select(ordered, question, system_text)
"""

from .chunks import SALIENCE_SOURCE, ContextChunk, make_pinned_chunk
from .context_budgeting import (
    BUDGET_FLOOR_TOKENS,
    OracleFailurePolicy,
    PrefixBudgetSelector,
    PrefixSelection,
    TokenBudget,
    find_max_fitting_prefix,
)
from .context_builder import (
    ANSWER_RESPONSE_SCHEMA,
    DEFAULT_SYSTEM_PREAMBLE,
    AssembledPrompt,
    assemble_prompt,
    build_user_prompt,
    format_chunk_header,
    format_context_chunks,
)
from .dedupe import drop_near_duplicates, jaccard_overlap, tokenize_words
from .normalize import normalize_chunk, truncate_chunk_text
from .ordering import TrimStrategy, mmr_diverse_order, order_by_relevance, order_chunks

__all__ = [
    "ANSWER_RESPONSE_SCHEMA",
    "AssembledPrompt",
    "BUDGET_FLOOR_TOKENS",
    "ContextChunk",
    "DEFAULT_SYSTEM_PREAMBLE",
    "OracleFailurePolicy",
    "PrefixBudgetSelector",
    "PrefixSelection",
    "SALIENCE_SOURCE",
    "TokenBudget",
    "TrimStrategy",
    "assemble_prompt",
    "build_user_prompt",
    "drop_near_duplicates",
    "find_max_fitting_prefix",
    "format_chunk_header",
    "format_context_chunks",
    "jaccard_overlap",
    "make_pinned_chunk",
    "mmr_diverse_order",
    "normalize_chunk",
    "order_by_relevance",
    "order_chunks",
    "tokenize_words",
    "truncate_chunk_text",
]
