"""
Grounded answering.

Usage:
    from answering import GroundedAnswerPipeline

    pipeline = GroundedAnswerPipeline(counter, generator)
    result = pipeline.answer(question, chunks, model="gemini-2.0-flash")
"""

from .answer_pipeline import (
    AnswerResult,
    Citation,
    ContextSelection,
    GroundedAnswerPipeline,
    parse_answer_payload,
    split_pinned,
)

__all__ = [
    "AnswerResult",
    "Citation",
    "ContextSelection",
    "GroundedAnswerPipeline",
    "parse_answer_payload",
    "split_pinned",
]
