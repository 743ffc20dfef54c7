"""
Prompt assembly.

Renders selected chunks into a stable, parseable context block. Chunk ids
stay visible in the headers so the model can cite them and downstream code
can map citations back to passages.

Layout per chunk:
[chunk-7] source=hr-kb uri=gs://corp/hr/benefits.pdf score=0.82
<text>
(meta: {"page":3})
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .chunks import ContextChunk

CHUNK_SEPARATOR = "\n\n---\n\n"

DEFAULT_SYSTEM_PREAMBLE = (
    "Answer using ONLY the provided context chunks. If the context is insufficient, "
    "reply with “I don’t know.” Keep answers concise and cite chunk IDs."
)

ANSWER_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "answer": {"type": "string"},
        "citations": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "chunk_id": {"type": "string"},
                    "source": {"type": "string"},
                    "uri": {"type": "string"},
                    "score": {"type": "number"},
                },
            },
        },
    },
    "required": ["answer"],
}


@dataclass(frozen=True)
class AssembledPrompt:
    """Prompt ready for the token counter or the answering model."""

    system_instruction: str
    user_prompt: str
    context: str
    chunk_ids: List[str]


def _compact_json(value: Mapping[str, Any]) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False, default=str)


def format_chunk_header(chunk: ContextChunk, index: int) -> str:
    """
    Format a chunk header line.

    Example:
    [chunk-1] source=intranet uri=https://intranet/policies score=0.91
    """
    parts = [f"[{chunk.id or f'chunk-{index + 1}'}]"]
    if chunk.source:
        parts.append(f"source={chunk.source}")
    if chunk.uri:
        parts.append(f"uri={chunk.uri}")
    if chunk.score is not None:
        parts.append(f"score={chunk.score}")
    return " ".join(parts)


def format_chunk(chunk: ContextChunk, index: int) -> str:
    body = chunk.text or ""
    meta = f"\n(meta: {_compact_json(dict(chunk.metadata))})" if chunk.metadata else ""
    return f"{format_chunk_header(chunk, index)}\n{body}{meta}"


def format_context_chunks(chunks: Sequence[ContextChunk]) -> str:
    """
    Render chunks into one context blob.

    Pure and deterministic: identical input gives byte-identical output,
    which the budget selector relies on when it re-renders prefixes.
    """
    return CHUNK_SEPARATOR.join(format_chunk(c, i) for i, c in enumerate(chunks))


def build_user_prompt(question: str, context: str) -> str:
    """Render the user turn: question first, then the context blob."""
    return f"Question:\n{question}\n\nContext:\n{context}"


def resolve_system_text(system_preamble: Optional[str]) -> str:
    preamble = (system_preamble or "").strip()
    return preamble or DEFAULT_SYSTEM_PREAMBLE


def assemble_prompt(
    question: str,
    chunks: Sequence[ContextChunk],
    system_preamble: Optional[str] = None,
) -> AssembledPrompt:
    """
    Assemble the final prompt.

    Args:
        question: User question
        chunks: Selected chunks, in order
        system_preamble: Guardrail text; defaults to DEFAULT_SYSTEM_PREAMBLE

    Returns:
        AssembledPrompt
    """
    blob = format_context_chunks(chunks)
    return AssembledPrompt(
        system_instruction=resolve_system_text(system_preamble),
        user_prompt=build_user_prompt(question, blob),
        context=blob,
        chunk_ids=[c.id for c in chunks],
    )
