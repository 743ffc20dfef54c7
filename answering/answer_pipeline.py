"""
Grounded answer pipeline.

Pipeline:
    candidates (+ pinned) -> cap -> normalize -> order -> dedupe
        -> recombine with pinned -> budget-select -> assemble
        -> pinned fallback -> generate -> parse answer

Each invocation owns its pool, budget and countTokens call sequence;
nothing is carried over between calls.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from context.chunks import SALIENCE_SOURCE, ContextChunk
from context.context_budgeting import PrefixBudgetSelector, TokenBudget
from context.context_builder import ANSWER_RESPONSE_SCHEMA, assemble_prompt, resolve_system_text
from context.dedupe import DEDUP_JACCARD_THRESHOLD, drop_near_duplicates
from context.normalize import CHUNK_MAX_CHARS, normalize_chunks
from context.ordering import TrimStrategy, order_chunks
from generation.base import (
    GenerationConfig,
    GenerationRequest,
    GenerationResponse,
    Generator,
    TokenCounter,
    UsageMetadata,
)
from monitoring.answer_metrics import AnswerMetrics, elapsed_ms, retrieval_stats, usage_stats
from shared.config import SelectionConfig
from shared.errors import CircuitOpenError, ContextValidationError, GenerationError

logger = logging.getLogger(__name__)

PINNED_FALLBACK_MAX_CHARS = 4000
MAX_CHUNKS_RANGE = (1, 100)


@dataclass
class ContextSelection:
    """Outcome of context selection: the prompt plus how it was built."""

    question: str
    system_instruction: str
    context: str
    user_prompt: str
    chunks: List[ContextChunk]
    candidates: List[ContextChunk]
    pinned: Optional[ContextChunk]
    strategy: TrimStrategy
    budget_tokens: int
    oracle_calls: int = 0
    oracle_failures: int = 0
    used_pinned_fallback: bool = False

    @property
    def chunk_ids(self) -> List[str]:
        return [c.id for c in self.chunks]


@dataclass
class Citation:
    chunk_id: Optional[str] = None
    source: Optional[str] = None
    uri: Optional[str] = None
    score: Optional[float] = None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Citation":
        score = payload.get("score")
        try:
            score = float(score) if score is not None else None
        except (TypeError, ValueError):
            score = None
        return cls(
            chunk_id=_opt_str(payload.get("chunk_id")),
            source=_opt_str(payload.get("source")),
            uri=_opt_str(payload.get("uri")),
            score=score,
        )


@dataclass
class AnswerResult:
    answer: str
    citations: List[Citation]
    model: str
    selection: ContextSelection
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    response_id: Optional[str] = None
    metrics: Optional[AnswerMetrics] = None


def _opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def clamp_max_chunks(value: Optional[int]) -> int:
    lo, hi = MAX_CHUNKS_RANGE
    if value is None:
        return 20
    return max(lo, min(int(value), hi))


def split_pinned(
    candidates: Sequence[ContextChunk],
    pinned: Optional[ContextChunk] = None,
) -> Tuple[Optional[ContextChunk], List[ContextChunk]]:
    """
    Carve the pinned chunk out of the candidates.

    An explicit pinned chunk wins; otherwise the first candidate is pinned
    when it is tagged with the salience source. Blank pinned text counts as
    no pinned chunk.
    """
    rest = list(candidates)
    if pinned is None and rest and rest[0].is_pinned:
        pinned = rest.pop(0)
    if pinned is not None and not (pinned.text or "").strip():
        pinned = None
    return pinned, rest


def _embedded_json(text: str) -> Optional[str]:
    match = re.search(r"\{[\s\S]*\}", text)
    return match.group() if match else None


def parse_answer_payload(text: str) -> Dict[str, Any]:
    """
    Parse the model's JSON answer, tolerating prose around the object.

    Returns:
        The parsed object, or {"answer": text} when no object can be read
    """
    stripped = (text or "").strip()
    for candidate in (stripped, _embedded_json(stripped)):
        if not candidate:
            continue
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict):
            return payload
    return {"answer": text}


class GroundedAnswerPipeline:
    """
    Selects budget-fitting context and asks the generator for a grounded answer.

    Usage:
        pipeline = GroundedAnswerPipeline(counter, generator, SelectionConfig())
        result = pipeline.answer(question, chunks, model="gemini-2.0-flash")
    """

    def __init__(
        self,
        token_counter: TokenCounter,
        generator: Generator,
        config: Optional[SelectionConfig] = None,
        default_model: Optional[str] = None,
        count_tokens_model: Optional[str] = None,
        emit_metrics: bool = True,
        metrics_namespace: Optional[str] = None,
    ):
        """
        Args:
            token_counter: countTokens oracle
            generator: Answering oracle
            config: Selection settings (strategy, budget, caps, failure policy)
            default_model: Generation model when a call names none
            count_tokens_model: Model for countTokens (defaults to the generation model)
            emit_metrics: Attach AnswerMetrics to results
            metrics_namespace: Tag for partitioning metrics
        """
        self.token_counter = token_counter
        self.generator = generator
        self.config = config or SelectionConfig()
        self.default_model = default_model
        self.count_tokens_model = count_tokens_model
        self.emit_metrics = emit_metrics
        self.metrics_namespace = metrics_namespace

    def with_config(self, **overrides) -> "GroundedAnswerPipeline":
        """Copy of this pipeline with some selection settings replaced."""
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return GroundedAnswerPipeline(
            self.token_counter,
            self.generator,
            replace(self.config, **overrides),
            default_model=self.default_model,
            count_tokens_model=self.count_tokens_model,
            emit_metrics=self.emit_metrics,
            metrics_namespace=self.metrics_namespace,
        )

    @property
    def budget(self) -> TokenBudget:
        return TokenBudget(
            max_prompt_tokens=self.config.max_prompt_tokens,
            reserve_output_tokens=self.config.reserve_output_tokens,
        )

    def _resolve_model(self, model: Optional[str]) -> str:
        resolved = (model or self.default_model or "").strip()
        if not resolved:
            raise ContextValidationError("A generation model is required")
        return resolved

    def select_context(
        self,
        question: str,
        candidates: Sequence[ContextChunk],
        pinned: Optional[ContextChunk] = None,
        system_preamble: Optional[str] = None,
        model: Optional[str] = None,
        count_tokens_model: Optional[str] = None,
    ) -> ContextSelection:
        """
        Choose the chunks for the prompt.

        Args:
            question: User question
            candidates: Scored chunks from the retriever, in retriever order
            pinned: Optional salience chunk (see context.chunks.make_pinned_chunk)
            system_preamble: Guardrail text for the model
            model: Generation model, used for countTokens unless overridden
            count_tokens_model: Model to count tokens with

        Returns:
            ContextSelection

        Raises:
            ContextValidationError: Blank question, or nothing to ground on
        """
        if not (question or "").strip():
            raise ContextValidationError("question must be a non-empty string")

        pinned, rest = split_pinned(candidates, pinned)
        if not rest and pinned is None:
            raise ContextValidationError(
                "context_chunks must be non-empty unless a salience passage is supplied"
            )

        strategy = TrimStrategy.parse(self.config.trim_strategy)
        capped = rest[: clamp_max_chunks(self.config.max_chunks)]
        normalized = normalize_chunks(capped, CHUNK_MAX_CHARS)
        ordered = drop_near_duplicates(order_chunks(normalized, strategy), DEDUP_JACCARD_THRESHOLD)
        pool = ([pinned] if pinned is not None else []) + ordered

        system_text = resolve_system_text(system_preamble)
        budget_tokens = self.budget.usable_prompt_tokens
        selected: List[ContextChunk] = []
        oracle_calls = oracle_failures = 0

        # A pinned-only pool goes straight to the fallback below
        if ordered:
            counting_model = (
                count_tokens_model
                or self.count_tokens_model
                or self._resolve_model(model)
            )
            selector = PrefixBudgetSelector(
                self.token_counter,
                budget_tokens,
                counting_model,
                failure_policy=self.config.oracle_failure_policy,
                retry_attempts=self.config.oracle_retry_attempts,
            )
            prefix = selector.select(pool, question, system_text)
            selected = prefix.chunks
            oracle_calls = prefix.oracle_calls
            oracle_failures = prefix.oracle_failures

        prompt = assemble_prompt(question, selected, system_preamble)
        used_fallback = False
        if not prompt.context.strip() and pinned is not None:
            fallback = replace(
                pinned,
                text=pinned.text[:PINNED_FALLBACK_MAX_CHARS],
                score=1.0,
                source=SALIENCE_SOURCE,
            )
            selected = [fallback]
            prompt = assemble_prompt(question, selected, system_preamble)
            used_fallback = True
            logger.info(f"Budget kept no chunks; falling back to pinned passage '{pinned.id}'")
        elif not selected:
            logger.warning(f"No chunks fit the {budget_tokens}-token budget; prompt has no context")

        return ContextSelection(
            question=question,
            system_instruction=prompt.system_instruction,
            context=prompt.context,
            user_prompt=prompt.user_prompt,
            chunks=selected,
            candidates=capped,
            pinned=pinned,
            strategy=strategy,
            budget_tokens=budget_tokens,
            oracle_calls=oracle_calls,
            oracle_failures=oracle_failures,
            used_pinned_fallback=used_fallback,
        )

    def _generate(self, request: GenerationRequest) -> GenerationResponse:
        response = self.generator.generate(request)
        if (response.text or "").strip():
            return response

        # One controlled re-ask without the schema (safety or schema hiccup)
        logger.warning("Empty generation; retrying once as plain text")
        retry = replace(
            request,
            generation_config=GenerationConfig(
                temperature=0.0,
                max_output_tokens=request.generation_config.max_output_tokens,
                response_schema=None,
                response_mime_type="text/plain",
            ),
        )
        retry_response = self.generator.generate(retry)
        return retry_response if (retry_response.text or "").strip() else response

    def answer(
        self,
        question: str,
        candidates: Sequence[ContextChunk],
        model: Optional[str] = None,
        pinned: Optional[ContextChunk] = None,
        system_preamble: Optional[str] = None,
        temperature: Optional[float] = None,
        count_tokens_model: Optional[str] = None,
    ) -> AnswerResult:
        """
        Select context and generate a grounded answer.

        Raises:
            ContextValidationError: Invalid request
            GenerationError: The answering oracle failed
            CircuitOpenError: The answering oracle's breaker is open
        """
        started = time.monotonic()
        model = self._resolve_model(model)
        selection = self.select_context(
            question,
            candidates,
            pinned=pinned,
            system_preamble=system_preamble,
            model=model,
            count_tokens_model=count_tokens_model,
        )

        request = GenerationRequest(
            contents=selection.user_prompt,
            system_instruction=selection.system_instruction,
            model=model,
            generation_config=GenerationConfig(
                temperature=0.0 if temperature is None else float(temperature),
                max_output_tokens=self.config.reserve_output_tokens,
                response_schema=ANSWER_RESPONSE_SCHEMA,
            ),
        )

        try:
            response = self._generate(request)
        except (GenerationError, CircuitOpenError) as e:
            logger.error(f"Answer generation failed for model {model}: {e}")
            raise

        payload = parse_answer_payload(response.text)
        answer = payload.get("answer")
        raw_citations = payload.get("citations")
        if not isinstance(raw_citations, list):
            raw_citations = []
        citations = [Citation.from_dict(c) for c in raw_citations if isinstance(c, dict)]

        metrics = None
        if self.emit_metrics:
            metrics = AnswerMetrics(
                action="gen_answer_with_context",
                ok=True,
                duration_ms=elapsed_ms(started),
                namespace=self.metrics_namespace,
                model=model,
                max_contexts_requested=self.config.max_chunks,
                chunks_selected=len(selection.chunks),
                budget_tokens=selection.budget_tokens,
                count_tokens_calls=selection.oracle_calls,
                count_tokens_failures=selection.oracle_failures,
                used_pinned_fallback=selection.used_pinned_fallback,
                temperature=request.generation_config.temperature,
                **retrieval_stats(selection.candidates),
                **usage_stats(response.usage),
            )

        return AnswerResult(
            answer=str(answer) if answer else (response.text or ""),
            citations=citations,
            model=model,
            selection=selection,
            usage=response.usage,
            response_id=response.response_id,
            metrics=metrics,
        )
