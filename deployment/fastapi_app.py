"""
FastAPI application for the grounded context engine.

Endpoints:
- GET  /health          breaker states and oracle provider
- POST /context/select  budget-fitting context without generation
- POST /answer          context selection + grounded answer
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import List, Optional, Tuple

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from answering.answer_pipeline import GroundedAnswerPipeline
from context.chunks import ContextChunk, make_pinned_chunk
from deployment.circuit_breaker import get_generation_breaker, get_token_count_breaker
from generation.providers import build_oracles
from shared.config import get_settings
from shared.errors import CircuitOpenError, ContextValidationError, GenerationError
from shared.schemas import (
    AnswerRequest,
    AnswerResponse,
    CitationOut,
    ContextRequest,
    ContextResponse,
    HealthResponse,
    SelectedChunkOut,
    UsageOut,
)

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

__version__ = "1.0.0"


@lru_cache()
def get_pipeline() -> GroundedAnswerPipeline:
    """Pipeline built from environment settings."""
    counter, generator = build_oracles(settings)
    return GroundedAnswerPipeline(
        counter,
        generator,
        settings.selection,
        default_model=settings.GENERATION_MODEL,
        count_tokens_model=settings.COUNT_TOKENS_MODEL,
        emit_metrics=settings.EMIT_METRICS,
        metrics_namespace=settings.METRICS_NAMESPACE,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info(
        f"Starting grounded context engine v{__version__} "
        f"(provider={settings.ORACLE_PROVIDER}, strategy={settings.selection.trim_strategy})"
    )
    yield
    logger.info("Shutting down grounded context engine")


app = FastAPI(
    title="Grounded Context Engine",
    description="Token-budgeted context selection and grounded answering",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID for tracing."""
    request_id = str(uuid.uuid4())[:8]
    request.state.request_id = request_id

    start_time = time.time()
    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        f"[{request_id}] {request.method} {request.url.path} "
        f"- {response.status_code} - {duration_ms:.1f}ms"
    )

    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(ContextValidationError)
async def validation_error_handler(request: Request, exc: ContextValidationError):
    return JSONResponse(status_code=422, content={"error": "Invalid request", "detail": str(exc)})


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    return JSONResponse(
        status_code=502, content={"error": "Answer generation failed", "detail": str(exc)}
    )


@app.exception_handler(CircuitOpenError)
async def circuit_open_handler(request: Request, exc: CircuitOpenError):
    """Handle circuit breaker open."""
    return JSONResponse(
        status_code=503,
        content={
            "error": "Service temporarily unavailable",
            "detail": str(exc),
            "retry_after": 30,
        },
        headers={"Retry-After": "30"},
    )


def _request_inputs(
    body: ContextRequest,
) -> Tuple[List[ContextChunk], Optional[ContextChunk]]:
    chunks = [
        ContextChunk.from_dict(c.model_dump(), index=i) for i, c in enumerate(body.context_chunks)
    ]
    pinned = make_pinned_chunk(body.salience_text, body.salience_id, body.salience_score)
    return chunks, pinned


def _configured(pipeline: GroundedAnswerPipeline, body: ContextRequest) -> GroundedAnswerPipeline:
    return pipeline.with_config(
        trim_strategy=body.trim_strategy,
        max_prompt_tokens=body.max_prompt_tokens,
        reserve_output_tokens=body.reserve_output_tokens,
        max_chunks=body.max_chunks,
        oracle_failure_policy=body.oracle_failure_policy,
    )


@app.get("/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    stats = [get_token_count_breaker().get_stats(), get_generation_breaker().get_stats()]
    breakers = {s["name"]: s for s in stats}
    degraded = any(s["state"] != "closed" for s in stats)
    return HealthResponse(
        status="degraded" if degraded else "healthy",
        version=__version__,
        oracle_provider=settings.ORACLE_PROVIDER,
        breakers=breakers,
    )


@app.post("/context/select", response_model=ContextResponse)
def select_context_endpoint(
    body: ContextRequest,
    pipeline: GroundedAnswerPipeline = Depends(get_pipeline),
):
    """Select budget-fitting context without calling the generator."""
    chunks, pinned = _request_inputs(body)
    selection = _configured(pipeline, body).select_context(
        body.question,
        chunks,
        pinned=pinned,
        system_preamble=body.system_preamble,
        model=body.model,
        count_tokens_model=body.count_tokens_model,
    )
    return ContextResponse(
        context=selection.context,
        system_instruction=selection.system_instruction,
        selected=[
            SelectedChunkOut(id=c.id, source=c.source, uri=c.uri, score=c.score)
            for c in selection.chunks
        ],
        budget_tokens=selection.budget_tokens,
        count_tokens_calls=selection.oracle_calls,
        count_tokens_failures=selection.oracle_failures,
        used_pinned_fallback=selection.used_pinned_fallback,
    )


@app.post("/answer", response_model=AnswerResponse)
def answer_endpoint(
    body: AnswerRequest,
    request: Request,
    pipeline: GroundedAnswerPipeline = Depends(get_pipeline),
):
    """
    Grounded answer endpoint.

    Flow:
    1. Pin salience, cap and normalize chunks
    2. Order and dedupe
    3. Budget-select against countTokens
    4. Generate and parse the answer
    """
    request_id = getattr(request.state, "request_id", "unknown")
    chunks, pinned = _request_inputs(body)

    result = _configured(pipeline, body).answer(
        body.question,
        chunks,
        model=body.model,
        pinned=pinned,
        system_preamble=body.system_preamble,
        temperature=body.temperature,
        count_tokens_model=body.count_tokens_model,
    )
    logger.info(
        f"[{request_id}] Answered with {len(result.selection.chunks)} chunks "
        f"({result.selection.oracle_calls} countTokens calls)"
    )

    return AnswerResponse(
        answer=result.answer,
        citations=[
            CitationOut(chunk_id=c.chunk_id, source=c.source, uri=c.uri, score=c.score)
            for c in result.citations
        ],
        responseId=result.response_id,
        usage=UsageOut(**result.usage.to_dict()),
        selected_chunk_ids=result.selection.chunk_ids,
        metrics=result.metrics.to_dict() if result.metrics else None,
        metrics_kv=result.metrics.to_kv() if result.metrics else None,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
