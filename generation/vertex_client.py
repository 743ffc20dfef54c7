"""
Vertex AI REST adapters for the two oracles.

- VertexTokenCounter: publishers/google/models/{model}:countTokens
- VertexGenerator: publishers/google/models/{model}:generateContent

Credential minting is out of scope: a bearer token is supplied through
configuration. Every transport, status or parse failure is re-raised as
TokenCountError / GenerationError.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from deployment.circuit_breaker import (
    CircuitBreaker,
    get_generation_breaker,
    get_token_count_breaker,
)
from shared.config import VertexConfig
from shared.errors import GenerationError, TokenCountError

from .base import (
    GenerationRequest,
    GenerationResponse,
    TokenCountRequest,
    UsageMetadata,
)

logger = logging.getLogger(__name__)


def vertex_base_url(location: str) -> str:
    loc = (location or "global").strip().lower()
    if loc == "global":
        return "https://aiplatform.googleapis.com/v1"
    return f"https://{loc}-aiplatform.googleapis.com/v1"


def build_model_path(project_id: str, location: str, model: str) -> str:
    """
    Resolve a model id to a full resource path.

    Full paths ("projects/.../models/...") pass through unchanged.
    """
    model = (model or "").strip()
    if model.startswith("projects/"):
        return model
    if model.startswith("publishers/"):
        return f"projects/{project_id}/locations/{location}/{model}"
    return f"projects/{project_id}/locations/{location}/publishers/google/models/{model}"


def _location_of(model_path: str, default: str) -> str:
    parts = model_path.split("/")
    if "locations" in parts:
        i = parts.index("locations")
        if i + 1 < len(parts):
            return parts[i + 1]
    return default


def user_contents(text: str) -> List[Dict[str, Any]]:
    return [{"role": "user", "parts": [{"text": text}]}]


def system_instruction(text: str) -> Optional[Dict[str, Any]]:
    if not text:
        return None
    return {"role": "system", "parts": [{"text": text}]}


class VertexRestClient:
    """Thin httpx wrapper shared by both adapters."""

    def __init__(
        self,
        config: Optional[VertexConfig] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.config = config or VertexConfig()
        self._http = http_client

    @property
    def http(self) -> httpx.Client:
        """Lazily create the HTTP client."""
        if self._http is None:
            self._http = httpx.Client(timeout=self.config.timeout)
        return self._http

    def url_for(self, model: str, method: str) -> str:
        location = self.config.location or "global"
        model_path = build_model_path(self.config.project_id, location, model)
        return f"{vertex_base_url(_location_of(model_path, location))}/{model_path}:{method}"

    def post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self.http.post(
            url,
            headers={
                "Authorization": f"Bearer {self.config.access_token}",
                "Content-Type": "application/json; charset=utf-8",
            },
            json=payload,
        )
        response.raise_for_status()
        return response.json()


class VertexTokenCounter:
    """countTokens oracle."""

    def __init__(
        self,
        client: Optional[VertexRestClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.client = client or VertexRestClient()
        self.breaker = breaker or get_token_count_breaker()

    def _count(self, request: TokenCountRequest) -> int:
        payload: Dict[str, Any] = {"contents": user_contents(request.content)}
        sys_inst = system_instruction(request.system_instruction)
        if sys_inst:
            payload["systemInstruction"] = sys_inst

        try:
            body = self.client.post(self.client.url_for(request.model, "countTokens"), payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TokenCountError(f"countTokens request failed: {e}") from e
        except ValueError as e:
            raise TokenCountError(f"countTokens returned invalid JSON: {e}") from e

        total = body.get("totalTokens") if isinstance(body, dict) else None
        if not isinstance(total, int) or isinstance(total, bool):
            raise TokenCountError(f"countTokens response missing totalTokens: {body!r}"[:300])
        return total

    def count_tokens(self, request: TokenCountRequest) -> int:
        return self.breaker.call(self._count, request)


class VertexGenerator:
    """generateContent oracle."""

    def __init__(
        self,
        client: Optional[VertexRestClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.client = client or VertexRestClient()
        self.breaker = breaker or get_generation_breaker()

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        cfg = request.generation_config
        gen_cfg: Dict[str, Any] = {
            "temperature": cfg.temperature,
            "maxOutputTokens": cfg.max_output_tokens,
            "responseMimeType": cfg.response_mime_type,
        }
        if cfg.response_schema:
            gen_cfg["responseSchema"] = cfg.response_schema

        payload: Dict[str, Any] = {
            "contents": user_contents(request.contents),
            "generationConfig": gen_cfg,
        }
        sys_inst = system_instruction(request.system_instruction)
        if sys_inst:
            payload["systemInstruction"] = sys_inst
        return payload

    def _generate(self, request: GenerationRequest) -> GenerationResponse:
        url = self.client.url_for(request.model, "generateContent")
        try:
            body = self.client.post(url, self._payload(request))
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:500] if e.response is not None else ""
            raise GenerationError(
                f"generateContent failed with HTTP {e.response.status_code}: {detail}"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise GenerationError(f"generateContent request failed: {e}") from e
        except ValueError as e:
            raise GenerationError(f"generateContent returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise GenerationError("generateContent returned a non-object body")

        usage = body.get("usageMetadata") or {}
        return GenerationResponse(
            text=_first_candidate_text(body),
            model=request.model,
            usage=UsageMetadata(
                prompt_token_count=usage.get("promptTokenCount"),
                candidates_token_count=usage.get("candidatesTokenCount"),
                total_token_count=usage.get("totalTokenCount"),
            ),
            response_id=body.get("responseId"),
        )

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        return self.breaker.call(self._generate, request)


def _first_candidate_text(body: Dict[str, Any]) -> str:
    """candidates[0].content.parts[0].text, or "" when absent (e.g. safety block)."""
    try:
        text = body["candidates"][0]["content"]["parts"][0].get("text")
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
    return str(text or "")
