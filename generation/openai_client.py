"""
OpenAI-backed oracles.

- OpenAIGenerator: chat completions with JSON output
- TiktokenCounter: local token counting with tiktoken, for deployments
  without a remote countTokens endpoint
"""

import logging
from typing import Any, Optional

from deployment.circuit_breaker import CircuitBreaker, get_generation_breaker
from shared.config import OpenAIConfig
from shared.errors import CircuitOpenError, GenerationError, TokenCountError

from .base import (
    GenerationRequest,
    GenerationResponse,
    TokenCountRequest,
    UsageMetadata,
)

logger = logging.getLogger(__name__)

# Per-message framing overhead of the chat format
_MESSAGE_OVERHEAD_TOKENS = 4
_REPLY_PRIMER_TOKENS = 3


class OpenAIGenerator:
    """
    Answer generation through the OpenAI chat completions API.

    The response schema travels in the system message; the API is asked
    for a JSON object when the request's mime type is JSON.
    """

    def __init__(
        self,
        config: Optional[OpenAIConfig] = None,
        client: Any = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.config = config or OpenAIConfig()
        self._client = client
        self.breaker = breaker or get_generation_breaker()

    @property
    def client(self):
        """Lazy load OpenAI client."""
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self.config.api_key, timeout=self.config.timeout)
        return self._client

    def _messages(self, request: GenerationRequest) -> list:
        system = request.system_instruction
        schema = request.generation_config.response_schema
        json_mode = request.generation_config.response_mime_type == "application/json"
        if json_mode and schema:
            system = (
                f"{system}\n\nReturn ONLY a JSON object with keys \"answer\" (string) and "
                f"\"citations\" (array of objects with chunk_id, source, uri, score)."
            ).strip()

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": request.contents})
        return messages

    def _generate(self, request: GenerationRequest) -> GenerationResponse:
        cfg = request.generation_config
        kwargs = {
            "model": request.model,
            "messages": self._messages(request),
            "temperature": cfg.temperature,
            "max_tokens": cfg.max_output_tokens,
        }
        if cfg.response_mime_type == "application/json":
            kwargs["response_format"] = {"type": "json_object"}

        response = self.client.chat.completions.create(**kwargs)

        usage = getattr(response, "usage", None)
        return GenerationResponse(
            text=(response.choices[0].message.content or "") if response.choices else "",
            model=getattr(response, "model", request.model),
            usage=UsageMetadata(
                prompt_token_count=getattr(usage, "prompt_tokens", None),
                candidates_token_count=getattr(usage, "completion_tokens", None),
                total_token_count=getattr(usage, "total_tokens", None),
            ),
            response_id=getattr(response, "id", None),
        )

    def generate(self, request: GenerationRequest) -> GenerationResponse:
        try:
            return self.breaker.call(self._generate, request)
        except CircuitOpenError:
            logger.error("Generation circuit breaker is open")
            raise
        except Exception as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise GenerationError(f"OpenAI generation failed: {e}") from e


class TiktokenCounter:
    """
    Local TokenCounter using a tiktoken encoding.

    Counts the system and user messages plus chat framing overhead. The
    request's model is ignored; the encoding is fixed at construction.
    """

    def __init__(self, encoding_name: str = "cl100k_base", encoding: Any = None):
        self.encoding_name = encoding_name
        self._enc = encoding

    @property
    def encoding(self):
        if self._enc is None:
            import tiktoken

            self._enc = tiktoken.get_encoding(self.encoding_name)
        return self._enc

    def count_tokens(self, request: TokenCountRequest) -> int:
        try:
            total = _REPLY_PRIMER_TOKENS
            for text in (request.system_instruction, request.content):
                if text:
                    total += len(self.encoding.encode(text)) + _MESSAGE_OVERHEAD_TOKENS
            return total
        except Exception as e:
            raise TokenCountError(f"tiktoken counting failed: {e}") from e
