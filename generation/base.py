"""
Oracle interfaces.

Two remote collaborators sit behind these protocols:
- TokenCounter: reports how many tokens a prompt would consume
- Generator: produces the answer from an assembled prompt

Adapters raise TokenCountError / GenerationError for every failure mode
(transport, timeout, malformed response).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class TokenCountRequest:
    content: str
    system_instruction: str
    model: str


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = 0.0
    max_output_tokens: int = 512
    response_schema: Optional[Dict[str, Any]] = None
    response_mime_type: str = "application/json"


@dataclass(frozen=True)
class GenerationRequest:
    contents: str
    system_instruction: str
    model: str
    generation_config: GenerationConfig = field(default_factory=GenerationConfig)


@dataclass
class UsageMetadata:
    prompt_token_count: Optional[int] = None
    candidates_token_count: Optional[int] = None
    total_token_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {
            "promptTokenCount": self.prompt_token_count,
            "candidatesTokenCount": self.candidates_token_count,
            "totalTokenCount": self.total_token_count,
        }


@dataclass
class GenerationResponse:
    """Raw model reply; the answer pipeline parses the text."""

    text: str
    model: str
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    response_id: Optional[str] = None


class TokenCounter(Protocol):
    def count_tokens(self, request: TokenCountRequest) -> int:
        ...


class Generator(Protocol):
    def generate(self, request: GenerationRequest) -> GenerationResponse:
        ...
