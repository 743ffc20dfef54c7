"""
Oracle clients.

The engine talks to two remote services:
- a token counter, called O(log n) times per invocation during selection
- a generator, called once per invocation with the final prompt

Usage:
    from generation import build_oracles

    counter, generator = build_oracles()
"""

from .base import (
    GenerationConfig,
    GenerationRequest,
    GenerationResponse,
    Generator,
    TokenCounter,
    TokenCountRequest,
    UsageMetadata,
)
from .openai_client import OpenAIGenerator, TiktokenCounter
from .providers import build_oracles
from .vertex_client import VertexGenerator, VertexRestClient, VertexTokenCounter

__all__ = [
    "build_oracles",
    "GenerationConfig",
    "GenerationRequest",
    "GenerationResponse",
    "Generator",
    "OpenAIGenerator",
    "TiktokenCounter",
    "TokenCounter",
    "TokenCountRequest",
    "UsageMetadata",
    "VertexGenerator",
    "VertexRestClient",
    "VertexTokenCounter",
]
