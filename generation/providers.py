"""
Oracle construction from settings.

ORACLE_PROVIDER=vertex uses Vertex AI for both countTokens and generation.
ORACLE_PROVIDER=openai uses OpenAI chat for generation and tiktoken for
counting.
"""

import logging
from typing import Optional, Tuple

from shared.config import Settings, get_settings
from shared.errors import ContextValidationError

from .base import Generator, TokenCounter
from .openai_client import OpenAIGenerator, TiktokenCounter
from .vertex_client import VertexGenerator, VertexRestClient, VertexTokenCounter

logger = logging.getLogger(__name__)

PROVIDERS = ("vertex", "openai")


def build_oracles(settings: Optional[Settings] = None) -> Tuple[TokenCounter, Generator]:
    """
    Build the (token counter, generator) pair for the configured provider.

    Raises:
        ContextValidationError: If ORACLE_PROVIDER is unknown
    """
    settings = settings or get_settings()
    provider = (settings.ORACLE_PROVIDER or "").strip().lower()

    if provider == "vertex":
        client = VertexRestClient(settings.vertex)
        logger.info(f"Using Vertex AI oracles (location={settings.vertex.location})")
        return VertexTokenCounter(client), VertexGenerator(client)

    if provider == "openai":
        logger.info("Using OpenAI generation with local tiktoken counting")
        return (
            TiktokenCounter(settings.openai.encoding_name),
            OpenAIGenerator(settings.openai),
        )

    raise ContextValidationError(
        f"Unknown ORACLE_PROVIDER {settings.ORACLE_PROVIDER!r}; expected one of {PROVIDERS}"
    )
