"""AI Infrastructure - Adapters for embedding providers.

get_embedding_provider() returns the configured adapter, or None when no
provider credentials are configured (the similarity tier is then disabled).
"""

import logging
from typing import Optional

from ...config import Settings, settings as default_settings
from ...domain.ai.ports import EmbeddingProviderPort
from .openai_embeddings import OpenAIEmbeddingAdapter

logger = logging.getLogger(__name__)


def get_embedding_provider(settings: Optional[Settings] = None) -> Optional[EmbeddingProviderPort]:
    """Build the embedding provider from settings.

    Args:
        settings: Settings to read (defaults to the module-level settings)

    Returns:
        OpenAIEmbeddingAdapter, or None if OPENAI_API_KEY is not set
    """
    settings = settings or default_settings
    if not settings.OPENAI_API_KEY:
        logger.info("OPENAI_API_KEY not set; embedding generation disabled")
        return None

    return OpenAIEmbeddingAdapter(
        api_key=settings.OPENAI_API_KEY,
        model=settings.EMBEDDING_MODEL,
        dimensions=settings.EMBEDDING_DIM,
        timeout=settings.EMBEDDING_TIMEOUT,
    )


__all__ = ["OpenAIEmbeddingAdapter", "get_embedding_provider"]
