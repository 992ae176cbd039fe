"""Embedding provider port and its error hierarchy."""

from .embedding_provider_port import (
    EmbeddingAuthError,
    EmbeddingError,
    EmbeddingInvalidResponseError,
    EmbeddingProviderPort,
    EmbeddingRateLimitError,
    EmbeddingResult,
    EmbeddingServiceError,
    EmbeddingTimeoutError,
)

__all__ = [
    "EmbeddingProviderPort",
    "EmbeddingResult",
    "EmbeddingError",
    "EmbeddingAuthError",
    "EmbeddingInvalidResponseError",
    "EmbeddingRateLimitError",
    "EmbeddingServiceError",
    "EmbeddingTimeoutError",
]
