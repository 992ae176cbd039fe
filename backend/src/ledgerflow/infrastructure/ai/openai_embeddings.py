"""EmbeddingProviderPort backed by the OpenAI embeddings endpoint.

text-embedding-3 models accept a `dimensions` argument, so the vectors are
requested at exactly settings.EMBEDDING_DIM and fit the pgvector columns
without truncation on our side.
"""

import time
from typing import List, Optional

import openai
from openai import OpenAI

from ...domain.ai.ports import (
    EmbeddingAuthError,
    EmbeddingError,
    EmbeddingInvalidResponseError,
    EmbeddingProviderPort,
    EmbeddingRateLimitError,
    EmbeddingResult,
    EmbeddingServiceError,
    EmbeddingTimeoutError,
)
from ...observability.metrics import embedding_cost_micros_total, embedding_latency_ms

# Inputs per request accepted by the endpoint
REQUEST_LIMIT = 2048

# Micro-USD per token, by model
MICROS_PER_TOKEN = {
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
    "text-embedding-ada-002": 0.10,
}

# Checked in order; subclasses before APIError
_ERROR_MAP = (
    (openai.AuthenticationError, EmbeddingAuthError),
    (openai.RateLimitError, EmbeddingRateLimitError),
    (openai.APITimeoutError, EmbeddingTimeoutError),
    (openai.APIError, EmbeddingServiceError),
)


def _translate(error: Exception) -> EmbeddingError:
    for source, target in _ERROR_MAP:
        if isinstance(error, source):
            return target(f"OpenAI {type(error).__name__}: {error}")
    return EmbeddingServiceError(str(error))


class OpenAIEmbeddingAdapter(EmbeddingProviderPort):
    """Embeds transaction descriptions with an OpenAI model.

    Usage:
        provider = OpenAIEmbeddingAdapter(api_key=settings.OPENAI_API_KEY, dimensions=1536)
        vector = provider.embed_text("swiggy order").embedding
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: Optional[int] = 1536,
        timeout: int = 30,
    ):
        if not api_key:
            raise EmbeddingAuthError("OpenAI API key not provided")
        self.model = model
        self.dimensions = dimensions
        self.client = OpenAI(api_key=api_key, timeout=timeout)

    def embed_text(self, text: str) -> EmbeddingResult:
        return self.batch_embed_texts([text])[0]

    def batch_embed_texts(self, texts: List[str]) -> List[EmbeddingResult]:
        """One request for all texts; usage is split evenly across the results.

        Raises:
            ValueError: No texts, a blank text, or more than REQUEST_LIMIT texts
            EmbeddingError: The request failed or returned unusable vectors
        """
        if not texts or any(not (text and text.strip()) for text in texts):
            raise ValueError("Embedding input must be non-empty text")
        if len(texts) > REQUEST_LIMIT:
            raise ValueError(f"At most {REQUEST_LIMIT} texts per request")

        params = {"model": self.model, "input": list(texts)}
        if self.dimensions and self.model.startswith("text-embedding-3"):
            params["dimensions"] = self.dimensions

        started = time.perf_counter()
        try:
            response = self.client.embeddings.create(**params)
        except openai.OpenAIError as e:
            raise _translate(e) from e
        embedding_latency_ms.labels(provider="openai").observe((time.perf_counter() - started) * 1000)

        vectors = [list(item.embedding) for item in sorted(response.data or [], key=lambda item: item.index)]
        if len(vectors) != len(texts):
            raise EmbeddingInvalidResponseError(f"Asked for {len(texts)} vectors, received {len(vectors)}")
        if self.dimensions and any(len(vector) != self.dimensions for vector in vectors):
            raise EmbeddingInvalidResponseError(f"Vector size differs from configured {self.dimensions}")

        tokens = response.usage.total_tokens if response.usage else 0
        cost = int(tokens * MICROS_PER_TOKEN.get(self.model, MICROS_PER_TOKEN["text-embedding-3-small"]))
        embedding_cost_micros_total.labels(provider="openai").inc(cost)

        return [
            EmbeddingResult(
                embedding=vector,
                model=self.model,
                dimension=len(vector),
                tokens=tokens // len(texts),
                cost_micros=cost // len(texts),
            )
            for vector in vectors
        ]


__all__ = ["OpenAIEmbeddingAdapter"]
