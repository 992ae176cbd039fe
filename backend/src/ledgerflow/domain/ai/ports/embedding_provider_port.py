"""Port for turning normalized descriptions into vectors.

The categorization pipeline only ever sees this interface. A provider failure
never fails a transaction: the embedding column stays null, the similarity
tier is skipped and the row is retried on a later batch.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class EmbeddingError(Exception):
    """A provider could not produce a vector.

    `transient` failures are worth retrying from the Celery task; the rest
    are left for the next batch to pick up.
    """

    transient = False


class EmbeddingTimeoutError(EmbeddingError):
    transient = True


class EmbeddingRateLimitError(EmbeddingError):
    transient = True


class EmbeddingAuthError(EmbeddingError):
    """Missing or rejected API credentials."""


class EmbeddingServiceError(EmbeddingError):
    """Provider-side outage or 5xx."""


class EmbeddingInvalidResponseError(EmbeddingError):
    """Wrong number of vectors or wrong vector size."""


@dataclass
class EmbeddingResult:
    """One vector plus the model that produced it.

    `dimension` must equal settings.EMBEDDING_DIM before the vector is stored
    on a transaction or labeled example. Usage fields are informational.
    """

    embedding: list[float]
    model: str
    dimension: int
    tokens: int = 0
    cost_micros: int = 0


class EmbeddingProviderPort(ABC):
    """Embeds description text for the vector index."""

    @abstractmethod
    def embed_text(self, text: str) -> EmbeddingResult:
        """Embed a single non-empty description.

        Raises ValueError for blank text and an EmbeddingError subclass for
        anything the provider gets wrong.
        """

    @abstractmethod
    def batch_embed_texts(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed several descriptions, results in input order.

        One failure fails the whole call.
        """
