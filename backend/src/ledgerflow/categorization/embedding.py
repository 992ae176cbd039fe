"""Embedding generation for transactions and labeled examples.

Embedding failures are soft: the embedding stays null, the failure is logged
and counted, and a later run retries. With raise_transient=True (Celery
tasks) rate-limit and timeout errors propagate so the task can retry with
backoff.
"""

import logging
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.ai.ports import EmbeddingError, EmbeddingProviderPort
from ..models import LabeledExample, Transaction
from ..models.base import utcnow
from ..observability.metrics import embeddings_generated_total
from .normalization import normalize_description

logger = logging.getLogger(__name__)


class EmbeddingGenerationService:
    """Compute and store embeddings through an EmbeddingProviderPort.

    Example:
        service = EmbeddingGenerationService(db, get_embedding_provider())
        counts = service.generate_for_transactions(transaction_ids)
        db.commit()
    """

    def __init__(
        self,
        db: Session,
        provider: Optional[EmbeddingProviderPort],
        model_name: Optional[str] = None,
        raise_transient: bool = False,
    ):
        self.db = db
        self.provider = provider
        self.raise_transient = raise_transient
        self.model_name = model_name or getattr(provider, "model", None) or (type(provider).__name__ if provider else None)

    @property
    def enabled(self) -> bool:
        return self.provider is not None

    def embed_text(self, text: Optional[str], target: str = "query") -> Optional[List[float]]:
        """Embed text, returning None on empty input or provider failure.

        Args:
            text: Already-normalized text
            target: Metric label (transaction, example, query)
        """
        if not self.enabled or not text or not text.strip():
            return None
        try:
            result = self.provider.embed_text(text)
        except EmbeddingError as e:
            embeddings_generated_total.labels(target=target, status="error").inc()
            if self.raise_transient and e.transient:
                raise
            logger.warning(f"Embedding generation failed ({type(e).__name__}): {e}")
            return None
        embeddings_generated_total.labels(target=target, status="success").inc()
        return result.embedding

    def generate_for_transactions(self, transaction_ids: Iterable[UUID]) -> Dict[str, int]:
        """Embed the normalized description of each transaction lacking an embedding.

        Returns:
            Dict with generated / skipped / failed counts
        """
        counts = {"generated": 0, "skipped": 0, "failed": 0}
        ids = list(transaction_ids)
        if not ids:
            return counts

        transactions = self.db.scalars(
            select(Transaction).where(Transaction.id.in_(ids))
        ).all()

        pending = []
        for txn in transactions:
            if txn.embedding is not None or not txn.normalized_description:
                counts["skipped"] += 1
            else:
                pending.append(txn)

        if not pending:
            return counts

        if not self.enabled:
            counts["failed"] += len(pending)
            return counts

        vectors = self._embed_many([txn.normalized_description for txn in pending], target="transaction")
        now = utcnow()
        for txn, vector in zip(pending, vectors):
            if vector is None:
                counts["failed"] += 1
                continue
            txn.embedding = vector
            txn.embedding_generated_at = now
            counts["generated"] += 1

        self.db.flush()
        logger.info(
            f"Generated {counts['generated']} transaction embeddings",
            extra={"failed": counts["failed"], "skipped": counts["skipped"]},
        )
        return counts

    def generate_for_example(self, example: LabeledExample) -> bool:
        """Embed a labeled example if it has no embedding yet."""
        if example.embedding is not None:
            return True
        text = example.normalized_description or normalize_description(example.description)
        vector = self.embed_text(text, target="example")
        if vector is None:
            return False
        example.embedding = vector
        example.embedding_model = self.model_name
        self.db.flush()
        return True

    def _embed_many(self, texts: List[str], target: str) -> List[Optional[List[float]]]:
        """Batch embed; on batch failure fall back to per-text calls."""
        try:
            results = self.provider.batch_embed_texts(texts)
        except EmbeddingError as e:
            if self.raise_transient and e.transient:
                raise
            logger.warning(f"Batch embedding failed, retrying individually: {e}")
            return [self.embed_text(text, target=target) for text in texts]

        embeddings_generated_total.labels(target=target, status="success").inc(len(results))
        return [result.embedding for result in results]
