"""Celery tasks for categorization batches and embedding generation.

Tasks:
- categorization.categorize_pending: run one orchestrator batch for a user
- embeddings.generate_for_transactions: embed transactions, then re-run categorization
- embeddings.generate_for_example: embed a labeled example created by feedback
- categorization.reset_stale: return crashed claims to pending (Celery Beat)
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from celery import shared_task

from ..domain.ai.ports import EmbeddingRateLimitError, EmbeddingTimeoutError
from ..infrastructure.ai import get_embedding_provider
from ..models import LabeledExample
from ..workers.base import BaseTask, get_task_session, validate_user_id
from .embedding import EmbeddingGenerationService
from .orchestrator import CategorizationOrchestrator
from .similarity import SimilarityClassifier
from .vector_index import build_example_index

logger = logging.getLogger(__name__)


class EmbeddingTask(BaseTask):
    """Task class for embedding generation with retry configuration.

    Retry policy:
    - Max retries: 3
    - Backoff: Exponential with jitter, capped at 10 minutes
    - Retry on: Timeout, RateLimitError
    - No retry on: AuthError, InvalidResponse (embedding stays null, row fails later)
    """
    autoretry_for = (EmbeddingTimeoutError, EmbeddingRateLimitError)
    retry_kwargs = {'max_retries': 3, 'countdown': 5}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True


def build_orchestrator(session, provider=None) -> CategorizationOrchestrator:
    """Wire an orchestrator with the similarity tier for the given provider."""
    embedder = EmbeddingGenerationService(session, provider)
    classifier = SimilarityClassifier(embedder, build_example_index(session))
    return CategorizationOrchestrator(
        session,
        classifier=classifier,
        embeddings_enabled=provider is not None,
    )



def run_batch_inline(session, provider, user_id: UUID, limit: Optional[int] = None) -> Dict[str, int]:
    """Categorize, embed what the similarity tier needs, then re-run those rows.

    The same sequence the worker tasks chain through the broker, done in the
    caller's session. Used when CATEGORIZATION_EAGER is set.
    """
    orchestrator = build_orchestrator(session, provider)
    first = orchestrator.run_batch(user_id, limit=limit)
    counts = {"claimed": first.claimed, "categorized": first.categorized, "embedded": 0}

    if first.needs_embedding_ids and provider is not None:
        embedded = EmbeddingGenerationService(session, provider).generate_for_transactions(first.needs_embedding_ids)
        session.commit()
        counts["embedded"] = embedded["generated"]
        if embedded["generated"]:
            followup = orchestrator.run_batch(user_id, transaction_ids=first.needs_embedding_ids)
            counts["categorized"] += followup.categorized
    return counts

@shared_task(base=BaseTask, name="categorization.categorize_pending", bind=True)
def categorize_pending_task(self, user_id: str, limit: Optional[int] = None) -> Dict[str, Any]:
    """Categorize one batch of the user's pending transactions.

    Transactions that still lack an embedding are handed to the embedding
    task, which re-enqueues this task once vectors exist.

    Returns:
        BatchResult.to_dict()
    """
    user_uuid = validate_user_id(user_id)
    provider = get_embedding_provider()
    session = get_task_session()
    try:
        result = build_orchestrator(session, provider).run_batch(user_uuid, limit=limit)
    finally:
        session.close()

    if result.needs_embedding_ids and provider is not None:
        generate_transaction_embeddings_task.delay(
            user_id=str(user_uuid),
            transaction_ids=[str(tid) for tid in result.needs_embedding_ids],
        )

    logger.info(
        f"categorize_pending finished for user {user_uuid}",
        extra={"user_id": str(user_uuid), **{k: v for k, v in result.to_dict().items() if k != "needs_embedding_ids"}},
    )
    return result.to_dict()


@shared_task(base=EmbeddingTask, name="embeddings.generate_for_transactions", bind=True)
def generate_transaction_embeddings_task(self, user_id: str, transaction_ids: List[str]) -> Dict[str, Any]:
    """Embed the given transactions and re-enqueue categorization.

    Rate-limit and timeout errors propagate so Celery retries with backoff.
    """
    user_uuid = validate_user_id(user_id)
    provider = get_embedding_provider()
    if provider is None:
        return {"status": "skipped", "reason": "embeddings_disabled"}

    session = get_task_session()
    try:
        service = EmbeddingGenerationService(session, provider, raise_transient=True)
        counts = service.generate_for_transactions([UUID(tid) for tid in transaction_ids])
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if counts["generated"]:
        categorize_pending_task.delay(user_id=str(user_uuid))

    return {"status": "success", **counts}


@shared_task(base=EmbeddingTask, name="embeddings.generate_for_example", bind=True)
def generate_example_embedding_task(self, user_id: str, example_id: str) -> Dict[str, Any]:
    """Embed a labeled example whose embedding was not available at feedback time."""
    user_uuid = validate_user_id(user_id)
    provider = get_embedding_provider()
    if provider is None:
        return {"status": "skipped", "reason": "embeddings_disabled"}

    session = get_task_session()
    try:
        example = session.get(LabeledExample, UUID(example_id))
        if example is None or example.user_id != user_uuid:
            return {"status": "skipped", "reason": "not_found"}

        service = EmbeddingGenerationService(session, provider, raise_transient=True)
        embedded = service.generate_for_example(example)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    return {"status": "success" if embedded else "failed", "example_id": example_id}


@shared_task(name="categorization.reset_stale", bind=True)
def reset_stale_task(self) -> Dict[str, Any]:
    """Return transactions stuck in processing to pending."""
    session = get_task_session()
    try:
        reset = CategorizationOrchestrator(session).reset_stale_processing()
    finally:
        session.close()
    return {"reset": reset}
