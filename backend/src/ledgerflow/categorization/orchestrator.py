"""Categorization orchestrator: claims pending transactions and runs the tiers.

Pipeline per transaction (first success wins):
1. User rules (RuleMatcher.match_user_rules)
2. Category keywords (RuleMatcher.match_category_keywords)
3. Verified global patterns (RuleMatcher.match_global_patterns)
4. Similarity vote over labeled examples (needs the transaction embedding)

Decision:
- rule, category keyword or global pattern result → categorized
- similarity result with confidence >= HIGH_CONFIDENCE_THRESHOLD → categorized
- lower similarity confidence → needs_review (suggestion kept in ai_* fields)
- nothing matched → failed ("needs manual categorization"), unless the
  transaction only lacks its embedding, in which case it goes back to
  pending until CATEGORIZATION_MAX_ATTEMPTS claims have been spent

Concurrency:
- A row is claimed with UPDATE ... WHERE status = 'pending'; only the worker
  whose UPDATE hit the row processes it.
- Results are written with UPDATE ... WHERE status = 'processing' AND
  user_updated_at is unchanged, so a user correction that landed in the
  meantime always wins.
"""

import logging
import time
from datetime import timedelta
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..database import is_postgres
from ..models import CategorizationStatus, CategorySource, Transaction, UserRule
from ..models.base import utcnow
from ..observability.metrics import (
    categorization_batch_duration_seconds,
    categorization_confidence_histogram,
    categorization_errors_total,
    pending_transactions,
    transactions_categorized_total,
)
from .pattern_store import PatternStore
from .ports import BatchResult, CategorizationProgress, TierResult
from .rule_matcher import RuleMatcher
from .similarity import SimilarityClassifier
from .vector_index import build_example_index

logger = logging.getLogger(__name__)

NO_MATCH_EXPLANATION = "needs manual categorization"

_PENDING = CategorizationStatus.PENDING.value
_PROCESSING = CategorizationStatus.PROCESSING.value
_CATEGORIZED = CategorizationStatus.CATEGORIZED.value
_NEEDS_REVIEW = CategorizationStatus.NEEDS_REVIEW.value
_FAILED = CategorizationStatus.FAILED.value


class CategorizationOrchestrator:
    """Run the categorization pipeline over a user's pending transactions.

    Example:
        orchestrator = CategorizationOrchestrator(db, embeddings_enabled=True)
        result = orchestrator.run_batch(user_id, limit=100)
        if result.needs_embedding_ids:
            generate_transaction_embeddings_task.delay(
                user_id=str(user_id), transaction_ids=[str(i) for i in result.needs_embedding_ids]
            )
    """

    def __init__(
        self,
        db: Session,
        matcher: Optional[RuleMatcher] = None,
        classifier: Optional[SimilarityClassifier] = None,
        embeddings_enabled: Optional[bool] = None,
        high_confidence_threshold: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.store = PatternStore(db)
        self.matcher = matcher or RuleMatcher(
            rule_confidence=settings.RULE_CONFIDENCE,
            global_pattern_confidence=settings.GLOBAL_PATTERN_CONFIDENCE,
        )
        self.classifier = classifier or SimilarityClassifier(None, build_example_index(db))
        self.embeddings_enabled = (
            embeddings_enabled if embeddings_enabled is not None else bool(settings.OPENAI_API_KEY)
        )
        self.high_confidence_threshold = (
            high_confidence_threshold
            if high_confidence_threshold is not None
            else settings.HIGH_CONFIDENCE_THRESHOLD
        )
        self.max_attempts = max_attempts if max_attempts is not None else settings.CATEGORIZATION_MAX_ATTEMPTS

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def claim_pending(
        self,
        user_id: Optional[UUID],
        limit: int,
        transaction_ids: Optional[Iterable[UUID]] = None,
    ) -> List[UUID]:
        """Atomically move up to `limit` pending transactions to processing.

        Args:
            user_id: Owner to claim for (None claims across users)
            limit: Maximum rows to claim
            transaction_ids: Optional restriction to specific transactions

        Returns:
            Ids this caller now owns (commit already issued)
        """
        stmt = select(Transaction.id).where(Transaction.categorization_status == _PENDING)
        if user_id is not None:
            stmt = stmt.where(Transaction.user_id == user_id)
        if transaction_ids is not None:
            stmt = stmt.where(Transaction.id.in_(list(transaction_ids)))
        stmt = stmt.order_by(Transaction.transaction_date, Transaction.created_at, Transaction.id).limit(limit)
        if is_postgres(self.db):
            stmt = stmt.with_for_update(skip_locked=True)

        candidate_ids = self.db.scalars(stmt).all()

        claimed = []
        for transaction_id in candidate_ids:
            result = self.db.execute(
                update(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.categorization_status == _PENDING,
                )
                .values(
                    categorization_status=_PROCESSING,
                    categorization_attempts=Transaction.categorization_attempts + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(transaction_id)

        self.db.commit()
        return claimed

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def run_batch(
        self,
        user_id: Optional[UUID],
        limit: Optional[int] = None,
        transaction_ids: Optional[Iterable[UUID]] = None,
    ) -> BatchResult:
        """Claim and categorize one batch of pending transactions.

        Per-transaction failures are isolated: the row is reverted to pending
        with the error recorded and the batch continues.
        """
        start_time = time.time()
        limit = limit or settings.CATEGORIZATION_BATCH_LIMIT
        result = BatchResult()

        claimed = self.claim_pending(user_id, limit, transaction_ids)
        result.claimed = len(claimed)
        if not claimed:
            return result

        rules_by_user: Dict[UUID, List[UserRule]] = {}
        verified_patterns = self.store.verified_patterns()
        keyword_categories = self.store.keyword_categories()

        for transaction_id in claimed:
            try:
                self._categorize_one(transaction_id, rules_by_user, keyword_categories, verified_patterns, result)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                result.errors += 1
                categorization_errors_total.inc()
                logger.error(
                    f"Categorization failed for transaction {transaction_id}: {e}",
                    exc_info=True,
                )
                self._revert_to_pending(transaction_id, f"{type(e).__name__}: {e}")
                self.db.commit()

        if self.matcher.invalid_rules:
            self.store.flag_invalid_rules(self.matcher.invalid_rules)
            self.db.commit()

        duration = time.time() - start_time
        categorization_batch_duration_seconds.observe(duration)
        if user_id is not None:
            pending_transactions.set(self.progress(user_id).pending)

        logger.info(
            f"Categorization batch done: {result.categorized} categorized, "
            f"{result.needs_review} needs_review, {result.failed} failed, "
            f"{result.requeued} requeued, {result.errors} errors",
            extra={"user_id": str(user_id) if user_id else None, "duration_ms": round(duration * 1000, 2)},
        )
        return result

    def _categorize_one(
        self,
        transaction_id: UUID,
        rules_by_user: Dict[UUID, List[UserRule]],
        keyword_categories: list,
        verified_patterns: list,
        result: BatchResult,
    ) -> None:
        txn = self.db.get(Transaction, transaction_id, populate_existing=True)
        if txn is None or txn.categorization_status != _PROCESSING:
            result.skipped += 1
            return

        seen_user_update = txn.user_updated_at

        # A user-set category is final; only close out the claim
        if txn.category_source == CategorySource.USER.value:
            self._write(txn.id, seen_user_update, {"categorization_status": _CATEGORIZED})
            result.skipped += 1
            return

        if txn.user_id not in rules_by_user:
            rules_by_user[txn.user_id] = self.store.active_rules(txn.user_id)

        # Step 1: user rules
        tier = self.matcher.match_user_rules(txn, rules_by_user[txn.user_id])

        # Step 2: category keywords
        if tier is None:
            tier = self.matcher.match_category_keywords(txn, keyword_categories)

        # Step 3: verified global patterns
        if tier is None:
            tier = self.matcher.match_global_patterns(txn, verified_patterns)

        # Step 4: similarity over labeled examples
        missing_embedding = False
        if tier is None:
            if txn.embedding is not None:
                tier = self.classifier.classify(txn.user_id, txn.embedding)
            else:
                missing_embedding = True

        status, values = self._decide(txn, tier, missing_embedding)
        if not self._write(txn.id, seen_user_update, values):
            logger.info(
                f"Discarded automated result for transaction {txn.id}: changed by user",
                extra={"user_id": str(txn.user_id)},
            )
            result.skipped += 1
            return

        if tier is not None and tier.method == "rule" and tier.source_id is not None:
            self.store.record_rule_match(tier.source_id)
        elif tier is not None and tier.method == "global_pattern":
            self.store.record_pattern_match(tier.source_id)

        method = tier.method if tier is not None else "none"
        if status == _PENDING:
            result.requeued += 1
            result.needs_embedding_ids.append(txn.id)
            return

        transactions_categorized_total.labels(method=method, status=status).inc()
        if tier is not None:
            categorization_confidence_histogram.labels(method=method).observe(tier.confidence)

        if status == _CATEGORIZED:
            result.categorized += 1
        elif status == _NEEDS_REVIEW:
            result.needs_review += 1
        else:
            result.failed += 1
            if missing_embedding:
                result.needs_embedding_ids.append(txn.id)

    def _decide(self, txn: Transaction, tier: Optional[TierResult], missing_embedding: bool):
        """Map a tier outcome to the status and column values to write."""
        if tier is not None:
            confidence = round(max(0.0, min(1.0, tier.confidence)), 4)
            suggestion = {
                "ai_category_id": tier.category_id,
                "ai_subcategory_id": tier.subcategory_id,
                "confidence": confidence,
                "ai_explanation": tier.explanation,
                "categorization_method": tier.method,
                "categorization_error": None,
            }
            if tier.is_deterministic or confidence >= self.high_confidence_threshold:
                return _CATEGORIZED, {
                    **suggestion,
                    "categorization_status": _CATEGORIZED,
                    "category_id": tier.category_id,
                    "subcategory_id": tier.subcategory_id,
                    "category_source": CategorySource.AUTO.value,
                    "is_reviewed": False,
                }
            return _NEEDS_REVIEW, {
                **suggestion,
                "categorization_status": _NEEDS_REVIEW,
                "category_id": None,
                "subcategory_id": None,
                "category_source": CategorySource.AUTO.value,
                "is_reviewed": False,
            }

        if missing_embedding and self.embeddings_enabled and txn.categorization_attempts < self.max_attempts:
            return _PENDING, {"categorization_status": _PENDING}

        return _FAILED, {
            "categorization_status": _FAILED,
            "category_id": None,
            "subcategory_id": None,
            "ai_category_id": None,
            "ai_subcategory_id": None,
            "confidence": None,
            "ai_explanation": NO_MATCH_EXPLANATION,
            "categorization_method": None,
            "categorization_error": "embedding unavailable" if missing_embedding else None,
            "is_reviewed": False,
        }

    def _write(self, transaction_id: UUID, seen_user_update, values: dict) -> bool:
        """Conditional write-back; False if the row left processing or the user edited it."""
        stmt = update(Transaction).where(
            Transaction.id == transaction_id,
            Transaction.categorization_status == _PROCESSING,
        )
        if seen_user_update is None:
            stmt = stmt.where(Transaction.user_updated_at.is_(None))
        else:
            stmt = stmt.where(Transaction.user_updated_at == seen_user_update)

        result = self.db.execute(
            stmt.values(updated_at=utcnow(), **values).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _revert_to_pending(self, transaction_id: UUID, error: str) -> None:
        self.db.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.categorization_status == _PROCESSING,
            )
            .values(
                categorization_status=_PENDING,
                categorization_error=error[:2000],
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Progress / maintenance
    # ------------------------------------------------------------------

    def progress(self, user_id: UUID) -> CategorizationProgress:
        """Aggregate durable row state into a progress view."""
        rows = self.db.execute(
            select(Transaction.categorization_status, func.count(Transaction.id))
            .where(Transaction.user_id == user_id)
            .group_by(Transaction.categorization_status)
        ).all()
        counts = {status: count for status, count in rows}
        return CategorizationProgress(
            total=sum(counts.values()),
            pending=counts.get(_PENDING, 0),
            processing=counts.get(_PROCESSING, 0),
            categorized=counts.get(_CATEGORIZED, 0),
            needs_review=counts.get(_NEEDS_REVIEW, 0),
            failed=counts.get(_FAILED, 0),
        )

    def count_pending(self, user_id: UUID) -> int:
        return self.db.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == user_id,
                Transaction.categorization_status == _PENDING,
            )
        ) or 0

    def reset_stale_processing(self, older_than: Optional[timedelta] = None) -> int:
        """Return rows stuck in processing (crashed worker) to pending.

        Args:
            older_than: Age of the claim after which it counts as stale

        Returns:
            Number of rows reset
        """
        older_than = older_than or timedelta(minutes=settings.CATEGORIZATION_STALE_MINUTES)
        cutoff = utcnow() - older_than
        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.categorization_status == _PROCESSING,
                Transaction.updated_at < cutoff,
            )
            .values(categorization_status=_PENDING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            logger.warning(f"Reset {result.rowcount} stale processing transactions to pending")
        return result.rowcount
