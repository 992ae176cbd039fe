"""Feedback learner: turns a user's category correction into training signal.

A single correction, committed atomically:
1. Sets the transaction's category (categorized, category_source = user)
2. Upserts the labeled example for (user, normalized description)
3. Upserts the learned keyword rule for the normalized description
4. Reinforces the cross-user global pattern
5. Optionally applies the category to the user's other not-yet-categorized
   transactions with the same normalized description (bounded)

Validation happens before anything is written; any failure afterwards rolls
the whole correction back.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..models import (
    Category,
    CategorizationStatus,
    CategorySource,
    ExampleSource,
    GlobalPattern,
    LabeledExample,
    Subcategory,
    Transaction,
    UserRule,
)
from ..models.base import utcnow
from ..observability.metrics import feedback_events_total, feedback_propagated_total
from .embedding import EmbeddingGenerationService
from .global_patterns import GlobalPatternService
from .normalization import normalize_description
from .pattern_store import PatternStore
from .ports import FeedbackValidationError, NotFoundError

logger = logging.getLogger(__name__)

USER_METHOD = "user"


@dataclass
class FeedbackOutcome:
    """Result of a feedback submission.

    Attributes:
        transaction: The corrected transaction (refreshed)
        similar_ids: Other transactions that received the same category
        rule: Learned or retargeted keyword rule (None for blank descriptions
            or when a regex or amount-range rule already holds the pattern)
        example: Upserted labeled example (None for blank descriptions)
        global_pattern: Reinforced global pattern (None for blank descriptions)
    """
    transaction: Transaction
    similar_ids: List[UUID] = field(default_factory=list)
    rule: Optional[UserRule] = None
    example: Optional[LabeledExample] = None
    global_pattern: Optional[GlobalPattern] = None

    @property
    def similar_updated(self) -> int:
        return len(self.similar_ids)


class FeedbackLearner:
    """Apply user corrections to the transaction and all learning stores."""

    def __init__(
        self,
        db: Session,
        embedder: Optional[EmbeddingGenerationService] = None,
        propagation_limit: Optional[int] = None,
        global_patterns: Optional[GlobalPatternService] = None,
    ):
        self.db = db
        self.embedder = embedder
        self.propagation_limit = (
            propagation_limit if propagation_limit is not None else settings.FEEDBACK_PROPAGATION_LIMIT
        )
        self.store = PatternStore(db)
        self.global_patterns = global_patterns or GlobalPatternService(db)

    def submit(
        self,
        user_id: UUID,
        transaction_id: UUID,
        category_id: UUID,
        subcategory_id: Optional[UUID] = None,
        apply_to_similar: bool = False,
    ) -> FeedbackOutcome:
        """Record a user's category correction.

        Args:
            user_id: Acting user (must own the transaction)
            transaction_id: Transaction being corrected
            category_id: Confirmed category
            subcategory_id: Confirmed subcategory (must belong to category_id)
            apply_to_similar: Also categorize same-description transactions

        Returns:
            FeedbackOutcome

        Raises:
            NotFoundError: Transaction unknown or owned by another user
            FeedbackValidationError: Category / subcategory invalid
        """
        txn = self.db.scalar(
            select(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == user_id)
        )
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        self._validate_category(category_id, subcategory_id)

        normalized = txn.normalized_description or normalize_description(txn.display_description)

        # Provider call happens before any row is touched
        vector = None
        if normalized and self.embedder is not None:
            vector = self.embedder.embed_text(normalized, target="example")

        outcome = FeedbackOutcome(transaction=txn)
        try:
            now = utcnow()

            # Step 1: the corrected transaction
            txn.category_id = category_id
            txn.subcategory_id = subcategory_id
            txn.categorization_status = CategorizationStatus.CATEGORIZED.value
            txn.category_source = CategorySource.USER.value
            txn.is_reviewed = True
            txn.confidence = 1.0
            txn.categorization_method = USER_METHOD
            txn.categorization_error = None
            txn.user_updated_at = now
            self.db.flush()

            if normalized:
                # Step 2: labeled example
                outcome.example = self._upsert_example(
                    user_id, txn, normalized, category_id, subcategory_id, vector
                )

                # Step 3: learned rule
                outcome.rule = self.store.upsert_learned_rule(
                    user_id, normalized, category_id, subcategory_id, source_transaction_id=txn.id
                )

                # Step 4: global pattern
                outcome.global_pattern = self.global_patterns.reinforce(
                    normalized, category_id, subcategory_id, user_id
                )

                # Step 5: propagation
                if apply_to_similar:
                    outcome.similar_ids = self._apply_to_similar(
                        user_id, txn.id, normalized, category_id, subcategory_id, now
                    )

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(txn)
        feedback_events_total.labels(apply_to_similar=str(bool(apply_to_similar)).lower()).inc()
        if outcome.similar_ids:
            feedback_propagated_total.inc(len(outcome.similar_ids))

        logger.info(
            f"Feedback recorded for transaction {txn.id}",
            extra={"user_id": str(user_id), "similar_updated": outcome.similar_updated},
        )
        return outcome

    def _validate_category(self, category_id: UUID, subcategory_id: Optional[UUID]) -> None:
        if self.db.get(Category, category_id) is None:
            raise FeedbackValidationError(f"Category {category_id} does not exist")
        if subcategory_id is None:
            return
        subcategory = self.db.get(Subcategory, subcategory_id)
        if subcategory is None:
            raise FeedbackValidationError(f"Subcategory {subcategory_id} does not exist")
        if subcategory.category_id != category_id:
            raise FeedbackValidationError(
                f"Subcategory {subcategory_id} does not belong to category {category_id}"
            )

    def _upsert_example(
        self,
        user_id: UUID,
        txn: Transaction,
        normalized: str,
        category_id: UUID,
        subcategory_id: Optional[UUID],
        vector: Optional[List[float]],
    ) -> LabeledExample:
        example = self._find_example(user_id, normalized)
        if example is None:
            candidate = LabeledExample(
                user_id=user_id,
                description=txn.display_description,
                normalized_description=normalized,
                category_id=category_id,
                subcategory_id=subcategory_id,
                source=ExampleSource.USER_FEEDBACK.value,
                transaction_id=txn.id,
                embedding=vector,
                embedding_model=self.embedder.model_name if vector is not None else None,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(candidate)
                    self.db.flush()
                return candidate
            except IntegrityError:
                example = self._find_example(user_id, normalized)
                if example is None:
                    raise

        example.description = txn.display_description
        example.category_id = category_id
        example.subcategory_id = subcategory_id
        example.transaction_id = txn.id
        if vector is not None:
            example.embedding = vector
            example.embedding_model = self.embedder.model_name
        self.db.flush()
        return example

    def _find_example(self, user_id: UUID, normalized: str) -> Optional[LabeledExample]:
        return self.db.scalar(
            select(LabeledExample).where(
                LabeledExample.user_id == user_id,
                LabeledExample.normalized_description == normalized,
            )
        )

    def _apply_to_similar(
        self,
        user_id: UUID,
        exclude_id: UUID,
        normalized: str,
        category_id: UUID,
        subcategory_id: Optional[UUID],
        now,
    ) -> List[UUID]:
        not_categorized = Transaction.categorization_status != CategorizationStatus.CATEGORIZED.value
        ids = self.db.scalars(
            select(Transaction.id)
            .where(
                Transaction.user_id == user_id,
                Transaction.normalized_description == normalized,
                Transaction.id != exclude_id,
                not_categorized,
            )
            .order_by(Transaction.transaction_date.desc(), Transaction.id)
            .limit(self.propagation_limit)
        ).all()
        if not ids:
            return []

        self.db.execute(
            update(Transaction)
            .where(Transaction.id.in_(ids), not_categorized)
            .values(
                category_id=category_id,
                subcategory_id=subcategory_id,
                categorization_status=CategorizationStatus.CATEGORIZED.value,
                category_source=CategorySource.USER.value,
                categorization_method=USER_METHOD,
                categorization_error=None,
                confidence=1.0,
                is_reviewed=True,
                user_updated_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return list(ids)
