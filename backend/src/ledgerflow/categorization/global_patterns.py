"""Cross-user global pattern reinforcement.

Every user correction reinforces the (pattern, category) global pattern:

1. Get or create the pattern row (insert under the unique constraint,
   re-select on IntegrityError).
2. Insert a contributor row for (pattern, user). The insert succeeding is
   the one and only signal that this user is new to the pattern, so
   user_count/agreement_count move by exactly one per user.
3. Existing patterns with the same text but another category record the
   user as a dissenting contributor (user_count + 1, agreement unchanged).
4. Promote to verified with a single conditional UPDATE once
   user_count >= MIN_USERS and agreement_count >= MIN_AGREEMENT * user_count.

Patterns are never deleted, only reinforced.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..models import GlobalPattern, GlobalPatternContributor
from ..models.base import utcnow
from ..models.user_rule import MatchField, PatternType
from .normalization import normalize_pattern

logger = logging.getLogger(__name__)


class GlobalPatternService:
    """Reinforce and verify global patterns inside the caller's transaction."""

    def __init__(
        self,
        db: Session,
        min_users: Optional[int] = None,
        min_agreement: Optional[float] = None,
    ):
        self.db = db
        self.min_users = min_users if min_users is not None else settings.GLOBAL_PATTERN_MIN_USERS
        self.min_agreement = (
            min_agreement if min_agreement is not None else settings.GLOBAL_PATTERN_MIN_AGREEMENT
        )

    def reinforce(
        self,
        pattern: str,
        category_id: UUID,
        subcategory_id: Optional[UUID],
        user_id: UUID,
    ) -> GlobalPattern:
        """Record that user_id mapped pattern to category_id.

        Args:
            pattern: Normalized description the user corrected
            category_id: Category the user confirmed
            subcategory_id: Subcategory the user confirmed (optional)
            user_id: Contributing user

        Returns:
            GlobalPattern: The refreshed pattern row
        """
        pattern = normalize_pattern(pattern)
        pattern_id = self._get_or_create(pattern, category_id, subcategory_id)

        # Step 1: occurrence always counts
        values = {"occurrence_count": GlobalPattern.occurrence_count + 1}

        # Step 2: first agreement by this user
        if self._add_contributor(pattern_id, user_id, agreed=True):
            values["user_count"] = GlobalPattern.user_count + 1
            values["agreement_count"] = GlobalPattern.agreement_count + 1
        elif self._flip_to_agreed(pattern_id, user_id):
            values["agreement_count"] = GlobalPattern.agreement_count + 1

        self.db.execute(
            update(GlobalPattern)
            .where(GlobalPattern.id == pattern_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        # Step 3: dissent on competing mappings of the same text
        competing_ids = self.db.scalars(
            select(GlobalPattern.id).where(
                GlobalPattern.pattern == pattern,
                GlobalPattern.category_id != category_id,
            )
        ).all()
        for competing_id in competing_ids:
            if self._add_contributor(competing_id, user_id, agreed=False):
                self.db.execute(
                    update(GlobalPattern)
                    .where(GlobalPattern.id == competing_id)
                    .values(user_count=GlobalPattern.user_count + 1)
                    .execution_options(synchronize_session=False)
                )

        # Step 4: verification
        if self._verify(pattern_id):
            logger.info(
                f"Global pattern '{pattern}' verified",
                extra={"global_pattern_id": str(pattern_id)},
            )

        global_pattern = self.db.get(GlobalPattern, pattern_id)
        self.db.refresh(global_pattern)
        return global_pattern

    def _get_or_create(self, pattern: str, category_id: UUID, subcategory_id: Optional[UUID]) -> UUID:
        existing = self._find(pattern, category_id)
        if existing is not None:
            return existing

        try:
            with self.db.begin_nested():
                created = GlobalPattern(
                    pattern=pattern,
                    pattern_type=PatternType.KEYWORD.value,
                    match_field=MatchField.DESCRIPTION.value,
                    category_id=category_id,
                    subcategory_id=subcategory_id,
                    occurrence_count=0,
                    user_count=0,
                    agreement_count=0,
                )
                self.db.add(created)
                self.db.flush()
            return created.id
        except IntegrityError:
            existing = self._find(pattern, category_id)
            if existing is None:
                raise
            return existing

    def _find(self, pattern: str, category_id: UUID) -> Optional[UUID]:
        return self.db.scalar(
            select(GlobalPattern.id).where(
                GlobalPattern.pattern == pattern,
                GlobalPattern.category_id == category_id,
            )
        )

    def _add_contributor(self, pattern_id: UUID, user_id: UUID, agreed: bool) -> bool:
        """Insert the contributor row; False if this user already contributed."""
        try:
            with self.db.begin_nested():
                self.db.add(
                    GlobalPatternContributor(
                        global_pattern_id=pattern_id,
                        user_id=user_id,
                        agreed=agreed,
                    )
                )
                self.db.flush()
            return True
        except IntegrityError:
            return False

    def _flip_to_agreed(self, pattern_id: UUID, user_id: UUID) -> bool:
        """A previous dissenter now agrees; True if this call flipped them."""
        result = self.db.execute(
            update(GlobalPatternContributor)
            .where(
                GlobalPatternContributor.global_pattern_id == pattern_id,
                GlobalPatternContributor.user_id == user_id,
                GlobalPatternContributor.agreed.is_(False),
            )
            .values(agreed=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _verify(self, pattern_id: UUID) -> bool:
        result = self.db.execute(
            update(GlobalPattern)
            .where(
                GlobalPattern.id == pattern_id,
                GlobalPattern.is_verified.is_(False),
                GlobalPattern.user_count >= self.min_users,
                GlobalPattern.agreement_count * 1.0 >= GlobalPattern.user_count * self.min_agreement,
            )
            .values(is_verified=True, verified_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
