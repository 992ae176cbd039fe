"""Persistence for user rules and global-pattern match bookkeeping.

All counter changes are single UPDATE statements (col = col + 1) so that
concurrent workers never lose increments.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..models import Category, GlobalPattern, UserRule
from ..models.base import utcnow
from ..models.user_rule import MatchField, PatternType, RuleSource
from .normalization import normalize_pattern

logger = logging.getLogger(__name__)


class PatternStore:
    """Read and update the rule-based tiers' data for one session."""

    def __init__(self, db: Session):
        self.db = db

    def active_rules(self, user_id: UUID) -> List[UserRule]:
        """Load a user's active, valid rules."""
        stmt = (
            select(UserRule)
            .where(
                UserRule.user_id == user_id,
                UserRule.is_active.is_(True),
                UserRule.is_invalid.is_(False),
            )
        )
        return list(self.db.scalars(stmt))

    def verified_patterns(self) -> List[GlobalPattern]:
        """Load all verified global patterns."""
        stmt = select(GlobalPattern).where(GlobalPattern.is_verified.is_(True))
        return list(self.db.scalars(stmt))

    def keyword_categories(self) -> List[Category]:
        """Categories that carry keywords, with subcategories loaded, in slug order."""
        stmt = select(Category).options(selectinload(Category.subcategories)).order_by(Category.slug)
        return [category for category in self.db.scalars(stmt) if category.keywords]

    def record_rule_match(self, rule_id: UUID) -> None:
        self.db.execute(
            update(UserRule)
            .where(UserRule.id == rule_id)
            .values(match_count=UserRule.match_count + 1, last_matched_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    def record_pattern_match(self, pattern_id: UUID) -> None:
        self.db.execute(
            update(GlobalPattern)
            .where(GlobalPattern.id == pattern_id)
            .values(match_count=GlobalPattern.match_count + 1, last_matched_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    def flag_invalid_rules(self, invalid: Dict[UUID, str]) -> None:
        """Mark rules whose pattern failed to compile so their owners can fix them."""
        for rule_id, reason in invalid.items():
            self.db.execute(
                update(UserRule)
                .where(UserRule.id == rule_id, UserRule.is_invalid.is_(False))
                .values(is_invalid=True, invalid_reason=reason)
                .execution_options(synchronize_session=False)
            )

    def upsert_learned_rule(
        self,
        user_id: UUID,
        pattern: str,
        category_id: UUID,
        subcategory_id: Optional[UUID],
        source_transaction_id: Optional[UUID] = None,
    ) -> Optional[UserRule]:
        """Create or retarget the keyword rule learned from a user correction.

        An existing keyword rule with the same pattern keeps its priority and
        match history; only its target category moves. Learned rules are
        reactivated, manual ones keep the owner's on/off choice. A regex or
        amount-range rule holding the pattern is left alone and None is returned.
        Must run inside the caller's transaction.
        """
        pattern = normalize_pattern(pattern)
        rule = self._find_rule(user_id, pattern)

        if rule is None:
            candidate = UserRule(
                user_id=user_id,
                pattern=pattern,
                pattern_type=PatternType.KEYWORD.value,
                match_field=MatchField.DESCRIPTION.value,
                category_id=category_id,
                subcategory_id=subcategory_id,
                priority=0,
                is_active=True,
                source=RuleSource.LEARNED_FROM_FEEDBACK.value,
                source_transaction_id=source_transaction_id,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(candidate)
                    self.db.flush()
                logger.info(
                    f"Learned rule '{pattern}' from feedback",
                    extra={"user_id": str(user_id)},
                )
                return candidate
            except IntegrityError:
                # Concurrent feedback created the same (user, pattern) rule
                rule = self._find_rule(user_id, pattern)
                if rule is None:
                    raise

        if rule.pattern_type != PatternType.KEYWORD.value:
            logger.info(
                f"Kept {rule.pattern_type} rule '{pattern}'; feedback does not retarget it",
                extra={"user_id": str(user_id), "rule_id": str(rule.id)},
            )
            return None

        rule.category_id = category_id
        rule.subcategory_id = subcategory_id
        if rule.source != RuleSource.MANUAL.value:
            rule.is_active = True
        self.db.flush()
        return rule

    def create_rule(self, user_id: UUID, **fields) -> UserRule:
        """Insert a manual rule; IntegrityError propagates on duplicate pattern."""
        fields["pattern"] = normalize_pattern(fields["pattern"], fields.get("pattern_type"))
        for bound in ("amount_min", "amount_max"):
            if fields.get(bound) is not None:
                fields[bound] = Decimal(str(fields[bound]))
        rule = UserRule(user_id=user_id, source=RuleSource.MANUAL.value, **fields)
        with self.db.begin_nested():
            self.db.add(rule)
            self.db.flush()
        return rule

    def get_rule(self, user_id: UUID, rule_id: UUID) -> Optional[UserRule]:
        return self.db.scalar(
            select(UserRule).where(UserRule.id == rule_id, UserRule.user_id == user_id)
        )

    def list_rules(self, user_id: UUID) -> List[UserRule]:
        stmt = (
            select(UserRule)
            .where(UserRule.user_id == user_id)
            .order_by(UserRule.priority.desc(), UserRule.match_count.desc(), UserRule.created_at.desc())
        )
        return list(self.db.scalars(stmt))

    def _find_rule(self, user_id: UUID, pattern: str) -> Optional[UserRule]:
        return self.db.scalar(
            select(UserRule).where(UserRule.user_id == user_id, UserRule.pattern == pattern)
        )
