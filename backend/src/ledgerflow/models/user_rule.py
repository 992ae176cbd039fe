"""UserRule SQLAlchemy model and the closed pattern enums shared with GlobalPattern."""

import enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow


class PatternType(str, enum.Enum):
    """How a rule's pattern is evaluated."""
    KEYWORD = "keyword"            # case-insensitive substring
    REGEX = "regex"                # re.search with IGNORECASE
    AMOUNT_RANGE = "amount_range"  # abs(amount) within [amount_min, amount_max]


class MatchField(str, enum.Enum):
    """Which part of a transaction a rule looks at."""
    DESCRIPTION = "description"
    AMOUNT = "amount"
    COMBINED = "combined"  # description predicate AND amount bounds when set


class RuleSource(str, enum.Enum):
    MANUAL = "manual"
    LEARNED_FROM_FEEDBACK = "learned_from_feedback"


class UserRule(Base):
    """Per-user categorization rule.

    Rules are either created manually or learned from a user's category
    correction (pattern = normalized transaction description). The first tier
    of the categorization pipeline evaluates a user's active rules and picks
    the winner by priority, then match_count, then recency.

    A rule whose regex fails to compile is never raised on; it is flagged
    with is_invalid/invalid_reason so its owner can fix it.
    """
    __tablename__ = "user_rule"
    __table_args__ = (
        Index("uq_user_rule_user_pattern", "user_id", "pattern", unique=True),
        Index("ix_user_rule_user_active", "user_id", "is_active"),
        CheckConstraint(
            "pattern_type IN ('keyword', 'regex', 'amount_range')",
            name="ck_user_rule_pattern_type",
        ),
        CheckConstraint(
            "match_field IN ('description', 'amount', 'combined')",
            name="ck_user_rule_match_field",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)

    pattern = Column(Text, nullable=False)  # keyword: lowercased + trimmed; regex: trimmed
    pattern_type = Column(Text, nullable=False, default=PatternType.KEYWORD.value)
    match_field = Column(Text, nullable=False, default=MatchField.DESCRIPTION.value)
    amount_min = Column(Numeric(14, 2), nullable=True)
    amount_max = Column(Numeric(14, 2), nullable=True)

    category_id = Column(Uuid(as_uuid=True), ForeignKey("category.id", ondelete="CASCADE"), nullable=False)
    subcategory_id = Column(Uuid(as_uuid=True), ForeignKey("subcategory.id", ondelete="SET NULL"), nullable=True)

    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    match_count = Column(Integer, nullable=False, default=0)
    last_matched_at = Column(DateTime(timezone=True), nullable=True)

    source = Column(Text, nullable=False, default=RuleSource.MANUAL.value)
    source_transaction_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bank_transaction.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_invalid = Column(Boolean, nullable=False, default=False)
    invalid_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("Category")
    subcategory = relationship("Subcategory")

    def __repr__(self):
        return f"<UserRule(id={self.id}, pattern={self.pattern!r}, type={self.pattern_type}, priority={self.priority})>"
