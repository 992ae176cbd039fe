"""GlobalPattern SQLAlchemy models.

A global pattern is a (pattern, category) mapping aggregated across users.
Counters are only ever incremented with single UPDATE statements; the
contributor table records which users have weighed in on a pattern so the
"first time this user agrees" decision is made by a unique insert.
"""

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
from .user_rule import MatchField, PatternType


class GlobalPattern(Base):
    """Cross-user pattern → category mapping.

    Only verified patterns are consulted by the categorization pipeline.
    A pattern becomes verified once enough distinct users contributed
    (user_count) and a large enough share of them agreed (agreement_count).
    Patterns are never deleted, only reinforced.
    """
    __tablename__ = "global_pattern"
    __table_args__ = (
        Index("uq_global_pattern_pattern_category", "pattern", "category_id", unique=True),
        Index("ix_global_pattern_verified", "is_verified"),
        CheckConstraint("agreement_count <= user_count", name="ck_global_pattern_agreement"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    pattern = Column(Text, nullable=False)
    pattern_type = Column(Text, nullable=False, default=PatternType.KEYWORD.value)
    match_field = Column(Text, nullable=False, default=MatchField.DESCRIPTION.value)
    amount_min = Column(Numeric(14, 2), nullable=True)
    amount_max = Column(Numeric(14, 2), nullable=True)

    category_id = Column(Uuid(as_uuid=True), ForeignKey("category.id", ondelete="CASCADE"), nullable=False)
    subcategory_id = Column(Uuid(as_uuid=True), ForeignKey("subcategory.id", ondelete="SET NULL"), nullable=True)

    occurrence_count = Column(Integer, nullable=False, default=0)
    user_count = Column(Integer, nullable=False, default=0)
    agreement_count = Column(Integer, nullable=False, default=0)
    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    match_count = Column(Integer, nullable=False, default=0)
    last_matched_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    contributors = relationship("GlobalPatternContributor", back_populates="global_pattern")

    def __repr__(self):
        return (
            f"<GlobalPattern(id={self.id}, pattern={self.pattern!r}, "
            f"users={self.user_count}, agreed={self.agreement_count}, verified={self.is_verified})>"
        )


class GlobalPatternContributor(Base):
    """One row per (global pattern, user) that has weighed in on the mapping.

    agreed is True when the user confirmed this pattern's category and False
    when they confirmed a different category for the same pattern text.
    """
    __tablename__ = "global_pattern_contributor"
    __table_args__ = (
        Index(
            "uq_global_pattern_contributor",
            "global_pattern_id",
            "user_id",
            unique=True,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    global_pattern_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("global_pattern.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    agreed = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    global_pattern = relationship("GlobalPattern", back_populates="contributors")
