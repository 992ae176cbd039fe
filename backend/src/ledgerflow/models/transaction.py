"""Bank transaction SQLAlchemy model.

Transactions are created by the (external) statement import with
categorization_status = pending and move through:

    pending → processing → categorized | needs_review | failed

A user category correction always leaves the row categorized with
category_source = user, and automated runs never overwrite it.
"""

import enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship, validates

from ..categorization.normalization import normalize_description
from ..config import settings
from .base import Base, PortableVector, utcnow


class CategorizationStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    CATEGORIZED = "categorized"
    NEEDS_REVIEW = "needs_review"
    FAILED = "failed"


class CategorySource(str, enum.Enum):
    AUTO = "auto"
    USER = "user"


class TransactionType(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


TERMINAL_STATUSES = (
    CategorizationStatus.CATEGORIZED.value,
    CategorizationStatus.NEEDS_REVIEW.value,
    CategorizationStatus.FAILED.value,
)


class Transaction(Base):
    """Bank transaction owned by a single user."""
    __tablename__ = "bank_transaction"
    __table_args__ = (
        Index("ix_bank_transaction_user_status", "user_id", "categorization_status"),
        Index("ix_bank_transaction_user_normalized", "user_id", "normalized_description"),
        Index("ix_bank_transaction_user_date", "user_id", "transaction_date"),
        CheckConstraint(
            "confidence IS NULL OR (confidence >= 0 AND confidence <= 1)",
            name="ck_bank_transaction_confidence",
        ),
        CheckConstraint(
            "categorization_status IN ('pending', 'processing', 'categorized', 'needs_review', 'failed')",
            name="ck_bank_transaction_status",
        ),
        CheckConstraint(
            "category_source IS NULL OR category_source IN ('auto', 'user')",
            name="ck_bank_transaction_category_source",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)

    transaction_date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    original_description = Column(Text, nullable=True)
    normalized_description = Column(Text, nullable=False, default="")
    counterparty_name = Column(Text, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False)
    transaction_type = Column(Text, nullable=False, default=TransactionType.DEBIT.value)

    # Confirmed category (set by a high-confidence tier or by the user)
    category_id = Column(Uuid(as_uuid=True), ForeignKey("category.id", ondelete="SET NULL"), nullable=True)
    subcategory_id = Column(Uuid(as_uuid=True), ForeignKey("subcategory.id", ondelete="SET NULL"), nullable=True)

    # Model suggestion (kept for needs_review rows)
    ai_category_id = Column(Uuid(as_uuid=True), ForeignKey("category.id", ondelete="SET NULL"), nullable=True)
    ai_subcategory_id = Column(Uuid(as_uuid=True), ForeignKey("subcategory.id", ondelete="SET NULL"), nullable=True)
    confidence = Column(Numeric(5, 4), nullable=True)
    ai_explanation = Column(Text, nullable=True)
    categorization_method = Column(Text, nullable=True)  # rule | global_pattern | similarity | user

    categorization_status = Column(Text, nullable=False, default=CategorizationStatus.PENDING.value)
    categorization_error = Column(Text, nullable=True)
    categorization_attempts = Column(Integer, nullable=False, default=0)
    is_reviewed = Column(Boolean, nullable=False, default=False)
    category_source = Column(Text, nullable=True)
    user_updated_at = Column(DateTime(timezone=True), nullable=True)

    embedding = Column(PortableVector(settings.EMBEDDING_DIM), nullable=True)
    embedding_generated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("Category", foreign_keys=[category_id])
    subcategory = relationship("Subcategory", foreign_keys=[subcategory_id])

    @validates("description", "original_description")
    def _sync_normalized_description(self, key, value):
        if key == "description":
            source = value or self.original_description
        else:
            source = self.description or value
        self.normalized_description = normalize_description(source)
        return value

    @property
    def display_description(self) -> str:
        return self.description or self.original_description or ""

    def __repr__(self):
        return (
            f"<Transaction(id={self.id}, description={self.display_description!r}, "
            f"status={self.categorization_status})>"
        )
