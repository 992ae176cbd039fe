"""LabeledExample SQLAlchemy model - user-confirmed (description, category) pairs.

Examples are the training set of the similarity tier: every user category
correction upserts one example per (user, normalized description). The
embedding is nullable until the embedding task has computed it.

Example Query (Top 5 nearest examples, PostgreSQL):
    SELECT id, category_id, 1 - (embedding <=> :query_vector) AS similarity
    FROM labeled_example
    WHERE user_id = :user_id AND embedding IS NOT NULL
    ORDER BY embedding <=> :query_vector
    LIMIT 5
"""

import enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import relationship

from ..config import settings
from .base import Base, PortableVector, utcnow


class ExampleSource(str, enum.Enum):
    USER_FEEDBACK = "user_feedback"
    SEED = "seed"


class LabeledExample(Base):
    """Labeled description used for nearest-neighbour categorization."""
    __tablename__ = "labeled_example"
    __table_args__ = (
        Index(
            "uq_labeled_example_user_description",
            "user_id",
            "normalized_description",
            unique=True,
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    description = Column(Text, nullable=False)
    normalized_description = Column(Text, nullable=False)

    embedding = Column(PortableVector(settings.EMBEDDING_DIM), nullable=True)
    embedding_model = Column(Text, nullable=True)

    category_id = Column(Uuid(as_uuid=True), ForeignKey("category.id", ondelete="CASCADE"), nullable=False)
    subcategory_id = Column(Uuid(as_uuid=True), ForeignKey("subcategory.id", ondelete="SET NULL"), nullable=True)

    source = Column(Text, nullable=False, default=ExampleSource.USER_FEEDBACK.value)
    transaction_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bank_transaction.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("Category")
    subcategory = relationship("Subcategory")

    def __repr__(self):
        return f"<LabeledExample(id={self.id}, description={self.normalized_description!r})>"
