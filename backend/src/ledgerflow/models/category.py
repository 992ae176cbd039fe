"""Category and Subcategory SQLAlchemy models.

Categories form the fixed two-level taxonomy every categorization result
points into. A subcategory belongs to exactly one category.
"""

from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, Index, Text, Uuid, DateTime
from sqlalchemy.orm import relationship

from .base import Base, PortableJSONB, utcnow


class Category(Base):
    """Top-level transaction category (e.g. "Travel", "Utilities")."""
    __tablename__ = "category"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False, unique=True)
    is_system = Column(Boolean, nullable=False, default=True)
    keywords = Column(PortableJSONB, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    subcategories = relationship(
        "Subcategory",
        back_populates="category",
        order_by="Subcategory.name",
    )

    def __repr__(self):
        return f"<Category(id={self.id}, slug={self.slug})>"


class Subcategory(Base):
    """Second-level category; always scoped to its parent category."""
    __tablename__ = "subcategory"
    __table_args__ = (
        Index("uq_subcategory_category_slug", "category_id", "slug", unique=True),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    category_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False)
    is_system = Column(Boolean, nullable=False, default=True)
    keywords = Column(PortableJSONB, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    category = relationship("Category", back_populates="subcategories")

    def __repr__(self):
        return f"<Subcategory(id={self.id}, slug={self.slug}, category_id={self.category_id})>"
