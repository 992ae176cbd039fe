"""Invoice SQLAlchemy model.

An invoice links to at most one transaction and a transaction is linked by
at most one invoice; the unique constraint on matched_transaction_id is the
arbiter for concurrent link attempts.
"""

import enum
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Index, Numeric, Text, Uuid
from sqlalchemy.orm import relationship

from .base import Base, PortableJSONB, utcnow


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    MATCHED = "matched"
    UNMATCHED = "unmatched"


class MatchedBy(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class Invoice(Base):
    """Vendor invoice awaiting reconciliation against a bank transaction."""
    __tablename__ = "invoice"
    __table_args__ = (
        Index("ix_invoice_user_status", "user_id", "status"),
        CheckConstraint(
            "match_confidence IS NULL OR (match_confidence >= 0 AND match_confidence <= 1)",
            name="ck_invoice_match_confidence",
        ),
        CheckConstraint(
            "status IN ('pending', 'matched', 'unmatched')",
            name="ck_invoice_status",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    vendor_name = Column(Text, nullable=True)
    invoice_number = Column(Text, nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=True)
    invoice_date = Column(Date, nullable=True)
    status = Column(Text, nullable=False, default=InvoiceStatus.PENDING.value)

    matched_transaction_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("bank_transaction.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )
    match_confidence = Column(Numeric(5, 4), nullable=True)
    match_breakdown = Column(PortableJSONB, nullable=True)  # amount_score/date_score/vendor_score at link time
    matched_at = Column(DateTime(timezone=True), nullable=True)
    matched_by = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    matched_transaction = relationship("Transaction")

    def __repr__(self):
        return f"<Invoice(id={self.id}, vendor={self.vendor_name!r}, status={self.status})>"
