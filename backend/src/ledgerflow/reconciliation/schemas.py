"""Pydantic schemas for invoice reconciliation endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..categorization.schemas import TransactionSchema


class MatchBreakdown(BaseModel):
    """Component scores behind a suggestion or a stored link."""
    amount_score: float = Field(..., ge=0.0, le=1.0)
    date_score: float = Field(..., ge=0.0, le=1.0)
    vendor_score: float = Field(..., ge=0.0, le=1.0)


class InvoiceSchema(BaseModel):
    """Invoice as returned by the API."""
    id: UUID
    vendor_name: Optional[str] = None
    invoice_number: Optional[str] = None
    total_amount: Optional[Decimal] = None
    invoice_date: Optional[date] = None
    status: str
    matched_transaction_id: Optional[UUID] = None
    match_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    match_breakdown: Optional[MatchBreakdown] = None
    matched_at: Optional[datetime] = None
    matched_by: Optional[str] = None

    class Config:
        from_attributes = True


class SuggestionSchema(BaseModel):
    """Scored candidate transaction"""
    transaction: TransactionSchema
    score: float = Field(..., ge=0.0, le=1.0)
    breakdown: MatchBreakdown


class LinkRequest(BaseModel):
    """Manual link of an invoice to a transaction."""
    transaction_id: UUID
