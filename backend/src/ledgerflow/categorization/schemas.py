"""Pydantic schemas for categorization, feedback and rule endpoints."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.user_rule import MatchField, PatternType


class CategorizeRequest(BaseModel):
    """Request to categorize the caller's pending transactions."""
    limit: Optional[int] = Field(None, ge=1, le=1000)


class CategorizeResponse(BaseModel):
    """Categorization job acknowledgement."""
    message: str
    queued_count: int
    job_id: Optional[str] = None
    categorized_count: Optional[int] = None  # only when run inline


class ProgressResponse(BaseModel):
    """Durable categorization progress for the caller."""
    total: int
    pending: int
    processing: int
    completed: int
    categorized: int
    needs_review: int
    failed: int
    in_progress: bool
    progress_percent: float


class TransactionSchema(BaseModel):
    """Transaction as returned by the API."""
    id: UUID
    transaction_date: date
    description: Optional[str] = None
    counterparty_name: Optional[str] = None
    amount: Decimal
    transaction_type: str
    category_id: Optional[UUID] = None
    subcategory_id: Optional[UUID] = None
    ai_category_id: Optional[UUID] = None
    ai_subcategory_id: Optional[UUID] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    ai_explanation: Optional[str] = None
    categorization_method: Optional[str] = None
    categorization_status: str
    category_source: Optional[str] = None
    is_reviewed: bool

    class Config:
        from_attributes = True


class FeedbackRequest(BaseModel):
    """User category correction."""
    category_id: UUID
    subcategory_id: Optional[UUID] = None
    apply_to_similar: bool = False


class FeedbackResponse(BaseModel):
    """Outcome of a category correction."""
    success: bool
    transaction: TransactionSchema
    similar_updated: Optional[int] = None
    similar_ids: Optional[List[UUID]] = None


class RuleBase(BaseModel):
    """Fields shared by rule create / response schemas"""
    pattern: str = Field(..., min_length=1, max_length=500)
    pattern_type: PatternType = PatternType.KEYWORD
    match_field: MatchField = MatchField.DESCRIPTION
    amount_min: Optional[Decimal] = Field(None, ge=0)
    amount_max: Optional[Decimal] = Field(None, ge=0)
    category_id: UUID
    subcategory_id: Optional[UUID] = None
    priority: int = 0
    is_active: bool = True


class RuleCreateRequest(RuleBase):
    """Manual rule creation."""

    @field_validator('pattern')
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Reject whitespace-only patterns"""
        if not v.strip():
            raise ValueError("pattern must not be blank")
        return v

    @model_validator(mode="after")
    def validate_amount_bounds(self):
        """amount_range rules need a bound; bounds must not be inverted"""
        if self.pattern_type == PatternType.AMOUNT_RANGE and self.amount_min is None and self.amount_max is None:
            raise ValueError("amount_range rules require amount_min or amount_max")
        if self.amount_min is not None and self.amount_max is not None and self.amount_min > self.amount_max:
            raise ValueError("amount_min must not exceed amount_max")
        return self


class RuleUpdateRequest(BaseModel):
    """Partial rule update; omitted fields are left unchanged."""
    pattern: Optional[str] = Field(None, min_length=1, max_length=500)
    pattern_type: Optional[PatternType] = None
    match_field: Optional[MatchField] = None
    amount_min: Optional[Decimal] = Field(None, ge=0)
    amount_max: Optional[Decimal] = Field(None, ge=0)
    category_id: Optional[UUID] = None
    subcategory_id: Optional[UUID] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class RuleSchema(BaseModel):
    """Rule as returned by the API."""
    id: UUID
    pattern: str
    pattern_type: str
    match_field: str
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None
    category_id: UUID
    subcategory_id: Optional[UUID] = None
    priority: int
    is_active: bool
    match_count: int
    last_matched_at: Optional[datetime] = None
    source: str
    is_invalid: bool
    invalid_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RuleListResponse(BaseModel):
    """List of the caller's rules."""
    rules: List[RuleSchema]
    total: int
