"""Invoice reconciliation API endpoints."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..categorization.schemas import TransactionSchema
from ..database import get_db
from ..dependencies import get_current_user_id
from .ports import (
    InvoiceNotFoundError,
    LinkConflictError,
    ReconciliationError,
    TransactionNotFoundError,
)
from .schemas import InvoiceSchema, LinkRequest, SuggestionSchema
from .service import ReconciliationService

router = APIRouter(prefix="/api/v1/invoices", tags=["reconciliation"])


def _raise_http(e: ReconciliationError):
    if isinstance(e, (InvoiceNotFoundError, TransactionNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, LinkConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.get("/{invoice_id}/suggestions", response_model=List[SuggestionSchema])
def get_suggestions(
    invoice_id: UUID,
    min_score: float = Query(0.0, ge=0.0, le=1.0),
    limit: Optional[int] = Query(None, ge=1, le=50),
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Candidate transactions for an invoice, best score first.

    Raises:
        HTTPException 404: Invoice not found
        HTTPException 422: Invoice has no total amount
    """
    try:
        ranked = ReconciliationService(db).suggestions(user_id, invoice_id, min_score=min_score, limit=limit)
    except ReconciliationError as e:
        _raise_http(e)

    return [
        SuggestionSchema(
            transaction=TransactionSchema.model_validate(s.transaction),
            score=s.score,
            breakdown=s.breakdown,
        )
        for s in ranked
    ]


@router.post("/{invoice_id}/link", response_model=InvoiceSchema)
def link_invoice(
    invoice_id: UUID,
    request: LinkRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Manually link an invoice to a transaction.

    Raises:
        HTTPException 404: Invoice or transaction not found
        HTTPException 409: Transaction already linked to another invoice
    """
    try:
        invoice = ReconciliationService(db).link(user_id, invoice_id, request.transaction_id)
    except ReconciliationError as e:
        _raise_http(e)
    return InvoiceSchema.model_validate(invoice)


@router.post("/{invoice_id}/unlink", response_model=InvoiceSchema)
def unlink_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Remove an invoice's link.

    Raises:
        HTTPException 404: Invoice not found
        HTTPException 422: Invoice is not linked
    """
    try:
        invoice = ReconciliationService(db).unlink(user_id, invoice_id)
    except ReconciliationError as e:
        _raise_http(e)
    return InvoiceSchema.model_validate(invoice)


@router.post("/{invoice_id}/auto-match", response_model=InvoiceSchema)
def auto_match_invoice(
    invoice_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    """Link the best candidate when it clears the auto-match threshold."""
    try:
        invoice = ReconciliationService(db).auto_match(user_id, invoice_id)
    except ReconciliationError as e:
        _raise_http(e)
    return InvoiceSchema.model_validate(invoice)
