"""Reconciliation result types and errors.

Exception hierarchy:
- ReconciliationError: Base (HTTP 422)
  - InvoiceNotFoundError: Invoice unknown or owned by another user (HTTP 404)
  - TransactionNotFoundError: Transaction unknown or owned by another user (HTTP 404)
  - LinkConflictError: Transaction already linked to another invoice (HTTP 409)
"""

from dataclasses import dataclass
from typing import Dict

from ..models import Transaction


@dataclass
class Suggestion:
    """Scored candidate transaction for an invoice.

    Attributes:
        transaction: Candidate debit transaction
        score: Weighted composite score (0.0-1.0)
        breakdown: amount_score, date_score and vendor_score
    """
    transaction: Transaction
    score: float
    breakdown: Dict[str, float]


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""
    pass


class InvoiceNotFoundError(ReconciliationError):
    """Invoice does not exist for this user."""
    pass


class LinkConflictError(ReconciliationError):
    """Transaction is already linked to a different invoice."""
    pass


class TransactionNotFoundError(ReconciliationError):
    """Transaction does not exist for this user."""
    pass
