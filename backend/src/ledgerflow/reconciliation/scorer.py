"""Invoice-to-transaction match scoring.

Composite formula:
- amount_score = 1.0 (|diff| < 0.01)
                 | 1 - rel * 5 (rel <= 0.01)
                 | max(0, 0.95 * (1 - (rel - 0.01) / 0.24)) (reaches 0 at 25%)
  where rel = |diff| / max(|invoice_amount|, 0.01)
- date_score = max(0, 1 - days / date_window_days) | 0 without invoice_date
- vendor_score = 1.0 (normalized containment)
                 | max(token_overlap, SequenceMatcher ratio)
- score = clamp(w_amount * amount + w_date * date + w_vendor * vendor, 0..1)
"""

from datetime import date
from decimal import Decimal
from difflib import SequenceMatcher
from typing import Dict, Optional

from ..categorization.normalization import normalize_vendor, vendor_tokens
from ..config import settings
from ..models import Invoice, Transaction

EXACT_AMOUNT_TOLERANCE = Decimal("0.01")
AMOUNT_TOLERANCE_BAND = 0.01
AMOUNT_ZERO_AT = 0.25


def amount_score(invoice_amount: Optional[Decimal], transaction_amount: Optional[Decimal]) -> float:
    if invoice_amount is None or transaction_amount is None:
        return 0.0
    invoice_amount = abs(Decimal(str(invoice_amount)))
    transaction_amount = abs(Decimal(str(transaction_amount)))
    diff = abs(invoice_amount - transaction_amount)
    if diff < EXACT_AMOUNT_TOLERANCE:
        return 1.0

    rel = float(diff / max(invoice_amount, EXACT_AMOUNT_TOLERANCE))
    if rel <= AMOUNT_TOLERANCE_BAND:
        return 1.0 - rel * 5
    band = AMOUNT_ZERO_AT - AMOUNT_TOLERANCE_BAND
    return max(0.0, 0.95 * (1.0 - (rel - AMOUNT_TOLERANCE_BAND) / band))


def date_score(invoice_date: Optional[date], transaction_date: Optional[date], window_days: int) -> float:
    if invoice_date is None or transaction_date is None or window_days <= 0:
        return 0.0
    days = abs((transaction_date - invoice_date).days)
    return max(0.0, 1.0 - days / window_days)


def vendor_score(vendor_name: Optional[str], transaction: Transaction) -> float:
    """Fuzzy vendor similarity against description and counterparty."""
    vendor = normalize_vendor(vendor_name)
    if not vendor:
        return 0.0

    texts = [
        normalize_vendor(text)
        for text in (transaction.display_description, transaction.counterparty_name)
        if text
    ]
    if not texts:
        return 0.0
    if any(vendor in text for text in texts):
        return 1.0

    invoice_tokens = set(vendor_tokens(vendor_name))
    transaction_tokens = set()
    for text in texts:
        transaction_tokens.update(token for token in text.split() if len(token) > 2)
    token_overlap = (
        len(invoice_tokens & transaction_tokens) / len(invoice_tokens) if invoice_tokens else 0.0
    )

    ratio = max(SequenceMatcher(None, vendor, text).ratio() for text in texts)
    return max(token_overlap, ratio)


class InvoiceScorer:
    """Weighted amount / date / vendor scorer.

    Example:
        scorer = InvoiceScorer()
        score, breakdown = scorer.score(invoice, transaction)
    """

    def __init__(
        self,
        weight_amount: Optional[float] = None,
        weight_date: Optional[float] = None,
        weight_vendor: Optional[float] = None,
        date_window_days: Optional[int] = None,
    ):
        self.weight_amount = weight_amount if weight_amount is not None else settings.RECONCILIATION_WEIGHT_AMOUNT
        self.weight_date = weight_date if weight_date is not None else settings.RECONCILIATION_WEIGHT_DATE
        self.weight_vendor = weight_vendor if weight_vendor is not None else settings.RECONCILIATION_WEIGHT_VENDOR
        self.date_window_days = (
            date_window_days if date_window_days is not None else settings.RECONCILIATION_DATE_WINDOW_DAYS
        )

    def breakdown(self, invoice: Invoice, transaction: Transaction) -> Dict[str, float]:
        return {
            "amount_score": round(amount_score(invoice.total_amount, transaction.amount), 4),
            "date_score": round(date_score(invoice.invoice_date, transaction.transaction_date, self.date_window_days), 4),
            "vendor_score": round(vendor_score(invoice.vendor_name, transaction), 4),
        }

    def score(self, invoice: Invoice, transaction: Transaction):
        """Return (composite score, component breakdown)."""
        parts = self.breakdown(invoice, transaction)
        composite = (
            self.weight_amount * parts["amount_score"]
            + self.weight_date * parts["date_score"]
            + self.weight_vendor * parts["vendor_score"]
        )
        return round(max(0.0, min(1.0, composite)), 4), parts
