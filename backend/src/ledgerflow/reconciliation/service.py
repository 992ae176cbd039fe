"""Reconciliation service: suggest, link, unlink and auto-match invoices.

The unique constraint on invoice.matched_transaction_id is the only arbiter
for concurrent links; the pre-check below exists for a clearer error message.
"""

import logging
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..models import Invoice, InvoiceStatus, MatchedBy, Transaction, TransactionType
from ..models.base import utcnow
from ..observability.metrics import (
    invoice_link_conflicts_total,
    invoice_links_total,
    reconciliation_top_score,
)
from .ports import (
    InvoiceNotFoundError,
    LinkConflictError,
    ReconciliationError,
    Suggestion,
    TransactionNotFoundError,
)
from .scorer import InvoiceScorer

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Match a user's invoices against their debit transactions.

    Example:
        service = ReconciliationService(db)
        for suggestion in service.suggestions(user_id, invoice_id, limit=5):
            print(suggestion.transaction.id, suggestion.score)
    """

    def __init__(
        self,
        db: Session,
        scorer: Optional[InvoiceScorer] = None,
        candidate_limit: Optional[int] = None,
        auto_match_threshold: Optional[float] = None,
        suggest_threshold: Optional[float] = None,
    ):
        self.db = db
        self.scorer = scorer or InvoiceScorer()
        self.candidate_limit = candidate_limit or settings.RECONCILIATION_CANDIDATE_LIMIT
        self.auto_match_threshold = (
            auto_match_threshold if auto_match_threshold is not None else settings.AUTO_MATCH_THRESHOLD
        )
        self.suggest_threshold = (
            suggest_threshold if suggest_threshold is not None else settings.SUGGEST_THRESHOLD
        )

    def get_invoice(self, user_id: UUID, invoice_id: UUID) -> Invoice:
        invoice = self.db.scalar(
            select(Invoice).where(Invoice.id == invoice_id, Invoice.user_id == user_id)
        )
        if invoice is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def candidates(self, invoice: Invoice) -> List[Transaction]:
        """Most recent unlinked debit transactions of the invoice's owner.

        Transactions dated later than invoice_date + date window are left out;
        older ones stay in the pool and simply score lower on date.
        """
        linked = aliased(Invoice)
        stmt = select(Transaction).where(
            Transaction.user_id == invoice.user_id,
            Transaction.transaction_type == TransactionType.DEBIT.value,
            ~exists().where(linked.matched_transaction_id == Transaction.id),
        )
        if invoice.invoice_date is not None:
            latest = invoice.invoice_date + timedelta(days=self.scorer.date_window_days)
            stmt = stmt.where(Transaction.transaction_date <= latest)

        stmt = stmt.order_by(Transaction.transaction_date.desc(), Transaction.id).limit(self.candidate_limit)
        return list(self.db.scalars(stmt).all())

    def suggestions(
        self,
        user_id: UUID,
        invoice_id: UUID,
        min_score: float = 0.0,
        limit: Optional[int] = None,
    ) -> List[Suggestion]:
        """Rank candidate transactions for an invoice.

        Raises:
            InvoiceNotFoundError: Invoice unknown for this user
            ReconciliationError: Invoice has no total_amount
        """
        invoice = self.get_invoice(user_id, invoice_id)
        return self._rank(invoice, min_score=min_score, limit=limit)

    def link(
        self,
        user_id: UUID,
        invoice_id: UUID,
        transaction_id: UUID,
        score: Optional[float] = None,
        matched_by: MatchedBy = MatchedBy.MANUAL,
    ) -> Invoice:
        """Link an invoice to a transaction.

        Re-linking an already matched invoice to another transaction is
        allowed; the previous transaction becomes available again.

        Raises:
            InvoiceNotFoundError: Invoice unknown for this user
            TransactionNotFoundError: Transaction unknown for this user
            LinkConflictError: Transaction already linked to another invoice
        """
        invoice = self.get_invoice(user_id, invoice_id)
        txn = self.db.scalar(
            select(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == user_id)
        )
        if txn is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

        other = self.db.scalar(
            select(Invoice.id).where(
                Invoice.matched_transaction_id == transaction_id,
                Invoice.id != invoice.id,
            )
        )
        if other is not None:
            invoice_link_conflicts_total.inc()
            raise LinkConflictError(f"Transaction {transaction_id} is already linked to invoice {other}")

        _, breakdown = self.scorer.score(invoice, txn)
        confidence = score if score is not None else 1.0
        matched_by = MatchedBy(matched_by)

        try:
            with self.db.begin_nested():
                self.db.execute(
                    update(Invoice)
                    .where(Invoice.id == invoice.id)
                    .values(
                        matched_transaction_id=transaction_id,
                        match_confidence=round(max(0.0, min(1.0, confidence)), 4),
                        match_breakdown=breakdown,
                        matched_at=utcnow(),
                        matched_by=matched_by.value,
                        status=InvoiceStatus.MATCHED.value,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            invoice_link_conflicts_total.inc()
            raise LinkConflictError(f"Transaction {transaction_id} is already linked to another invoice") from e

        invoice_links_total.labels(matched_by=matched_by.value).inc()
        logger.info(
            f"Linked invoice {invoice.id} to transaction {transaction_id}",
            extra={"user_id": str(user_id), "matched_by": matched_by.value, "confidence": confidence},
        )
        self.db.refresh(invoice)
        return invoice

    def unlink(self, user_id: UUID, invoice_id: UUID) -> Invoice:
        """Clear an invoice's match in a single UPDATE.

        Raises:
            InvoiceNotFoundError: Invoice unknown for this user
            ReconciliationError: Invoice is not linked
        """
        result = self.db.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice_id,
                Invoice.user_id == user_id,
                Invoice.matched_transaction_id.is_not(None),
            )
            .values(
                matched_transaction_id=None,
                match_confidence=None,
                match_breakdown=None,
                matched_at=None,
                matched_by=None,
                status=InvoiceStatus.PENDING.value,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.get_invoice(user_id, invoice_id)
            raise ReconciliationError(f"Invoice {invoice_id} is not linked to a transaction")

        self.db.commit()
        invoice = self.get_invoice(user_id, invoice_id)
        self.db.refresh(invoice)
        return invoice

    def auto_match(self, user_id: UUID, invoice_id: UUID) -> Invoice:
        """Link the best suggestion above the auto-match threshold.

        Candidates that lose a link race are skipped in favour of the next
        one. An invoice with no suggestion above the suggest threshold is
        marked unmatched. Already matched invoices are returned unchanged.
        """
        invoice = self.get_invoice(user_id, invoice_id)
        if invoice.matched_transaction_id is not None:
            return invoice

        ranked = self._rank(invoice)
        if ranked:
            reconciliation_top_score.observe(ranked[0].score)

        for suggestion in ranked:
            if suggestion.score < self.auto_match_threshold:
                break
            try:
                return self.link(
                    user_id,
                    invoice_id,
                    suggestion.transaction.id,
                    score=suggestion.score,
                    matched_by=MatchedBy.AUTO,
                )
            except LinkConflictError:
                logger.info(
                    f"Auto-match candidate {suggestion.transaction.id} already linked; trying next",
                    extra={"user_id": str(user_id), "invoice_id": str(invoice_id)},
                )

        invoice = self.get_invoice(user_id, invoice_id)
        if not any(s.score >= self.suggest_threshold for s in ranked):
            self.db.execute(
                update(Invoice)
                .where(Invoice.id == invoice.id, Invoice.matched_transaction_id.is_(None))
                .values(status=InvoiceStatus.UNMATCHED.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            self.db.refresh(invoice)
        return invoice

    def _rank(self, invoice: Invoice, min_score: float = 0.0, limit: Optional[int] = None) -> List[Suggestion]:
        if invoice.total_amount is None:
            raise ReconciliationError(f"Invoice {invoice.id} has no total amount")

        ranked = []
        for txn in self.candidates(invoice):
            score, breakdown = self.scorer.score(invoice, txn)
            if score >= min_score:
                ranked.append(Suggestion(transaction=txn, score=score, breakdown=breakdown))

        ranked.sort(key=lambda s: (-s.score, str(s.transaction.id)))
        if limit is not None:
            ranked = ranked[:limit]
        return ranked
