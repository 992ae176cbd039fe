"""Celery tasks for invoice reconciliation."""

import logging
from typing import Any, Dict
from uuid import UUID

from celery import shared_task

from ..workers.base import BaseTask, get_task_session, validate_user_id
from .ports import ReconciliationError
from .service import ReconciliationService

logger = logging.getLogger(__name__)


@shared_task(base=BaseTask, name="reconciliation.auto_match_invoice", bind=True)
def auto_match_invoice_task(self, user_id: str, invoice_id: str) -> Dict[str, Any]:
    """Auto-match a newly created invoice against the user's transactions.

    Returns:
        Dict with the invoice's resulting status and matched transaction
    """
    user_uuid = validate_user_id(user_id)
    session = get_task_session()
    try:
        invoice = ReconciliationService(session).auto_match(user_uuid, UUID(invoice_id))
        return {
            "status": "success",
            "invoice_id": invoice_id,
            "invoice_status": invoice.status,
            "matched_transaction_id": str(invoice.matched_transaction_id) if invoice.matched_transaction_id else None,
        }
    except ReconciliationError as e:
        logger.warning(f"Auto-match skipped for invoice {invoice_id}: {e}", extra={"user_id": user_id})
        return {"status": "skipped", "invoice_id": invoice_id, "reason": str(e)}
    finally:
        session.close()
