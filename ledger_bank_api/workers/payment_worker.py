"""Processes pending payments from the ``payments`` queue"""

import logging
from typing import Any, Dict

from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.infrastructure.database.models import Job
from ledger_bank_api.services.payments import PaymentService

logger = logging.getLogger(__name__)


class PaymentWorker:
    name = "PaymentWorker"
    queue = "payments"

    def __init__(self, session_factory, cache=None):
        self.session_factory = session_factory
        self.cache = cache

    async def perform(self, args: Dict[str, Any]) -> Dict[str, Any]:
        payment_id = args["payment_id"]
        db = self.session_factory()
        try:
            payment = PaymentService(db, self.cache).process_payment(payment_id)
            return {"payment_id": payment.id, "status": payment.status}
        except DomainException as e:
            if e.reason == "already_processed":
                # Another run completed it first
                logger.info("Payment already processed", extra={"payment_id": payment_id})
                return {"payment_id": payment_id, "status": e.context.get("status")}
            raise
        finally:
            db.close()

    def on_discard(self, job: Job, error: Exception) -> None:
        """Final failure: the payment will not be retried"""
        reason = error.reason if isinstance(error, DomainException) else "internal_server_error"
        db = self.session_factory()
        try:
            PaymentService(db, self.cache).mark_failed(job.args["payment_id"], reason)
        finally:
            db.close()
