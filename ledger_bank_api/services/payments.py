"""Payment lifecycle and the atomic ledger update"""

import logging
import time
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_bank_api.config import Settings, settings
from ledger_bank_api.domain import ledger, policy
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.models import (
    AccountStatus,
    Direction,
    PaymentStatus,
    PaymentType,
)
from ledger_bank_api.domain.pagination import Pagination, Sort
from ledger_bank_api.infrastructure.database.models import User, UserPayment
from ledger_bank_api.infrastructure.database.repositories import (
    AccountRepository,
    PaymentRepository,
    TransactionRepository,
)
from ledger_bank_api.infrastructure.observability.logging import log_payment
from ledger_bank_api.infrastructure.observability.metrics import payment_duration_histogram, record_payment
from ledger_bank_api.services.banking import account_cache_key
from ledger_bank_api.utils.time_utils import start_of_day, utcnow
from ledger_bank_api.workers.queue import JobQueue

logger = logging.getLogger(__name__)

PAYMENT_SORT_FIELDS = ("posted_at", "created_at", "amount", "status")
PAYMENT_UPDATABLE_FIELDS = ("description", "payment_type")


class PaymentService:
    """Create, query and process payments"""

    def __init__(self, db: Session, cache=None, config: Settings = settings):
        self.db = db
        self.cache = cache
        self.config = config
        self.payments = PaymentRepository(db)
        self.accounts = AccountRepository(db)
        self.transactions = TransactionRepository(db)

    def create_payment(self, user: User, attrs: Dict[str, Any]) -> UserPayment:
        """
        Create a PENDING payment.

        Checks the account is active and reachable by ``user``, the amount is
        within the single transaction limit and that no identical payment was
        created on the account inside the duplicate window.
        """
        missing = [f for f in ("user_bank_account_id", "amount", "direction", "payment_type") if attrs.get(f) in (None, "")]
        if missing:
            raise DomainException("missing_fields", "Missing required fields", {"fields": missing})

        amount = ledger.to_amount(attrs["amount"])
        if amount <= 0:
            raise DomainException("negative_amount", "Amount must be greater than zero", {"amount": str(amount)})
        if amount > self.config.max_single_transaction:
            raise DomainException(
                "amount_exceeds_limit",
                f"Amount exceeds the single transaction limit of {self.config.max_single_transaction}",
                {"amount": str(amount), "limit": str(self.config.max_single_transaction)},
            )
        direction = attrs["direction"]
        if direction not in (Direction.CREDIT.value, Direction.DEBIT.value):
            raise DomainException("invalid_direction", "direction must be CREDIT or DEBIT", {"direction": direction})
        if attrs["payment_type"] not in {t.value for t in PaymentType}:
            raise DomainException("validation_error", "Invalid payment_type", {"payment_type": attrs["payment_type"]})
        description = attrs.get("description")
        if description is not None and len(description) > 255:
            raise DomainException("validation_error", "description must be at most 255 characters")

        account = self.accounts.get(attrs["user_bank_account_id"])
        if account is None:
            raise DomainException("account_not_found", "Account not found", {"account_id": attrs["user_bank_account_id"]})
        if not policy.can_create_payment(user, account):
            raise DomainException("unauthorized_access", "Account belongs to another user")
        if account.status != AccountStatus.ACTIVE.value:
            raise DomainException("account_inactive", "Account is not active", {"status": account.status})

        since = utcnow() - timedelta(minutes=self.config.duplicate_window_minutes)
        duplicate = self.payments.find_recent_duplicate(account.id, amount, direction, description, since)
        if duplicate is not None:
            raise DomainException(
                "duplicate_transaction",
                "An identical payment was created recently",
                {"payment_id": duplicate.id},
            )

        payment = self.payments.create(
            user_bank_account_id=account.id,
            user_id=account.user_id,
            amount=amount,
            direction=direction,
            payment_type=attrs["payment_type"],
            description=description,
        )
        self.db.commit()
        logger.info("Payment created", extra={"payment_id": payment.id, "account_id": account.id})
        return payment

    def get_payment(self, payment_id: str) -> UserPayment:
        payment = self.payments.get(payment_id)
        if payment is None:
            raise DomainException("payment_not_found", "Payment not found", {"payment_id": payment_id})
        return payment

    def list_payments(
        self,
        user_id: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        sorts: Sequence[Sort] = (),
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[UserPayment], int]:
        return self.payments.list(user_id=user_id, filters=filters, sorts=sorts, pagination=pagination)

    def list_for_account(
        self, account_id: str, pagination: Optional[Pagination] = None
    ) -> Tuple[List[UserPayment], int]:
        return self.payments.list(account_id=account_id, pagination=pagination)

    def update_payment(self, payment: UserPayment, attrs: Dict[str, Any]) -> UserPayment:
        if payment.status != PaymentStatus.PENDING.value:
            raise DomainException("already_processed", "Only pending payments can be changed", {"status": payment.status})
        attrs = {k: v for k, v in attrs.items() if v is not None}
        illegal = set(attrs) - set(PAYMENT_UPDATABLE_FIELDS)
        if illegal:
            raise DomainException("validation_error", "Field cannot be changed", {"fields": sorted(illegal)})
        if "payment_type" in attrs and attrs["payment_type"] not in {t.value for t in PaymentType}:
            raise DomainException("validation_error", "Invalid payment_type")
        for key, value in attrs.items():
            setattr(payment, key, value)
        self.db.commit()
        return payment

    def delete_payment(self, payment: UserPayment) -> None:
        if payment.status == PaymentStatus.COMPLETED.value:
            raise DomainException("already_processed", "Completed payments cannot be deleted")
        self.payments.delete(payment)
        self.db.commit()

    def cancel_payment(self, payment: UserPayment, user: Optional[User] = None) -> UserPayment:
        """Cancel a pending payment; ``user`` is None when the system cancels"""
        if payment.status != PaymentStatus.PENDING.value:
            raise DomainException("already_processed", "Only pending payments can be cancelled", {"status": payment.status})
        if user is not None and not policy.can_cancel_payment(user, payment):
            raise DomainException("unauthorized_access", "Not allowed to cancel this payment")
        payment.status = PaymentStatus.CANCELLED.value
        self.db.commit()
        return payment

    def schedule_processing(self, payment: UserPayment, priority: int = 0, delay_seconds: float = 0):
        """Enqueue a PaymentWorker job; a pending job for the same payment is reused"""
        if payment.status != PaymentStatus.PENDING.value:
            raise DomainException("already_processed", "Payment has already been processed", {"status": payment.status})
        return JobQueue(self.db).enqueue(
            "PaymentWorker",
            {"payment_id": payment.id},
            queue="payments",
            priority=priority,
            delay_seconds=delay_seconds,
        )

    def process_payment(self, payment_id: str) -> UserPayment:
        """
        Apply a pending payment to its account in one database transaction.

        Flow:
        1. Lock the payment and re-check it is still PENDING
        2. Lock the account and check it is ACTIVE
        3. Enforce the daily debit limit for the account type
        4. Compute the new balance; non-CREDIT accounts may not go negative
        5. Insert the ledger transaction, complete the payment, update the balance
        6. Commit, or roll everything back on any failure
        """
        start_time = time.time()
        try:
            with payment_duration_histogram.time():
                payment = self._apply(payment_id)
                self.db.commit()
        except DomainException as e:
            self.db.rollback()
            duration_ms = (time.time() - start_time) * 1000
            record_payment("rejected")
            log_payment(payment_id, "rejected", duration_ms, e.reason, e.correlation_id)
            raise
        except IntegrityError as e:
            self.db.rollback()
            error = DomainException("duplicate_transaction", "Ledger entry already exists", {"payment_id": payment_id})
            record_payment("rejected")
            log_payment(payment_id, "rejected", (time.time() - start_time) * 1000, error.reason, error.correlation_id)
            raise error from e
        except SQLAlchemyError as e:
            self.db.rollback()
            error = DomainException("database_error", "Database error while processing payment", {"payment_id": payment_id})
            record_payment("error")
            log_payment(payment_id, "error", (time.time() - start_time) * 1000, error.reason, error.correlation_id)
            raise error from e

        if self.cache is not None:
            self.cache.delete(account_cache_key(payment.user_bank_account_id))
        duration_ms = (time.time() - start_time) * 1000
        record_payment("completed", Decimal(payment.amount))
        log_payment(payment.id, "completed", duration_ms)
        return payment

    def _apply(self, payment_id: str) -> UserPayment:
        payment = self.payments.get_for_update(payment_id)
        if payment is None:
            raise DomainException("payment_not_found", "Payment not found", {"payment_id": payment_id})
        if payment.status != PaymentStatus.PENDING.value:
            raise DomainException(
                "already_processed",
                "Payment has already been processed",
                {"payment_id": payment_id, "status": payment.status},
            )

        account = self.accounts.get_for_update(payment.user_bank_account_id)
        if account is None:
            raise DomainException("account_not_found", "Account not found", {"account_id": payment.user_bank_account_id})
        if account.status != AccountStatus.ACTIVE.value:
            raise DomainException("account_inactive", "Account is not active", {"account_id": account.id})

        amount = Decimal(payment.amount)
        now = utcnow()
        if payment.direction == Direction.DEBIT.value:
            limit = self.config.daily_limit_for(account.account_type)
            spent = self.transactions.sum_debits_since(account.id, start_of_day(now))
            if spent + amount > limit:
                raise DomainException(
                    "daily_limit_exceeded",
                    "Daily limit exceeded",
                    {"limit": str(limit), "spent_today": str(spent), "amount": str(amount)},
                )

        balance = Decimal(account.balance)
        if payment.direction == Direction.DEBIT.value and not ledger.has_sufficient_balance(
            account.account_type, balance, amount
        ):
            raise DomainException(
                "insufficient_funds",
                "Insufficient funds",
                {"account_id": account.id, "balance": str(account.balance), "amount": str(amount)},
            )
        new_balance = ledger.apply_direction(balance, amount, payment.direction)

        external_id = payment.external_transaction_id or ledger.new_external_transaction_id()
        self.transactions.create(
            account_id=account.id,
            user_id=payment.user_id,
            amount=amount,
            direction=payment.direction,
            description=payment.description or f"{payment.payment_type} {payment.direction}".lower(),
            posted_at=now,
            external_transaction_id=external_id,
        )
        payment.status = PaymentStatus.COMPLETED.value
        payment.posted_at = now
        payment.external_transaction_id = external_id
        payment.failure_reason = None
        account.balance = new_balance
        self.db.flush()
        return payment

    def mark_failed(self, payment_id: str, reason: str) -> Optional[UserPayment]:
        """Move a still pending payment to FAILED in its own transaction"""
        payment = self.payments.get_for_update(payment_id)
        if payment is None or payment.status != PaymentStatus.PENDING.value:
            self.db.rollback()
            return payment
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = reason
        self.db.commit()
        record_payment("failed")
        logger.warning("Payment failed", extra={"payment_id": payment_id, "reason": reason})
        return payment
