"""Synchronize bank logins with their bank's API"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ledger_bank_api.domain import ledger
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.models import AccountType, BankAccount, Direction, LoginStatus
from ledger_bank_api.infrastructure.clients.bank import BankClient
from ledger_bank_api.infrastructure.database.models import UserBankAccount, UserBankLogin
from ledger_bank_api.infrastructure.database.repositories import (
    AccountRepository,
    LoginRepository,
    TransactionRepository,
)
from ledger_bank_api.infrastructure.observability.metrics import bank_sync_counter
from ledger_bank_api.services.banking import BankingService, needs_sync
from ledger_bank_api.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def _account_type(value: str) -> str:
    known = {t.value for t in AccountType}
    return value if value in known else AccountType.CHECKING.value


class BankSyncService:
    """Pull accounts and transactions for a login from its bank"""

    def __init__(self, db: Session, cache=None, client_factory: Optional[Callable[[str], BankClient]] = None):
        self.db = db
        self.cache = cache
        self.client_factory = client_factory or BankClient
        self.logins = LoginRepository(db)
        self.accounts = AccountRepository(db)
        self.transactions = TransactionRepository(db)
        self.banking = BankingService(db, cache)

    def due_logins(self, now: Optional[datetime] = None) -> List[UserBankLogin]:
        now = now or utcnow()
        return [login for login in self.logins.list_active() if needs_sync(login, now)]

    async def sync_login(self, login_id: str) -> Dict[str, int]:
        """
        Fetch the login's accounts from its bank and merge them locally.

        Accounts are matched on ``external_account_id``; transactions already
        in the ledger are skipped. Returns counts of what changed.
        """
        login = self.logins.get(login_id)
        if login is None:
            raise DomainException("login_not_found", "Bank login not found", {"login_id": login_id})

        bank = login.bank_branch.bank
        result = {"accounts": 0, "transactions": 0}
        synced: List[str] = []
        if bank.api_endpoint:
            client = self.client_factory(bank.api_endpoint)
            try:
                remote_accounts = await client.fetch_accounts(login.username, login.access_token)
            except DomainException:
                bank_sync_counter.labels(outcome="failed").inc()
                raise
            try:
                for remote in remote_accounts:
                    account, imported = self._merge_account(login, remote)
                    synced.append(account.id)
                    result["transactions"] += imported
                    result["accounts"] += 1
            except Exception:
                self.db.rollback()
                raise

        login.last_sync_at = utcnow()
        if login.status == LoginStatus.ERROR.value:
            login.status = LoginStatus.ACTIVE.value
        self.db.commit()
        for account_id in synced:
            self.banking.invalidate_account(account_id)
        bank_sync_counter.labels(outcome="completed").inc()
        logger.info("Bank login synced", extra={"login_id": login.id, **result})
        return result

    def _merge_account(self, login: UserBankLogin, remote: BankAccount) -> Tuple[UserBankAccount, int]:
        now = utcnow()
        account = self.accounts.get_by_external_id(remote.external_account_id)
        if account is None:
            account = self.accounts.create(
                user_bank_login_id=login.id,
                user_id=login.user_id,
                currency=remote.currency,
                account_type=_account_type(remote.account_type),
                balance=Decimal("0.00"),
                last_four=remote.last_four or None,
                account_name=remote.account_name or None,
                external_account_id=remote.external_account_id,
            )
        elif account.user_bank_login_id != login.id:
            raise DomainException(
                "conflict",
                "External account is linked to another login",
                {"external_account_id": remote.external_account_id},
            )

        balance = ledger.to_amount(remote.balance)
        if ledger.violates_balance_invariant(account.account_type, balance):
            logger.warning(
                "Bank reported a negative balance for a non-credit account; keeping local balance",
                extra={"account_id": account.id, "reported_balance": str(balance)},
            )
        else:
            account.balance = balance
        account.last_sync_at = now

        imported = 0
        for txn in remote.transactions:
            if txn.amount <= 0 or txn.direction not in (Direction.CREDIT.value, Direction.DEBIT.value):
                continue
            if self.transactions.exists_external_id(txn.external_transaction_id):
                continue
            self.banking.record_transaction(
                account,
                {
                    "amount": txn.amount,
                    "direction": txn.direction,
                    "description": (txn.description or "").strip()[:255] or "bank transaction",
                    "posted_at": min(txn.posted_at, now),
                    "external_transaction_id": txn.external_transaction_id,
                },
            )
            imported += 1
        self.db.flush()
        return account, imported

    def mark_error(self, login_id: str, reason: str) -> Optional[UserBankLogin]:
        login = self.logins.get(login_id)
        if login is None:
            return None
        login.status = LoginStatus.ERROR.value
        self.db.commit()
        logger.warning("Bank login marked as failing", extra={"login_id": login_id, "reason": reason})
        return login
