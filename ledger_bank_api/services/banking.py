"""Banks, branches, bank logins, accounts and the transaction ledger"""

import logging
import re
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_bank_api.config import settings
from ledger_bank_api.domain import ledger, policy
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.models import (
    AccountSnapshot,
    AccountStatus,
    AccountType,
    BankStatus,
    Direction,
    LoginStatus,
)
from ledger_bank_api.domain.pagination import Pagination, Sort
from ledger_bank_api.infrastructure.database.models import (
    Bank,
    BankBranch,
    Transaction,
    User,
    UserBankAccount,
    UserBankLogin,
)
from ledger_bank_api.infrastructure.database.repositories import (
    AccountRepository,
    BankRepository,
    LoginRepository,
    PaymentRepository,
    TransactionRepository,
)
from ledger_bank_api.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

BANK_CODE_RE = re.compile(r"^[A-Z0-9_]{3,32}$")
COUNTRY_RE = re.compile(r"^[A-Z]{2,3}$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$")
MODULE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
SWIFT_RE = re.compile(r"^[A-Z0-9]{8}([A-Z0-9]{3})?$")
ROUTING_RE = re.compile(r"^\d{9}$")
LAST_FOUR_RE = re.compile(r"^\d{4}$")

ACCOUNT_SYNC_INTERVAL = timedelta(hours=1)
TRANSACTION_SORT_FIELDS = ("posted_at", "amount", "description")
BANK_SORT_FIELDS = ("name", "country", "code", "created_at")
ACTIVE_BANKS_CACHE_KEY = "banks:active"


def account_cache_key(account_id: str) -> str:
    return f"account:{account_id}"


def needs_sync(login: UserBankLogin, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    if login.last_sync_at is None:
        return True
    return login.last_sync_at + timedelta(seconds=login.sync_frequency) <= now


def account_needs_sync(account: UserBankAccount, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return account.last_sync_at is None or now - account.last_sync_at >= ACCOUNT_SYNC_INTERVAL


def snapshot(account: UserBankAccount) -> AccountSnapshot:
    return AccountSnapshot(
        account_id=account.id,
        user_id=account.user_id,
        currency=account.currency,
        account_type=account.account_type,
        status=account.status,
        balance=Decimal(account.balance),
        last_sync_at=account.last_sync_at,
    )


def _require(condition: bool, reason: str, message: str, **context) -> None:
    if not condition:
        raise DomainException(reason, message, context)


def _check_choice(value: str, choices, field: str) -> None:
    allowed = [c.value for c in choices]
    _require(value in allowed, "validation_error", f"{field} must be one of {', '.join(allowed)}", field=field)


class BankingService:
    """Operations on banks, logins, accounts and transactions"""

    def __init__(self, db: Session, cache=None):
        self.db = db
        self.cache = cache
        self.banks = BankRepository(db)
        self.logins = LoginRepository(db)
        self.accounts = AccountRepository(db)
        self.payments = PaymentRepository(db)
        self.transactions = TransactionRepository(db)

    @contextmanager
    def _saving(self, conflict_message: str):
        """Commit the writes made in the block; unique violations become ``conflict``"""
        try:
            yield
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DomainException("conflict", conflict_message) from e

    # Banks

    def _validate_bank(self, attrs: Dict[str, Any]) -> None:
        if "name" in attrs:
            name = attrs["name"] or ""
            _require(2 <= len(name) <= 100, "validation_error", "name must be 2-100 characters", field="name")
        if "code" in attrs:
            _require(
                bool(BANK_CODE_RE.match(attrs["code"] or "")),
                "validation_error",
                "code must be 3-32 upper-case letters, digits or underscores",
                field="code",
            )
        if "country" in attrs:
            _require(
                bool(COUNTRY_RE.match(attrs["country"] or "")),
                "validation_error",
                "country must be 2-3 upper-case letters",
                field="country",
            )
        if attrs.get("status") is not None:
            _check_choice(attrs["status"], BankStatus, "status")
        if attrs.get("api_endpoint"):
            _require(bool(URL_RE.match(attrs["api_endpoint"])), "validation_error", "api_endpoint must be an http(s) URL")
        if attrs.get("integration_module"):
            _require(
                bool(MODULE_RE.match(attrs["integration_module"])),
                "validation_error",
                "integration_module must be a dotted identifier",
            )

    def create_bank(self, attrs: Dict[str, Any]) -> Bank:
        missing = [f for f in ("name", "country", "code") if not attrs.get(f)]
        _require(not missing, "missing_fields", "Missing required fields", fields=missing)
        self._validate_bank(attrs)
        with self._saving("Bank name or code already exists"):
            bank = self.banks.create(**attrs)
        self._invalidate_banks()
        logger.info("Bank created", extra={"bank_id": bank.id, "code": bank.code})
        return bank

    def get_bank(self, bank_id: str) -> Bank:
        bank = self.banks.get(bank_id)
        if bank is None:
            raise DomainException("bank_not_found", "Bank not found", {"bank_id": bank_id})
        return bank

    def update_bank(self, bank: Bank, attrs: Dict[str, Any]) -> Bank:
        frozen = {"code", "country"} & {k for k, v in attrs.items() if v is not None}
        _require(not frozen, "validation_error", "code and country cannot be changed", fields=sorted(frozen))
        attrs = {k: v for k, v in attrs.items() if v is not None}
        self._validate_bank(attrs)
        with self._saving("Bank name already exists"):
            for key, value in attrs.items():
                setattr(bank, key, value)
        self._invalidate_banks()
        return bank

    def list_banks(
        self,
        filters: Optional[Dict[str, Any]] = None,
        sorts: Sequence[Sort] = (),
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[Bank], int]:
        return self.banks.list(filters, sorts, pagination)

    def list_active_banks(self) -> List[Dict[str, Any]]:
        def load():
            banks, _ = self.banks.list({"status": BankStatus.ACTIVE.value})
            return [
                {"id": b.id, "name": b.name, "country": b.country, "code": b.code, "logo_url": b.logo_url}
                for b in banks
            ]

        if self.cache is None:
            return load()
        return self.cache.get_or_put(ACTIVE_BANKS_CACHE_KEY, load, settings.banks_cache_ttl)

    def _invalidate_banks(self) -> None:
        if self.cache is not None:
            self.cache.delete(ACTIVE_BANKS_CACHE_KEY)

    # Branches

    def create_branch(self, bank: Bank, attrs: Dict[str, Any]) -> BankBranch:
        _require(bool(attrs.get("name")), "missing_fields", "name is required", fields=["name"])
        country = attrs.get("country") or bank.country
        _require(bool(COUNTRY_RE.match(country)), "validation_error", "country must be 2-3 upper-case letters")
        if attrs.get("swift_code"):
            _require(bool(SWIFT_RE.match(attrs["swift_code"])), "validation_error", "swift_code must be 8 or 11 characters")
        if attrs.get("routing_number"):
            _require(bool(ROUTING_RE.match(attrs["routing_number"])), "validation_error", "routing_number must be 9 digits")
        with self._saving("IBAN or SWIFT code already exists"):
            branch = self.banks.create_branch(
                bank_id=bank.id,
                name=attrs["name"],
                country=country,
                iban=attrs.get("iban"),
                swift_code=attrs.get("swift_code"),
                routing_number=attrs.get("routing_number"),
            )
        return branch

    def get_branch(self, branch_id: str) -> BankBranch:
        branch = self.banks.get_branch(branch_id)
        if branch is None:
            raise DomainException("branch_not_found", "Bank branch not found", {"branch_id": branch_id})
        return branch

    def list_branches(self, bank_id: str) -> List[BankBranch]:
        return self.banks.list_branches(bank_id)

    # Logins

    def _validate_login(self, attrs: Dict[str, Any]) -> None:
        if "username" in attrs:
            username = attrs["username"] or ""
            _require(3 <= len(username) <= 255, "validation_error", "username must be 3-255 characters")
        if attrs.get("sync_frequency") is not None:
            _require(
                300 <= attrs["sync_frequency"] <= 86400,
                "validation_error",
                "sync_frequency must be between 300 and 86400 seconds",
            )
        if attrs.get("status") is not None:
            _check_choice(attrs["status"], LoginStatus, "status")

    def create_login(self, user: User, attrs: Dict[str, Any]) -> UserBankLogin:
        _require(bool(attrs.get("bank_branch_id")), "missing_fields", "bank_branch_id is required")
        self.get_branch(attrs["bank_branch_id"])
        self._validate_login(attrs)
        with self._saving("A login for this branch and username already exists"):
            login = self.logins.create(user_id=user.id, **attrs)
        return login

    def get_login(self, login_id: str) -> UserBankLogin:
        login = self.logins.get(login_id)
        if login is None:
            raise DomainException("login_not_found", "Bank login not found", {"login_id": login_id})
        return login

    def list_logins(self, user_id: Optional[str] = None) -> List[UserBankLogin]:
        return self.logins.list(user_id)

    def update_login(self, login: UserBankLogin, attrs: Dict[str, Any]) -> UserBankLogin:
        attrs = {k: v for k, v in attrs.items() if v is not None}
        self._validate_login(attrs)
        with self._saving("A login for this branch and username already exists"):
            for key, value in attrs.items():
                setattr(login, key, value)
        return login

    def update_login_tokens(
        self,
        login: UserBankLogin,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
        scope: Optional[str] = None,
    ) -> UserBankLogin:
        login.access_token = access_token
        login.refresh_token = refresh_token
        login.token_expires_at = expires_at
        if scope is not None:
            login.scope = scope
        self.db.commit()
        return login

    def delete_login(self, login: UserBankLogin) -> None:
        """Remove a login with its accounts, unless any account has ledger history"""
        accounts = self.accounts.list_for_login(login.id)
        account_ids = [a.id for a in accounts]
        if self.payments.has_any(account_ids) or self.transactions.has_any(account_ids):
            raise DomainException(
                "conflict", "Login has accounts with payments or transactions", {"login_id": login.id}
            )
        with self._saving("Login is still referenced"):
            for account in accounts:
                self.accounts.delete(account)
            self.logins.delete(login)
        for account_id in account_ids:
            self.invalidate_account(account_id)

    # Accounts

    def _validate_account(self, attrs: Dict[str, Any]) -> None:
        if attrs.get("currency") is not None:
            _require(bool(CURRENCY_RE.match(attrs["currency"])), "validation_error", "currency must be 3 upper-case letters")
        if attrs.get("account_type") is not None:
            _check_choice(attrs["account_type"], AccountType, "account_type")
        if attrs.get("status") is not None:
            _check_choice(attrs["status"], AccountStatus, "status")
        if attrs.get("last_four") is not None:
            _require(bool(LAST_FOUR_RE.match(attrs["last_four"])), "validation_error", "last_four must be 4 digits")
        if attrs.get("account_name") is not None:
            _require(len(attrs["account_name"]) <= 100, "validation_error", "account_name must be at most 100 characters")

    def create_account(self, user: User, attrs: Dict[str, Any]) -> UserBankAccount:
        missing = [f for f in ("user_bank_login_id", "currency", "account_type") if not attrs.get(f)]
        _require(not missing, "missing_fields", "Missing required fields", fields=missing)
        login = self.get_login(attrs["user_bank_login_id"])
        if login.user_id != user.id:
            raise DomainException("unauthorized_access", "Login belongs to another user")
        self._validate_account(attrs)
        balance = ledger.to_amount(attrs.get("balance") or 0)
        if ledger.violates_balance_invariant(attrs["account_type"], balance):
            raise DomainException("negative_balance", "Balance cannot be negative for this account type")
        with self._saving("External account id already exists"):
            account = self.accounts.create(
                **{k: v for k, v in attrs.items() if k != "balance"},
                user_id=user.id,
                balance=balance,
            )
        return account

    def get_account(self, account_id: str) -> UserBankAccount:
        account = self.accounts.get(account_id)
        if account is None:
            raise DomainException("account_not_found", "Account not found", {"account_id": account_id})
        return account

    def get_account_snapshot(self, account_id: str) -> AccountSnapshot:
        """Balance view served from cache when fresh"""
        if self.cache is None:
            return snapshot(self.get_account(account_id))
        data = self.cache.get_or_put(
            account_cache_key(account_id),
            lambda: snapshot(self.get_account(account_id)).to_dict(),
            settings.account_cache_ttl,
        )
        return AccountSnapshot.from_dict(data)

    def list_accounts(
        self,
        user_id: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[UserBankAccount], int]:
        return self.accounts.list(user_id, filters, pagination)

    def update_account(self, user: Optional[User], account: UserBankAccount, attrs: Dict[str, Any]) -> UserBankAccount:
        attrs = {k: v for k, v in attrs.items() if v is not None}
        if user is not None and not policy.can_update_account(user, account, attrs.keys()):
            raise DomainException(
                "insufficient_permissions",
                "Only account_name and status may be changed",
                {"fields": sorted(attrs)},
            )
        frozen = {"currency", "account_type", "user_bank_login_id", "external_account_id", "user_id"} & set(attrs)
        _require(not frozen, "validation_error", "Field cannot be changed", fields=sorted(frozen))
        if "balance" in attrs:
            self.update_balance(account, attrs.pop("balance"), commit=False)
        self._validate_account(attrs)
        with self._saving("Account update conflicts with existing data"):
            for key, value in attrs.items():
                setattr(account, key, value)
        self.invalidate_account(account.id)
        return account

    def update_balance(self, account: UserBankAccount, balance, commit: bool = True) -> UserBankAccount:
        balance = ledger.to_amount(balance)
        if ledger.violates_balance_invariant(account.account_type, balance):
            raise DomainException(
                "negative_balance",
                "Balance cannot be negative for this account type",
                {"account_id": account.id, "account_type": account.account_type},
            )
        account.balance = balance
        if commit:
            self.db.commit()
            self.invalidate_account(account.id)
        return account

    def delete_account(self, account: UserBankAccount) -> None:
        if Decimal(account.balance) != 0:
            raise DomainException("conflict", "Account balance must be zero", {"account_id": account.id})
        if self.payments.has_pending(account.id):
            raise DomainException("conflict", "Account has pending payments", {"account_id": account.id})
        if self.payments.has_any([account.id]) or self.transactions.has_any([account.id]):
            # Ledger rows reference the account; close it instead
            account.status = AccountStatus.CLOSED.value
            logger.info("Account closed instead of deleted", extra={"account_id": account.id})
        else:
            self.accounts.delete(account)
        self.db.commit()
        self.invalidate_account(account.id)

    def invalidate_account(self, account_id: str) -> None:
        if self.cache is not None:
            self.cache.delete(account_cache_key(account_id))

    # Transactions

    def get_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.transactions.get(transaction_id)
        if transaction is None:
            raise DomainException("transaction_not_found", "Transaction not found", {"transaction_id": transaction_id})
        return transaction

    def list_transactions(
        self,
        account_id: str,
        direction: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        sorts: Sequence[Sort] = (),
        pagination: Optional[Pagination] = None,
    ) -> Tuple[List[Transaction], int]:
        if direction is not None:
            _require(
                direction in (Direction.CREDIT.value, Direction.DEBIT.value),
                "invalid_direction",
                "direction must be CREDIT or DEBIT",
            )
        return self.transactions.list_for_account(account_id, direction, date_from, date_to, sorts, pagination)

    def record_transaction(self, account: UserBankAccount, attrs: Dict[str, Any]) -> Transaction:
        """Append a ledger row. The caller owns the surrounding transaction."""
        amount = ledger.to_amount(attrs["amount"])
        _require(amount > 0, "negative_amount", "Amount must be greater than zero")
        _require(
            attrs["direction"] in (Direction.CREDIT.value, Direction.DEBIT.value),
            "invalid_direction",
            "direction must be CREDIT or DEBIT",
        )
        description = (attrs.get("description") or "").strip()
        _require(1 <= len(description) <= 255, "validation_error", "description must be 1-255 characters")
        posted_at = attrs.get("posted_at") or utcnow()
        _require(posted_at <= utcnow(), "validation_error", "posted_at cannot be in the future")
        return self.transactions.create(
            account_id=account.id,
            user_id=account.user_id,
            amount=amount,
            direction=attrs["direction"],
            description=description,
            posted_at=posted_at,
            external_transaction_id=attrs.get("external_transaction_id"),
        )
