"""Account, balance and transaction endpoints"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ledger_bank_api.api.dependencies import ensure, get_cache, get_current_user, get_pagination
from ledger_bank_api.api.routes.schemas import (
    AccountCreateRequest,
    AccountResponse,
    AccountUpdateRequest,
    BalanceResponse,
    Page,
    PaymentResponse,
    TransactionResponse,
    paged,
)
from ledger_bank_api.domain import policy
from ledger_bank_api.domain.pagination import Pagination, parse_sort
from ledger_bank_api.infrastructure.database.models import User
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.banking import TRANSACTION_SORT_FIELDS, BankingService, account_needs_sync
from ledger_bank_api.services.payments import PaymentService
from ledger_bank_api.utils.time_utils import to_naive_utc

router = APIRouter()


@router.get("/accounts", response_model=Page[AccountResponse])
def list_accounts(
    status: Optional[str] = None,
    account_type: Optional[str] = None,
    pagination: Pagination = Depends(get_pagination),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user_id = None if policy.is_staff(user) else user.id
    accounts, total = BankingService(db).list_accounts(
        user_id, {"status": status, "account_type": account_type}, pagination
    )
    return paged(AccountResponse, accounts, total, pagination)


@router.post("/accounts", response_model=AccountResponse, status_code=201)
def create_account(body: AccountCreateRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return BankingService(db).create_account(user, body.model_dump())


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(account_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    account = BankingService(db).get_account(account_id)
    ensure(policy.can_view_account(user, account), "unauthorized_access", "Account belongs to another user")
    return account


@router.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str,
    body: AccountUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    service = BankingService(db, cache)
    account = service.get_account(account_id)
    ensure(policy.can_view_account(user, account), "unauthorized_access", "Account belongs to another user")
    return service.update_account(user, account, body.model_dump(exclude_none=True))


@router.delete("/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    service = BankingService(db, cache)
    account = service.get_account(account_id)
    ensure(policy.can_delete_account(user, account), "unauthorized_access", "Account belongs to another user")
    service.delete_account(account)


@router.get("/accounts/{account_id}/balances", response_model=BalanceResponse)
def account_balances(
    account_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
):
    """Balance snapshot, served from cache for ``account_cache_ttl`` seconds"""
    snapshot = BankingService(db, cache).get_account_snapshot(account_id)
    ensure(policy.can_view_account(user, snapshot), "unauthorized_access", "Account belongs to another user")
    return BalanceResponse(
        account_id=snapshot.account_id,
        currency=snapshot.currency,
        account_type=snapshot.account_type,
        status=snapshot.status,
        balance=snapshot.balance,
        last_sync_at=snapshot.last_sync_at,
        needs_sync=account_needs_sync(snapshot),
    )


@router.get("/accounts/{account_id}/transactions", response_model=Page[TransactionResponse])
def account_transactions(
    account_id: str,
    direction: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort: Optional[str] = None,
    pagination: Pagination = Depends(get_pagination),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = BankingService(db)
    account = service.get_account(account_id)
    ensure(policy.can_view_account(user, account), "unauthorized_access", "Account belongs to another user")
    transactions, total = service.list_transactions(
        account.id,
        direction=direction,
        date_from=to_naive_utc(date_from) if date_from else None,
        date_to=to_naive_utc(date_to) if date_to else None,
        sorts=parse_sort(sort, TRANSACTION_SORT_FIELDS),
        pagination=pagination,
    )
    return paged(TransactionResponse, transactions, total, pagination)


@router.get("/accounts/{account_id}/payments", response_model=Page[PaymentResponse])
def account_payments(
    account_id: str,
    pagination: Pagination = Depends(get_pagination),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    account = BankingService(db).get_account(account_id)
    ensure(policy.can_view_account(user, account), "unauthorized_access", "Account belongs to another user")
    payments, total = PaymentService(db).list_for_account(account.id, pagination)
    return paged(PaymentResponse, payments, total, pagination)


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(transaction_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    transaction = BankingService(db).get_transaction(transaction_id)
    ensure(policy.can_view_account(user, transaction), "unauthorized_access", "Transaction belongs to another user")
    return transaction
