"""Integration tests for bank login synchronization"""

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from ledger_bank_api.config import settings
from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.infrastructure.clients.bank import BankClient
from ledger_bank_api.infrastructure.database.models import Transaction, UserBankAccount, UserBankLogin
from ledger_bank_api.services.banking import BankingService, account_cache_key, needs_sync
from ledger_bank_api.services.sync import BankSyncService
from ledger_bank_api.utils.time_utils import utcnow
from ledger_bank_api.workers.bank_sync_worker import BankSyncWorker
from ledger_bank_api.workers.runner import WorkerRunner


def bank_payload(balance="900.00", account_type="CHECKING", transactions=2):
    return {
        "accounts": [
            {
                "external_account_id": "EXT-42",
                "currency": "USD",
                "account_type": account_type,
                "balance": balance,
                "last_four": "4242",
                "account_name": "Main",
                "transactions": [
                    {
                        "external_transaction_id": f"EXT-42-T{i}",
                        "amount": "12.50",
                        "direction": "DEBIT" if i % 2 else "CREDIT",
                        "description": "Coffee shop",
                        "posted_at": "2024-03-01T08:30:00+00:00",
                    }
                    for i in range(transactions)
                ],
            }
        ]
    }


def client_factory(payload, status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=payload)

    def factory(base_url: str) -> BankClient:
        return BankClient(base_url, max_retries=1, backoff_base=0, transport=httpx.MockTransport(handler))

    return factory


async def test_sync_creates_accounts_and_transactions(db, cache, user, make_login):
    login = make_login(user)

    result = await BankSyncService(db, cache, client_factory(bank_payload())).sync_login(login.id)

    assert result == {"accounts": 1, "transactions": 2}
    account = db.query(UserBankAccount).filter_by(external_account_id="EXT-42").one()
    assert account.user_id == user.id
    assert account.user_bank_login_id == login.id
    assert account.balance == Decimal("900.00")
    assert account.last_sync_at is not None
    assert db.query(Transaction).filter_by(account_id=account.id).count() == 2
    db.refresh(login)
    assert login.last_sync_at is not None


async def test_sync_is_idempotent(db, user, make_login):
    login = make_login(user)
    service = BankSyncService(db, client_factory=client_factory(bank_payload()))
    await service.sync_login(login.id)

    again = await service.sync_login(login.id)

    assert again == {"accounts": 1, "transactions": 0}
    assert db.query(Transaction).count() == 2


async def test_negative_balance_on_checking_is_not_applied(db, user, make_login, make_account):
    login = make_login(user)
    make_account(user, login=login, balance="100.00", external_account_id="EXT-42")

    await BankSyncService(db, client_factory=client_factory(bank_payload("-50.00"))).sync_login(login.id)

    account = db.query(UserBankAccount).filter_by(external_account_id="EXT-42").one()
    assert account.balance == Decimal("100.00")


async def test_credit_account_takes_negative_bank_balance(db, user, make_login):
    login = make_login(user)
    payload = bank_payload("-250.00", account_type="CREDIT")
    await BankSyncService(db, client_factory=client_factory(payload)).sync_login(login.id)
    account = db.query(UserBankAccount).filter_by(external_account_id="EXT-42").one()
    assert account.balance == Decimal("-250.00")


async def test_account_linked_to_another_login_conflicts(db, user, other_user, make_login, make_account):
    make_account(other_user, external_account_id="EXT-42")
    login = make_login(user)

    with pytest.raises(DomainException) as exc:
        await BankSyncService(db, client_factory=client_factory(bank_payload())).sync_login(login.id)

    assert exc.value.reason == "conflict"
    assert db.query(Transaction).count() == 0


async def test_sync_clears_cached_balance_and_error_status(db, cache, user, make_login, make_account):
    login = make_login(user, status="ERROR")
    account = make_account(user, login=login, external_account_id="EXT-42")
    cache.put(account_cache_key(account.id), {"stale": True})

    await BankSyncService(db, cache, client_factory(bank_payload())).sync_login(login.id)

    assert cache.get(account_cache_key(account.id)) is None
    db.refresh(login)
    assert login.status == "ACTIVE"


async def test_bank_error_propagates(db, user, make_login):
    login = make_login(user)
    with pytest.raises(DomainException) as exc:
        await BankSyncService(db, client_factory=client_factory({}, status=503)).sync_login(login.id)
    assert exc.value.reason == "bank_api_error"
    db.refresh(login)
    assert login.last_sync_at is None


async def test_unknown_login(db):
    with pytest.raises(DomainException) as exc:
        await BankSyncService(db).sync_login("missing")
    assert exc.value.reason == "login_not_found"


def test_due_logins_respects_sync_frequency(db, user, make_login):
    fresh = make_login(user, sync_frequency=3600)
    stale = make_login(user, sync_frequency=300)
    now = utcnow()
    fresh.last_sync_at = now - timedelta(minutes=10)
    stale.last_sync_at = now - timedelta(minutes=10)
    db.commit()

    assert not needs_sync(fresh, now)
    assert needs_sync(stale, now)
    assert [login.id for login in BankSyncService(db).due_logins(now)] == [stale.id]


async def test_failing_sync_job_marks_login_as_error(db, session_factory, user, make_login, monkeypatch):
    monkeypatch.setattr(settings, "job_max_attempts", 1)
    login = make_login(user)
    worker = BankSyncWorker(session_factory, client_factory=client_factory({}, status=404))
    runner = WorkerRunner(session_factory, workers=[worker])
    runner.schedule_due_syncs()

    await runner.run_once()

    db.expire_all()
    assert db.get(UserBankLogin, login.id).status == "ERROR"


async def test_sync_sends_the_login_access_token(db, user, make_login):
    login = make_login(user)
    BankingService(db).update_login_tokens(login, "bank-access", "bank-refresh", utcnow() + timedelta(hours=1), "accounts")
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=bank_payload())

    def factory(base_url: str) -> BankClient:
        return BankClient(base_url, max_retries=1, backoff_base=0, transport=httpx.MockTransport(handler))

    await BankSyncService(db, client_factory=factory).sync_login(login.id)

    assert login.scope == "accounts"
    assert seen[0].headers["Authorization"] == "Bearer bank-access"
    assert seen[0].url.params["username"] == login.username


async def test_cached_balance_is_dropped_after_the_sync_commits(
    db, cache, session_factory, user, make_login, make_account, monkeypatch
):
    login = make_login(user)
    account = make_account(user, login=login, balance="100.00", external_account_id="EXT-42")
    committed_balances = []
    delete = cache.delete

    def delete_after_reading(key):
        reader = session_factory()
        try:
            committed_balances.append(reader.get(UserBankAccount, account.id).balance)
        finally:
            reader.close()
        return delete(key)

    monkeypatch.setattr(cache, "delete", delete_after_reading)

    await BankSyncService(db, cache, client_factory(bank_payload())).sync_login(login.id)

    assert committed_balances == [Decimal("900.00")]


async def test_delete_login_with_synced_history_is_refused(db, user, make_login):
    login = make_login(user)
    await BankSyncService(db, client_factory=client_factory(bank_payload())).sync_login(login.id)

    with pytest.raises(DomainException) as exc:
        BankingService(db).delete_login(login)

    assert exc.value.reason == "conflict"
    assert db.query(UserBankAccount).filter_by(user_bank_login_id=login.id).count() == 1
    assert db.query(Transaction).count() == 2


def test_delete_login_without_history_removes_its_accounts(db, cache, user, make_login, make_account):
    login = make_login(user)
    account = make_account(user, login=login, balance="0.00")
    cache.put(account_cache_key(account.id), {"stale": True})

    BankingService(db, cache).delete_login(login)

    assert db.query(UserBankLogin).count() == 0
    assert db.query(UserBankAccount).count() == 0
    assert cache.get(account_cache_key(account.id)) is None
