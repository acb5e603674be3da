"""Integration tests for API endpoints"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import redis
from fastapi.testclient import TestClient

from ledger_bank_api.api.main import create_app
from ledger_bank_api.config import settings
from ledger_bank_api.infrastructure.cache import RedisCache
from ledger_bank_api.infrastructure.database.models import Job
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.services.auth import AuthService
from ledger_bank_api.services.banking import BankingService
from ledger_bank_api.services.payments import PaymentService

USER_PASSWORD = "password123"


def error_of(response) -> dict:
    return response.json()["error"]


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readiness_and_detailed_health(client: TestClient):
    ready = client.get("/api/health/ready")
    assert ready.status_code == 200
    assert ready.json()["checks"] == {"database": True, "cache": True}

    detailed = client.get("/api/health/detailed").json()
    assert detailed["checks"]["database"]["status"] == "ok"
    assert detailed["checks"]["cache"]["backend"] == "memory"
    assert detailed["checks"]["jobs"] == {}


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    client.get("/api/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "http_request_duration_seconds" in response.text


def test_security_and_request_id_headers(client: TestClient):
    response = client.get("/api/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "Strict-Transport-Security" not in response.headers

    generated = client.get("/api/health").headers["X-Request-ID"]
    assert len(generated) == 36


def test_rate_limit(db, cache, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_requests", 3)
    app = create_app(cache=cache)
    app.dependency_overrides[get_db] = lambda: db
    limited = TestClient(app)

    statuses = [limited.get("/api/me").status_code for _ in range(3)]
    blocked = limited.get("/api/me")

    assert statuses == [401, 401, 401]
    assert blocked.status_code == 429
    assert error_of(blocked)["reason"] == "rate_limit_exceeded"
    assert int(blocked.headers["Retry-After"]) > 0
    assert blocked.headers["X-RateLimit-Remaining"] == "0"
    # Health checks are never limited
    assert limited.get("/api/health").status_code == 200


def test_unknown_route_uses_error_body(client: TestClient):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert error_of(response)["reason"] == "not_found"


# Auth


def test_register_login_refresh_logout(client: TestClient):
    registered = client.post(
        "/api/auth/register",
        json={"email": "New@Example.com", "full_name": "New User", "password": USER_PASSWORD, "role": "admin"},
    )
    assert registered.status_code == 201
    body = registered.json()
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["role"] == "user"
    assert body["token_type"] == "Bearer"

    login = client.post("/api/auth/login", json={"email": "new@example.com", "password": USER_PASSWORD})
    assert login.status_code == 200
    tokens = login.json()
    headers = {"Authorization": f"Bearer {tokens['access_token']}"}

    me = client.get("/api/me", headers=headers)
    assert me.json()["full_name"] == "New User"

    refreshed = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 200
    reused = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert reused.status_code == 401
    assert error_of(reused)["reason"] == "token_revoked"

    logout = client.post("/api/logout", headers=headers)
    assert logout.status_code == 200
    assert logout.json()["revoked"] == 2


def test_register_validation(client: TestClient, user):
    short = client.post("/api/auth/register", json={"email": "x@example.com", "full_name": "X", "password": "short"})
    assert short.status_code == 400
    assert error_of(short)["reason"] == "invalid_password_format"

    taken = client.post(
        "/api/auth/register", json={"email": "alice@example.com", "full_name": "A", "password": USER_PASSWORD}
    )
    assert taken.status_code == 409
    assert error_of(taken)["reason"] == "email_already_exists"

    missing = client.post("/api/auth/register", json={"email": "x@example.com"})
    assert missing.status_code == 400
    fields = {e["field"] for e in error_of(missing)["details"]["errors"]}
    assert {"full_name", "password"} <= fields


def test_bad_credentials(client: TestClient, user):
    response = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope-nope"})
    assert response.status_code == 401
    error = error_of(response)
    assert error["reason"] == "invalid_credentials"
    assert "password" not in error["details"]


def test_missing_token(client: TestClient):
    response = client.get("/api/me")
    assert response.status_code == 401
    assert error_of(response)["reason"] == "invalid_token"


def test_change_password(client: TestClient, user, auth_headers):
    response = client.put(
        "/api/me/password",
        headers=auth_headers(user),
        json={"current_password": USER_PASSWORD, "password": "brand-new-pass", "password_confirmation": "brand-new-pass"},
    )
    assert response.status_code == 200
    login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "brand-new-pass"})
    assert login.status_code == 200


# Users


def test_user_admin_endpoints(client: TestClient, admin, user, auth_headers):
    headers = auth_headers(admin)

    created = client.post(
        "/api/users",
        headers=headers,
        json={"email": "helper@example.com", "full_name": "Helper", "password": "support-password-1", "role": "support"},
    )
    assert created.status_code == 201
    assert created.json()["role"] == "support"

    listing = client.get("/api/users?sort=email:asc&page_size=2", headers=headers).json()
    assert listing["pagination"]["total"] == 3
    assert listing["pagination"]["has_next"] is True
    assert [u["email"] for u in listing["data"]] == ["admin@example.com", "alice@example.com"]

    stats = client.get("/api/users/stats", headers=headers).json()
    assert stats["total_users"] == 3
    assert stats["admin_users"] == 1

    suspended = client.post(f"/api/users/{user.id}/suspend", headers=headers)
    assert suspended.json()["status"] == "SUSPENDED"
    assert client.get("/api/me", headers=auth_headers(user)).status_code == 401
    assert client.post(f"/api/users/{user.id}/activate", headers=headers).json()["status"] == "ACTIVE"

    deleted = client.delete(f"/api/users/{user.id}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["deleted"] is True


def test_regular_user_cannot_manage_users(client: TestClient, user, other_user, auth_headers):
    headers = auth_headers(user)
    assert client.get("/api/users", headers=headers).status_code == 403
    assert client.get("/api/users/stats", headers=headers).status_code == 403
    assert client.get(f"/api/users/{other_user.id}", headers=headers).status_code == 403

    own = client.put(f"/api/users/{user.id}", headers=headers, json={"full_name": "Alice B"})
    assert own.status_code == 200
    assert own.json()["full_name"] == "Alice B"

    escalate = client.put(f"/api/users/{user.id}", headers=headers, json={"role": "admin"})
    assert escalate.status_code == 403
    assert error_of(escalate)["reason"] == "insufficient_permissions"


def test_support_can_list_by_role(client: TestClient, support, user, auth_headers):
    response = client.get("/api/users/role/user", headers=auth_headers(support))
    assert [u["email"] for u in response.json()] == ["alice@example.com"]
    assert client.get("/api/users/role/wizard", headers=auth_headers(support)).status_code == 400


def test_bad_sort_field(client: TestClient, admin, auth_headers):
    response = client.get("/api/users?sort=password_hash:asc", headers=auth_headers(admin))
    assert response.status_code == 400
    assert error_of(response)["reason"] == "validation_error"


# Banks and logins


def test_bank_catalog(client: TestClient, admin, user, auth_headers, bank):
    admin_headers = auth_headers(admin)
    created = client.post(
        "/api/banks", headers=admin_headers, json={"name": "Other Bank", "country": "GB", "code": "OTHER"}
    )
    assert created.status_code == 201
    assert client.post("/api/banks", headers=auth_headers(user), json={"name": "X", "country": "GB", "code": "XXX"}).status_code == 403

    frozen = client.put(f"/api/banks/{bank.id}", headers=admin_headers, json={"code": "NEW_CODE"})
    assert frozen.status_code == 400

    client.put(f"/api/banks/{bank.id}", headers=admin_headers, json={"status": "INACTIVE"})
    active = client.get("/api/banks/active", headers=auth_headers(user)).json()["data"]
    assert [b["code"] for b in active] == ["OTHER"]

    gb = client.get("/api/banks?country=GB", headers=auth_headers(user)).json()
    assert gb["pagination"]["total"] == 1

    branch = client.post(f"/api/banks/{bank.id}/branches", headers=admin_headers, json={"name": "Downtown"})
    assert branch.status_code == 201
    assert branch.json()["country"] == "US"
    assert client.get(f"/api/branches/{branch.json()['id']}", headers=auth_headers(user)).status_code == 200


def test_login_lifecycle_and_sync(client: TestClient, db, user, other_user, auth_headers, branch):
    headers = auth_headers(user)
    created = client.post(
        "/api/user-bank-logins", headers=headers, json={"bank_branch_id": branch.id, "username": "alice-bank"}
    )
    assert created.status_code == 201
    login_id = created.json()["id"]
    assert "access_token" not in created.json()

    duplicate = client.post(
        "/api/user-bank-logins", headers=headers, json={"bank_branch_id": branch.id, "username": "alice-bank"}
    )
    assert duplicate.status_code == 409

    too_fast = client.put(f"/api/user-bank-logins/{login_id}", headers=headers, json={"sync_frequency": 60})
    assert too_fast.status_code == 400

    assert client.get(f"/api/user-bank-logins/{login_id}", headers=auth_headers(other_user)).status_code == 403

    sync = client.post(f"/api/user-bank-logins/{login_id}/sync", headers=headers)
    assert sync.status_code == 202
    assert sync.json()["queue"] == "banking"
    alias = client.post(f"/api/sync/{login_id}", headers=headers)
    assert alias.json()["job_id"] == sync.json()["job_id"]
    assert db.query(Job).count() == 1

    assert client.delete(f"/api/user-bank-logins/{login_id}", headers=headers).status_code == 204
    assert client.get(f"/api/user-bank-logins/{login_id}", headers=headers).status_code == 404


# Accounts


def test_account_endpoints(client: TestClient, user, other_user, admin, auth_headers, make_login):
    headers = auth_headers(user)
    login = make_login(user)

    created = client.post(
        "/api/accounts",
        headers=headers,
        json={"user_bank_login_id": login.id, "currency": "USD", "account_type": "SAVINGS", "balance": "250.00"},
    )
    assert created.status_code == 201
    account_id = created.json()["id"]

    negative = client.post(
        "/api/accounts",
        headers=headers,
        json={"user_bank_login_id": login.id, "currency": "USD", "account_type": "CHECKING", "balance": "-1"},
    )
    assert negative.status_code == 422
    assert error_of(negative)["reason"] == "negative_balance"

    balances = client.get(f"/api/accounts/{account_id}/balances", headers=headers).json()
    assert Decimal(balances["balance"]) == Decimal("250.00")
    assert balances["needs_sync"] is True

    renamed = client.put(f"/api/accounts/{account_id}", headers=headers, json={"account_name": "Rainy day"})
    assert renamed.json()["account_name"] == "Rainy day"
    forbidden = client.put(f"/api/accounts/{account_id}", headers=headers, json={"balance": "9999"})
    assert forbidden.status_code == 403

    adjusted = client.put(f"/api/accounts/{account_id}", headers=auth_headers(admin), json={"balance": "300.00"})
    assert Decimal(adjusted.json()["balance"]) == Decimal("300.00")
    # The balance cache was invalidated by the update
    balances = client.get(f"/api/accounts/{account_id}/balances", headers=headers).json()
    assert Decimal(balances["balance"]) == Decimal("300.00")

    assert client.get(f"/api/accounts/{account_id}", headers=auth_headers(other_user)).status_code == 403
    assert client.get("/api/accounts", headers=auth_headers(other_user)).json()["pagination"]["total"] == 0
    assert client.get("/api/accounts", headers=auth_headers(admin)).json()["pagination"]["total"] == 1


def test_account_with_balance_cannot_be_deleted(client: TestClient, user, account, auth_headers):
    response = client.delete(f"/api/accounts/{account.id}", headers=auth_headers(user))
    assert response.status_code == 409


def test_empty_account_is_deleted(client: TestClient, user, make_account, auth_headers):
    account = make_account(user, balance="0.00")
    assert client.delete(f"/api/accounts/{account.id}", headers=auth_headers(user)).status_code == 204
    assert client.get(f"/api/accounts/{account.id}", headers=auth_headers(user)).status_code == 404


def test_transactions_listing(client: TestClient, db, user, account, auth_headers):
    service = BankingService(db)
    service.record_transaction(account, {"amount": "10.00", "direction": "DEBIT", "description": "Coffee"})
    service.record_transaction(account, {"amount": "90.00", "direction": "CREDIT", "description": "Refund"})
    db.commit()
    headers = auth_headers(user)

    listing = client.get(f"/api/accounts/{account.id}/transactions?sort=amount:desc", headers=headers).json()
    assert [t["description"] for t in listing["data"]] == ["Refund", "Coffee"]

    debits = client.get(f"/api/accounts/{account.id}/transactions?direction=DEBIT", headers=headers).json()
    assert debits["pagination"]["total"] == 1
    txn_id = debits["data"][0]["id"]
    assert client.get(f"/api/transactions/{txn_id}", headers=headers).status_code == 200

    bad = client.get(f"/api/accounts/{account.id}/transactions?direction=SIDEWAYS", headers=headers)
    assert bad.status_code == 400


# Payments


def test_payment_endpoints(client: TestClient, db, user, other_user, account, auth_headers):
    headers = auth_headers(user)
    created = client.post(
        "/api/payments",
        headers=headers,
        json={"user_bank_account_id": account.id, "amount": "60.00", "direction": "DEBIT", "payment_type": "PAYMENT"},
    )
    assert created.status_code == 201
    payment = created.json()
    assert payment["status"] == "PENDING"

    duplicate = client.post(
        "/api/payments",
        headers=headers,
        json={"user_bank_account_id": account.id, "amount": "60.00", "direction": "DEBIT", "payment_type": "PAYMENT"},
    )
    assert duplicate.status_code == 409
    assert error_of(duplicate)["reason"] == "duplicate_transaction"

    assert client.get(f"/api/payments/{payment['id']}", headers=auth_headers(other_user)).status_code == 403

    updated = client.put(f"/api/payments/{payment['id']}", headers=headers, json={"description": "Electricity"})
    assert updated.json()["description"] == "Electricity"

    queued = client.post(f"/api/payments/{payment['id']}/process", headers=headers)
    assert queued.status_code == 202
    assert queued.json()["queue"] == "payments"
    job = db.get(Job, queued.json()["job_id"])
    assert job.args == {"payment_id": payment["id"]}

    listing = client.get("/api/payments?status=PENDING", headers=headers).json()
    assert listing["pagination"]["total"] == 1
    by_account = client.get(f"/api/payments/account/{account.id}", headers=headers).json()
    assert by_account["data"][0]["id"] == payment["id"]
    assert client.get(f"/api/accounts/{account.id}/payments", headers=headers).json()["pagination"]["total"] == 1


def test_payment_over_limit(client: TestClient, user, account, auth_headers):
    response = client.post(
        "/api/payments",
        headers=auth_headers(user),
        json={"user_bank_account_id": account.id, "amount": "10000.01", "direction": "DEBIT", "payment_type": "PAYMENT"},
    )
    assert response.status_code == 422
    assert error_of(response)["reason"] == "amount_exceeds_limit"


@pytest.mark.parametrize(
    "action,status,reason",
    [("cancel", 409, "already_processed"), ("process", 403, "unauthorized_access")],
)
def test_finished_payments_cannot_be_cancelled_or_requeued(
    client: TestClient, db, user, account, auth_headers, action, status, reason
):
    payment = PaymentService(db).create_payment(
        user, {"user_bank_account_id": account.id, "amount": "5.00", "direction": "DEBIT", "payment_type": "PAYMENT"}
    )
    PaymentService(db).process_payment(payment.id)

    response = client.post(f"/api/payments/{payment.id}/{action}", headers=auth_headers(user))

    assert response.status_code == status
    assert error_of(response)["reason"] == reason


def test_cancel_and_delete_payment(client: TestClient, user, account, auth_headers):
    headers = auth_headers(user)
    payment = client.post(
        "/api/payments",
        headers=headers,
        json={"user_bank_account_id": account.id, "amount": "7.00", "direction": "CREDIT", "payment_type": "DEPOSIT"},
    ).json()

    cancelled = client.post(f"/api/payments/{payment['id']}/cancel", headers=headers)
    assert cancelled.json()["status"] == "CANCELLED"
    assert client.delete(f"/api/payments/{payment['id']}", headers=headers).status_code == 204
    assert client.get(f"/api/payments/{payment['id']}", headers=headers).status_code == 404


def test_logout_with_query_token_revokes_only_that_token(client: TestClient, db, user, auth_headers):
    auth = AuthService(db)
    first = auth.login("alice@example.com", USER_PASSWORD)
    second = auth.login("alice@example.com", USER_PASSWORD)

    response = client.post("/api/logout", params={"refresh_token": first["refresh_token"]}, headers=auth_headers(user))

    assert response.json() == {"message": "Logged out", "revoked": 1}
    assert client.post("/api/auth/refresh", json={"refresh_token": first["refresh_token"]}).status_code == 401
    assert client.post("/api/auth/refresh", json={"refresh_token": second["refresh_token"]}).status_code == 200


def test_staff_permissions(client: TestClient, user, support, account, db, auth_headers):
    headers = auth_headers(support)
    assert client.get("/api/users", headers=headers).status_code == 200

    stats = client.get("/api/users/stats", headers=headers)
    assert stats.status_code == 403
    assert error_of(stats)["reason"] == "insufficient_permissions"
    bank = client.post("/api/banks", headers=headers, json={"name": "Nope", "country": "US", "code": "NOPE"})
    assert bank.status_code == 403

    payment = PaymentService(db).create_payment(
        user, {"user_bank_account_id": account.id, "amount": "3.00", "direction": "DEBIT", "payment_type": "PAYMENT"}
    )
    cancelled = client.post(f"/api/payments/{payment.id}/cancel", headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"


def test_login_with_ledger_history_cannot_be_deleted(client: TestClient, db, user, account, auth_headers):
    payment = PaymentService(db).create_payment(
        user, {"user_bank_account_id": account.id, "amount": "5.00", "direction": "DEBIT", "payment_type": "PAYMENT"}
    )
    PaymentService(db).process_payment(payment.id)

    response = client.delete(f"/api/user-bank-logins/{account.user_bank_login_id}", headers=auth_headers(user))

    assert response.status_code == 409
    assert error_of(response)["reason"] == "conflict"
    assert client.get(f"/api/accounts/{account.id}", headers=auth_headers(user)).status_code == 200


def test_detailed_health_reports_cache_outage(db):
    client = MagicMock()
    client.ping.side_effect = redis.ConnectionError("down")
    client.info.side_effect = redis.ConnectionError("down")
    app = create_app(cache=RedisCache(client))
    app.dependency_overrides[get_db] = lambda: db

    response = TestClient(app).get("/api/health/detailed")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["checks"]["cache"]["status"] == "error"
    assert body["checks"]["database"]["status"] == "ok"
