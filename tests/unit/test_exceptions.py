"""Unit tests for the error catalog"""

import pytest

from ledger_bank_api.domain.exceptions import BankAPIError, DomainException, category_for


@pytest.mark.parametrize(
    "reason,category,status",
    [
        ("invalid_amount_format", "validation", 400),
        ("payment_not_found", "not_found", 404),
        ("token_expired", "authentication", 401),
        ("insufficient_permissions", "authorization", 403),
        ("already_processed", "conflict", 409),
        ("insufficient_funds", "business_rule", 422),
        ("rate_limit_exceeded", "rate_limit", 429),
        ("bank_api_error", "external_dependency", 503),
        ("database_error", "system", 500),
    ],
)
def test_reason_maps_to_category_and_status(reason, category, status):
    error = DomainException(reason)
    assert error.category == category
    assert error.http_status == status


def test_unknown_reason_is_a_system_error():
    assert category_for("something_new") == "system"
    assert DomainException("something_new").http_status == 500


def test_retry_policy():
    external = DomainException("timeout")
    assert external.retryable
    assert external.max_retries == 3
    assert external.retry_delay_ms == 1000

    system = DomainException("database_error")
    assert system.retryable
    assert system.max_retries == 2
    assert system.retry_delay_ms == 500

    business = DomainException("insufficient_funds")
    assert not business.retryable
    assert business.max_retries == 0


def test_response_body_hides_sensitive_context():
    error = DomainException(
        "invalid_credentials",
        "Invalid email or password",
        {"email": "a@example.com", "password": "hunter22", "access_token": "abc"},
    )
    body = error.to_response()["error"]
    assert body["type"] == "authentication"
    assert body["reason"] == "invalid_credentials"
    assert body["code"] == 401
    assert body["details"] == {"email": "a@example.com"}
    assert len(body["correlation_id"]) == 32
    assert body["timestamp"]


def test_default_message_from_reason():
    assert DomainException("account_inactive").message == "Account inactive"


def test_correlation_id_is_kept_when_given():
    assert DomainException("timeout", correlation_id="abc").correlation_id == "abc"


def test_bank_api_error():
    error = BankAPIError("Bank API error: 502", {"status": 502})
    assert error.reason == "bank_api_error"
    assert error.retryable
    assert error.context == {"status": 502}
