"""Unit tests for the bank circuit breaker"""

import httpx
import pytest

from ledger_bank_api.domain.exceptions import BankAPIError, DomainException
from ledger_bank_api.infrastructure.clients import circuit_breaker as breaker_module
from ledger_bank_api.infrastructure.clients.bank import BankClient
from ledger_bank_api.infrastructure.clients.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    breaker_for,
    circuit_states,
)


@pytest.fixture
def clock(monkeypatch):
    now = [500.0]
    monkeypatch.setattr(breaker_module.time, "monotonic", lambda: now[0])
    return now


async def ok():
    return "ok"


async def boom():
    raise BankAPIError("Bank API error: 503", {"status": 503})


async def fail_with(breaker, times):
    for _ in range(times):
        with pytest.raises(BankAPIError):
            await breaker.call(boom)


async def test_opens_after_threshold_and_fails_fast(clock):
    breaker = CircuitBreaker("bank", failure_threshold=3, reset_timeout=30)
    await fail_with(breaker, 3)
    assert breaker.state == CircuitState.OPEN

    calls = []

    async def tracked():
        calls.append(1)
        return "ok"

    with pytest.raises(DomainException) as exc:
        await breaker.call(tracked)
    assert exc.value.reason == "service_unavailable"
    assert exc.value.retryable
    assert calls == []


async def test_success_resets_failure_count(clock):
    breaker = CircuitBreaker("bank", failure_threshold=3, reset_timeout=30)
    await fail_with(breaker, 2)
    assert await breaker.call(ok) == "ok"
    await fail_with(breaker, 2)
    assert breaker.state == CircuitState.CLOSED


async def test_half_open_trial_closes_or_reopens(clock):
    breaker = CircuitBreaker("bank", failure_threshold=1, reset_timeout=30)
    await fail_with(breaker, 1)

    clock[0] += 30
    await fail_with(breaker, 1)
    assert breaker.state == CircuitState.OPEN

    clock[0] += 29
    assert not breaker.allow()
    clock[0] += 1
    assert await breaker.call(ok) == "ok"
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


async def test_ignored_errors_do_not_open_the_circuit(clock):
    breaker = CircuitBreaker("bank", failure_threshold=1)
    with pytest.raises(BankAPIError):
        await breaker.call(boom, is_failure=lambda e: False)
    assert breaker.state == CircuitState.CLOSED


def test_breakers_are_shared_per_name():
    assert breaker_for("http://a") is breaker_for("http://a")
    assert breaker_for("http://a") is not breaker_for("http://b")
    assert circuit_states()["http://a"] == {"state": "CLOSED", "failure_count": 0}


async def test_bank_client_trips_on_outages_only(monkeypatch):
    monkeypatch.setattr(breaker_module.settings, "bank_circuit_failure_threshold", 2)
    statuses = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(statuses.pop(0))

    def client() -> BankClient:
        return BankClient("http://flaky.test", max_retries=1, backoff_base=0, transport=httpx.MockTransport(handler))

    statuses.extend([404, 404, 404])
    for _ in range(3):
        with pytest.raises(BankAPIError):
            await client().fetch_accounts("nobody")
    assert breaker_for("http://flaky.test").state == CircuitState.CLOSED

    statuses.extend([500, 500])
    for _ in range(2):
        with pytest.raises(BankAPIError):
            await client().fetch_accounts("alice")
    with pytest.raises(DomainException) as exc:
        await client().fetch_accounts("alice")
    assert exc.value.reason == "service_unavailable"
    assert statuses == []
