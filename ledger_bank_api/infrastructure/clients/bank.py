"""Bank API HTTP client for fetching accounts and transactions of a bank login"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from ledger_bank_api.config import settings
from ledger_bank_api.domain.exceptions import BankAPIError
from ledger_bank_api.domain.models import BankAccount, BankTransaction
from ledger_bank_api.infrastructure.clients.circuit_breaker import CircuitBreaker, breaker_for
from ledger_bank_api.infrastructure.observability.metrics import bank_fetch_failures_counter
from ledger_bank_api.utils.time_utils import to_naive_utc


def _is_outage(error: Exception) -> bool:
    """4xx answers mean the bank is up; they do not count against the breaker"""
    if isinstance(error, BankAPIError):
        status = error.context.get("status")
        return status is None or status >= 500
    return True


class BankClient:
    """Client for an external bank's account API"""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.bank_api_timeout_seconds
        self.max_retries = max_retries or settings.bank_api_max_retries
        self.backoff_base = settings.bank_api_backoff_base if backoff_base is None else backoff_base
        self.transport = transport
        self.breaker = breaker or breaker_for(self.base_url)

    async def fetch_accounts(self, username: str, access_token: str | None = None) -> List[BankAccount]:
        """
        Fetch the accounts of a bank login together with their recent transactions.

        Raises:
            BankAPIError: On timeout, HTTP errors, or invalid response
            DomainException: ``service_unavailable`` while the circuit is open
        """
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}
        data = await self.breaker.call(
            lambda: self._get("/accounts", params={"username": username}, headers=headers),
            is_failure=_is_outage,
        )
        try:
            return [self._parse_account(item) for item in data.get("accounts", [])]
        except (KeyError, ValueError, TypeError, ArithmeticError) as e:
            raise BankAPIError(f"Invalid account data from bank: {e}") from e

    async def _get(self, path: str, params: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        """
        GET with retry.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base...
        - Retries on timeouts, 5xx errors and network failures
        - 4xx responses fail immediately
        """
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            while True:
                try:
                    response = await client.get(f"{self.base_url}{path}", params=params, headers=headers)
                    response.raise_for_status()
                    return response.json()

                except httpx.HTTPStatusError as e:
                    bank_fetch_failures_counter.inc()
                    status = e.response.status_code
                    attempt += 1
                    if status < 500 or attempt >= self.max_retries:
                        raise BankAPIError(f"Bank API error: {status}", {"status": status}) from e

                except httpx.TimeoutException as e:
                    bank_fetch_failures_counter.inc()
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise BankAPIError(f"Bank API timeout after {self.timeout}s") from e

                except httpx.RequestError as e:
                    bank_fetch_failures_counter.inc()
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise BankAPIError(f"Bank API unreachable: {e}") from e

                except ValueError as e:
                    raise BankAPIError(f"Invalid JSON from bank: {e}") from e

                backoff = self.backoff_base * (2 ** (attempt - 1))
                await asyncio.sleep(backoff)

    def _parse_account(self, item: Dict[str, Any]) -> BankAccount:
        return BankAccount(
            external_account_id=str(item["external_account_id"]),
            currency=item["currency"],
            account_type=item["account_type"],
            balance=Decimal(str(item["balance"])),
            last_four=item.get("last_four", ""),
            account_name=item.get("account_name", ""),
            transactions=[
                BankTransaction(
                    external_transaction_id=str(txn["external_transaction_id"]),
                    amount=Decimal(str(txn["amount"])),
                    direction=txn["direction"],
                    description=txn["description"],
                    posted_at=to_naive_utc(datetime.fromisoformat(txn["posted_at"])),
                )
                for txn in item.get("transactions", [])
            ],
        )
