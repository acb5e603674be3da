"""Mock bank API for local development.

Returns the same accounts and transactions for a username on every call so
repeated syncs are idempotent.
"""

import hashlib
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, HTTPException

app = FastAPI(title="Mock Bank Server", version="1.0.0")

ACCOUNT_TYPES = ("CHECKING", "SAVINGS", "CREDIT")
DESCRIPTIONS = ("Salary", "Groceries", "Rent", "Utilities", "Coffee shop", "Transfer")
EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _seed(*parts: str) -> int:
    return int(hashlib.sha256(":".join(parts).encode()).hexdigest()[:8], 16)


def _transactions(account_id: str, count: int) -> list[dict]:
    txns = []
    for i in range(count):
        seed = _seed(account_id, str(i))
        txns.append(
            {
                "external_transaction_id": f"{account_id}-T{i:03d}",
                "amount": f"{(seed % 50000) / 100 + 1:.2f}",
                "direction": "CREDIT" if seed % 3 == 0 else "DEBIT",
                "description": DESCRIPTIONS[seed % len(DESCRIPTIONS)],
                "posted_at": (EPOCH + timedelta(days=i, hours=seed % 24)).isoformat(),
            }
        )
    return txns


def accounts_for(username: str) -> list[dict]:
    seed = _seed(username)
    accounts = []
    for i in range(1 + seed % 3):
        account_id = f"EXT-{seed:08x}-{i}"
        account_type = ACCOUNT_TYPES[i % len(ACCOUNT_TYPES)]
        balance = (_seed(account_id) % 500000) / 100
        if account_type == "CREDIT":
            balance = -balance
        accounts.append(
            {
                "external_account_id": account_id,
                "currency": "USD",
                "account_type": account_type,
                "balance": f"{balance:.2f}",
                "last_four": f"{_seed(account_id, 'last4') % 10000:04d}",
                "account_name": f"{account_type.title()} {i + 1}",
                "transactions": _transactions(account_id, 5),
            }
        )
    return accounts


@app.get("/health")
def health(): return {"status": "ok"}


@app.get("/accounts")
def get_accounts(username: str):
    if username.startswith("unknown"):
        raise HTTPException(status_code=404, detail="user not found")
    return {"accounts": accounts_for(username)}
