"""Balance arithmetic and the account balance invariant"""

import uuid
from decimal import Decimal, InvalidOperation

from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.models import AccountType, Direction

CENT = Decimal("0.01")


def to_amount(value) -> Decimal:
    """Parse a money amount, quantized to cents"""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise DomainException("invalid_amount_format", f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise DomainException("invalid_amount_format", f"Invalid amount: {value!r}")
    return amount.quantize(CENT)


def apply_direction(balance: Decimal, amount: Decimal, direction: str) -> Decimal:
    """
    Balance after applying a movement.

    CREDIT adds the amount, DEBIT subtracts it. The amount must be positive.
    """
    if amount <= 0:
        raise DomainException("negative_amount", "Amount must be greater than zero", {"amount": str(amount)})
    if direction == Direction.CREDIT.value:
        return balance + amount
    if direction == Direction.DEBIT.value:
        return balance - amount
    raise DomainException("invalid_direction", f"Unknown direction: {direction}", {"direction": direction})


def violates_balance_invariant(account_type: str, balance: Decimal) -> bool:
    """Only CREDIT accounts may carry a negative balance"""
    return account_type != AccountType.CREDIT.value and balance < 0


def has_sufficient_balance(account_type: str, balance: Decimal, amount: Decimal) -> bool:
    if account_type == AccountType.CREDIT.value:
        return True
    return balance >= amount


def new_external_transaction_id() -> str:
    return f"TXN-{uuid.uuid4().hex}"
