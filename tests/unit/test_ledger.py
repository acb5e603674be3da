"""Unit tests for balance arithmetic"""

from decimal import Decimal

import pytest

from ledger_bank_api.domain.exceptions import DomainException
from ledger_bank_api.domain.ledger import (
    apply_direction,
    has_sufficient_balance,
    new_external_transaction_id,
    to_amount,
    violates_balance_invariant,
)


def test_to_amount_quantizes_to_cents():
    assert to_amount("10") == Decimal("10.00")
    assert to_amount("12.3") == Decimal("12.30")
    assert to_amount(Decimal("0.1")) == Decimal("0.10")


@pytest.mark.parametrize("value", ["abc", None, "NaN", "Infinity", ""])
def test_to_amount_rejects_garbage(value):
    with pytest.raises(DomainException) as exc:
        to_amount(value)
    assert exc.value.reason == "invalid_amount_format"


def test_apply_direction_credit_and_debit():
    assert apply_direction(Decimal("100.00"), Decimal("25.50"), "CREDIT") == Decimal("125.50")
    assert apply_direction(Decimal("100.00"), Decimal("25.50"), "DEBIT") == Decimal("74.50")


def test_apply_direction_can_go_negative():
    """The caller decides whether a negative result is allowed"""
    assert apply_direction(Decimal("10.00"), Decimal("30.00"), "DEBIT") == Decimal("-20.00")


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
def test_apply_direction_requires_positive_amount(amount):
    with pytest.raises(DomainException) as exc:
        apply_direction(Decimal("100.00"), amount, "DEBIT")
    assert exc.value.reason == "negative_amount"


def test_apply_direction_unknown_direction():
    with pytest.raises(DomainException) as exc:
        apply_direction(Decimal("100.00"), Decimal("1.00"), "SIDEWAYS")
    assert exc.value.reason == "invalid_direction"


def test_balance_invariant_only_credit_may_be_negative():
    assert violates_balance_invariant("CHECKING", Decimal("-0.01"))
    assert violates_balance_invariant("SAVINGS", Decimal("-100"))
    assert not violates_balance_invariant("CHECKING", Decimal("0"))
    assert not violates_balance_invariant("CREDIT", Decimal("-5000"))


def test_has_sufficient_balance():
    assert has_sufficient_balance("CHECKING", Decimal("100"), Decimal("100"))
    assert not has_sufficient_balance("SAVINGS", Decimal("99.99"), Decimal("100"))
    assert has_sufficient_balance("CREDIT", Decimal("0"), Decimal("100"))


def test_external_transaction_ids_are_unique():
    first, second = new_external_transaction_id(), new_external_transaction_id()
    assert first.startswith("TXN-")
    assert first != second
