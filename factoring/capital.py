"""
capital.py - Capital Accountant: Capital Account, Price per Unit, Conversions

The capital account is the pool's net worth attributable to unit holders:

    available = liquid - protocol_fee_balance - admin_fee_balance
                - impair_reserve - held_collections
    capital   = available + sum(net of active receivables)
                + sum(net - loss of impaired receivables)

held_collections are payments already received on receivables that have not
settled yet. They belong to the settlement (kickback, refund or fees), so
they are neither spendable nor part of net worth until then.

    price_per_unit = capital / units outstanding      (INITIAL_PRICE_PER_UNIT if none)

verify_capital_account() re-derives the same number from the pool's
roll-forward counters and reports any drift, the way
Ledger.verify_double_entry() does for balances.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import Any, Dict

from .core import (
    CASH_DECIMAL_PLACES, UNIT_DECIMAL_PLACES, PRICE_DECIMAL_PLACES,
    INITIAL_PRICE_PER_UNIT, InvariantViolation, quantize,
)


@dataclass(frozen=True, slots=True)
class CapitalSnapshot:
    """Inputs and results of one capital account computation."""
    liquid: Decimal
    protocol_fee_balance: Decimal
    admin_fee_balance: Decimal
    impair_reserve: Decimal
    held_collections: Decimal
    active_carrying_value: Decimal
    impaired_carrying_value: Decimal

    @property
    def deductions(self) -> Decimal:
        return (self.protocol_fee_balance + self.admin_fee_balance
                + self.impair_reserve + self.held_collections)

    @property
    def available_assets(self) -> Decimal:
        return self.liquid - self.deductions

    @property
    def capital_account(self) -> Decimal:
        return self.available_assets + self.active_carrying_value + self.impaired_carrying_value

    def check(self) -> 'CapitalSnapshot':
        """
        Raises:
            InvariantViolation: Earmarks exceed the pool's cash, or a
                carrying value is negative
        """
        if self.available_assets < 0:
            raise InvariantViolation(
                f"Deductions {self.deductions} exceed liquid balance {self.liquid}"
            )
        if self.active_carrying_value < 0 or self.impaired_carrying_value < 0:
            raise InvariantViolation("Negative carrying value")
        return self


def calculate_price_per_unit(capital: Decimal, units_outstanding: Decimal) -> Decimal:
    """capital / units to 18 places, rounded down."""
    if units_outstanding <= 0:
        return INITIAL_PRICE_PER_UNIT
    if capital < 0:
        raise InvariantViolation(f"Negative capital account {capital}")
    return quantize(capital / units_outstanding, PRICE_DECIMAL_PLACES, ROUND_DOWN)


def convert_to_units(assets: Decimal, price: Decimal, rounding: str = ROUND_DOWN) -> Decimal:
    """Units worth ``assets`` at ``price``."""
    if price <= 0:
        raise InvariantViolation(f"Cannot convert at non-positive price {price}")
    return quantize(assets / price, UNIT_DECIMAL_PLACES, rounding)


def convert_to_assets(units: Decimal, price: Decimal, places: int = CASH_DECIMAL_PLACES) -> Decimal:
    """Assets worth ``units`` at ``price``, rounded down to the asset's places."""
    return quantize(units * price, places, ROUND_DOWN)


def units_for_withdrawal(assets: Decimal, price: Decimal) -> Decimal:
    """Units to burn for a withdrawal of ``assets``; rounded up so the pool is never short."""
    return convert_to_units(assets, price, ROUND_UP)


def verify_capital_account(
    capital: Decimal,
    total_deposited: Decimal,
    total_withdrawn: Decimal,
    realized_gains: Decimal,
    realized_losses: Decimal,
    upfront_fees_expensed: Decimal,
    tolerance: Decimal = Decimal("0"),
) -> Dict[str, Any]:
    """
    Compare the capital account against its roll-forward.

        expected = deposited - withdrawn + gains - losses - upfront fees

    Returns:
        {'valid': bool, 'capital': ..., 'expected': ..., 'difference': ...}
    """
    expected = (total_deposited - total_withdrawn + realized_gains
                - realized_losses - upfront_fees_expensed)
    difference = capital - expected
    return {
        'valid': abs(difference) <= tolerance,
        'capital': capital,
        'expected': expected,
        'difference': difference,
    }
