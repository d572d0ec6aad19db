"""
receivables.py - Receivable Units, Facts and the Receivable Adapter

A receivable is a unit with quantity always 1. Whoever holds it is the
creditor-of-record, so transferring it to the pool is the purchase and
transferring it back is the unwind.

This module provides:
1. ReceivableFacts / ReceivableAdapter - what the engine reads about a receivable
2. LedgerReceivableAdapter - reads facts straight from the custody ledger
3. create_receivable_unit() - factory for receivable units
4. compute_receivable_issuance() - put a new receivable in its creditor's wallet
5. compute_receivable_payment() - debtor pays; cash goes to the current holder
6. compute_receivable_cancellation() - issuer cancels or the debtor rejects

Pattern:
    Issuance:
        Move(source="system", dest="originator", unit="INV-001", quantity=1)

    Purchase by the pool (see FactoringPool.fund):
        Move(source="originator", dest="pool", unit="INV-001", quantity=1)

    Payment by the debtor, after purchase:
        Move(source="debtor", dest="pool", unit="USDC", quantity=100000)
        state: paid_amount 0 -> 100000

All compute_* functions take a LedgerView and return a PendingTransaction.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from .core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    SYSTEM_WALLET, UNIT_TYPE_RECEIVABLE, QUANTITY_EPSILON,
    NotFound, UnitNotRegistered,
    build_transaction, to_decimal, _freeze_state,
)


# ============================================================================
# FACTS AND ADAPTER PROTOCOL
# ============================================================================

@dataclass(frozen=True, slots=True)
class ReceivableFacts:
    """
    Externally owned facts about one receivable.

    Attributes:
        face_value: Amount the debtor owes in total
        paid_amount: Amount paid to date
        due_date: When payment is due
        creditor: Current creditor-of-record (None if nobody holds it)
        is_canceled: Canceled by its issuer
        is_rejected: Rejected by its debtor
        settlement_token: Unit symbol the receivable is paid in
    """
    face_value: Decimal
    paid_amount: Decimal
    due_date: datetime
    creditor: Optional[str]
    is_canceled: bool
    is_rejected: bool
    settlement_token: str

    @property
    def outstanding(self) -> Decimal:
        return max(self.face_value - self.paid_amount, Decimal("0"))

    @property
    def is_fully_paid(self) -> bool:
        return self.paid_amount >= self.face_value


@runtime_checkable
class ReceivableAdapter(Protocol):
    """Source of receivable facts. Raises NotFound for unknown ids."""

    def get_facts(self, receivable_id: str) -> ReceivableFacts:
        ...


class LedgerReceivableAdapter:
    """
    ReceivableAdapter backed by receivable units on a ledger.

    The creditor is the non-system wallet holding the unit.

    Example:
        adapter = LedgerReceivableAdapter(ledger)
        facts = adapter.get_facts("INV-001")
        facts.is_fully_paid
    """

    def __init__(self, view: LedgerView):
        self.view = view

    def get_facts(self, receivable_id: str) -> ReceivableFacts:
        try:
            unit = self.view.get_unit(receivable_id)
        except UnitNotRegistered:
            raise NotFound(f"Receivable {receivable_id} does not exist") from None
        if unit.unit_type != UNIT_TYPE_RECEIVABLE:
            raise NotFound(f"{receivable_id} is not a receivable")

        state = unit.state
        return ReceivableFacts(
            face_value=state['face_value'],
            paid_amount=state['paid_amount'],
            due_date=state['due_date'],
            creditor=receivable_holder(self.view, receivable_id),
            is_canceled=state['canceled'],
            is_rejected=state['rejected'],
            settlement_token=state['currency'],
        )


def receivable_holder(view: LedgerView, receivable_id: str) -> Optional[str]:
    """Wallet currently holding the receivable, or None."""
    for wallet, quantity in sorted(view.get_positions(receivable_id).items()):
        if wallet != SYSTEM_WALLET and quantity > QUANTITY_EPSILON:
            return wallet
    return None


# ============================================================================
# UNIT FACTORY
# ============================================================================

def create_receivable_unit(
    symbol: str,
    face_value: Decimal,
    currency: str,
    due_date: datetime,
    debtor: str,
    description: Optional[str] = None,
) -> Unit:
    """
    Create a receivable unit.

    Args:
        symbol: Unique receivable id (e.g., "INV-001")
        face_value: Total amount owed, must be positive
        currency: Settlement token symbol (e.g., "USDC")
        due_date: Payment due date
        debtor: Wallet expected to pay
        description: Optional free text

    Returns:
        Unit with quantity 1 and state tracking face_value, paid_amount,
        due_date, currency, debtor, canceled and rejected.

    Raises:
        ValueError: If face_value is not positive or an identifier is empty
    """
    face_value = to_decimal(face_value)
    if face_value <= 0:
        raise ValueError(f"face_value must be positive, got {face_value}")
    if not currency or not currency.strip():
        raise ValueError("currency cannot be empty")
    if not debtor or not debtor.strip():
        raise ValueError("debtor cannot be empty")

    return Unit(
        symbol=symbol,
        name=description or f"Receivable {symbol}: {face_value} {currency}",
        unit_type=UNIT_TYPE_RECEIVABLE,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        _frozen_state=_freeze_state({
            'face_value': face_value,
            'paid_amount': Decimal("0"),
            'due_date': due_date,
            'currency': currency,
            'debtor': debtor,
            'canceled': False,
            'rejected': False,
        }),
    )


# ============================================================================
# TRANSACTIONS
# ============================================================================

def compute_receivable_issuance(view: LedgerView, unit: Unit, creditor: str) -> PendingTransaction:
    """Register ``unit`` and place it in ``creditor``'s wallet."""
    origin = TransactionOrigin(OriginType.EXTERNAL, creditor, unit.symbol, "ISSUE")
    return build_transaction(
        view,
        [Move(Decimal("1"), unit.symbol, SYSTEM_WALLET, creditor, f"{unit.symbol}:issue")],
        origin=origin,
        units_to_create=(unit,),
    )


def compute_receivable_payment(
    view: LedgerView,
    receivable_id: str,
    payer: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Pay ``amount`` towards a receivable.

    Cash flows from ``payer`` to the current holder. Paying more than the
    outstanding amount, or paying a canceled/rejected receivable, is refused.

    Raises:
        ValueError: Non-positive amount, overpayment, or closed receivable
        NotFound: Unknown receivable
    """
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValueError(f"Payment amount must be positive, got {amount}")

    facts = LedgerReceivableAdapter(view).get_facts(receivable_id)
    if facts.is_canceled or facts.is_rejected:
        raise ValueError(f"Receivable {receivable_id} is canceled or rejected")
    if amount > facts.outstanding:
        raise ValueError(
            f"Payment {amount} exceeds outstanding {facts.outstanding} on {receivable_id}"
        )
    if facts.creditor is None:
        raise ValueError(f"Receivable {receivable_id} has no holder")

    old_state = view.get_unit_state(receivable_id)
    new_state = dict(old_state)
    new_state['paid_amount'] = old_state['paid_amount'] + amount

    return build_transaction(
        view,
        [Move(amount, facts.settlement_token, payer, facts.creditor, f"{receivable_id}:payment")],
        state_changes=[UnitStateChange(receivable_id, old_state, new_state)],
        origin=TransactionOrigin(OriginType.EXTERNAL, payer, receivable_id, "PAYMENT"),
    )


def compute_receivable_cancellation(
    view: LedgerView,
    receivable_id: str,
    rejected: bool = False,
) -> PendingTransaction:
    """Mark a receivable canceled (by its issuer) or rejected (by its debtor)."""
    old_state = view.get_unit_state(receivable_id)
    new_state = dict(old_state)
    new_state['rejected' if rejected else 'canceled'] = True
    return build_transaction(
        view,
        [],
        state_changes=[UnitStateChange(receivable_id, old_state, new_state)],
        origin=TransactionOrigin(
            OriginType.EXTERNAL, old_state['debtor'], receivable_id,
            "REJECT" if rejected else "CANCEL",
        ),
    )
