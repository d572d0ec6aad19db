"""
reconciliation.py - Settlement Arithmetic for Paid and Unfactored Receivables

Pure functions used by FactoringPool.reconcile_active_paid_invoices(), by
every pool operation that reconciles before it prices, and by
FactoringPool.unfactor(). The pool does the walking and the cash movement;
this module decides what is owed to whom.

Both exits from a funding share one formula. With
    collected = payments received since approval
    realized  = fees earned as of settlement (capped)

    reconcile kickback to the receiver = collected - net - realized
    unfactor amount (creditor -> pool) = net + realized - collected

The unfactor amount is signed: negative means the pool refunds the creditor.
Either way the pool's gain is realized - fee increments.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Tuple

from .fees import FeeIncrement, RealizedFees, calculate_fee_increment
from .invoices import InvoiceApproval
from .receivables import ReceivableFacts


@dataclass(frozen=True, slots=True)
class Settlement:
    """
    Outcome of settling one receivable.

    Attributes:
        receivable_id: Receivable settled
        counterparty: Wallet on the other side of the cash settlement
        collected: Payments the pool received on it
        realized: Realized fee breakdown
        increment: Fee balance credits
        amount: Signed cash from counterparty to pool (negative: pool pays)
        gain: Realized gain booked by the pool
    """
    receivable_id: str
    counterparty: str
    collected: Decimal
    realized: RealizedFees
    increment: FeeIncrement
    amount: Decimal
    gain: Decimal

    @property
    def kickback(self) -> Decimal:
        """Cash the pool pays out (0 if the counterparty pays in)."""
        return max(-self.amount, Decimal("0"))


def calculate_settlement(
    approval: InvoiceApproval,
    counterparty: str,
    collected: Decimal,
    as_of: datetime,
    places: int,
) -> Settlement:
    """
    Settle a funded receivable at ``as_of``.

    PURE FUNCTION - All inputs explicit.
    """
    realized = approval.realized_fees(as_of, places)
    increment = calculate_fee_increment(realized, approval.upfront_protocol_fee)
    amount = approval.funded_amount_net + realized.total - collected
    return Settlement(
        receivable_id=approval.receivable_id,
        counterparty=counterparty,
        collected=collected,
        realized=realized,
        increment=increment,
        amount=amount,
        gain=realized.total - increment.total,
    )


def calculate_kickback(approval: InvoiceApproval, facts: ReceivableFacts, as_of: datetime,
                       places: int) -> Settlement:
    """Settlement of a fully paid receivable; the receiver gets the surplus."""
    return calculate_settlement(approval, approval.receiver, approval.paid_to_pool(facts), as_of, places)


def calculate_unfactor(approval: InvoiceApproval, facts: ReceivableFacts, as_of: datetime,
                       places: int) -> Settlement:
    """Settlement of an unwind; the original creditor pays or is refunded."""
    return calculate_settlement(approval, approval.creditor, approval.paid_to_pool(facts), as_of, places)


def partition_paid(
    receivable_ids: Iterable[str],
    get_facts: Callable[[str], ReceivableFacts],
) -> Tuple[List[str], List[str]]:
    """Split ids into (fully paid, still outstanding), preserving order."""
    paid, unpaid = [], []
    for rid in receivable_ids:
        (paid if get_facts(rid).is_fully_paid else unpaid).append(rid)
    return paid, unpaid


@dataclass(frozen=True, slots=True)
class ReconciliationPlan:
    """
    Settlements of every fully paid open receivable, computed but not applied.

    The pool puts the kickback moves into the ledger transaction of the
    operation that triggered reconciliation and commits the settlements only
    after that transaction applies. reversed_ids are the paid receivables that
    were impaired; their impairments are reversed before they settle.
    """
    settlements: Tuple[Settlement, ...] = ()
    reversed_ids: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.settlements)

    @property
    def receivable_ids(self) -> Tuple[str, ...]:
        return tuple(s.receivable_id for s in self.settlements)

    @property
    def total_kickback(self) -> Decimal:
        return sum((s.kickback for s in self.settlements), Decimal("0"))

    @property
    def admin_increment(self) -> Decimal:
        return sum((s.increment.admin for s in self.settlements), Decimal("0"))

    @property
    def protocol_increment(self) -> Decimal:
        return sum((s.increment.protocol for s in self.settlements), Decimal("0"))


def plan_reconciliation(
    active_ids: Iterable[str],
    impaired_ids: Iterable[str],
    get_approval: Callable[[str], InvoiceApproval],
    get_facts: Callable[[str], ReceivableFacts],
    as_of: datetime,
    places: int,
) -> ReconciliationPlan:
    """
    Settle, on paper, every receivable in either set that is fully paid.

    PURE FUNCTION - All inputs explicit.

    Active receivables come first, then impaired ones, each in set order.
    """
    paid_active, _ = partition_paid(active_ids, get_facts)
    paid_impaired, _ = partition_paid(impaired_ids, get_facts)
    settlements = tuple(
        calculate_kickback(get_approval(rid), get_facts(rid), as_of, places)
        for rid in paid_active + paid_impaired
    )
    return ReconciliationPlan(settlements, tuple(paid_impaired))
