"""
invoices.py - Invoice Ledger: Approvals, Funding State Machine, Active Set

An InvoiceApproval records the terms under which the pool may buy one
receivable and, once bought, what it paid. Approvals are immutable; every
transition returns a new instance.

State machine:
    APPROVED -> FUNDED -> RECONCILED | IMPAIRED | UNFACTORED
    IMPAIRED -> RECONCILED | UNFACTORED

The Active Set and Impaired Set are ReceivableIndex instances: bounded,
insertion-ordered, paginated. They are the only collections the pool walks.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from itertools import islice
from typing import Dict, Iterator, List, Optional

from .core import CapacityExceeded, InvalidState, Unauthorized, to_decimal
from .fees import (
    FeeParams, TargetFees, RealizedFees,
    calculate_target_fees, calculate_realized_fees,
)
from .impairment import DEFAULT_GRACE_PERIOD_DAYS, is_impairable
from .receivables import ReceivableFacts


class InvoiceStatus(Enum):
    APPROVED = "approved"
    FUNDED = "funded"
    IMPAIRED = "impaired"
    RECONCILED = "reconciled"
    UNFACTORED = "unfactored"


TERMINAL_STATUSES = frozenset({InvoiceStatus.RECONCILED, InvoiceStatus.UNFACTORED})


@dataclass(frozen=True, slots=True)
class InvoiceApproval:
    """
    Approval and funding record of one receivable.

    Attributes:
        receivable_id: Receivable unit symbol
        approved: True while the approval is usable or has been used
        creditor: Creditor-of-record at approval time
        approval_expiry: Last moment the approval can be funded
        due_date: Receivable due date at approval time
        fee_params: Fee terms snapshotted at approval
        initial_face_value: Face value at approval
        initial_paid_amount: Amount already paid at approval
        grace_period_days: Days past due before impairment, captured at approval
        funded_timestamp: Funding time, None until funded
        funded_amount_gross: Gross advance incl. upfront protocol fee
        funded_amount_net: Cash the receiver got
        upfront_protocol_fee: Protocol fee credited at funding
        receiver: Wallet that got the net advance
        status: Lifecycle status
    """
    receivable_id: str
    approved: bool
    creditor: str
    approval_expiry: datetime
    due_date: datetime
    fee_params: FeeParams
    initial_face_value: Decimal
    initial_paid_amount: Decimal
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    funded_timestamp: Optional[datetime] = None
    funded_amount_gross: Decimal = Decimal("0")
    funded_amount_net: Decimal = Decimal("0")
    upfront_protocol_fee: Decimal = Decimal("0")
    receiver: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.APPROVED

    @property
    def true_face_value(self) -> Decimal:
        """Amount outstanding at approval; every fee is charged against it."""
        return self.initial_face_value - self.initial_paid_amount

    @property
    def is_funded(self) -> bool:
        return self.funded_timestamp is not None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def impairable_at(self, now: datetime) -> bool:
        """Past due plus the grace period captured at approval."""
        return is_impairable(self.due_date, self.grace_period_days, now)

    def paid_to_pool(self, facts: ReceivableFacts) -> Decimal:
        """Payments received since approval (collected by the pool once funded)."""
        return to_decimal(facts.paid_amount) - self.initial_paid_amount

    def target_fees(self, upfront_bps: int, funded_at: datetime, places: int) -> TargetFees:
        return calculate_target_fees(
            self.true_face_value, self.fee_params, upfront_bps, funded_at, self.due_date, places,
        )

    def realized_fees(self, as_of: datetime, places: int) -> RealizedFees:
        if not self.is_funded:
            raise InvalidState(f"Receivable {self.receivable_id} is not funded")
        return calculate_realized_fees(
            self.true_face_value, self.funded_amount_net, self.fee_params,
            self.funded_timestamp, as_of, places,
        )


# ============================================================================
# TRANSITIONS
# ============================================================================

def create_approval(
    receivable_id: str,
    facts: ReceivableFacts,
    fee_params: FeeParams,
    pool_asset: str,
    now: datetime,
    approval_duration: timedelta,
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS,
) -> InvoiceApproval:
    """
    Approve a receivable for funding.

    Raises:
        InvalidState: Fully paid, canceled/rejected, wrong settlement token,
            or no creditor to buy from
    """
    if facts.is_fully_paid:
        raise InvalidState(f"Receivable {receivable_id} is already fully paid")
    if facts.is_canceled or facts.is_rejected:
        raise InvalidState(f"Receivable {receivable_id} is canceled or rejected")
    if facts.settlement_token != pool_asset:
        raise InvalidState(
            f"Receivable {receivable_id} settles in {facts.settlement_token}, pool asset is {pool_asset}"
        )
    if facts.creditor is None:
        raise InvalidState(f"Receivable {receivable_id} has no creditor")

    return InvoiceApproval(
        receivable_id=receivable_id,
        approved=True,
        creditor=facts.creditor,
        approval_expiry=now + approval_duration,
        due_date=facts.due_date,
        fee_params=fee_params,
        initial_face_value=to_decimal(facts.face_value),
        initial_paid_amount=to_decimal(facts.paid_amount),
        grace_period_days=grace_period_days,
    )


def validate_funding(
    approval: Optional[InvoiceApproval],
    facts: ReceivableFacts,
    caller: str,
    pool_wallet: str,
    upfront_bps: int,
    now: datetime,
) -> InvoiceApproval:
    """
    Check that ``caller`` may fund the approved receivable now.

    Returns the approval so callers can chain on it.

    Raises:
        InvalidState: Not approved, expired, closed externally, paid amount
            or creditor changed, already owned by the pool, already funded,
            or upfront_bps outside (0, approved maximum]
        Unauthorized: Caller is not the creditor-of-record
    """
    if approval is None or not approval.approved:
        raise InvalidState("Receivable is not approved")
    rid = approval.receivable_id
    if approval.is_funded:
        raise InvalidState(f"Receivable {rid} is already funded")
    if now > approval.approval_expiry:
        raise InvalidState(f"Approval of {rid} expired at {approval.approval_expiry}")
    if facts.is_canceled or facts.is_rejected:
        raise InvalidState(f"Receivable {rid} is canceled or rejected")
    if to_decimal(facts.paid_amount) != approval.initial_paid_amount:
        raise InvalidState(f"Paid amount of {rid} changed since approval")
    if to_decimal(facts.face_value) != approval.initial_face_value:
        raise InvalidState(f"Face value of {rid} changed since approval")
    if facts.creditor == pool_wallet:
        raise InvalidState(f"Receivable {rid} is already owned by the pool")
    if facts.creditor != approval.creditor:
        raise InvalidState(f"Creditor of {rid} changed since approval")
    if caller != facts.creditor:
        raise Unauthorized(f"{caller} is not the creditor of {rid}")
    if not 0 < upfront_bps <= approval.fee_params.upfront_bps:
        raise InvalidState(
            f"upfront_bps {upfront_bps} outside (0, {approval.fee_params.upfront_bps}]"
        )
    return approval


def mark_funded(
    approval: InvoiceApproval,
    target: TargetFees,
    receiver: str,
    now: datetime,
) -> InvoiceApproval:
    return replace(
        approval,
        funded_timestamp=now,
        funded_amount_gross=target.funded_amount_gross,
        funded_amount_net=target.funded_amount_net,
        upfront_protocol_fee=target.protocol_fee,
        receiver=receiver,
        status=InvoiceStatus.FUNDED,
    )


def with_status(approval: InvoiceApproval, status: InvoiceStatus) -> InvoiceApproval:
    return replace(approval, status=status)


# ============================================================================
# ACTIVE SET INDEX
# ============================================================================

class ReceivableIndex:
    """
    Bounded, insertion-ordered set of receivable ids with offset/limit paging.

    Example:
        active = ReceivableIndex("active", capacity=500)
        active.add("INV-001")
        active.page(0, 25)  # (["INV-001"], False)
    """

    def __init__(self, name: str, capacity: int):
        self.name = name
        self.capacity = capacity
        self._ids: Dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, receivable_id: str) -> bool:
        return receivable_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    @property
    def is_full(self) -> bool:
        return len(self._ids) >= self.capacity

    def add(self, receivable_id: str) -> None:
        """
        Raises:
            CapacityExceeded: The index is at capacity
        """
        if receivable_id in self._ids:
            return
        if self.is_full:
            raise CapacityExceeded(f"{self.name} set is full ({self.capacity})")
        self._ids[receivable_id] = None

    def remove(self, receivable_id: str) -> None:
        self._ids.pop(receivable_id, None)

    def ids(self) -> List[str]:
        return list(self._ids)

    def page(self, offset: int, limit: int) -> tuple:
        """Return (ids[offset:offset+limit], has_more)."""
        if offset < 0 or limit < 0:
            raise ValueError("offset and limit must be non-negative")
        return list(islice(self._ids, offset, offset + limit)), offset + limit < len(self._ids)
