"""
events.py - Records appended to FactoringPool.event_log

One frozen record per committed state change. Nothing is appended for an
operation that raised.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class PoolEvent:
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class InvoiceApproved(PoolEvent):
    receivable_id: str
    creditor: str
    approval_expiry: datetime
    upfront_bps: int
    target_yield_bps: int


@dataclass(frozen=True, slots=True)
class InvoiceFunded(PoolEvent):
    receivable_id: str
    funded_amount_gross: Decimal
    funded_amount_net: Decimal
    receiver: str
    due_date: datetime


@dataclass(frozen=True, slots=True)
class InvoicePaid(PoolEvent):
    """Paid receivable reconciled, with its realized fee breakdown."""
    receivable_id: str
    interest: Decimal
    spread: Decimal
    admin_fee: Decimal
    protocol_fee: Decimal
    kickback: Decimal
    receiver: str
    gain: Decimal


@dataclass(frozen=True, slots=True)
class InvoiceImpaired(PoolEvent):
    receivable_id: str
    loss_amount: Decimal
    gain_amount: Decimal


@dataclass(frozen=True, slots=True)
class ImpairmentReversed(PoolEvent):
    receivable_id: str
    loss_amount: Decimal
    gain_amount: Decimal


@dataclass(frozen=True, slots=True)
class InvoiceUnfactored(PoolEvent):
    """amount is signed: positive when the creditor paid the pool."""
    receivable_id: str
    creditor: str
    amount: Decimal
    interest: Decimal
    spread: Decimal
    admin_fee: Decimal
    protocol_fee: Decimal


@dataclass(frozen=True, slots=True)
class Deposited(PoolEvent):
    depositor: str
    assets: Decimal
    units: Decimal


@dataclass(frozen=True, slots=True)
class Redeemed(PoolEvent):
    owner: str
    units: Decimal
    assets: Decimal


@dataclass(frozen=True, slots=True)
class RedemptionQueued(PoolEvent):
    owner: str
    units: Decimal
    assets: Optional[Decimal]
    sequence: int


@dataclass(frozen=True, slots=True)
class QueueFull(PoolEvent):
    size: int


@dataclass(frozen=True, slots=True)
class FeesWithdrawn(PoolEvent):
    kind: str
    recipient: str
    amount: Decimal


@dataclass(frozen=True, slots=True)
class ImpairReserveChanged(PoolEvent):
    old_reserve: Decimal
    new_reserve: Decimal


@dataclass(frozen=True, slots=True)
class ConfigChanged(PoolEvent):
    name: str
    old_value: Any
    new_value: Any
