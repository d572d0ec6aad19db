"""
impairment.py - Impairment Ledger and Loss Reserve Arithmetic

A funded receivable still unpaid after its due date plus the grace period
may be impaired: its carrying value (the net advance) is written off and
part of the write-off is absorbed by the pool's loss reserve. If it is paid
or unfactored later the impairment is reversed.

Key Formulas:
    loss = funded_amount_net
    gain = min(reserve, loss) * reserve_share      (rounded down)
    reserve_after = reserve - gain
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from .core import CASH_DECIMAL_PLACES, InvariantViolation, quantize, to_decimal


DEFAULT_GRACE_PERIOD_DAYS = 30


@dataclass(frozen=True, slots=True)
class ImpairmentRecord:
    """
    Gain/loss recorded when a receivable is impaired.

    gain_amount is drawn from the loss reserve; loss_amount is the carrying
    value written off. A reversed record has both zeroed and is_impaired False.
    """
    gain_amount: Decimal
    loss_amount: Decimal
    is_impaired: bool
    impaired_at: Optional[datetime] = None

    @property
    def net_loss(self) -> Decimal:
        return self.loss_amount - self.gain_amount


def impairment_deadline(due_date: datetime, grace_period_days: int) -> datetime:
    """Last moment at which the receivable is not yet impairable."""
    return due_date + timedelta(days=grace_period_days)


def is_impairable(due_date: datetime, grace_period_days: int, now: datetime) -> bool:
    return now > impairment_deadline(due_date, grace_period_days)


def calculate_impairment(
    funded_amount_net: Decimal,
    reserve: Decimal,
    reserve_share: Decimal,
    now: datetime,
    places: int = CASH_DECIMAL_PLACES,
) -> ImpairmentRecord:
    """
    Impairment record for a receivable with carrying value ``funded_amount_net``.

    PURE FUNCTION - All inputs explicit.

    gain never exceeds the reserve and loss never exceeds the net advance.
    """
    loss = to_decimal(funded_amount_net)
    reserve = to_decimal(reserve)
    if loss < 0 or reserve < 0:
        raise InvariantViolation(f"Negative loss {loss} or reserve {reserve}")
    gain = quantize(min(reserve, loss) * to_decimal(reserve_share), places, ROUND_DOWN)
    return ImpairmentRecord(gain_amount=gain, loss_amount=loss, is_impaired=True, impaired_at=now)


def reverse_impairment(record: ImpairmentRecord) -> ImpairmentRecord:
    """Zeroed record; the caller restores ``record.gain_amount`` to the reserve."""
    return ImpairmentRecord(gain_amount=Decimal("0"), loss_amount=Decimal("0"), is_impaired=False)
