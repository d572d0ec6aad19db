"""
config.py - Pool Configuration

PoolConfig is immutable. The owner changes it through FactoringPool setters,
which swap in a new instance; approvals keep the FeeParams and grace period
they captured, so a change only affects receivables approved afterwards.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from .core import BPS_DENOMINATOR, CASH_DECIMAL_PLACES
from .impairment import DEFAULT_GRACE_PERIOD_DAYS


@dataclass(frozen=True, slots=True)
class PoolConfig:
    """
    Owner-settable parameters of a factoring pool.

    Attributes:
        protocol_fee_bps: Annualized protocol fee, collected upfront at funding
        admin_fee_bps: Annualized admin fee, credited at settlement
        target_yield_bps: Default annualized yield offered to underwriters
        approval_duration: How long an approval stays fundable
        grace_period_days: Days past due before a receivable may be impaired, captured at approval
        max_redemption_queue_size: Capacity of the redemption queue
        max_active_receivables: Capacity of the Active Set
        impairment_reserve_share: Fraction of min(reserve, loss) consumed per impairment
        asset_decimal_places: Precision of the settlement asset
    """
    protocol_fee_bps: int = 25
    admin_fee_bps: int = 50
    target_yield_bps: int = 730
    approval_duration: timedelta = timedelta(hours=1)
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    max_redemption_queue_size: int = 100
    max_active_receivables: int = 500
    impairment_reserve_share: Decimal = Decimal("0.5")
    asset_decimal_places: int = CASH_DECIMAL_PLACES

    def __post_init__(self):
        for name in ('protocol_fee_bps', 'admin_fee_bps', 'target_yield_bps'):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= BPS_DENOMINATOR:
                raise ValueError(f"{name} must be an int in [0, {BPS_DENOMINATOR}], got {value!r}")
        if self.approval_duration <= timedelta(0):
            raise ValueError(f"approval_duration must be positive, got {self.approval_duration}")
        if self.grace_period_days < 0:
            raise ValueError(f"grace_period_days must be non-negative, got {self.grace_period_days}")
        if self.max_redemption_queue_size < 1:
            raise ValueError("max_redemption_queue_size must be at least 1")
        if self.max_active_receivables < 1:
            raise ValueError("max_active_receivables must be at least 1")
        if not isinstance(self.impairment_reserve_share, Decimal):
            raise ValueError("impairment_reserve_share must be Decimal")
        if not Decimal("0") <= self.impairment_reserve_share <= Decimal("1"):
            raise ValueError(
                f"impairment_reserve_share must be in [0, 1], got {self.impairment_reserve_share}"
            )
        if self.asset_decimal_places < 0:
            raise ValueError("asset_decimal_places must be non-negative")
