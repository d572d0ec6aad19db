"""
fees.py - Fee Model for Factored Receivables

Pure functions computing what a funded receivable is expected to earn
(target fees, fixed at funding) and what it has actually earned so far
(realized fees, prorated by elapsed days and capped).

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs and results):
   - FeeParams: fee terms snapshotted into an approval, never re-derived
   - TargetFees: funding amounts and fees expected at the due date
   - RealizedFees: fees earned as of a given time
   - FeeIncrement: amounts credited to the fee balances at settlement

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take every input as a parameter; no pool, no ledger
   - All amounts quantized with ROUND_DOWN to the asset's decimal places

Key Formulas:
    component = face * bps * days / (10000 * 365)
    gross = min(face * upfront_bps / 10000 + protocol_fee, face)
    net = max(gross - protocol_fee - admin_fee - interest - spread, 0)
    realized total <= face - net
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Dict

from .core import (
    BPS_DENOMINATOR, DAYS_PER_YEAR, SECONDS_PER_DAY, CASH_DECIMAL_PLACES,
    quantize, to_decimal,
)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class FeeParams:
    """
    Fee terms of one receivable, captured when it is approved.

    Every rate is annualized basis points except upfront_bps, the maximum
    fraction of face value the pool will advance (in bps of face), and
    min_days_interest_applied, the floor on billable days.
    """
    target_yield_bps: int
    spread_bps: int
    upfront_bps: int
    protocol_fee_bps: int
    admin_fee_bps: int
    min_days_interest_applied: int = 0

    def __post_init__(self):
        for name in ('target_yield_bps', 'spread_bps', 'protocol_fee_bps', 'admin_fee_bps'):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= BPS_DENOMINATOR:
                raise ValueError(f"{name} must be an int in [0, {BPS_DENOMINATOR}], got {value!r}")
        if not isinstance(self.upfront_bps, int) or not 0 < self.upfront_bps <= BPS_DENOMINATOR:
            raise ValueError(f"upfront_bps must be an int in (0, {BPS_DENOMINATOR}], got {self.upfront_bps!r}")
        if not isinstance(self.min_days_interest_applied, int) or self.min_days_interest_applied < 0:
            raise ValueError(
                f"min_days_interest_applied must be a non-negative int, got {self.min_days_interest_applied!r}"
            )

    def rates(self) -> Dict[str, int]:
        """Annualized rate of each fee component."""
        return {
            'admin_fee': self.admin_fee_bps,
            'interest': self.target_yield_bps,
            'spread': self.spread_bps,
            'protocol_fee': self.protocol_fee_bps,
        }


@dataclass(frozen=True, slots=True)
class TargetFees:
    """Funding amounts and the fees expected if the receivable is paid at its due date."""
    funded_amount_gross: Decimal
    admin_fee: Decimal
    target_interest: Decimal
    target_spread: Decimal
    protocol_fee: Decimal
    funded_amount_net: Decimal
    days: int

    @property
    def total_fees(self) -> Decimal:
        return self.admin_fee + self.target_interest + self.target_spread + self.protocol_fee


@dataclass(frozen=True, slots=True)
class RealizedFees:
    """Fees earned by a funded receivable as of a point in time."""
    admin_fee: Decimal
    interest: Decimal
    spread: Decimal
    protocol_fee: Decimal
    days: int
    capped: bool = False

    @property
    def total(self) -> Decimal:
        return self.admin_fee + self.interest + self.spread + self.protocol_fee


@dataclass(frozen=True, slots=True)
class FeeIncrement:
    """Amounts credited to the fee balances when a receivable settles."""
    admin: Decimal
    protocol: Decimal

    @property
    def total(self) -> Decimal:
        return self.admin + self.protocol


# ============================================================================
# DAY COUNT
# ============================================================================

def days_between(start: datetime, end: datetime) -> int:
    """Whole days from start to end, floored; 0 if end is not after start."""
    if end <= start:
        return 0
    return int((end - start).total_seconds()) // SECONDS_PER_DAY


def prorate(amount: Decimal, bps: int, days: int, places: int = CASH_DECIMAL_PLACES) -> Decimal:
    """amount * bps * days / (10000 * 365), rounded down."""
    if bps == 0 or days == 0:
        return quantize(Decimal("0"), places)
    value = to_decimal(amount) * bps * days / (BPS_DENOMINATOR * DAYS_PER_YEAR)
    return quantize(value, places, ROUND_DOWN)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_target_fees(
    face_value: Decimal,
    fee_params: FeeParams,
    upfront_bps: int,
    funded_at: datetime,
    due_date: datetime,
    places: int = CASH_DECIMAL_PLACES,
) -> TargetFees:
    """
    Funding amounts for a receivable funded at ``funded_at``.

    PURE FUNCTION - All inputs explicit.

    Every fee component is prorated over max(days to due, min days) against
    the face value (the amount outstanding at approval). The advance uses
    the originator-chosen ``upfront_bps``, never the approved maximum.

    Args:
        face_value: Outstanding face value the fees are charged against
        fee_params: Snapshotted fee terms
        upfront_bps: Chosen advance rate, 0 < upfront_bps <= fee_params.upfront_bps
        funded_at: Funding time
        due_date: Receivable due date
        places: Decimal places of the settlement asset

    Returns:
        TargetFees with 0 <= net <= gross <= face_value
    """
    face_value = to_decimal(face_value)
    if not 0 < upfront_bps <= BPS_DENOMINATOR:
        raise ValueError(f"upfront_bps must be in (0, {BPS_DENOMINATOR}], got {upfront_bps}")

    days = max(days_between(funded_at, due_date), fee_params.min_days_interest_applied)

    admin_fee = prorate(face_value, fee_params.admin_fee_bps, days, places)
    interest = prorate(face_value, fee_params.target_yield_bps, days, places)
    spread = prorate(face_value, fee_params.spread_bps, days, places)
    protocol_fee = prorate(face_value, fee_params.protocol_fee_bps, days, places)

    advance = quantize(face_value * upfront_bps / BPS_DENOMINATOR, places, ROUND_DOWN)
    gross = min(advance + protocol_fee, face_value)
    net = max(gross - protocol_fee - admin_fee - interest - spread, Decimal("0"))

    return TargetFees(
        funded_amount_gross=gross,
        admin_fee=admin_fee,
        target_interest=interest,
        target_spread=spread,
        protocol_fee=protocol_fee,
        funded_amount_net=quantize(net, places, ROUND_DOWN),
        days=days,
    )


def calculate_realized_fees(
    face_value: Decimal,
    funded_amount_net: Decimal,
    fee_params: FeeParams,
    funded_at: datetime,
    as_of: datetime,
    places: int = CASH_DECIMAL_PLACES,
) -> RealizedFees:
    """
    Fees earned between funding and ``as_of``.

    PURE FUNCTION - All inputs explicit.

    Days are max(days since funding, min days). The combined fees never
    exceed face_value - funded_amount_net; when the cap binds it is shared
    in proportion to the component rates, each share rounded down and the
    residual assigned to interest, so the components sum to the cap exactly.
    """
    face_value = to_decimal(face_value)
    funded_amount_net = to_decimal(funded_amount_net)
    days = max(days_between(funded_at, as_of), fee_params.min_days_interest_applied)

    components = {
        name: prorate(face_value, bps, days, places)
        for name, bps in fee_params.rates().items()
    }
    cap = max(face_value - funded_amount_net, Decimal("0"))

    capped = sum(components.values(), Decimal("0")) > cap
    if capped:
        components = _share_cap(cap, fee_params.rates(), places)

    return RealizedFees(
        admin_fee=components['admin_fee'],
        interest=components['interest'],
        spread=components['spread'],
        protocol_fee=components['protocol_fee'],
        days=days,
        capped=capped,
    )


def _share_cap(cap: Decimal, rates: Dict[str, int], places: int) -> Dict[str, Decimal]:
    """Split ``cap`` across components in proportion to their rates."""
    total_bps = sum(rates.values())
    shares = {
        name: quantize(cap * bps / total_bps, places, ROUND_DOWN)
        for name, bps in rates.items()
    }
    shares['interest'] += cap - sum(shares.values(), Decimal("0"))
    return shares


def calculate_fee_increment(realized: RealizedFees, upfront_protocol_fee: Decimal) -> FeeIncrement:
    """
    Fee balance credits due when a receivable settles.

    PURE FUNCTION - All inputs explicit.

    Admin fee and spread go to the admin balance. The protocol fee was
    credited in full at funding and is not refunded, so only realized
    protocol fee above that upfront amount is credited now.
    """
    return FeeIncrement(
        admin=realized.admin_fee + realized.spread,
        protocol=max(realized.protocol_fee - to_decimal(upfront_protocol_fee), Decimal("0")),
    )
