"""
Core types and pure helpers for the factoring engine.

This module provides the value substrate every other module builds on:
1. Protocols: LedgerView for read-only access to custody state
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError (custody) and FactoringError (engine taxonomy)
4. Constants: unit types, basis-point and day-count denominators, precision
5. Unit factories: cash(), pool_units()

Cash, receivables and pool ownership units are all units held in wallets.
Nothing in this module mutates state; the Ledger is the only mutator.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All amounts are Decimal. The global context is configured once at import:
#   - prec=50: headroom for bps * days * face value products
#   - rounding=ROUND_HALF_EVEN for intermediate results; every stored amount
#     is quantized explicitly with the rounding mode of its kind.
#
_FACTORING_DECIMAL_CONTEXT = getcontext()
_FACTORING_DECIMAL_CONTEXT.prec = 50
_FACTORING_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and burning. Exempt from balance validation.
SYSTEM_WALLET = "system"

UNIT_TYPE_CASH = "CASH"
UNIT_TYPE_RECEIVABLE = "RECEIVABLE"
UNIT_TYPE_POOL_UNITS = "POOL_UNITS"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

BPS_DENOMINATOR = 10_000
DAYS_PER_YEAR = 365
SECONDS_PER_DAY = 86_400

CASH_DECIMAL_PLACES = 2
UNIT_DECIMAL_PLACES = 6
PRICE_DECIMAL_PLACES = 18

# Price of one ownership unit while none are outstanding.
INITIAL_PRICE_PER_UNIT = Decimal("1")

DECIMAL_ROUNDING = {
    UNIT_TYPE_CASH: ROUND_HALF_EVEN,
    UNIT_TYPE_RECEIVABLE: ROUND_DOWN,
    UNIT_TYPE_POOL_UNITS: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# wallet_id -> quantity held of one unit
Positions = Dict[str, Decimal]

# unit_symbol -> quantity held in one wallet
BalanceMap = Dict[str, Decimal]

# Term sheet and lifecycle data attached to a unit
UnitState = Dict[str, Any]


def to_decimal(value: Any) -> Decimal:
    """Convert ints, floats and strings to Decimal via str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize(value: Decimal, places: int, rounding: str = ROUND_DOWN) -> Decimal:
    """Quantize ``value`` to ``places`` decimal places."""
    return to_decimal(value).quantize(Decimal(10) ** -places, rounding=rounding)


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to custody state.

    Receivable adapters, fee calculations and the capital accountant take a
    LedgerView to declare that they only read. The Ledger implements this
    protocol; tests may pass a FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet (Decimal("0") if none)."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions of a unit."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit registered under ``symbol``."""
        ...

    def circulating_supply(self, unit_symbol: str) -> Decimal:
        """Return the sum of a unit's balances held outside the system wallet."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: validated and applied.
    ALREADY_APPLIED: the intent_id was seen before; nothing changed.
    REJECTED: failed validation; nothing changed.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"
    POOL = "pool"
    EXTERNAL = "external"
    SYSTEM = "system"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for custody and accounting errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would take a wallet below the unit's minimum balance."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would take a wallet above the unit's maximum balance."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when a unit symbol is not registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when a wallet is not registered with the ledger."""
    pass


class FactoringError(LedgerError):
    """Base class of the factoring engine's error taxonomy."""
    pass


class NotFound(FactoringError):
    """Unknown receivable, approval or impairment record."""
    pass


class InvalidState(FactoringError):
    """The receivable or pool is not in a state that permits the operation."""
    pass


class Unauthorized(FactoringError):
    """The caller lacks the role or allow-list entry the operation requires."""
    pass


class InsufficientLiquidity(FactoringError):
    """A payer (usually the pool) cannot cover the cash the operation moves."""
    pass


class InvariantViolation(FactoringError):
    """An accounting invariant or time gate does not hold."""
    pass


class CapacityExceeded(FactoringError):
    """A bounded structure (redemption queue, active set) is full."""
    pass


# ============================================================================
# TRANSACTION ORIGIN AND STATE CHANGES
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Provenance of a transaction.

    Attributes:
        origin_type: Classification of the source
        source_id: Pool name, wallet id, or adapter name
        unit_symbol: Receivable or unit the transaction concerns, if any
        event_type: Operation name (e.g. "FUND", "RECONCILE", "PAYMENT")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Before/after snapshot of a unit's state.

    The ledger refuses a change whose old_state no longer matches the current
    state, so a transaction built from a stale read cannot overwrite newer
    facts.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for every field that differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        return {
            key: (old.get(key), new.get(key))
            for key in set(old) | set(new)
            if old.get(key) != new.get(key)
        }


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of a unit between two wallets.

    Attributes:
        quantity: Positive, finite Decimal amount
        unit_symbol: Unit being transferred ("USD", a receivable id, pool units)
        source: Wallet debited
        dest: Wallet credited
        contract_id: Operation that generated the move; made unique per
            engine operation so content hashing never merges two operations
        metadata: Optional extra information
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity <= QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}->{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """Deterministic serialization of state values for content hashing."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    return f"R:{value!r}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
) -> str:
    """
    Content hash of a transaction's intent, used for idempotent execution.

    Independent of move order, dict ordering and Decimal representation.
    """
    parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        parts.append(f"event:{origin.event_type}")
    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")
    for m in sorted(moves, key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol,
                                          m.source, m.dest, m.contract_id)):
        parts.append(
            f"move:{_normalize_decimal(m.quantity)}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}"
        )
    for sc in sorted(state_changes, key=lambda s: s.unit):
        parts.append(f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}")
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution: intent, not fact.

    Attributes:
        moves: Transfers between wallets
        state_changes: Unit state changes (old and new snapshots)
        origin: Who built it and why
        timestamp: Logical time at which it was built
        units_to_create: Units registered as part of the transaction
        intent_id: Content hash (computed when not given)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id',
                _compute_intent_id(self.moves, self.state_changes, self.origin, self.units_to_create),
            )

    def is_empty(self) -> bool:
        """True when there is nothing to move, change or create."""
        return not self.moves and not self.state_changes and not self.units_to_create

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot alter the transaction.

    Example:
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "USD", "alice", "pool", "deposit_001")
        ])
        ledger.execute(tx)
    """
    if origin is None:
        origin = TransactionOrigin(OriginType.USER_ACTION, "user")

    copied_changes = tuple(
        UnitStateChange(
            unit=sc.unit,
            old_state=copy.deepcopy(sc.old_state),
            new_state=copy.deepcopy(sc.new_state),
        )
        for sc in (state_changes or ())
    )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """A PendingTransaction that does nothing."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.SYSTEM, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed transaction: fact, as recorded in the ledger's audit log.

    Attributes:
        moves, state_changes, origin, timestamp, intent_id: as pending
        exec_id: Unique execution id (ledger + sequence + time)
        ledger_name: Ledger that executed it
        execution_time: Logical time of execution
        sequence_number: Monotonic position in the ledger's log
        contract_ids: Contract ids of the moves
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes and not self.units_to_create:
            raise ValueError("Transaction must have moves, state_changes, or units_to_create")
        if self.contract_ids is None:
            object.__setattr__(self, 'contract_ids', frozenset(m.contract_id for m in self.moves))

    def __repr__(self) -> str:
        lines = [f"Transaction {self.exec_id} [{self.origin}]"]
        for unit in self.units_to_create:
            lines.append(f"  + unit {unit.symbol} ({unit.unit_type})")
        for move in self.moves:
            lines.append(f"  {move.quantity} {move.unit_symbol}: {move.source} -> {move.dest}")
        for sc in self.state_changes:
            for name, (old, new) in sorted(sc.changed_fields().items()):
                lines.append(f"  [{sc.unit}] {name}: {old!r} -> {new!r}")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict into a sorted tuple of pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state back into a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of something wallets can hold.

    Attributes:
        symbol: Identifier ("USD", "INV-001", "BFT")
        name: Human-readable name
        unit_type: CASH, RECEIVABLE or POOL_UNITS
        min_balance: Lowest balance a non-system wallet may hold
        max_balance: Highest balance a non-system wallet may hold
        decimal_places: Rounding precision (None = no rounding)
        _frozen_state: Term sheet / lifecycle data as a frozen tuple
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a fresh dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Quantize ``value`` to this unit's precision with its rounding mode."""
        if self.decimal_places is None:
            return to_decimal(value)
        return quantize(value, self.decimal_places,
                        DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN))


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def cash(symbol: str, name: str, decimal_places: int = CASH_DECIMAL_PLACES) -> Unit:
    """
    Create a settlement asset (cash) unit.

    Wallets cannot overdraw cash; only the system wallet issues it.

    Args:
        symbol: Currency code (e.g., "USDC")
        name: Full name
        decimal_places: Minor-unit precision (default: 2)
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_CASH,
        min_balance=Decimal("0"),
        decimal_places=decimal_places,
    )


def pool_units(symbol: str, name: str, pool_wallet: str) -> Unit:
    """
    Create the ownership unit of a factoring pool.

    Units are minted from and burned to the system wallet by the pool only;
    the state records which pool values them.
    """
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_POOL_UNITS,
        min_balance=Decimal("0"),
        decimal_places=UNIT_DECIMAL_PLACES,
        _frozen_state=_freeze_state({'pool_wallet': pool_wallet}),
    )
