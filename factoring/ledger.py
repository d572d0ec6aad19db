"""
ledger.py - Custody Ledger for Cash, Receivables and Pool Units

The Ledger holds every balance the factoring engine moves: the settlement
asset, receivable ownership tokens and pool ownership units. It is the only
object that mutates balances.

Key responsibilities:
    - Implements the LedgerView protocol for read-only consumers
    - Executes PendingTransactions atomically (all moves apply or none do)
    - Rejects stale unit-state changes (optimistic concurrency on receivable facts)
    - Keeps the audit log and checks conservation (verify_double_entry)
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Set, Optional, Tuple, Any
import copy

from .core import (
    Move, Transaction, Unit, PendingTransaction,
    ExecuteResult, Positions, UnitState, BalanceMap,
    QUANTITY_EPSILON, SYSTEM_WALLET,
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    UnitNotRegistered, WalletNotRegistered,
    _freeze_state,
)


class Ledger:
    """
    Wallet/unit custody ledger with validation and an audit trail.

    Every transaction is validated against registration, timestamps, unit
    balance limits and the freshness of any unit-state snapshot it carries.
    The system wallet is exempt from balance limits so it can issue cash and
    mint pool units.

    Thread Safety:
        Not thread-safe. The factoring engine is single-threaded by contract.

    Example:
        ledger = Ledger("main", datetime(2025, 1, 1))
        ledger.register_unit(cash("USDC", "USD Coin"))
        ledger.register_wallet("alice")
        ledger.register_wallet("pool")

        ledger.execute(build_transaction(ledger, [
            Move(Decimal("100"), "USDC", SYSTEM_WALLET, "alice", "issue_001")
        ]))
    """

    POSITION_EPSILON = QUANTITY_EPSILON

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print registrations, applied and rejected transactions
            test_mode: Allow set_balance() to bypass double entry
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        # unit -> {wallet -> quantity}, non-zero positions only
        self._positions_by_unit: Dict[str, Dict[str, Decimal]] = defaultdict(dict)

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Balance of ``unit_symbol`` held by ``wallet_id``.

        Raises:
            WalletNotRegistered: If the wallet is unknown
            UnitNotRegistered: If the unit is unknown
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Deep copy of a unit's state (safe to mutate)."""
        return copy.deepcopy(self.get_unit(unit_symbol).state)

    def get_positions(self, unit_symbol: str) -> Positions:
        """Non-zero positions of a unit, system wallet included."""
        return dict(self._positions_by_unit.get(unit_symbol, {}))

    def get_unit(self, symbol: str) -> Unit:
        """Return the registered Unit for ``symbol``."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def has_unit(self, symbol: str) -> bool:
        return symbol in self.units

    def list_wallets(self) -> Set[str]:
        return self.registered_wallets.copy()

    def get_wallet_balances(self, wallet_id: str) -> BalanceMap:
        """All balances of one wallet."""
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return dict(self.balances[wallet_id])

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Sum of a unit's balances across all wallets, system wallet included.

        Issuance from the system wallet leaves this at zero, so any non-zero
        drift means value was created or destroyed by a bad transaction.
        Wallets are summed in sorted order for determinism.
        """
        self.get_unit(unit_symbol)
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0")) for w in sorted(self.registered_wallets)),
            Decimal("0"),
        )

    def circulating_supply(self, unit_symbol: str) -> Decimal:
        """Sum of a unit's balances outside the system wallet."""
        return self.total_supply(unit_symbol) - self.balances[SYSTEM_WALLET].get(unit_symbol, Decimal("0"))

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[str, Decimal]] = None,
        tolerance: Decimal = Decimal("1e-9"),
    ) -> Dict[str, Any]:
        """
        Verify that no unit's total supply drifted.

        Args:
            expected_supplies: unit -> expected total supply. Units not listed
                are expected to total zero (everything was issued from the
                system wallet).
            tolerance: Maximum allowed absolute difference

        Returns:
            {'valid': bool, 'supplies': {unit: total}, 'discrepancies': [...]}
        """
        expected_supplies = expected_supplies or {}
        supplies = {}
        discrepancies = []
        for unit_symbol in sorted(self.units):
            actual = self.total_supply(unit_symbol)
            supplies[unit_symbol] = actual
            expected = expected_supplies.get(unit_symbol, Decimal("0"))
            if abs(actual - expected) > tolerance:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': actual,
                    'difference': actual - expected,
                })
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def is_registered(self, wallet_id: str) -> bool:
        return wallet_id in self.registered_wallets

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the logical clock forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._current_time}")
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a wallet.

        Raises:
            ValueError: If the wallet id is empty or already registered
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register ``wallet_id`` unless it already exists."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a unit.

        Raises:
            ValueError: If the symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            print(f"[{self.name}] registered {unit.symbol} ({unit.name}) [{unit.unit_type}]")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a balance directly. Test mode only: bypasses double entry.

        Raises:
            LedgerError: If the ledger is not in test mode
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled outside test mode; "
                "issue cash from the system wallet with a transaction instead"
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        quantity = Decimal(str(quantity)) if not isinstance(quantity, Decimal) else quantity
        self.balances[wallet_id][unit_symbol] = quantity
        self._update_position_index(wallet_id, unit_symbol, quantity)

    # ========================================================================
    # TRANSACTION EXECUTION
    # ========================================================================

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically, reporting the outcome as a value.

        Returns:
            APPLIED, ALREADY_APPLIED (same intent_id seen before) or REJECTED
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED
        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"[{self.name}] ALREADY_APPLIED intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED
        try:
            self._apply(pending)
        except LedgerError as exc:
            if self.verbose:
                print(f"[{self.name}] REJECTED {pending.origin}: {exc}")
            return ExecuteResult.REJECTED
        return ExecuteResult.APPLIED

    def apply(self, pending: PendingTransaction) -> Transaction:
        """
        Execute a PendingTransaction atomically, raising on rejection.

        Used by the factoring engine, which maps custody failures onto its own
        error taxonomy.

        Raises:
            LedgerError: If the intent was already applied
            InsufficientFunds: A wallet would fall below the unit minimum
            BalanceConstraintViolation: A wallet would exceed the unit maximum
                or a unit-state snapshot is stale
            UnitNotRegistered / WalletNotRegistered: Unknown unit or wallet
        """
        if pending.is_empty():
            raise LedgerError("Cannot apply an empty transaction")
        if pending.intent_id in self.seen_intent_ids:
            raise LedgerError(f"Transaction {pending.intent_id} already applied")
        return self._apply(pending)

    def _apply(self, pending: PendingTransaction) -> Transaction:
        new_units = [u for u in pending.units_to_create if u.symbol not in self.units]
        for unit in new_units:
            self.units[unit.symbol] = unit
        try:
            self._validate_pending(pending)
        except LedgerError:
            for unit in new_units:
                del self.units[unit.symbol]
            raise

        sequence = self._next_sequence
        self._next_sequence += 1
        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            units_to_create=pending.units_to_create,
        )

        self._execute_moves(tx.moves)
        for sc in tx.state_changes:
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(self.units[sc.unit], _frozen_state=_freeze_state(new_state))

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)
        if self.verbose:
            print(f"[{self.name}] APPLIED\n{tx!r}")
        return tx

    def _generate_exec_id(self, sequence: int) -> str:
        """exec:{ledger}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def _validate_pending(self, pending: PendingTransaction) -> None:
        """
        Check a pending transaction against every constraint, raising on the first failure.

        1. Timestamp must not be in the future
        2. Units and wallets must be registered
        3. State snapshots must match the current unit state
        4. Net balance changes must respect unit min/max balances
        """
        if pending.timestamp > self._current_time:
            raise LedgerError(f"Transaction timestamp {pending.timestamp} is in the future")

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                raise UnitNotRegistered(f"Unit {move.unit_symbol} not registered")
            for wallet in (move.source, move.dest):
                if wallet not in self.registered_wallets:
                    raise WalletNotRegistered(f"Wallet {wallet} not registered")

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                raise UnitNotRegistered(f"Unit {sc.unit} not registered")
            if sc.old_state is not None and sc.old_state != self.units[sc.unit].state:
                raise BalanceConstraintViolation(
                    f"Stale state for {sc.unit}: {sorted(sc.changed_fields())} changed since it was read"
                )

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            src = (move.source, move.unit_symbol)
            dst = (move.dest, move.unit_symbol)
            net[src] = unit.round(net.get(src, Decimal("0")) - move.quantity)
            net[dst] = unit.round(net.get(dst, Decimal("0")) + move.quantity)

        for (wallet, unit_sym), delta in sorted(net.items()):
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[unit_sym]
            proposed = unit.round(self.balances[wallet][unit_sym] + delta)
            if proposed < unit.min_balance:
                raise InsufficientFunds(
                    f"{wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
                )
            if proposed > unit.max_balance:
                raise BalanceConstraintViolation(
                    f"{wallet} {unit_sym}: {proposed} > max {unit.max_balance}"
                )

    def _update_position_index(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """Keep the unit -> wallet index in sync; zero positions are dropped."""
        if abs(quantity) > self.POSITION_EPSILON:
            self._positions_by_unit[unit_symbol][wallet_id] = quantity
        else:
            self._positions_by_unit[unit_symbol].pop(wallet_id, None)

    def _execute_moves(self, moves) -> None:
        """Apply moves to balances with unit rounding and update the position index."""
        for move in moves:
            unit = self.units[move.unit_symbol]
            new_src = unit.round(self.balances[move.source][move.unit_symbol] - move.quantity)
            self.balances[move.source][move.unit_symbol] = new_src
            self._update_position_index(move.source, move.unit_symbol, new_src)
            new_dst = unit.round(self.balances[move.dest][move.unit_symbol] + move.quantity)
            self.balances[move.dest][move.unit_symbol] = new_dst
            self._update_position_index(move.dest, move.unit_symbol, new_dst)
