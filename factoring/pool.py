"""
pool.py - FactoringPool: the Invoice-Factoring Accounting Engine

FactoringPool owns every piece of mutable accounting state (approvals, the
Active and Impaired Sets, fee balances, the loss reserve, the redemption
queue and the roll-forward counters) and is the only thing that changes it.
Cash, receivables and pool units live on a shared Ledger.

Every entry point follows the same order:
    1. authorization and cheap validation
    2. a reconciliation plan for paid receivables (nothing committed yet)
    3. pricing and liquidity checks against the capital account after the plan
    4. ONE ledger transaction with the kickbacks and the operation's moves
    5. commit the settlements and engine state, append events

If any step raises, engine state and the ledger are untouched.

Example:
    ledger = Ledger("main", datetime(2025, 1, 1), verbose=False)
    ledger.register_unit(cash("USDC", "USD Coin"))
    pool = FactoringPool(ledger, "pool", "USDC", owner="owner",
                         underwriter="uw", protocol_fee_receiver="protocol")
    pool.deposit("alice", Decimal("200000"))     # alice already holds 200,000 USDC
    pool.approve("uw", "INV-001", 1000, 0, 8000)
    pool.fund("originator", "INV-001", 8000)
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .core import (
    Move, Transaction, TransactionOrigin, OriginType,
    SYSTEM_WALLET, UNIT_DECIMAL_PLACES,
    InsufficientFunds, NotFound, InvalidState, Unauthorized,
    InsufficientLiquidity, InvariantViolation, CapacityExceeded,
    build_transaction, pool_units, quantize, to_decimal,
)
from .ledger import Ledger
from .config import PoolConfig
from .permissions import (
    Permissions, AllowAllPermissions,
    OPERATION_DEPOSIT, OPERATION_WITHDRAW, OPERATION_FACTORING,
)
from .receivables import ReceivableAdapter, ReceivableFacts, LedgerReceivableAdapter
from .fees import FeeParams
from .invoices import (
    InvoiceApproval, InvoiceStatus, ReceivableIndex,
    create_approval, validate_funding, mark_funded, with_status,
)
from .impairment import ImpairmentRecord, calculate_impairment, reverse_impairment
from .reconciliation import ReconciliationPlan, Settlement, calculate_unfactor, plan_reconciliation
from .capital import (
    CapitalSnapshot,
    calculate_price_per_unit, convert_to_units, convert_to_assets,
    units_for_withdrawal, verify_capital_account,
)
from .redemption import RedemptionQueue, RedemptionQueueEntry, RedemptionResult
from .scanner import PoolStatus, scan_impairable, scan_paid
from .events import (
    PoolEvent, InvoiceApproved, InvoiceFunded, InvoicePaid, InvoiceImpaired,
    ImpairmentReversed, InvoiceUnfactored, Deposited, Redeemed, RedemptionQueued,
    QueueFull, FeesWithdrawn, ImpairReserveChanged, ConfigChanged,
)


class FactoringPool:
    """
    Pooled capital buying receivables at a discount.

    Roles:
        owner: impairs, tops up the reserve, withdraws admin fees, sets config
        underwriter: approves receivables
        protocol_fee_receiver: withdraws protocol fees
    Deposits, withdrawals and fundings are also gated by ``permissions``.

    Thread Safety:
        Not thread-safe. Each entry point runs to completion.
    """

    def __init__(
        self,
        ledger: Ledger,
        name: str,
        asset: str,
        owner: str,
        underwriter: str,
        protocol_fee_receiver: str,
        receivables: Optional[ReceivableAdapter] = None,
        permissions: Optional[Permissions] = None,
        config: Optional[PoolConfig] = None,
        units_symbol: Optional[str] = None,
        verbose: Optional[bool] = None,
    ):
        """
        Create a pool and register its wallet and ownership unit.

        Args:
            ledger: Custody ledger holding cash, receivables and pool units
            name: Pool name, also its wallet id
            asset: Settlement asset symbol (must be registered)
            owner, underwriter, protocol_fee_receiver: Role wallets
            receivables: Source of receivable facts (default: read from ledger)
            permissions: Allow-list collaborator (default: allow everyone)
            config: Pool configuration (default: PoolConfig())
            units_symbol: Ownership unit symbol (default: "<name>-units")
            verbose: Print events (default: the ledger's verbose flag)

        Raises:
            ValueError: Asset precision does not match config.asset_decimal_places
        """
        self.ledger = ledger
        self.name = name
        self.wallet = name
        self.asset = asset
        self.owner = owner
        self.underwriter = underwriter
        self.protocol_fee_receiver = protocol_fee_receiver
        self.receivables = receivables or LedgerReceivableAdapter(ledger)
        self.permissions = permissions or AllowAllPermissions()
        self.config = config or PoolConfig()
        self.units_symbol = units_symbol or f"{name}-units"
        self.verbose = ledger.verbose if verbose is None else verbose

        asset_unit = ledger.get_unit(asset)
        if asset_unit.decimal_places is not None and asset_unit.decimal_places != self.config.asset_decimal_places:
            raise ValueError(
                f"{asset} has {asset_unit.decimal_places} decimal places, "
                f"config expects {self.config.asset_decimal_places}"
            )
        for wallet in (self.wallet, owner, protocol_fee_receiver):
            ledger.ensure_wallet(wallet)
        if not ledger.has_unit(self.units_symbol):
            ledger.register_unit(pool_units(self.units_symbol, f"{name} ownership units", self.wallet))

        self.approvals: Dict[str, InvoiceApproval] = {}
        self.impairments: Dict[str, ImpairmentRecord] = {}
        self.active = ReceivableIndex("active", self.config.max_active_receivables)
        self.impaired = ReceivableIndex("impaired", self.config.max_active_receivables)
        self.redemption_queue = RedemptionQueue(self.config.max_redemption_queue_size)

        self.protocol_fee_balance = Decimal("0")
        self.admin_fee_balance = Decimal("0")
        self.impair_reserve = Decimal("0")

        # roll-forward counters for verify_capital_account()
        self.total_deposited = Decimal("0")
        self.total_withdrawn = Decimal("0")
        self.realized_gains = Decimal("0")
        self.realized_losses = Decimal("0")
        self.upfront_fees_expensed = Decimal("0")

        self.event_log: List[PoolEvent] = []
        self._sequence = 0

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @property
    def places(self) -> int:
        return self.config.asset_decimal_places

    @property
    def now(self):
        return self.ledger.current_time

    def _next_contract_id(self, operation: str) -> str:
        self._sequence += 1
        return f"{self.name}:{operation}:{self._sequence}"

    def _apply(self, moves: List[Move], event_type: str, unit_symbol: Optional[str] = None) -> Optional[Transaction]:
        """Execute moves as one transaction. A payer short of funds becomes InsufficientLiquidity."""
        if not moves:
            return None
        origin = TransactionOrigin(OriginType.POOL, self.name, unit_symbol, event_type)
        try:
            return self.ledger.apply(build_transaction(self.ledger, moves, origin=origin))
        except InsufficientFunds as exc:
            raise InsufficientLiquidity(str(exc)) from exc

    def _cash(self, amount: Decimal, source: str, dest: str, contract_id: str) -> List[Move]:
        if amount <= 0:
            return []
        return [Move(amount, self.asset, source, dest, contract_id)]

    def _emit(self, event: PoolEvent) -> None:
        self.event_log.append(event)
        if self.verbose:
            print(f"[{self.name}] {event}")

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise Unauthorized(f"{caller} is not the pool owner")

    def _require_permission(self, actor: str, operation: str) -> None:
        if not self.permissions.is_allowed(actor, operation):
            raise Unauthorized(f"{actor} is not allowed to {operation}")

    def _facts(self, receivable_id: str) -> ReceivableFacts:
        return self.receivables.get_facts(receivable_id)

    def _open_funding(self, receivable_id: str) -> InvoiceApproval:
        """Approval of a funded receivable that has not settled yet."""
        approval = self.approvals.get(receivable_id)
        if approval is None or not approval.is_funded:
            raise NotFound(f"Receivable {receivable_id} was not funded by {self.name}")
        if receivable_id not in self.active and receivable_id not in self.impaired:
            raise InvalidState(f"Receivable {receivable_id} is already {approval.status.value}")
        return approval

    def _positive(self, value, what: str, places: int) -> Decimal:
        value = quantize(to_decimal(value), places)
        if value <= 0:
            raise ValueError(f"{what} must be positive, got {value}")
        return value

    # ========================================================================
    # APPROVAL AND FUNDING
    # ========================================================================

    def approve(
        self,
        caller: str,
        receivable_id: str,
        target_yield_bps: Optional[int],
        spread_bps: int,
        upfront_bps: int,
        min_days_interest_applied: int = 0,
    ) -> InvoiceApproval:
        """
        Approve a receivable for funding (underwriter only).

        Protocol and admin fee rates are taken from the current config and
        frozen into the approval. Approving again before funding replaces the
        previous approval. ``target_yield_bps=None`` uses the config default.

        Raises:
            Unauthorized: Caller is not the underwriter
            NotFound: Unknown receivable
            InvalidState: Fully paid, closed, wrong token, or already funded
            ValueError: Fee terms out of range
        """
        if caller != self.underwriter:
            raise Unauthorized(f"{caller} is not the underwriter")
        facts = self._facts(receivable_id)
        existing = self.approvals.get(receivable_id)
        if existing is not None and existing.is_funded and existing.status != InvoiceStatus.UNFACTORED:
            raise InvalidState(f"Receivable {receivable_id} is already funded")
        if facts.creditor == self.wallet:
            raise InvalidState(f"Receivable {receivable_id} is already owned by the pool")

        fee_params = FeeParams(
            target_yield_bps=self.config.target_yield_bps if target_yield_bps is None else target_yield_bps,
            spread_bps=spread_bps,
            upfront_bps=upfront_bps,
            protocol_fee_bps=self.config.protocol_fee_bps,
            admin_fee_bps=self.config.admin_fee_bps,
            min_days_interest_applied=min_days_interest_applied,
        )
        approval = create_approval(
            receivable_id, facts, fee_params, self.asset, self.now,
            self.config.approval_duration, self.config.grace_period_days,
        )
        self.approvals[receivable_id] = approval
        self.impairments.pop(receivable_id, None)
        self._emit(InvoiceApproved(
            self.now, receivable_id, approval.creditor, approval.approval_expiry,
            fee_params.upfront_bps, fee_params.target_yield_bps,
        ))
        return approval

    def fund(
        self,
        caller: str,
        receivable_id: str,
        upfront_bps: int,
        receiver: Optional[str] = None,
    ) -> InvoiceApproval:
        """
        Buy an approved receivable from its creditor.

        The receivable moves to the pool and the net advance goes to
        ``receiver`` (default: the caller). The upfront protocol fee is
        earmarked in the pool.

        Raises:
            Unauthorized: Caller lacks the factoring permission or is not the creditor
            NotFound: Unknown receivable
            InvalidState: See validate_funding()
            CapacityExceeded: Active and Impaired Sets are full
            InsufficientLiquidity: Available assets below the gross amount
        """
        self._require_permission(caller, OPERATION_FACTORING)
        facts = self._facts(receivable_id)
        approval = validate_funding(
            self.approvals.get(receivable_id), facts, caller, self.wallet, upfront_bps, self.now,
        )

        plan, moves = self._plan_reconciliation()
        still_open = len(self.active) + len(self.impaired) - len(plan.receivable_ids)
        if still_open >= self.config.max_active_receivables:
            raise CapacityExceeded(
                f"{self.name} already holds {self.config.max_active_receivables} open receivables"
            )

        target = approval.target_fees(upfront_bps, self.now, self.places)
        available = self.capital_snapshot(plan).available_assets
        if available < target.funded_amount_gross:
            raise InsufficientLiquidity(
                f"Funding {receivable_id} needs {target.funded_amount_gross}, available {available}"
            )

        receiver = receiver or caller
        contract_id = self._next_contract_id("fund")
        moves.append(Move(Decimal("1"), receivable_id, caller, self.wallet, contract_id))
        moves += self._cash(target.funded_amount_net, self.wallet, receiver, contract_id)
        self._apply(moves, "FUND", receivable_id)
        self._commit_reconciliation(plan)

        funded = mark_funded(approval, target, receiver, self.now)
        self.approvals[receivable_id] = funded
        self.protocol_fee_balance += target.protocol_fee
        self.upfront_fees_expensed += target.protocol_fee
        self.active.add(receivable_id)
        self._emit(InvoiceFunded(
            self.now, receivable_id, target.funded_amount_gross, target.funded_amount_net,
            receiver, approval.due_date,
        ))
        return funded

    # ========================================================================
    # RECONCILIATION
    # ========================================================================

    def has_unreconciled_paid(self) -> bool:
        """True if any open receivable is fully paid but not yet reconciled."""
        return any(
            self._facts(rid).is_fully_paid
            for index in (self.active, self.impaired)
            for rid in index
        )

    def reconcile_active_paid_invoices(self) -> List[str]:
        """
        Settle every open receivable that is now fully paid.

        Impairments on paid receivables are reversed first. Kickbacks go to
        each receiver in one ledger transaction. Calling it again with nothing
        newly paid does nothing.

        Returns:
            Ids settled by this call
        """
        plan, moves = self._plan_reconciliation()
        if not plan:
            return []
        self._apply(moves, "RECONCILE")
        return self._commit_reconciliation(plan)

    def _plan_reconciliation(self) -> Tuple[ReconciliationPlan, List[Move]]:
        """Settlements of every paid receivable and the kickback moves, nothing applied."""
        plan = plan_reconciliation(
            self.active, self.impaired, self.approvals.__getitem__, self._facts, self.now, self.places,
        )
        if not plan:
            return plan, []
        contract_id = self._next_contract_id("reconcile")
        moves: List[Move] = []
        for settlement in plan.settlements:
            moves += self._cash(settlement.kickback, self.wallet, settlement.counterparty, contract_id)
        return plan, moves

    def _commit_reconciliation(self, plan: ReconciliationPlan) -> List[str]:
        """Book a plan whose kickbacks the ledger has already applied."""
        for rid in plan.reversed_ids:
            self._reverse_impairment(rid)
        for settlement in plan.settlements:
            self._settle(settlement, InvoiceStatus.RECONCILED)
            realized = settlement.realized
            self._emit(InvoicePaid(
                self.now, settlement.receivable_id, realized.interest, realized.spread,
                realized.admin_fee, realized.protocol_fee, settlement.kickback,
                settlement.counterparty, settlement.gain,
            ))
        return list(plan.receivable_ids)

    def reconcile(self) -> List[str]:
        return self.reconcile_active_paid_invoices()

    def _settle(self, settlement: Settlement, status: InvoiceStatus) -> None:
        rid = settlement.receivable_id
        self.admin_fee_balance += settlement.increment.admin
        self.protocol_fee_balance += settlement.increment.protocol
        self.realized_gains += settlement.gain
        self.active.remove(rid)
        self.approvals[rid] = with_status(self.approvals[rid], status)

    # ========================================================================
    # UNFACTOR
    # ========================================================================

    def preview_unfactor(self, receivable_id: str) -> Decimal:
        """
        Signed cash the creditor would pay the pool to unwind now.

        Negative means the pool would refund the creditor.
        """
        approval = self._open_funding(receivable_id)
        return calculate_unfactor(approval, self._facts(receivable_id), self.now, self.places).amount

    def unfactor(self, caller: str, receivable_id: str) -> Decimal:
        """
        Return a funded receivable to its original creditor against settlement.

        Returns:
            The signed amount settled (as preview_unfactor)

        Raises:
            NotFound: Never funded by this pool
            InvalidState: Already settled, or fully paid (reconcile instead)
            Unauthorized: Caller is not the original creditor
            InsufficientLiquidity: Creditor cannot pay, or pool cannot refund
        """
        approval = self._open_funding(receivable_id)
        if caller != approval.creditor:
            raise Unauthorized(f"{caller} is not the original creditor of {receivable_id}")
        facts = self._facts(receivable_id)
        if facts.is_fully_paid:
            raise InvalidState(f"Receivable {receivable_id} is fully paid; reconcile instead")

        plan, moves = self._plan_reconciliation()

        settlement = calculate_unfactor(approval, facts, self.now, self.places)
        contract_id = self._next_contract_id("unfactor")
        moves.append(Move(Decimal("1"), receivable_id, self.wallet, approval.creditor, contract_id))
        if settlement.amount > 0:
            moves += self._cash(settlement.amount, approval.creditor, self.wallet, contract_id)
        else:
            moves += self._cash(-settlement.amount, self.wallet, approval.creditor, contract_id)
        self._apply(moves, "UNFACTOR", receivable_id)
        self._commit_reconciliation(plan)

        if receivable_id in self.impaired:
            self._reverse_impairment(receivable_id)
        self._settle(settlement, InvoiceStatus.UNFACTORED)
        realized = settlement.realized
        self._emit(InvoiceUnfactored(
            self.now, receivable_id, approval.creditor, settlement.amount,
            realized.interest, realized.spread, realized.admin_fee, realized.protocol_fee,
        ))
        return settlement.amount

    # ========================================================================
    # IMPAIRMENT
    # ========================================================================

    def impair(self, caller: str, receivable_id: str) -> ImpairmentRecord:
        """
        Write off an overdue receivable (owner only).

        Raises:
            Unauthorized: Caller is not the owner
            NotFound: Never funded by this pool
            InvalidState: Not active (already impaired or settled) or fully paid
            InvariantViolation: Grace period has not elapsed
        """
        self._require_owner(caller)
        approval = self.approvals.get(receivable_id)
        if approval is None or not approval.is_funded:
            raise NotFound(f"Receivable {receivable_id} was not funded by {self.name}")
        if receivable_id not in self.active:
            raise InvalidState(f"Receivable {receivable_id} is {approval.status.value}, not active")
        if self._facts(receivable_id).is_fully_paid:
            raise InvalidState(f"Receivable {receivable_id} is fully paid; reconcile instead")
        if not approval.impairable_at(self.now):
            raise InvariantViolation(
                f"Receivable {receivable_id} is within its grace period "
                f"(due {approval.due_date}, grace {approval.grace_period_days} days)"
            )

        record = calculate_impairment(
            approval.funded_amount_net, self.impair_reserve,
            self.config.impairment_reserve_share, self.now, self.places,
        )
        self.impair_reserve -= record.gain_amount
        self.realized_gains += record.gain_amount
        self.realized_losses += record.loss_amount
        self.active.remove(receivable_id)
        self.impaired.add(receivable_id)
        self.impairments[receivable_id] = record
        self.approvals[receivable_id] = with_status(approval, InvoiceStatus.IMPAIRED)
        self._emit(InvoiceImpaired(self.now, receivable_id, record.loss_amount, record.gain_amount))
        return record

    def _reverse_impairment(self, receivable_id: str) -> None:
        record = self.impairments[receivable_id]
        self.impair_reserve += record.gain_amount
        self.realized_gains -= record.gain_amount
        self.realized_losses -= record.loss_amount
        self.impairments[receivable_id] = reverse_impairment(record)
        self.impaired.remove(receivable_id)
        self.active.add(receivable_id)
        self.approvals[receivable_id] = with_status(self.approvals[receivable_id], InvoiceStatus.FUNDED)
        self._emit(ImpairmentReversed(self.now, receivable_id, record.loss_amount, record.gain_amount))

    # ========================================================================
    # CAPITAL ACCOUNT
    # ========================================================================

    def liquid_balance(self) -> Decimal:
        return self.ledger.get_balance(self.wallet, self.asset)

    def total_units(self) -> Decimal:
        return self.ledger.circulating_supply(self.units_symbol)

    def held_collections(self) -> Decimal:
        """Payments received on open receivables, held until they settle."""
        return self._held(list(self.active) + list(self.impaired))

    def _held(self, receivable_ids: List[str]) -> Decimal:
        return sum(
            (self.approvals[rid].paid_to_pool(self._facts(rid)) for rid in receivable_ids),
            Decimal("0"),
        )

    def capital_snapshot(self, plan: Optional[ReconciliationPlan] = None) -> CapitalSnapshot:
        """
        Capital account as it stands, or as it will stand once ``plan`` commits.

        Settled receivables leave the sets with their held collections, their
        kickbacks leave the pool's cash and their fee increments are earmarked.

        Raises:
            InvariantViolation: Earmarks exceed the pool's cash
        """
        plan = plan or ReconciliationPlan()
        settled = set(plan.receivable_ids)
        active = [rid for rid in self.active if rid not in settled]
        impaired = [rid for rid in self.impaired if rid not in settled]
        restored = sum((self.impairments[rid].gain_amount for rid in plan.reversed_ids), Decimal("0"))

        active_carrying = sum(
            (self.approvals[rid].funded_amount_net for rid in active), Decimal("0"),
        )
        impaired_carrying = sum(
            (self.approvals[rid].funded_amount_net - self.impairments[rid].loss_amount
             for rid in impaired),
            Decimal("0"),
        )
        return CapitalSnapshot(
            liquid=self.liquid_balance() - plan.total_kickback,
            protocol_fee_balance=self.protocol_fee_balance + plan.protocol_increment,
            admin_fee_balance=self.admin_fee_balance + plan.admin_increment,
            impair_reserve=self.impair_reserve + restored,
            held_collections=self._held(active + impaired),
            active_carrying_value=active_carrying,
            impaired_carrying_value=impaired_carrying,
        ).check()

    def capital_account(self) -> Decimal:
        return self.capital_snapshot().capital_account

    def available_assets(self) -> Decimal:
        """Cash the pool may spend on fundings and redemptions."""
        return self.capital_snapshot().available_assets

    def price_per_unit(self) -> Decimal:
        return calculate_price_per_unit(self.capital_account(), self.total_units())

    def verify_capital_account(self, tolerance: Decimal = Decimal("0")) -> Dict[str, Any]:
        """Check the capital account against deposits, withdrawals, gains, losses and upfront fees."""
        return verify_capital_account(
            self.capital_account(),
            self.total_deposited,
            self.total_withdrawn,
            self.realized_gains,
            self.realized_losses,
            self.upfront_fees_expensed,
            tolerance,
        )

    # ========================================================================
    # DEPOSITS AND REDEMPTIONS
    # ========================================================================

    def deposit(self, depositor: str, assets: Decimal) -> Decimal:
        """
        Deposit cash for newly minted units at the current price.

        Paid receivables are settled in the same transaction, before pricing.

        Returns:
            Units minted

        Raises:
            Unauthorized: Depositor not allowed to deposit
            InsufficientLiquidity: Depositor lacks the cash
        """
        self._require_permission(depositor, OPERATION_DEPOSIT)
        assets = self._positive(assets, "Deposit", self.places)
        plan, moves = self._plan_reconciliation()

        units = convert_to_units(assets, self._price_after(plan))
        if units <= 0:
            raise ValueError(f"Deposit of {assets} is worth less than one unit increment")
        contract_id = self._next_contract_id("deposit")
        moves += [
            Move(assets, self.asset, depositor, self.wallet, contract_id),
            Move(units, self.units_symbol, SYSTEM_WALLET, depositor, contract_id),
        ]
        self._apply(moves, "DEPOSIT")
        self._commit_reconciliation(plan)

        self.total_deposited += assets
        self._emit(Deposited(self.now, depositor, assets, units))
        return units

    def _price_after(self, plan: ReconciliationPlan) -> Decimal:
        return calculate_price_per_unit(self.capital_snapshot(plan).capital_account, self.total_units())

    def _affordable_units(self, price: Decimal, available: Decimal, wanted: Decimal) -> Decimal:
        if price <= 0:
            return wanted
        if available <= 0:
            return Decimal("0")
        return min(wanted, convert_to_units(available, price))

    def _redemption_moves(self, owner: str, units: Decimal, assets: Decimal, contract_id: str) -> List[Move]:
        moves = [Move(units, self.units_symbol, owner, SYSTEM_WALLET, contract_id)]
        return moves + self._cash(assets, self.wallet, owner, contract_id)

    def request_redeem(self, owner: str, units: Decimal) -> RedemptionResult:
        """
        Redeem units: pay what liquidity allows now, queue the rest.

        Paid receivables are settled in the same transaction, before pricing.

        Raises:
            Unauthorized: Owner not allowed to withdraw
            InvalidState: Nothing left to redeem
            CapacityExceeded: A remainder must be queued but the queue is full
        """
        self._require_permission(owner, OPERATION_WITHDRAW)
        units = self._positive(units, "Redeem units", UNIT_DECIMAL_PLACES)
        plan, moves = self._plan_reconciliation()
        return self._redeem(owner, units, None, plan, moves)

    def request_withdraw(self, owner: str, assets: Decimal) -> RedemptionResult:
        """Withdraw ``assets``, converted to units at the current price (rounded up)."""
        self._require_permission(owner, OPERATION_WITHDRAW)
        assets = self._positive(assets, "Withdrawal", self.places)
        plan, moves = self._plan_reconciliation()
        units = units_for_withdrawal(assets, self._price_after(plan))
        return self._redeem(owner, units, assets, plan, moves)

    def _redeem(
        self,
        owner: str,
        requested: Decimal,
        requested_assets: Optional[Decimal],
        plan: ReconciliationPlan,
        moves: List[Move],
    ) -> RedemptionResult:
        balance = self.ledger.get_balance(owner, self.units_symbol)
        capped = min(requested, balance - self.redemption_queue.queued_units(owner))
        if capped <= 0:
            raise InvalidState(f"{owner} has no unqueued units to redeem")

        snapshot = self.capital_snapshot(plan)
        price = calculate_price_per_unit(snapshot.capital_account, self.total_units())
        immediate = Decimal("0")
        if not self.redemption_queue:
            immediate = self._affordable_units(price, snapshot.available_assets, capped)
        queued = capped - immediate
        if queued > 0:
            self.redemption_queue.ensure_capacity()

        immediate_assets = convert_to_assets(immediate, price, self.places)
        queued_assets = convert_to_assets(queued, price, self.places)
        if immediate > 0:
            moves += self._redemption_moves(owner, immediate, immediate_assets, self._next_contract_id("redeem"))
        self._apply(moves, "REDEEM")
        self._commit_reconciliation(plan)

        if immediate > 0:
            self.total_withdrawn += immediate_assets
            self._emit(Redeemed(self.now, owner, immediate, immediate_assets))
        if queued > 0:
            entry = self.redemption_queue.enqueue(
                owner, queued, queued_assets if requested_assets is not None else None,
            )
            self._emit(RedemptionQueued(self.now, owner, entry.units, entry.assets, entry.sequence))
            if self.redemption_queue.is_full:
                self._emit(QueueFull(self.now, len(self.redemption_queue)))

        return RedemptionResult(immediate, immediate_assets, queued, queued_assets)

    def process_redemption_queue(self) -> List[Redeemed]:
        """
        Serve queued requests from the front while liquidity lasts.

        Paid receivables are settled first, in the same transaction. Each
        entry is capped to its owner's current balance. The front entry may
        be partly served; processing stops, without error, when the available
        assets run out.
        """
        plan, moves = self._plan_reconciliation()
        snapshot = self.capital_snapshot(plan)
        price = calculate_price_per_unit(snapshot.capital_account, self.total_units())
        available = snapshot.available_assets
        contract_id = self._next_contract_id("process_queue")
        burned: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        served: List[Redeemed] = []
        finished = 0
        remainder: Optional[RedemptionQueueEntry] = None

        for entry in self.redemption_queue.entries():
            owned = self.ledger.get_balance(entry.owner, self.units_symbol) - burned[entry.owner]
            units = min(entry.units, owned)
            if units <= 0:
                finished += 1
                continue
            serve = self._affordable_units(price, available, units)
            if serve <= 0:
                break
            assets = convert_to_assets(serve, price, self.places)
            moves += self._redemption_moves(entry.owner, serve, assets, contract_id)
            burned[entry.owner] += serve
            available -= assets
            served.append(Redeemed(self.now, entry.owner, serve, assets))
            if serve < units:
                left = units - serve
                remainder = replace(
                    entry, units=left,
                    assets=convert_to_assets(left, price, self.places) if entry.assets is not None else None,
                )
                break
            finished += 1

        self._apply(moves, "PROCESS_QUEUE")
        self._commit_reconciliation(plan)

        for _ in range(finished):
            self.redemption_queue.pop_front()
        if remainder is not None:
            self.redemption_queue.reduce_front(remainder.units, remainder.assets)
        for event in served:
            self.total_withdrawn += event.assets
            self._emit(event)
        return served

    @property
    def redemption_queue_length(self) -> int:
        return len(self.redemption_queue)

    @property
    def redemption_queue_entries(self) -> List[RedemptionQueueEntry]:
        return self.redemption_queue.entries()

    # ========================================================================
    # FEES AND RESERVE
    # ========================================================================

    def withdraw_protocol_fees(self, caller: str) -> Decimal:
        if caller != self.protocol_fee_receiver:
            raise Unauthorized(f"{caller} is not the protocol fee receiver")
        amount = self.protocol_fee_balance
        self._apply(self._cash(amount, self.wallet, caller, self._next_contract_id("protocol_fees")),
                    "WITHDRAW_FEES")
        self.protocol_fee_balance = Decimal("0")
        if amount > 0:
            self._emit(FeesWithdrawn(self.now, "protocol", caller, amount))
        return amount

    def withdraw_admin_fees(self, caller: str) -> Decimal:
        self._require_owner(caller)
        amount = self.admin_fee_balance
        self._apply(self._cash(amount, self.wallet, caller, self._next_contract_id("admin_fees")),
                    "WITHDRAW_FEES")
        self.admin_fee_balance = Decimal("0")
        if amount > 0:
            self._emit(FeesWithdrawn(self.now, "admin", caller, amount))
        return amount

    def top_up_impair_reserve(self, caller: str, amount: Decimal) -> Decimal:
        """Owner moves cash into the pool, earmarked as loss reserve."""
        self._require_owner(caller)
        amount = self._positive(amount, "Reserve top-up", self.places)
        self._apply(self._cash(amount, caller, self.wallet, self._next_contract_id("reserve")), "RESERVE")
        old = self.impair_reserve
        self.impair_reserve += amount
        self._emit(ImpairReserveChanged(self.now, old, self.impair_reserve))
        return self.impair_reserve

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    def _set_config(self, caller: str, name: str, value: Any) -> None:
        self._require_owner(caller)
        old = getattr(self.config, name)
        self.config = replace(self.config, **{name: value})
        self._emit(ConfigChanged(self.now, name, old, value))

    def set_underwriter(self, caller: str, underwriter: str) -> None:
        self._require_owner(caller)
        old, self.underwriter = self.underwriter, underwriter
        self._emit(ConfigChanged(self.now, "underwriter", old, underwriter))

    def set_approval_duration(self, caller: str, duration: timedelta) -> None:
        self._set_config(caller, "approval_duration", duration)

    def set_grace_period_days(self, caller: str, days: int) -> None:
        """Grace period for receivables approved from now on."""
        self._set_config(caller, "grace_period_days", days)

    def set_protocol_fee_bps(self, caller: str, bps: int) -> None:
        self._set_config(caller, "protocol_fee_bps", bps)

    def set_admin_fee_bps(self, caller: str, bps: int) -> None:
        self._set_config(caller, "admin_fee_bps", bps)

    def set_target_yield_bps(self, caller: str, bps: int) -> None:
        self._set_config(caller, "target_yield_bps", bps)

    def set_impairment_reserve_share(self, caller: str, share: Decimal) -> None:
        self._set_config(caller, "impairment_reserve_share", share)

    def set_max_redemption_queue_size(self, caller: str, size: int) -> None:
        """
        Raises:
            ValueError: size below the current queue length
        """
        self._require_owner(caller)
        old = self.config.max_redemption_queue_size
        config = replace(self.config, max_redemption_queue_size=size)
        self.redemption_queue.set_max_size(size)
        self.config = config
        self._emit(ConfigChanged(self.now, "max_redemption_queue_size", old, size))

    # ========================================================================
    # READ-ONLY ACCESSORS
    # ========================================================================

    def get_approval(self, receivable_id: str) -> InvoiceApproval:
        if receivable_id not in self.approvals:
            raise NotFound(f"No approval for {receivable_id}")
        return self.approvals[receivable_id]

    def get_impairment(self, receivable_id: str) -> ImpairmentRecord:
        if receivable_id not in self.impairments:
            raise NotFound(f"No impairment record for {receivable_id}")
        return self.impairments[receivable_id]

    def funded_amount(self, receivable_id: str) -> Decimal:
        """Net cash the pool advanced for a receivable."""
        approval = self.get_approval(receivable_id)
        if not approval.is_funded:
            raise NotFound(f"Receivable {receivable_id} was not funded by {self.name}")
        return approval.funded_amount_net

    @property
    def active_ids(self) -> List[str]:
        return self.active.ids()

    @property
    def impaired_ids(self) -> List[str]:
        return self.impaired.ids()

    def view_pool_status(self, offset: int = 0, limit: int = 25) -> PoolStatus:
        """Impairable receivables in one page of the Active Set."""
        return scan_impairable(
            self.active, self.get_approval, self._facts,
            self.now, offset, limit,
        )

    def view_paid_receivables(self, offset: int = 0, limit: int = 25) -> PoolStatus:
        """Paid-but-unreconciled receivables in one page of the Active Set."""
        return scan_paid(self.active, self._facts, offset, limit)
