"""
Pool Invariant Conformance Tests

INVARIANTS, after every operation in any sequence:
    capital_account == deposited - withdrawn + gains - losses - upfront fees
    every unit's total supply is zero (all value issued from the system wallet)
    available_assets >= 0
    redemption queue length <= max size
    reconciliation never lowers the capital account and is idempotent

Operations that the engine refuses (FactoringError, ValueError) must leave
every invariant intact as well. A refused pool-only operation leaves the event
log, the transaction log and the open receivables as they were.
"""

from hypothesis import given, settings, note, HealthCheck
from hypothesis import strategies as st
from datetime import datetime
from decimal import Decimal

from factoring import (
    Ledger, FactoringPool, PoolConfig, FactoringError, cash, compute_receivable_payment,
)
from tests.conftest import issue_cash, issue_invoice, advance_days


T0 = datetime(2025, 1, 1)
INVESTORS = ("alice", "bob")
# operations that touch nothing but the pool; a refusal must leave no trace
POOL_ONLY_OPS = frozenset({"redeem", "withdraw", "process", "reconcile"})


# =============================================================================
# STRATEGIES
# =============================================================================

amounts = st.decimals(min_value=Decimal("100"), max_value=Decimal("300000"), places=2,
                      allow_nan=False, allow_infinity=False)

deposit_op = st.tuples(st.just("deposit"), st.sampled_from(INVESTORS), amounts)
redeem_op = st.tuples(st.just("redeem"), st.sampled_from(INVESTORS), amounts)
withdraw_op = st.tuples(st.just("withdraw"), st.sampled_from(INVESTORS), amounts)
fund_op = st.tuples(
    st.just("fund"),
    st.integers(min_value=1000, max_value=200000),     # face
    st.integers(min_value=1, max_value=120),           # days to due
    st.integers(min_value=1000, max_value=9500),       # upfront bps
    st.integers(min_value=0, max_value=3000),          # target yield bps
    st.integers(min_value=0, max_value=30),            # min days
)
pay_op = st.tuples(st.just("pay"), st.integers(min_value=0, max_value=10), st.booleans())
advance_op = st.tuples(st.just("advance"), st.integers(min_value=1, max_value=60))
simple_op = st.tuples(st.sampled_from(["impair", "reconcile", "process", "unfactor", "top_up"]))

operations = st.lists(
    st.one_of(deposit_op, redeem_op, withdraw_op, fund_op, pay_op, advance_op, simple_op),
    min_size=1,
    max_size=25,
)


# =============================================================================
# HARNESS
# =============================================================================

class PoolHarness:
    """Applies generated operations to a fresh pool and checks invariants."""

    def __init__(self):
        self.ledger = Ledger("conformance", T0, verbose=False)
        self.ledger.register_unit(cash("USDC", "USD Coin"))
        self.pool = FactoringPool(
            self.ledger, "pool", "USDC", "owner", "underwriter", "protocol",
            config=PoolConfig(max_redemption_queue_size=3, max_active_receivables=5),
            verbose=False,
        )
        self.invoice_count = 0

    def open_ids(self):
        return self.pool.active_ids + self.pool.impaired_ids

    def footprint(self):
        return (
            len(self.pool.event_log), len(self.ledger.transaction_log),
            self.open_ids(), self.pool.redemption_queue_length,
        )

    def run(self, op):
        kind = op[0]
        before = self.footprint()
        try:
            getattr(self, f"do_{kind}")(*op[1:])
        except (FactoringError, ValueError) as exc:
            note(f"{op} refused: {exc!r}")
            if kind in POOL_ONLY_OPS:
                assert self.footprint() == before

    def do_deposit(self, who, amount):
        issue_cash(self.ledger, who, amount)
        self.pool.deposit(who, amount)

    def do_redeem(self, who, amount):
        self.pool.request_redeem(who, amount)

    def do_withdraw(self, who, amount):
        self.pool.request_withdraw(who, amount)

    def do_fund(self, face, days, upfront_bps, yield_bps, min_days):
        self.invoice_count += 1
        rid = f"INV-{self.invoice_count:03d}"
        issue_invoice(self.ledger, rid, face, due_in_days=days)
        self.pool.approve("underwriter", rid, yield_bps, 0, upfront_bps, min_days)
        self.pool.fund("originator", rid, upfront_bps)

    def do_pay(self, pick, in_full):
        open_ids = self.open_ids()
        if not open_ids:
            return
        rid = open_ids[pick % len(open_ids)]
        facts = self.pool.receivables.get_facts(rid)
        amount = facts.outstanding if in_full else (facts.outstanding / 2).quantize(Decimal("0.01"))
        if amount <= 0:
            return
        issue_cash(self.ledger, "debtor", amount)
        self.ledger.apply(compute_receivable_payment(self.ledger, rid, "debtor", amount))

    def do_advance(self, days):
        advance_days(self.ledger, days)

    def do_impair(self):
        for rid in self.pool.view_pool_status().receivable_ids:
            self.pool.impair("owner", rid)

    def do_reconcile(self):
        before = self.pool.capital_account()
        self.pool.reconcile()
        assert self.pool.capital_account() >= before
        assert self.pool.reconcile() == []

    def do_process(self):
        self.pool.process_redemption_queue()

    def do_unfactor(self):
        open_ids = self.open_ids()
        if not open_ids:
            return
        rid = open_ids[0]
        owed = self.pool.preview_unfactor(rid)
        if owed > 0:
            issue_cash(self.ledger, "originator", owed)
        self.pool.unfactor("originator", rid)

    def do_top_up(self):
        issue_cash(self.ledger, "owner", 1000)
        self.pool.top_up_impair_reserve("owner", Decimal("1000"))

    def check(self):
        snapshot = self.pool.capital_snapshot()
        assert snapshot.available_assets >= 0
        report = self.pool.verify_capital_account()
        assert report['valid'], report
        assert self.ledger.verify_double_entry()['valid']
        assert self.pool.redemption_queue_length <= self.pool.config.max_redemption_queue_size
        assert len(self.open_ids()) <= self.pool.config.max_active_receivables
        assert self.pool.impair_reserve >= 0


# =============================================================================
# PROPERTY TESTS
# =============================================================================

class TestPoolInvariants:

    @given(operations)
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_invariants_hold_for_any_sequence(self, ops):
        harness = PoolHarness()
        for op in ops:
            harness.run(op)
            harness.check()

    @given(operations)
    @settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_queued_units_stay_covered_by_balances(self, ops):
        harness = PoolHarness()
        for op in ops:
            harness.run(op)

            units = harness.pool.units_symbol
            for investor in INVESTORS:
                if harness.ledger.is_registered(investor):
                    queued = harness.pool.redemption_queue.queued_units(investor)
                    assert queued <= harness.ledger.get_balance(investor, units)
