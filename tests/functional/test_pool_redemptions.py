"""
Functional tests: deposits, redemptions and the redemption queue.
"""

import pytest
from decimal import Decimal

from factoring import (
    PoolConfig, Move, build_transaction, Deposited, Redeemed, RedemptionQueued, QueueFull,
    InvalidState, CapacityExceeded, Unauthorized, InsufficientLiquidity,
    AllowListPermissions, OPERATION_DEPOSIT,
    InvoiceStatus, INITIAL_PRICE_PER_UNIT,
)
from tests.conftest import (
    ASSET, issue_cash, pay_invoice, advance_days, make_pool, fund_invoice,
)


UNITS = "pool-units"


@pytest.fixture
def drained_pool(funded_pool):
    """Funded pool where alice asked for all her units; most of it is queued."""
    funded_pool.request_redeem("alice", Decimal("200000"))
    return funded_pool


class TestDeposit:

    def test_first_deposit_at_initial_price(self, pool, ledger):
        issue_cash(ledger, "alice", 1000)
        units = pool.deposit("alice", Decimal("1000"))

        assert units == Decimal("1000")
        assert pool.price_per_unit() == INITIAL_PRICE_PER_UNIT
        assert ledger.get_balance("alice", UNITS) == Decimal("1000")
        assert pool.total_units() == Decimal("1000")
        assert pool.event_log[-1] == Deposited(ledger.current_time, "alice", Decimal("1000"), Decimal("1000"))

    def test_deposit_priced_after_loss(self, funded_pool):
        issue_cash(funded_pool.ledger, "bob", Decimal("999.79"))
        units = funded_pool.deposit("bob", Decimal("999.79"))
        # 999.79 / 0.99979455 rounded down
        assert units == Decimal("999.995449")

    def test_deposit_requires_cash(self, pool):
        with pytest.raises(InsufficientLiquidity):
            pool.deposit("bob", Decimal("10"))
        assert pool.total_units() == Decimal("0")

    def test_non_positive_deposit(self, pool):
        with pytest.raises(ValueError):
            pool.deposit("alice", Decimal("0"))

    def test_deposit_permission(self, ledger):
        pool = make_pool(ledger, permissions=AllowListPermissions({OPERATION_DEPOSIT: ["alice"]}))
        issue_cash(ledger, "bob", 10)
        with pytest.raises(Unauthorized):
            pool.deposit("bob", Decimal("10"))


class TestImmediateRedemption:

    def test_redeem_at_initial_price(self, seeded_pool):
        result = seeded_pool.request_redeem("alice", Decimal("1000"))

        assert result.immediate_units == Decimal("1000")
        assert result.immediate_assets == Decimal("1000.00")
        assert result.queued_units == Decimal("0")
        assert seeded_pool.ledger.get_balance("alice", ASSET) == Decimal("1000")
        assert seeded_pool.total_units() == Decimal("199000")
        assert isinstance(seeded_pool.event_log[-1], Redeemed)

    def test_request_capped_to_balance(self, seeded_pool):
        result = seeded_pool.request_redeem("alice", Decimal("999999"))
        assert result.total_units == Decimal("200000")
        assert seeded_pool.ledger.get_balance("alice", UNITS) == Decimal("0")

    def test_nothing_to_redeem(self, seeded_pool):
        with pytest.raises(InvalidState):
            seeded_pool.request_redeem("bob", Decimal("1"))

    def test_withdraw_exact_assets(self, funded_pool):
        result = funded_pool.request_withdraw("alice", Decimal("1000"))
        assert result.immediate_assets == Decimal("1000.00")
        assert funded_pool.ledger.get_balance("alice", ASSET) == Decimal("1000.00")

    def test_redemption_reconciles_first(self, funded_pool):
        ledger = funded_pool.ledger
        advance_days(ledger, 30)
        pay_invoice(ledger, "INV-001", 100000)

        result = funded_pool.request_redeem("alice", Decimal("200000"))

        assert funded_pool.get_approval("INV-001").status == InvoiceStatus.RECONCILED
        assert result.immediate_units == Decimal("200000")
        assert result.immediate_assets == Decimal("200801.36")
        assert funded_pool.redemption_queue_length == 0
        # only the fee earmarks stay behind
        assert funded_pool.liquid_balance() == Decimal("82.18")


class TestQueue:

    def test_shortfall_is_queued(self, drained_pool):
        entries = drained_pool.redemption_queue_entries
        redeemed, queued = drained_pool.event_log[-2:]

        assert isinstance(redeemed, Redeemed)
        assert isinstance(queued, RedemptionQueued)
        assert len(entries) == 1
        assert entries[0].owner == "alice"
        assert redeemed.units + entries[0].units == Decimal("200000")
        assert Decimal("0") <= drained_pool.available_assets() <= Decimal("0.01")

    def test_queued_units_cannot_be_requested_again(self, drained_pool):
        with pytest.raises(InvalidState, match="unqueued"):
            drained_pool.request_redeem("alice", Decimal("1"))

    def test_requests_behind_a_queue_wait(self, drained_pool):
        ledger = drained_pool.ledger
        issue_cash(ledger, "bob", 5000)
        drained_pool.deposit("bob", Decimal("5000"))

        result = drained_pool.request_redeem("bob", Decimal("10"))

        assert result.immediate_units == Decimal("0")
        assert result.queued_units == Decimal("10")
        assert [e.owner for e in drained_pool.redemption_queue_entries] == ["alice", "bob"]

    def test_full_queue(self, ledger):
        pool = make_pool(ledger, PoolConfig(max_redemption_queue_size=2))
        for wallet, amount in (("alice", 200000), ("bob", 1000), ("carol", 1000)):
            issue_cash(ledger, wallet, amount)
            pool.deposit(wallet, Decimal(amount))
        fund_invoice(pool, "INV-001")

        pool.request_redeem("alice", Decimal("200000"))
        pool.request_redeem("bob", Decimal("100"))
        assert isinstance(pool.event_log[-1], QueueFull)

        carol_units = ledger.get_balance("carol", UNITS)
        with pytest.raises(CapacityExceeded):
            pool.request_redeem("carol", Decimal("100"))
        assert pool.redemption_queue_length == 2
        assert ledger.get_balance("carol", UNITS) == carol_units

    def test_refused_request_leaves_paid_receivable_open(self, ledger):
        pool = make_pool(ledger, PoolConfig(max_redemption_queue_size=2))
        for wallet, amount in (("alice", 200000), ("bob", 1000), ("carol", 1000)):
            issue_cash(ledger, wallet, amount)
            pool.deposit(wallet, Decimal(amount))
        fund_invoice(pool, "INV-001")
        pool.request_redeem("alice", Decimal("200000"))
        pool.request_redeem("bob", Decimal("100"))
        pay_invoice(ledger, "INV-001", 100000)
        events = list(pool.event_log)
        tx_count = len(ledger.transaction_log)

        with pytest.raises(CapacityExceeded):
            pool.request_redeem("carol", Decimal("100"))

        assert pool.has_unreconciled_paid()
        assert pool.active_ids == ["INV-001"]
        assert pool.event_log == events
        assert len(ledger.transaction_log) == tx_count

        pool.process_redemption_queue()
        assert not pool.has_unreconciled_paid()
        assert pool.get_approval("INV-001").status == InvoiceStatus.RECONCILED
        assert pool.verify_capital_account()['valid']

    def test_partial_service_keeps_front_position(self, drained_pool):
        ledger = drained_pool.ledger
        queued_before = drained_pool.redemption_queue_entries[0].units
        issue_cash(ledger, "carol", 1000)
        drained_pool.deposit("carol", Decimal("1000"))

        served = drained_pool.process_redemption_queue()

        assert len(served) == 1
        assert served[0].owner == "alice"
        assert Decimal("999") < served[0].assets <= Decimal("1000.01")
        front = drained_pool.redemption_queue_entries[0]
        assert front.owner == "alice"
        assert front.sequence == 0
        assert front.units == queued_before - served[0].units

    def test_queue_served_after_collection(self, drained_pool):
        ledger = drained_pool.ledger
        advance_days(ledger, 30)
        pay_invoice(ledger, "INV-001", 100000)

        served = drained_pool.process_redemption_queue()

        assert [e.owner for e in served] == ["alice"]
        assert drained_pool.redemption_queue_length == 0
        assert ledger.get_balance("alice", UNITS) == Decimal("0")
        assert drained_pool.verify_capital_account()['valid']
        assert ledger.verify_double_entry()['valid']

    def test_entry_capped_to_current_balance(self, drained_pool):
        ledger = drained_pool.ledger
        remaining = ledger.get_balance("alice", UNITS)
        ledger.apply(build_transaction(ledger, [Move(remaining, UNITS, "alice", "bob", "gift")]))
        issue_cash(ledger, "carol", 1000)
        drained_pool.deposit("carol", Decimal("1000"))

        assert drained_pool.process_redemption_queue() == []
        assert drained_pool.redemption_queue_length == 0

    def test_empty_queue_is_a_no_op(self, seeded_pool):
        assert seeded_pool.process_redemption_queue() == []
