"""
Tests for ledger.py - Custody Ledger Operations

Tests:
- wallet and unit registration
- apply() / execute() atomicity and idempotency
- balance limits, system wallet exemption, stale state
- double-entry verification and time handling
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from factoring import (
    Ledger, Move, SYSTEM_WALLET, ExecuteResult, cash, build_transaction,
    empty_pending_transaction, LedgerError, InsufficientFunds,
    UnitNotRegistered, WalletNotRegistered,
)
from tests.conftest import issue_cash


T0 = datetime(2025, 1, 1)


def transfer(ledger, amount, source="alice", dest="bob", contract_id="t1"):
    return build_transaction(ledger, [Move(Decimal(amount), "USDC", source, dest, contract_id)])


class TestRegistration:

    def test_system_wallet_exists(self):
        ledger = Ledger("l", T0, verbose=False)
        assert ledger.is_registered(SYSTEM_WALLET)

    def test_duplicate_wallet_rejected(self, ledger):
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_wallet("alice")

    def test_empty_wallet_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.register_wallet("")

    def test_ensure_wallet_is_idempotent(self, ledger):
        ledger.ensure_wallet("alice")
        ledger.ensure_wallet("zoe")
        assert "zoe" in ledger.list_wallets()

    def test_wallet_balances_are_a_copy(self, ledger):
        issue_cash(ledger, "alice", 100)
        balances = ledger.get_wallet_balances("alice")
        balances["USDC"] = Decimal("0")

        assert ledger.get_wallet_balances("alice")["USDC"] == Decimal("100")
        with pytest.raises(WalletNotRegistered):
            ledger.get_wallet_balances("nobody")

    def test_duplicate_unit_rejected(self, ledger):
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_unit(cash("USDC", "dup"))

    def test_unknown_wallet_balance(self, ledger):
        with pytest.raises(WalletNotRegistered):
            ledger.get_balance("nobody", "USDC")

    def test_unknown_unit_balance(self, ledger):
        with pytest.raises(UnitNotRegistered):
            ledger.get_balance("alice", "EURC")


class TestApply:

    def test_transfer_moves_cash(self, ledger):
        issue_cash(ledger, "alice", 100)
        tx = ledger.apply(transfer(ledger, "40"))

        assert ledger.get_balance("alice", "USDC") == Decimal("60")
        assert ledger.get_balance("bob", "USDC") == Decimal("40")
        assert tx in ledger.transaction_log

    def test_insufficient_funds_changes_nothing(self, ledger):
        issue_cash(ledger, "alice", 10)
        with pytest.raises(InsufficientFunds):
            ledger.apply(transfer(ledger, "10.01"))
        assert ledger.get_balance("alice", "USDC") == Decimal("10")
        assert ledger.get_balance("bob", "USDC") == Decimal("0")

    def test_all_moves_or_none(self, ledger):
        issue_cash(ledger, "alice", 10)
        pending = build_transaction(ledger, [
            Move(Decimal("5"), "USDC", "alice", "bob", "leg1"),
            Move(Decimal("50"), "USDC", "alice", "carol", "leg2"),
        ])
        with pytest.raises(InsufficientFunds):
            ledger.apply(pending)
        assert ledger.get_balance("bob", "USDC") == Decimal("0")

    def test_same_intent_applied_once(self, ledger):
        issue_cash(ledger, "alice", 100)
        pending = transfer(ledger, "10")
        ledger.apply(pending)
        with pytest.raises(LedgerError, match="already applied"):
            ledger.apply(pending)
        assert ledger.get_balance("bob", "USDC") == Decimal("10")

    def test_empty_transaction_rejected(self, ledger):
        with pytest.raises(LedgerError, match="empty"):
            ledger.apply(empty_pending_transaction(ledger))

    def test_unregistered_wallet_rejected(self, ledger):
        with pytest.raises(WalletNotRegistered):
            ledger.apply(transfer(ledger, "1", dest="stranger"))

    def test_system_wallet_may_go_negative(self, ledger):
        issue_cash(ledger, "alice", 100)
        assert ledger.get_balance(SYSTEM_WALLET, "USDC") == Decimal("-100")


class TestExecute:

    def test_results(self, ledger):
        issue_cash(ledger, "alice", 100)
        pending = transfer(ledger, "10")

        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert ledger.execute(transfer(ledger, "1000", contract_id="t2")) == ExecuteResult.REJECTED


class TestSupplyAndTime:

    def test_double_entry_holds(self, ledger):
        issue_cash(ledger, "alice", 100)
        ledger.apply(transfer(ledger, "30"))

        report = ledger.verify_double_entry()
        assert report['valid']
        assert ledger.total_supply("USDC") == Decimal("0")
        assert ledger.circulating_supply("USDC") == Decimal("100")

    def test_set_balance_outside_test_mode(self):
        ledger = Ledger("l", T0, verbose=False)
        ledger.register_unit(cash("USDC", "USD Coin"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test mode"):
            ledger.set_balance("alice", "USDC", Decimal("1"))

    def test_set_balance_breaks_double_entry(self, ledger):
        ledger.set_balance("alice", "USDC", Decimal("5"))
        assert not ledger.verify_double_entry()['valid']

    def test_time_cannot_go_backwards(self, ledger):
        ledger.advance_time(T0 + timedelta(days=1))
        with pytest.raises(ValueError):
            ledger.advance_time(T0)

    def test_future_transaction_rejected(self, ledger):
        issue_cash(ledger, "alice", 10)
        later = Ledger("later", T0 + timedelta(days=1), verbose=False)
        later.register_unit(cash("USDC", "USD Coin"))
        pending = transfer(later, "1")
        with pytest.raises(LedgerError, match="future"):
            ledger.apply(pending)
