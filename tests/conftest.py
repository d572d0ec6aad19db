"""
conftest.py - Shared pytest fixtures for factoring tests

Provides common fixtures used across unit, functional and conformance tests:
- Ledgers with a settlement asset and funded wallets
- Pools (empty, seeded with deposits, with a funded receivable)
- Helpers to issue cash, issue receivables, pay them and move time
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from factoring import (
    Ledger, FactoringPool, PoolConfig, Move, SYSTEM_WALLET,
    cash, build_transaction,
    create_receivable_unit, compute_receivable_issuance, compute_receivable_payment,
)


T0 = datetime(2025, 1, 1)
ASSET = "USDC"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def issue_cash(ledger: Ledger, wallet: str, amount) -> None:
    """Issue cash from the system wallet (keeps double entry intact)."""
    ledger.ensure_wallet(wallet)
    ledger.apply(build_transaction(ledger, [
        Move(Decimal(str(amount)), ASSET, SYSTEM_WALLET, wallet, f"issue_{wallet}_{len(ledger.transaction_log)}")
    ]))


def issue_invoice(
    ledger: Ledger,
    symbol: str,
    face_value,
    due_in_days: int = 60,
    creditor: str = "originator",
    debtor: str = "debtor",
    currency: str = ASSET,
) -> None:
    """Register a receivable due ``due_in_days`` after now and hand it to ``creditor``."""
    ledger.ensure_wallet(creditor)
    ledger.ensure_wallet(debtor)
    unit = create_receivable_unit(
        symbol, Decimal(str(face_value)), currency,
        ledger.current_time + timedelta(days=due_in_days), debtor,
    )
    ledger.apply(compute_receivable_issuance(ledger, unit, creditor))


def pay_invoice(ledger: Ledger, symbol: str, amount, payer: str = "debtor") -> None:
    """Debtor pays ``amount`` (cash is issued to the payer first)."""
    issue_cash(ledger, payer, amount)
    ledger.apply(compute_receivable_payment(ledger, symbol, payer, Decimal(str(amount))))


def advance_days(ledger: Ledger, days: int) -> datetime:
    new_time = ledger.current_time + timedelta(days=days)
    ledger.advance_time(new_time)
    return new_time


def make_pool(ledger: Ledger, config: PoolConfig = None, **kwargs) -> FactoringPool:
    return FactoringPool(
        ledger, "pool", ASSET,
        owner="owner", underwriter="underwriter", protocol_fee_receiver="protocol",
        config=config, verbose=False, **kwargs
    )


def fund_invoice(pool: FactoringPool, symbol: str, face_value=100000, due_in_days: int = 60,
                 target_yield_bps: int = 1000, spread_bps: int = 0, upfront_bps: int = 8000,
                 min_days: int = 0, creditor: str = "originator"):
    """Issue, approve and fund a receivable; returns the funded approval."""
    issue_invoice(pool.ledger, symbol, face_value, due_in_days, creditor=creditor)
    pool.approve("underwriter", symbol, target_yield_bps, spread_bps, upfront_bps, min_days)
    return pool.fund(creditor, symbol, upfront_bps)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Ledger with USDC and the usual participants."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_unit(cash(ASSET, "USD Coin", decimal_places=2))
    for wallet in ("alice", "bob", "carol", "originator", "debtor", "owner"):
        ledger.register_wallet(wallet)
    return ledger


@pytest.fixture
def pool(ledger):
    """Empty pool with default configuration."""
    return make_pool(ledger)


@pytest.fixture
def seeded_pool(pool):
    """Pool holding 200,000 of alice's capital at price 1."""
    issue_cash(pool.ledger, "alice", 200000)
    pool.deposit("alice", Decimal("200000"))
    return pool


@pytest.fixture
def funded_pool(seeded_pool):
    """Seeded pool that bought INV-001: 100,000 face, 60 days, 10% yield, 80% upfront."""
    fund_invoice(seeded_pool, "INV-001")
    return seeded_pool
