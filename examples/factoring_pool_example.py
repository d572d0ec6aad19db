"""
Example: One receivable through a factoring pool.

Walks through a deposit, the purchase of a 100,000 invoice at an 80%
advance, payment after 30 days and the reconciliation that pays the
originator its kickback, printing the capital account along the way.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from factoring import (
    Ledger, FactoringPool, Move, SYSTEM_WALLET, cash, build_transaction,
    create_receivable_unit, compute_receivable_issuance, compute_receivable_payment,
)


def issue(ledger, wallet, amount, contract_id):
    ledger.apply(build_transaction(ledger, [
        Move(Decimal(amount), "USDC", SYSTEM_WALLET, wallet, contract_id)
    ]))


def show(pool, label):
    print(f"{label:<28} capital {pool.capital_account():>12,.2f}   "
          f"available {pool.available_assets():>12,.2f}   price {pool.price_per_unit():.8f}")


def main():
    print("=" * 80)
    print("FACTORING POOL - Deposit, Fund, Collect, Reconcile")
    print("=" * 80)
    print()

    start = datetime(2025, 1, 1)
    ledger = Ledger("demo", initial_time=start, verbose=False)
    ledger.register_unit(cash("USDC", "USD Coin"))
    for wallet in ("alice", "originator", "debtor"):
        ledger.register_wallet(wallet)

    pool = FactoringPool(ledger, "pool", "USDC", owner="owner",
                         underwriter="underwriter", protocol_fee_receiver="protocol", verbose=True)

    issue(ledger, "alice", "200000", "alice_cash")
    pool.deposit("alice", Decimal("200000"))
    show(pool, "After deposit:")

    invoice = create_receivable_unit("INV-001", Decimal("100000"), "USDC",
                                     start + timedelta(days=60), "debtor")
    ledger.apply(compute_receivable_issuance(ledger, invoice, "originator"))

    pool.approve("underwriter", "INV-001", 1000, 0, 8000)
    funded = pool.fund("originator", "INV-001", 8000)
    print(f"\nFunded gross {funded.funded_amount_gross:,.2f}, net {funded.funded_amount_net:,.2f}")
    show(pool, "After funding:")

    ledger.advance_time(start + timedelta(days=30))
    issue(ledger, "debtor", "100000", "debtor_cash")
    ledger.apply(compute_receivable_payment(ledger, "INV-001", "debtor", Decimal("100000")))
    show(pool, "Paid, not reconciled:")

    pool.reconcile_active_paid_invoices()
    show(pool, "After reconciliation:")

    print()
    print(f"Originator received {ledger.get_balance('originator', 'USDC'):,.2f} in total")
    print(f"Admin fees {pool.admin_fee_balance}, protocol fees {pool.protocol_fee_balance}")
    print(f"Capital account check: {pool.verify_capital_account()['valid']}")


if __name__ == "__main__":
    main()
