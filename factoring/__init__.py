"""
factoring - Invoice-Factoring Accounting Engine

Pooled capital buys receivables at a discount. The engine prices pool
ownership, reconciles repayments, impairs overdue receivables against a loss
reserve, and queues redemptions it cannot pay yet.

Usage:
    from factoring import (
        Ledger, FactoringPool, cash, create_receivable_unit,
        compute_receivable_issuance, compute_receivable_payment, SYSTEM_WALLET,
    )

    ledger = Ledger("main", datetime(2025, 1, 1), verbose=False)
    ledger.register_unit(cash("USDC", "USD Coin"))
    for wallet in ("alice", "originator", "debtor"):
        ledger.register_wallet(wallet)

    pool = FactoringPool(ledger, "pool", "USDC", owner="owner",
                         underwriter="uw", protocol_fee_receiver="protocol")
    pool.deposit("alice", Decimal("200000"))     # alice already holds 200,000 USDC

    invoice = create_receivable_unit("INV-001", Decimal("100000"), "USDC",
                                     datetime(2025, 3, 2), "debtor")
    ledger.apply(compute_receivable_issuance(ledger, invoice, "originator"))

    pool.approve("uw", "INV-001", 1000, 0, 8000)
    pool.fund("originator", "INV-001", 8000)
    ...
    ledger.apply(compute_receivable_payment(ledger, "INV-001", "debtor", Decimal("100000")))
    pool.reconcile_active_paid_invoices()
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    FactoringError,
    NotFound,
    InvalidState,
    Unauthorized,
    InsufficientLiquidity,
    InvariantViolation,
    CapacityExceeded,
    cash,
    pool_units,
    SYSTEM_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_RECEIVABLE,
    UNIT_TYPE_POOL_UNITS,
    BPS_DENOMINATOR,
    DAYS_PER_YEAR,
    INITIAL_PRICE_PER_UNIT,
)

# Ledger
from .ledger import Ledger

# Receivables and collaborators
from .receivables import (
    ReceivableFacts,
    ReceivableAdapter,
    LedgerReceivableAdapter,
    create_receivable_unit,
    compute_receivable_issuance,
    compute_receivable_payment,
    compute_receivable_cancellation,
)
from .permissions import (
    Permissions,
    AllowAllPermissions,
    AllowListPermissions,
    OPERATION_DEPOSIT,
    OPERATION_WITHDRAW,
    OPERATION_FACTORING,
)
from .config import PoolConfig

# Engine components
from .fees import (
    FeeParams,
    TargetFees,
    RealizedFees,
    FeeIncrement,
    days_between,
    calculate_target_fees,
    calculate_realized_fees,
    calculate_fee_increment,
)
from .invoices import InvoiceApproval, InvoiceStatus, ReceivableIndex
from .impairment import ImpairmentRecord, calculate_impairment, is_impairable
from .reconciliation import Settlement, ReconciliationPlan, calculate_settlement, plan_reconciliation
from .capital import (
    CapitalSnapshot,
    calculate_price_per_unit,
    convert_to_units,
    convert_to_assets,
    verify_capital_account,
)
from .redemption import RedemptionQueue, RedemptionQueueEntry, RedemptionResult
from .scanner import PoolStatus, MAX_SCAN_LIMIT
from .events import (
    PoolEvent,
    InvoiceApproved,
    InvoiceFunded,
    InvoicePaid,
    InvoiceImpaired,
    ImpairmentReversed,
    InvoiceUnfactored,
    Deposited,
    Redeemed,
    RedemptionQueued,
    QueueFull,
    FeesWithdrawn,
    ImpairReserveChanged,
    ConfigChanged,
)
from .pool import FactoringPool

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'empty_pending_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult',
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'UnitNotRegistered', 'WalletNotRegistered',
    'FactoringError', 'NotFound', 'InvalidState', 'Unauthorized',
    'InsufficientLiquidity', 'InvariantViolation', 'CapacityExceeded',
    'cash', 'pool_units', 'SYSTEM_WALLET',
    'UNIT_TYPE_CASH', 'UNIT_TYPE_RECEIVABLE', 'UNIT_TYPE_POOL_UNITS',
    'BPS_DENOMINATOR', 'DAYS_PER_YEAR', 'INITIAL_PRICE_PER_UNIT',
    # Ledger
    'Ledger',
    # Receivables and collaborators
    'ReceivableFacts', 'ReceivableAdapter', 'LedgerReceivableAdapter',
    'create_receivable_unit', 'compute_receivable_issuance',
    'compute_receivable_payment', 'compute_receivable_cancellation',
    'Permissions', 'AllowAllPermissions', 'AllowListPermissions',
    'OPERATION_DEPOSIT', 'OPERATION_WITHDRAW', 'OPERATION_FACTORING',
    'PoolConfig',
    # Engine components
    'FeeParams', 'TargetFees', 'RealizedFees', 'FeeIncrement', 'days_between',
    'calculate_target_fees', 'calculate_realized_fees', 'calculate_fee_increment',
    'InvoiceApproval', 'InvoiceStatus', 'ReceivableIndex',
    'ImpairmentRecord', 'calculate_impairment', 'is_impairable',
    'Settlement', 'ReconciliationPlan', 'calculate_settlement', 'plan_reconciliation',
    'CapitalSnapshot', 'calculate_price_per_unit', 'convert_to_units', 'convert_to_assets',
    'verify_capital_account',
    'RedemptionQueue', 'RedemptionQueueEntry', 'RedemptionResult',
    'PoolStatus', 'MAX_SCAN_LIMIT',
    # Events
    'PoolEvent', 'InvoiceApproved', 'InvoiceFunded', 'InvoicePaid', 'InvoiceImpaired',
    'ImpairmentReversed', 'InvoiceUnfactored', 'Deposited', 'Redeemed', 'RedemptionQueued',
    'QueueFull', 'FeesWithdrawn', 'ImpairReserveChanged', 'ConfigChanged',
    # Engine
    'FactoringPool',
]
