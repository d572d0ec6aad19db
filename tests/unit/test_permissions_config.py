"""
Tests for permissions.py, config.py and scanner.py
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from factoring import (
    AllowAllPermissions, AllowListPermissions, Permissions, PoolConfig, ReceivableIndex,
    ReceivableFacts, OPERATION_DEPOSIT, OPERATION_WITHDRAW, OPERATION_FACTORING, MAX_SCAN_LIMIT,
    is_impairable,
)
from factoring.scanner import clamp_limit, scan_impairable, scan_paid


T0 = datetime(2025, 1, 1)


class TestPermissions:

    def test_allow_all(self):
        perms = AllowAllPermissions()
        assert isinstance(perms, Permissions)
        assert perms.is_allowed("anyone", OPERATION_FACTORING)

    def test_allow_list(self):
        perms = AllowListPermissions({OPERATION_DEPOSIT: ["alice"]})
        perms.allow("bob", OPERATION_DEPOSIT, OPERATION_WITHDRAW)

        assert perms.is_allowed("alice", OPERATION_DEPOSIT)
        assert not perms.is_allowed("alice", OPERATION_WITHDRAW)
        assert perms.is_allowed("bob", OPERATION_WITHDRAW)

    def test_revoke(self):
        perms = AllowListPermissions()
        perms.allow("alice", OPERATION_DEPOSIT)
        perms.revoke("alice", OPERATION_DEPOSIT)
        assert not perms.is_allowed("alice", OPERATION_DEPOSIT)

    def test_unknown_operation(self):
        with pytest.raises(ValueError, match="Unknown operation"):
            AllowListPermissions().allow("alice", "teleport")


class TestPoolConfig:

    def test_defaults(self):
        config = PoolConfig()
        assert config.protocol_fee_bps == 25
        assert config.admin_fee_bps == 50
        assert config.grace_period_days == 30
        assert config.impairment_reserve_share == Decimal("0.5")

    @pytest.mark.parametrize("overrides", [
        {'protocol_fee_bps': -1},
        {'admin_fee_bps': 10001},
        {'approval_duration': timedelta(0)},
        {'grace_period_days': -1},
        {'max_redemption_queue_size': 0},
        {'max_active_receivables': 0},
        {'impairment_reserve_share': Decimal("1.5")},
        {'impairment_reserve_share': 0.5},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            PoolConfig(**overrides)


# ============================================================================
# Scanner
# ============================================================================

def facts(paid: str, due: datetime) -> ReceivableFacts:
    return ReceivableFacts(Decimal("100"), Decimal(paid), due, "pool", False, False, "USDC")


class _Approval:
    def __init__(self, due_date, grace_period_days=30):
        self.due_date = due_date
        self.grace_period_days = grace_period_days

    def impairable_at(self, now):
        return is_impairable(self.due_date, self.grace_period_days, now)


class TestScanner:

    def setup_method(self):
        self.index = ReceivableIndex("active", capacity=100)
        self.facts = {}
        for i in range(30):
            rid = f"INV-{i:02d}"
            self.index.add(rid)
            # every third is paid, the first ten are long overdue
            due = T0 - timedelta(days=60) if i < 10 else T0 + timedelta(days=30)
            self.facts[rid] = facts("100" if i % 3 == 0 else "0", due)

    def test_clamp_limit(self):
        assert clamp_limit(1000) == MAX_SCAN_LIMIT
        with pytest.raises(ValueError):
            clamp_limit(-1)

    def test_paid_page(self):
        status = scan_paid(self.index, self.facts.__getitem__, 0, 10)
        assert status.receivable_ids == ("INV-00", "INV-03", "INV-06", "INV-09")
        assert status.has_more

    def test_paid_last_page(self):
        status = scan_paid(self.index, self.facts.__getitem__, 25, 10)
        assert status.receivable_ids == ("INV-27",)
        assert not status.has_more

    def test_impairable_excludes_paid(self):
        status = scan_impairable(
            self.index,
            lambda rid: _Approval(self.facts[rid].due_date),
            self.facts.__getitem__,
            T0, 0, 25,
        )
        assert status.receivable_ids == ("INV-01", "INV-02", "INV-04", "INV-05", "INV-07", "INV-08")
        assert status.has_more

    def test_each_receivable_keeps_its_own_grace(self):
        graces = {"INV-01": 90, "INV-02": 60}
        status = scan_impairable(
            self.index,
            lambda rid: _Approval(self.facts[rid].due_date, graces.get(rid, 30)),
            self.facts.__getitem__,
            T0, 0, 10,
        )
        # 60 days overdue: a 60-day grace has not elapsed yet
        assert status.receivable_ids == ("INV-04", "INV-05", "INV-07", "INV-08")

    def test_limit_is_clamped(self):
        status = scan_paid(self.index, self.facts.__getitem__, 0, 1000)
        assert len(status.receivable_ids) == len([i for i in range(25) if i % 3 == 0])
        assert status.has_more
