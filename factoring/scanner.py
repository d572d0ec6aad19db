"""
scanner.py - Paginated Pool Status Views

Read-only scans over the Active Set. Every call looks at one page of at most
MAX_SCAN_LIMIT receivables, so its cost never grows with the pool.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Tuple

from .invoices import InvoiceApproval, ReceivableIndex
from .receivables import ReceivableFacts


MAX_SCAN_LIMIT = 25


@dataclass(frozen=True, slots=True)
class PoolStatus:
    """Matching receivable ids in one page, and whether later pages exist."""
    receivable_ids: Tuple[str, ...]
    has_more: bool


def clamp_limit(limit: int) -> int:
    if limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")
    return min(limit, MAX_SCAN_LIMIT)


def scan_impairable(
    index: ReceivableIndex,
    get_approval: Callable[[str], InvoiceApproval],
    get_facts: Callable[[str], ReceivableFacts],
    now: datetime,
    offset: int,
    limit: int,
) -> PoolStatus:
    """Receivables in the page past due plus their captured grace period and still unpaid."""
    page, has_more = index.page(offset, clamp_limit(limit))
    matches = tuple(
        rid for rid in page
        if get_approval(rid).impairable_at(now)
        and not get_facts(rid).is_fully_paid
    )
    return PoolStatus(matches, has_more)


def scan_paid(
    index: ReceivableIndex,
    get_facts: Callable[[str], ReceivableFacts],
    offset: int,
    limit: int,
) -> PoolStatus:
    """Receivables in the page that are fully paid and awaiting reconciliation."""
    page, has_more = index.page(offset, clamp_limit(limit))
    return PoolStatus(tuple(rid for rid in page if get_facts(rid).is_fully_paid), has_more)
