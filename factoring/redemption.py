"""
redemption.py - Bounded FIFO Redemption Queue

Redemption requests the pool cannot pay out immediately wait here until
liquidity frees up. The queue only stores requests; the pool prices and
pays them (see FactoringPool.request_redeem / process_redemption_queue).
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Deque, List, Optional

from .core import CapacityExceeded


@dataclass(frozen=True, slots=True)
class RedemptionQueueEntry:
    """
    One queued request.

    Attributes:
        owner: Unit holder to pay
        units: Units still to redeem
        assets: Assets requested (withdraw requests only, None for redeem)
        sequence: Enqueue order
    """
    owner: str
    units: Decimal
    assets: Optional[Decimal]
    sequence: int


@dataclass(frozen=True, slots=True)
class RedemptionResult:
    """What happened to a request: immediate + queued == units requested after capping."""
    immediate_units: Decimal
    immediate_assets: Decimal
    queued_units: Decimal
    queued_assets: Decimal

    @property
    def total_units(self) -> Decimal:
        return self.immediate_units + self.queued_units


class RedemptionQueue:
    """
    FIFO of RedemptionQueueEntry with a hard size limit.

    Example:
        queue = RedemptionQueue(max_size=2)
        queue.enqueue("alice", Decimal("10"))
        queue.front().units     # Decimal("10")
        len(queue)              # 1
    """

    def __init__(self, max_size: int):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._entries: Deque[RedemptionQueueEntry] = deque()
        self._next_sequence = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    @property
    def is_full(self) -> bool:
        return len(self._entries) >= self.max_size

    def entries(self) -> List[RedemptionQueueEntry]:
        return list(self._entries)

    def queued_units(self, owner: str) -> Decimal:
        """Units ``owner`` already has waiting."""
        return sum((e.units for e in self._entries if e.owner == owner), Decimal("0"))

    def ensure_capacity(self) -> None:
        """
        Raises:
            CapacityExceeded: The queue is at its maximum size
        """
        if self.is_full:
            raise CapacityExceeded(f"Redemption queue is full ({self.max_size})")

    def enqueue(self, owner: str, units: Decimal, assets: Optional[Decimal] = None) -> RedemptionQueueEntry:
        self.ensure_capacity()
        entry = RedemptionQueueEntry(owner=owner, units=units, assets=assets, sequence=self._next_sequence)
        self._next_sequence += 1
        self._entries.append(entry)
        return entry

    def front(self) -> RedemptionQueueEntry:
        return self._entries[0]

    def pop_front(self) -> RedemptionQueueEntry:
        return self._entries.popleft()

    def reduce_front(self, units: Decimal, assets: Optional[Decimal] = None) -> RedemptionQueueEntry:
        """Replace the front entry with one for fewer units, keeping its place."""
        entry = replace(self._entries[0], units=units, assets=assets)
        self._entries[0] = entry
        return entry

    def set_max_size(self, max_size: int) -> None:
        """
        Raises:
            ValueError: max_size below 1 or below the current length
        """
        if max_size < 1 or max_size < len(self._entries):
            raise ValueError(
                f"max_size {max_size} must be at least 1 and at least the queue length {len(self._entries)}"
            )
        self.max_size = max_size
