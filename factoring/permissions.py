"""
permissions.py - Identity/Access Collaborator

The pool asks a Permissions object before deposits, withdrawals and
fundings. Who decides (a KYC provider, a static allow-list) is outside the
engine; it only needs is_allowed(actor, operation).
"""

from __future__ import annotations
from typing import Dict, Iterable, Protocol, Set, runtime_checkable


OPERATION_DEPOSIT = "deposit"
OPERATION_WITHDRAW = "withdraw"
OPERATION_FACTORING = "factoring"

OPERATIONS = frozenset({OPERATION_DEPOSIT, OPERATION_WITHDRAW, OPERATION_FACTORING})


@runtime_checkable
class Permissions(Protocol):
    """Capability check consulted before any gated pool operation."""

    def is_allowed(self, actor: str, operation: str) -> bool:
        ...


class AllowAllPermissions:
    """Permits every actor for every operation."""

    def is_allowed(self, actor: str, operation: str) -> bool:
        return True


class AllowListPermissions:
    """
    Per-operation allow-lists.

    Example:
        perms = AllowListPermissions()
        perms.allow("alice", OPERATION_DEPOSIT, OPERATION_WITHDRAW)
        perms.is_allowed("alice", OPERATION_DEPOSIT)   # True
        perms.is_allowed("alice", OPERATION_FACTORING) # False
    """

    def __init__(self, allowed: Dict[str, Iterable[str]] = None):
        self._allowed: Dict[str, Set[str]] = {op: set() for op in OPERATIONS}
        for operation, actors in (allowed or {}).items():
            self.allow_all(operation, actors)

    def allow(self, actor: str, *operations: str) -> None:
        for operation in operations:
            self._check_operation(operation)
            self._allowed[operation].add(actor)

    def allow_all(self, operation: str, actors: Iterable[str]) -> None:
        self._check_operation(operation)
        self._allowed[operation].update(actors)

    def revoke(self, actor: str, *operations: str) -> None:
        for operation in operations:
            self._check_operation(operation)
            self._allowed[operation].discard(actor)

    def is_allowed(self, actor: str, operation: str) -> bool:
        return actor in self._allowed.get(operation, ())

    @staticmethod
    def _check_operation(operation: str) -> None:
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation {operation!r}, expected one of {sorted(OPERATIONS)}")
