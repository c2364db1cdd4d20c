"""
Ledger Errors

The caller-facing error taxonomy. Each error maps to one transport
outcome (the transport layer itself is out of scope):

- ValidationError           -> 400, surfaced verbatim, no retry
- GroupNotFoundError etc.   -> 404
- AuthorizationError        -> 401/403
- IdempotencyConflictError  -> 409
- LedgerStorageError        -> 500, nothing was applied, caller may retry
- InvariantViolationError   -> 500, internal consistency fault

Dependency failures (directory lookup, email) are never raised to the
caller; they are logged and the operation continues degraded.
"""

from typing import Optional
from uuid import UUID


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class ValidationError(LedgerError):
    """
    A proposed expense (or group, or transaction) was rejected.

    `reason` is a short machine-readable tag such as "missing fields"
    or "split mismatch"; the message is for humans.
    """

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message or reason)


class GroupNotFoundError(LedgerError):
    """Referenced group does not exist."""

    def __init__(self, group_id: UUID):
        self.group_id = group_id
        super().__init__(f"Group not found: {group_id}")


class ExpenseNotFoundError(LedgerError):
    """Referenced expense does not exist."""
    pass


class TransactionNotFoundError(LedgerError):
    """Referenced personal transaction does not exist."""
    pass


class AuthorizationError(LedgerError):
    """Caller is not allowed to act on the target resource."""
    pass


class IdempotencyConflictError(LedgerError):
    """An idempotency key was re-used with a different payload."""
    pass


class InvariantViolationError(LedgerError):
    """Group balances stopped summing to zero."""

    def __init__(self, group_id: UUID, balance_total):
        self.group_id = group_id
        self.balance_total = balance_total
        super().__init__(
            f"Ledger invariant violated for group {group_id}: "
            f"balances sum to {balance_total}"
        )


class LedgerStorageError(LedgerError):
    """Storage failed while applying a change; nothing was applied."""
    pass
