"""
Group ledger core: errors, membership, access control and the balance engine.

The errors module is imported first; validation depends on it.
"""

from splitledger.ledger.errors import (
    AuthorizationError,
    ExpenseNotFoundError,
    GroupNotFoundError,
    IdempotencyConflictError,
    InvariantViolationError,
    LedgerError,
    LedgerStorageError,
    TransactionNotFoundError,
    ValidationError,
)
from splitledger.ledger.engine import BalanceUpdateEngine, apply_deltas, compute_deltas
from splitledger.ledger.membership import GroupMembershipResolver
from splitledger.ledger.access import AccessGate

__all__ = [
    # Errors
    "AuthorizationError",
    "ExpenseNotFoundError",
    "GroupNotFoundError",
    "IdempotencyConflictError",
    "InvariantViolationError",
    "LedgerError",
    "LedgerStorageError",
    "TransactionNotFoundError",
    "ValidationError",
    # Components
    "AccessGate",
    "BalanceUpdateEngine",
    "GroupMembershipResolver",
    "apply_deltas",
    "compute_deltas",
]
