"""
Abstract Storage Interface

DESIGN DECISION: We define abstract interfaces for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the balance engine decoupled from storage implementation

Two logical stores are described here: the ledger store (groups and
their balances) and the expense record store (append-only history).
They are separate interfaces, but a balance change and its expense
record must land together, so LedgerStorageInterface adds one atomic
operation spanning both.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from splitledger.models.ledger import Expense, Group
from splitledger.models.personal import PersonalTransaction
from splitledger.models.audit import AuditEvent


class GroupStorageInterface(ABC):
    """
    Abstract interface for group (ledger) storage.

    Implementations must hand out copies: mutating a returned Group
    must never change what other readers see.
    """

    @abstractmethod
    async def create_group(self, group: Group) -> Group:
        """
        Persist a new group.

        Raises:
            DuplicateError: If a group with the same id exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_group(self, group_id: UUID) -> Optional[Group]:
        """
        Retrieve a group by its ID.

        Returns:
            The group if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_groups_for_member(
        self,
        member_id: str,
        order: str = "updated_desc",
    ) -> list[Group]:
        """
        List every group the member belongs to.

        Args:
            member_id: Member identity
            order: One of "updated_desc", "updated_asc", "created_desc", "name"

        Returns:
            Groups in the requested, stable order
        """
        pass


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for the expense record store.

    Expense records are append-only - we never delete or modify them.
    New records only arrive through LedgerStorageInterface.commit_expense.
    """

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        pass

    @abstractmethod
    async def list_expenses(self, group_id: UUID) -> list[Expense]:
        """
        List a group's expenses.

        Returns:
            Expenses newest date first
        """
        pass

    @abstractmethod
    async def find_by_idempotency_key(
        self,
        group_id: UUID,
        idempotency_key: str,
    ) -> Optional[Expense]:
        """
        Find the expense previously committed under an idempotency key.

        Returns:
            The most recent matching expense, None if there is none
        """
        pass


class LedgerStorageInterface(GroupStorageInterface, ExpenseStorageInterface):
    """Group and expense storage with an atomic commit across both."""

    @abstractmethod
    async def commit_expense(
        self,
        group: Group,
        expected_version: int,
        expense: Expense,
    ) -> Group:
        """
        Atomically replace a group's balances and append an expense.

        Either both the new balances and the expense record become
        visible, or neither does.

        Args:
            group: The group carrying the new balances
            expected_version: Version the balances were computed from
            expense: The expense record to append

        Returns:
            The stored group, with its version bumped

        Raises:
            ConflictError: If the stored version is not expected_version
            NotFoundError: If the group does not exist
            StorageError: If the write fails (nothing is applied)
        """
        pass


class TransactionStorageInterface(ABC):
    """Abstract interface for personal transaction storage."""

    @abstractmethod
    async def save_transaction(self, transaction: PersonalTransaction) -> bool:
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[PersonalTransaction]:
        pass

    @abstractmethod
    async def list_transactions(self, user_id: str) -> list[PersonalTransaction]:
        """
        List a user's transactions.

        Returns:
            Transactions newest date first
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """
        Returns:
            True if a transaction was deleted
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConflictError(StorageError):
    """Optimistic version check failed: someone else committed first."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


GROUP_SORT_KEYS = {
    "updated_desc": (lambda g: g.updated_at, True),
    "updated_asc": (lambda g: g.updated_at, False),
    "created_desc": (lambda g: g.created_at, True),
    "name": (lambda g: g.name.lower(), False),
}


def sort_groups(groups: list[Group], order: str) -> list[Group]:
    """Sort groups by a named order; ties keep their input order."""
    try:
        key, reverse = GROUP_SORT_KEYS[order]
    except KeyError:
        raise ValueError(f"Unsupported group order: {order}")
    return sorted(groups, key=key, reverse=reverse)
