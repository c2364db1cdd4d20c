"""
In-Memory Storage Implementation

Used by tests and by create_app_components(use_storage=False).
Everything lives in process memory and disappears with it.

Readers always get deep copies, so a reader can never observe a
group halfway through a commit.
"""

import asyncio
from typing import Optional
from uuid import UUID

from splitledger.models.ledger import Expense, Group, utc_now
from splitledger.models.personal import PersonalTransaction
from splitledger.models.audit import AuditEvent
from splitledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    TransactionStorageInterface,
    sort_groups,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Groups, balances and expense history held in dicts."""

    def __init__(self):
        self._groups: dict[UUID, Group] = {}
        self._expenses: dict[UUID, Expense] = {}
        self._idempotency_index: dict[tuple[UUID, str], UUID] = {}
        self._commit_lock = asyncio.Lock()

    async def create_group(self, group: Group) -> Group:
        if group.id in self._groups:
            raise DuplicateError(f"Group already exists: {group.id}")
        self._groups[group.id] = group.model_copy(deep=True)
        return group.model_copy(deep=True)

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        group = self._groups.get(group_id)
        return group.model_copy(deep=True) if group else None

    async def list_groups_for_member(
        self,
        member_id: str,
        order: str = "updated_desc",
    ) -> list[Group]:
        groups = [
            g.model_copy(deep=True)
            for g in self._groups.values()
            if g.is_member(member_id)
        ]
        return sort_groups(groups, order)

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        return self._expenses.get(expense_id)

    async def list_expenses(self, group_id: UUID) -> list[Expense]:
        expenses = [e for e in self._expenses.values() if e.group_id == group_id]
        expenses.sort(key=lambda e: e.date, reverse=True)
        return expenses

    async def find_by_idempotency_key(
        self,
        group_id: UUID,
        idempotency_key: str,
    ) -> Optional[Expense]:
        expense_id = self._idempotency_index.get((group_id, idempotency_key))
        return self._expenses.get(expense_id) if expense_id else None

    async def commit_expense(
        self,
        group: Group,
        expected_version: int,
        expense: Expense,
    ) -> Group:
        async with self._commit_lock:
            current = self._groups.get(group.id)
            if current is None:
                raise NotFoundError(f"Group not found: {group.id}")
            if current.version != expected_version:
                raise ConflictError(
                    f"Group {group.id} is at version {current.version}, "
                    f"expected {expected_version}"
                )
            if expense.id in self._expenses:
                raise DuplicateError(f"Expense already exists: {expense.id}")

            staged = group.model_copy(
                deep=True,
                update={"version": expected_version + 1, "updated_at": utc_now()},
            )

            # The group is only published once the expense is recorded
            self._append_expense(expense)
            self._groups[group.id] = staged

            return staged.model_copy(deep=True)

    def _append_expense(self, expense: Expense) -> None:
        self._expenses[expense.id] = expense
        if expense.idempotency_key:
            self._idempotency_index[(expense.group_id, expense.idempotency_key)] = expense.id


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Personal transactions held in a dict."""

    def __init__(self):
        self._transactions: dict[UUID, PersonalTransaction] = {}

    async def save_transaction(self, transaction: PersonalTransaction) -> bool:
        if transaction.id in self._transactions:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return True

    async def get_transaction(self, transaction_id: UUID) -> Optional[PersonalTransaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def list_transactions(self, user_id: str) -> list[PersonalTransaction]:
        transactions = [
            t.model_copy(deep=True)
            for t in self._transactions.values()
            if t.user_id == user_id
        ]
        transactions.sort(key=lambda t: t.date, reverse=True)
        return transactions

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        return self._transactions.pop(transaction_id, None) is not None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)
