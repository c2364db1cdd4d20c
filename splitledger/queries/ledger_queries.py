"""
Ledger Queries

Read-only views over stored data: per-member totals for a group and CSV
exports. Queries NEVER modify storage and never estimate; every figure
comes straight from recorded expenses and transactions.
"""

import csv
import io
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel

from splitledger.ledger import AccessGate, GroupNotFoundError, LedgerStorageError
from splitledger.models.ledger import Expense, Group
from splitledger.services.directory import UserDirectoryInterface
from splitledger.services.storage import (
    LedgerStorageInterface,
    StorageError,
    TransactionStorageInterface,
)


logger = structlog.get_logger(__name__)


GROUP_EXPENSE_COLUMNS = ["Description", "Amount", "Paid By", "Date"]
PERSONAL_TRANSACTION_COLUMNS = ["Date", "Description", "Type", "Category", "Amount"]


def _storage_failed(operation: str, error: StorageError) -> LedgerStorageError:
    logger.error("storage_failed", operation=operation, error=str(error))
    return LedgerStorageError(f"Could not {operation}: {error}")


class MemberTotal(BaseModel):
    """What one member has paid and consumed in a group."""

    member_id: str
    total_paid: Decimal = Decimal("0")
    total_share: Decimal = Decimal("0")
    settlements_paid: Decimal = Decimal("0")
    settlements_received: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")


class LedgerQueries:
    """
    Read-only queries.

    Group queries go through the same access gate as the ledger
    operations: only members see a group's figures.
    """

    def __init__(
        self,
        ledger_storage: LedgerStorageInterface,
        transaction_storage: Optional[TransactionStorageInterface] = None,
        access_gate: Optional[AccessGate] = None,
        directory: Optional[UserDirectoryInterface] = None,
    ):
        self._ledger_storage = ledger_storage
        self._transaction_storage = transaction_storage
        self._access_gate = access_gate or AccessGate()
        self._directory = directory

    async def _expenses(self, group_id: UUID) -> list[Expense]:
        try:
            return await self._ledger_storage.list_expenses(group_id)
        except StorageError as e:
            raise _storage_failed("list expenses", e) from e

    async def _member_group(self, group_id: UUID, caller: str, action: str) -> Group:
        try:
            group = await self._ledger_storage.get_group(group_id)
        except StorageError as e:
            raise _storage_failed("load group", e) from e
        if group is None:
            raise GroupNotFoundError(group_id)
        await self._access_gate.require_member(group, caller, action=action)
        return group

    async def member_totals(self, group_id: UUID, caller: str) -> list[MemberTotal]:
        """
        Per-member totals, in member order.

        total_paid and total_share cover regular expenses only;
        settlements are counted separately.
        """
        group = await self._member_group(group_id, caller, "view totals of")
        expenses = await self._expenses(group_id)

        totals = {m: MemberTotal(member_id=m) for m in group.members}
        for expense in expenses:
            payer = totals.get(expense.paid_by)
            if expense.is_settlement:
                if payer is not None:
                    payer.settlements_paid += expense.amount
                receiver = totals.get(expense.splits[0].member_id)
                if receiver is not None:
                    receiver.settlements_received += expense.splits[0].amount
                continue

            if payer is not None:
                payer.total_paid += expense.amount
            for line in expense.splits:
                if line.member_id in totals:
                    totals[line.member_id].total_share += line.amount

        for member, total in totals.items():
            total.balance = group.balance_of(member)

        return list(totals.values())

    async def _display_names(self, expenses: list[Expense]) -> dict[str, str]:
        names: dict[str, str] = {}
        if self._directory is None:
            return names
        for payer in {e.paid_by for e in expenses}:
            try:
                user = await self._directory.get_user(payer)
            except Exception:
                continue  # Fall back to the member id
            if user is not None and user.name:
                names[payer] = user.name
        return names

    async def export_group_expenses_csv(self, group_id: UUID, caller: str) -> str:
        """Group expenses as CSV, newest first."""
        await self._member_group(group_id, caller, "export")
        expenses = await self._expenses(group_id)
        names = await self._display_names(expenses)

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(GROUP_EXPENSE_COLUMNS)
        for expense in expenses:
            writer.writerow([
                expense.description,
                f"{expense.amount:.2f}",
                names.get(expense.paid_by, expense.paid_by),
                expense.date.date().isoformat(),
            ])
        return buffer.getvalue()

    async def export_personal_transactions_csv(self, user_id: str) -> str:
        """A user's own transactions as CSV, newest first."""
        if self._transaction_storage is None:
            raise RuntimeError("Transaction storage is not configured")
        try:
            transactions = await self._transaction_storage.list_transactions(user_id)
        except StorageError as e:
            raise _storage_failed("list transactions", e) from e

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(PERSONAL_TRANSACTION_COLUMNS)
        for t in transactions:
            writer.writerow([
                t.date.date().isoformat(),
                t.description,
                t.type.value,
                t.category,
                f"{t.amount:.2f}",
            ])
        return buffer.getvalue()
