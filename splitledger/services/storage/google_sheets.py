"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the shared storage backend because:
1. Group members can view the raw ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for households and trips)
- No transactions: a commit appends the expense row first, then rewrites
  the group row, and deletes the appended row again if that fails
- No conditional writes: the version column is checked before a commit
  and the group row is read back after it, which catches most races
  between processes but cannot close them. Run one writer process per
  spreadsheet; inside that process the balance engine serializes commits

The implementation follows the abstract interfaces, so we can swap
to PostgreSQL/SQLite later without changing the balance engine.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from splitledger.config import get_settings
from splitledger.models.ledger import (
    DirectoryUser,
    Expense,
    ExpenseKind,
    Group,
    SplitLine,
    utc_now,
)
from splitledger.models.personal import PersonalTransaction, TransactionType
from splitledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from splitledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
    sort_groups,
)


GROUP_COLUMNS = [
    "id",
    "name",
    "description",
    "created_by",
    "members_json",
    "balances_json",
    "version",
    "created_at",
    "updated_at",
]

EXPENSE_COLUMNS = [
    "id",
    "group_id",
    "kind",
    "description",
    "amount",
    "paid_by",
    "date",
    "splits_json",
    "created_at",
    "idempotency_key",
    "unallocated_amount",
]

# balances_json, version, updated_at: what a competing commit would change
COMMIT_CHECK_COLUMNS = (5, 6, 8)

USER_COLUMNS = ["id", "email", "name"]

TRANSACTION_COLUMNS = [
    "id",
    "user_id",
    "type",
    "amount",
    "category",
    "description",
    "date",
    "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


def _cell_getter(row: list):
    """Index into a row, treating missing trailing cells as empty."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_groups_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.groups_sheet_name, GROUP_COLUMNS)

    def get_expenses_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.expenses_sheet_name, EXPENSE_COLUMNS, rows=5000
        )

    def get_users_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(self._settings.users_sheet_name, USER_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of group and expense storage.

    One group per row in the Groups sheet, one expense per row in the
    Expenses sheet. Members, balances and splits are JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -- row mapping ---------------------------------------------------------

    def _group_to_row(self, group: Group) -> list:
        return [
            str(group.id),
            group.name,
            group.description or "",
            group.created_by,
            json.dumps(group.members),
            json.dumps({member: str(b) for member, b in group.balances.items()}),
            str(group.version),
            group.created_at.isoformat(),
            group.updated_at.isoformat(),
        ]

    def _row_to_group(self, row: list) -> Group:
        safe_get = _cell_getter(row)
        balances = json.loads(safe_get(5, "{}"))
        return Group(
            id=UUID(safe_get(0)),
            name=safe_get(1),
            description=safe_get(2) or None,
            created_by=safe_get(3),
            members=json.loads(safe_get(4, "[]")),
            balances={member: Decimal(b) for member, b in balances.items()},
            version=int(safe_get(6, "0")),
            created_at=datetime.fromisoformat(safe_get(7)),
            updated_at=datetime.fromisoformat(safe_get(8)),
        )

    def _expense_to_row(self, expense: Expense) -> list:
        return [
            str(expense.id),
            str(expense.group_id),
            expense.kind.value,
            expense.description,
            str(expense.amount),
            expense.paid_by,
            expense.date.isoformat(),
            json.dumps([
                {"member_id": line.member_id, "amount": str(line.amount)}
                for line in expense.splits
            ]),
            expense.created_at.isoformat(),
            expense.idempotency_key or "",
            str(expense.unallocated_amount),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        safe_get = _cell_getter(row)
        return Expense(
            id=UUID(safe_get(0)),
            group_id=UUID(safe_get(1)),
            kind=ExpenseKind(safe_get(2)),
            description=safe_get(3),
            amount=Decimal(safe_get(4)),
            paid_by=safe_get(5),
            date=datetime.fromisoformat(safe_get(6)),
            splits=[
                SplitLine(member_id=item["member_id"], amount=Decimal(item["amount"]))
                for item in json.loads(safe_get(7, "[]"))
            ],
            created_at=datetime.fromisoformat(safe_get(8)),
            idempotency_key=safe_get(9) or None,
            unallocated_amount=Decimal(safe_get(10, "0")),
        )

    def _find_row(self, sheet: gspread.Worksheet, key: str) -> tuple[int, Optional[list]]:
        """Return (1-based row index, row) for the row whose first cell is key."""
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if row and row[0] == key:
                return idx, row
        return 0, None

    # -- groups --------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=(
            retry_if_exception_type(StorageError)
            & retry_if_not_exception_type(DuplicateError)
        ),
        reraise=True,
    )
    async def create_group(self, group: Group) -> Group:
        try:
            sheet = self._client.get_groups_sheet()
            _, existing = self._find_row(sheet, str(group.id))
            if existing:
                raise DuplicateError(f"Group already exists: {group.id}")
            sheet.append_row(self._group_to_row(group), value_input_option="RAW")
            return group
        except DuplicateError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save group: {e}")

    async def get_group(self, group_id: UUID) -> Optional[Group]:
        try:
            _, row = self._find_row(self._client.get_groups_sheet(), str(group_id))
            return self._row_to_group(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get group: {e}")

    async def list_groups_for_member(
        self,
        member_id: str,
        order: str = "updated_desc",
    ) -> list[Group]:
        try:
            rows = self._client.get_groups_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list groups: {e}")

        groups = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                group = self._row_to_group(row)
            except Exception:
                continue  # Skip malformed rows
            if group.is_member(member_id):
                groups.append(group)

        return sort_groups(groups, order)

    # -- expenses ------------------------------------------------------------

    def _all_expenses(self) -> list[Expense]:
        expenses = []
        for row in self._client.get_expenses_sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                expenses.append(self._row_to_expense(row))
            except Exception:
                continue  # Skip malformed rows
        return expenses

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        try:
            _, row = self._find_row(self._client.get_expenses_sheet(), str(expense_id))
            return self._row_to_expense(row) if row else None
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

    async def list_expenses(self, group_id: UUID) -> list[Expense]:
        try:
            expenses = [e for e in self._all_expenses() if e.group_id == group_id]
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")
        expenses.sort(key=lambda e: e.date, reverse=True)
        return expenses

    async def find_by_idempotency_key(
        self,
        group_id: UUID,
        idempotency_key: str,
    ) -> Optional[Expense]:
        try:
            matches = [
                e for e in self._all_expenses()
                if e.group_id == group_id and e.idempotency_key == idempotency_key
            ]
        except Exception as e:
            raise StorageError(f"Failed to look up idempotency key: {e}")
        return max(matches, key=lambda e: e.created_at) if matches else None

    async def commit_expense(
        self,
        group: Group,
        expected_version: int,
        expense: Expense,
    ) -> Group:
        try:
            groups_sheet = self._client.get_groups_sheet()
            expenses_sheet = self._client.get_expenses_sheet()
            row_idx, row = self._find_row(groups_sheet, str(group.id))
        except Exception as e:
            raise StorageError(f"Failed to read group before commit: {e}")

        if row is None:
            raise NotFoundError(f"Group not found: {group.id}")

        stored_version = int(_cell_getter(row)(6, "0"))
        if stored_version != expected_version:
            raise ConflictError(
                f"Group {group.id} is at version {stored_version}, "
                f"expected {expected_version}"
            )

        staged = group.model_copy(
            update={"version": expected_version + 1, "updated_at": utc_now()}
        )

        try:
            expenses_sheet.append_row(self._expense_to_row(expense), value_input_option="RAW")
        except Exception as e:
            raise StorageError(f"Failed to append expense: {e}")

        try:
            end_cell = rowcol_to_a1(row_idx, len(GROUP_COLUMNS))
            groups_sheet.update(
                range_name=f"A{row_idx}:{end_cell}",
                values=[self._group_to_row(staged)],
                value_input_option="RAW",
            )
        except Exception as e:
            self._rollback_expense(expenses_sheet, expense.id)
            raise StorageError(f"Failed to update group balances: {e}")

        self._confirm_group_write(groups_sheet, expenses_sheet, staged, expense.id)
        return staged

    def _confirm_group_write(
        self,
        groups_sheet: gspread.Worksheet,
        expenses_sheet: gspread.Worksheet,
        staged: Group,
        expense_id: UUID,
    ) -> None:
        """
        Read the group row back after writing it.

        Sheets has no conditional write, so a writer in another process
        that passed the same version check can overwrite this row. The
        loser of that race sees someone else's balances here, removes its
        expense row and raises ConflictError so the engine recomputes.
        """
        try:
            _, written = self._find_row(groups_sheet, str(staged.id))
        except Exception as e:
            self._rollback_expense(expenses_sheet, expense_id)
            raise StorageError(f"Failed to confirm group update: {e}")

        expected = self._group_to_row(staged)
        safe_get = _cell_getter(written or [])
        if any(safe_get(i) != expected[i] for i in COMMIT_CHECK_COLUMNS):
            self._rollback_expense(expenses_sheet, expense_id)
            raise ConflictError(
                f"Group {staged.id} was overwritten by a concurrent commit"
            )

    def _rollback_expense(self, sheet: gspread.Worksheet, expense_id: UUID) -> None:
        """Delete an expense row appended by a commit that did not finish."""
        try:
            idx, row = self._find_row(sheet, str(expense_id))
            if row is not None:
                sheet.delete_rows(idx)
        except Exception as e:
            raise StorageError(
                f"Rollback failed; expense {expense_id} may be orphaned: {e}"
            )


class GoogleSheetsTransactionStorage(TransactionStorageInterface):
    """Google Sheets implementation of personal transaction storage."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _transaction_to_row(self, transaction: PersonalTransaction) -> list:
        return [
            str(transaction.id),
            transaction.user_id,
            transaction.type.value,
            str(transaction.amount),
            transaction.category,
            transaction.description,
            transaction.date.isoformat(),
            transaction.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> PersonalTransaction:
        safe_get = _cell_getter(row)
        return PersonalTransaction(
            id=UUID(safe_get(0)),
            user_id=safe_get(1),
            type=TransactionType(safe_get(2)),
            amount=Decimal(safe_get(3)),
            category=safe_get(4),
            description=safe_get(5),
            date=datetime.fromisoformat(safe_get(6)),
            created_at=datetime.fromisoformat(safe_get(7)),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_transaction(self, transaction: PersonalTransaction) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            sheet.append_row(self._transaction_to_row(transaction), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    async def get_transaction(self, transaction_id: UUID) -> Optional[PersonalTransaction]:
        try:
            for row in self._client.get_transactions_sheet().get_all_values()[1:]:
                if row and row[0] == str(transaction_id):
                    return self._row_to_transaction(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def list_transactions(self, user_id: str) -> list[PersonalTransaction]:
        try:
            rows = self._client.get_transactions_sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = []
        for row in rows:
            if not row or len(row) < 2 or row[1] != user_id:
                continue
            try:
                transactions.append(self._row_to_transaction(row))
            except Exception:
                continue  # Skip malformed rows

        transactions.sort(key=lambda t: t.date, reverse=True)
        return transactions

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
                if row and row[0] == str(transaction_id):
                    sheet.delete_rows(idx)
                    return True
            return False
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        safe_get = _cell_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            actor_id=safe_get(6) or None,
            correlation_id=UUID(safe_get(7)) if safe_get(7) else None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_audit_sheet().get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        sheet = self._client.get_audit_sheet()
        sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._all_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]


def row_to_user(row: list) -> DirectoryUser:
    """Convert a Users sheet row to a DirectoryUser."""
    safe_get = _cell_getter(row)
    return DirectoryUser(id=safe_get(0), email=safe_get(1), name=safe_get(2))
