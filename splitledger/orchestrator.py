"""
Main Orchestrator for Split Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Group ledger (create → list → view → add expense / settle up)
2. Receipt-assisted expenses (OCR text → suggestion → add expense)
3. Personal finance (record → list → delete → summary, spending alert)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Only members touch a group (access gate before anything else)
- Nothing reaches the balance engine without passing validation
- Storage failures surface as LedgerStorageError with nothing applied
- Directory and email failures never abort an operation
- Every step is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from splitledger.audit import AuditLogger, create_correlation_id
from splitledger.config import get_settings
from splitledger.config.settings import GROUP_ORDERS
from splitledger.ledger import (
    AccessGate,
    AuthorizationError,
    BalanceUpdateEngine,
    GroupMembershipResolver,
    GroupNotFoundError,
    LedgerStorageError,
    TransactionNotFoundError,
    ValidationError,
)
from splitledger.models.ledger import Expense, ExpenseKind, Group, GroupDetail
from splitledger.models.personal import (
    PersonalSummary,
    PersonalTransaction,
    TransactionType,
)
from splitledger.models.receipt import ReceiptSuggestion
from splitledger.personal import build_alert_message, crossed_alert_threshold, summarize
from splitledger.queries import LedgerQueries
from splitledger.services.directory import (
    GoogleSheetsUserDirectory,
    InMemoryUserDirectory,
    UserDirectoryInterface,
)
from splitledger.services.notification import (
    LogOnlyNotifier,
    NotifierInterface,
    SmtpEmailNotifier,
)
from splitledger.services.receipts import ReceiptTextParser
from splitledger.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsTransactionStorage,
    InMemoryLedgerStorage,
    InMemoryTransactionStorage,
    LedgerStorageInterface,
    StorageError,
    TransactionStorageInterface,
)
from splitledger.validation import (
    INVALID_AMOUNT,
    MISSING_FIELDS,
    SplitMode,
    SplitValidator,
    build_splits,
    to_decimal,
)


logger = structlog.get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Dates without a zone are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class GroupLedgerFlow:
    """
    Orchestrates the group ledger.

    Flow for add-expense:
    1. Load   → group must exist (GroupNotFoundError)
    2. Gate   → caller must be a member (AuthorizationError)
    3. Check  → SplitValidator, rejected expenses are audited
    4. Apply  → BalanceUpdateEngine commits balances + expense atomically

    Settle-up is the same flow with the caller as debtor and a single
    split line for the creditor.
    """

    def __init__(
        self,
        ledger_storage: LedgerStorageInterface,
        directory: Optional[UserDirectoryInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[SplitValidator] = None,
        engine: Optional[BalanceUpdateEngine] = None,
        access_gate: Optional[AccessGate] = None,
        receipt_parser: Optional[ReceiptTextParser] = None,
    ):
        self._storage = ledger_storage
        self._audit_logger = audit_logger
        self._resolver = GroupMembershipResolver(
            directory or InMemoryUserDirectory(),
            audit_logger,
        )
        self._validator = validator or SplitValidator()
        self._engine = engine or BalanceUpdateEngine(ledger_storage, audit_logger)
        self._access_gate = access_gate or AccessGate(audit_logger)
        self._receipt_parser = receipt_parser or ReceiptTextParser()

    async def _storage_failed(
        self,
        operation: str,
        error: Exception,
        entity_id: Optional[UUID],
        correlation_id: UUID,
    ) -> LedgerStorageError:
        logger.error("storage_failed", operation=operation, error=str(error))
        if self._audit_logger:
            await self._audit_logger.log_storage_failed(
                operation=operation,
                error_message=str(error),
                entity_id=entity_id,
                correlation_id=correlation_id,
            )
        return LedgerStorageError(f"Could not {operation}: {error}")

    async def _load_member_group(
        self,
        group_id: UUID,
        caller: str,
        action: str,
        correlation_id: UUID,
    ) -> Group:
        try:
            group = await self._storage.get_group(group_id)
        except StorageError as e:
            raise await self._storage_failed("load group", e, group_id, correlation_id)

        if group is None:
            raise GroupNotFoundError(group_id)

        await self._access_gate.require_member(
            group, caller, action=action, correlation_id=correlation_id
        )
        return group

    async def create_group(
        self,
        name: Optional[str],
        description: Optional[str],
        member_identifiers: Optional[Iterable[str]],
        caller: str,
        correlation_id: Optional[UUID] = None,
    ) -> Group:
        """
        Create a group with the caller as first member.

        Identifiers the directory does not know are dropped. If the
        directory is down the group is created with the caller alone.

        Raises:
            ValidationError: "missing fields" if the name is blank
            LedgerStorageError: If the group could not be stored
        """
        correlation_id = correlation_id or create_correlation_id()

        if not name or not name.strip():
            raise ValidationError(MISSING_FIELDS, "Please add a group name")

        members = await self._resolver.resolve(
            caller, member_identifiers, correlation_id=correlation_id
        )

        try:
            group = Group.new(
                name=name,
                created_by=caller,
                members=members,
                description=description or None,
            )
        except PydanticValidationError as e:
            raise ValidationError("invalid group", str(e))

        try:
            group = await self._storage.create_group(group)
        except StorageError as e:
            raise await self._storage_failed("create group", e, group.id, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_group_created(
                group_id=group.id,
                name=group.name,
                members=group.members,
                actor_id=caller,
                correlation_id=correlation_id,
            )

        return group

    async def list_groups(self, caller: str, order: Optional[str] = None) -> list[Group]:
        """
        Groups the caller belongs to.

        Args:
            order: "updated_desc" (default), "updated_asc", "created_desc" or "name"
        """
        order = order or get_settings().ledger.default_group_order
        if order not in GROUP_ORDERS:
            raise ValidationError("invalid order", f"Unsupported group order: {order}")
        try:
            return await self._storage.list_groups_for_member(caller, order)
        except StorageError as e:
            raise await self._storage_failed("list groups", e, None, create_correlation_id())

    async def get_group(self, group_id: UUID, caller: str) -> GroupDetail:
        """
        A group and its expenses, newest first.

        Raises:
            GroupNotFoundError: Unknown group
            AuthorizationError: Caller is not a member
        """
        correlation_id = create_correlation_id()
        group = await self._load_member_group(group_id, caller, "view", correlation_id)

        try:
            expenses = await self._storage.list_expenses(group_id)
        except StorageError as e:
            raise await self._storage_failed("list expenses", e, group_id, correlation_id)

        return GroupDetail(group=group, expenses=expenses)

    async def _record(
        self,
        group_id: UUID,
        kind: ExpenseKind,
        description: Optional[str],
        amount: Any,
        splits: Optional[Iterable[Any]],
        caller: str,
        date: Optional[datetime],
        idempotency_key: Optional[str],
        correlation_id: Optional[UUID],
    ) -> Expense:
        correlation_id = correlation_id or create_correlation_id()
        action = "settle up in" if kind == ExpenseKind.SETTLEMENT else "add expenses to"
        group = await self._load_member_group(group_id, caller, action, correlation_id)

        try:
            total, lines = self._validator.validate(
                group=group,
                description=description,
                amount=amount,
                splits=splits,
                paid_by=caller,
                kind=kind,
            )
        except ValidationError as e:
            logger.info(
                "expense_rejected",
                group_id=str(group_id),
                caller=caller,
                reason=e.reason,
            )
            if self._audit_logger:
                await self._audit_logger.log_expense_rejected(
                    group_id=group_id,
                    actor_id=caller,
                    reason=e.reason,
                    message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        try:
            return await self._engine.apply(
                group_id=group_id,
                kind=kind,
                description=description.strip(),
                amount=total,
                paid_by=caller,
                splits=lines,
                date=_as_utc(date),
                idempotency_key=idempotency_key,
                correlation_id=correlation_id,
            )
        except StorageError as e:
            raise await self._storage_failed(f"record {kind.value}", e, group_id, correlation_id)

    async def add_expense(
        self,
        group_id: UUID,
        description: Optional[str],
        amount: Any,
        splits: Optional[Iterable[Any]],
        caller: str,
        date: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Record an expense the caller paid.

        Args:
            splits: SplitLines, (member, amount) pairs or
                    {"member_id"/"user": ..., "amount": ...} mappings
            idempotency_key: Client key; a retry with the same key and
                             payload returns the original expense

        Raises:
            ValidationError: Rejected; `reason` says why, nothing applied
            GroupNotFoundError, AuthorizationError
            IdempotencyConflictError: Key reused for a different expense
            LedgerStorageError: Storage failed, nothing applied
        """
        return await self._record(
            group_id=group_id,
            kind=ExpenseKind.EXPENSE,
            description=description,
            amount=amount,
            splits=splits,
            caller=caller,
            date=date,
            idempotency_key=idempotency_key,
            correlation_id=correlation_id,
        )

    async def settle_up(
        self,
        group_id: UUID,
        creditor_id: str,
        amount: Any,
        caller: str,
        date: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
        description: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Record that the caller paid creditor_id back.

        The caller's balance rises by amount and the creditor's falls
        by amount. History is kept: nothing is reset or deleted.
        """
        return await self._record(
            group_id=group_id,
            kind=ExpenseKind.SETTLEMENT,
            description=description or f"Payment from {caller} to {creditor_id}",
            amount=amount,
            splits=[(creditor_id, amount)] if creditor_id and amount is not None else [],
            caller=caller,
            date=date,
            idempotency_key=idempotency_key,
            correlation_id=correlation_id,
        )

    def suggest_from_receipt(self, raw_text: Optional[str]) -> ReceiptSuggestion:
        """Parse receipt text without touching the ledger."""
        return self._receipt_parser.parse(raw_text)

    async def add_expense_from_receipt(
        self,
        group_id: UUID,
        raw_text: Optional[str],
        caller: str,
        split_mode: SplitMode = SplitMode.EQUAL,
        split_values: Optional[Mapping[str, Any]] = None,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> tuple[Expense, ReceiptSuggestion]:
        """
        Add an expense pre-filled from OCR text.

        The detected total is split by split_mode (equal over all
        members by default) and then goes through the normal
        add-expense flow; nothing is relaxed.

        Returns:
            (expense, suggestion)

        Raises:
            ValidationError: "missing fields" if no amount was detected,
                             plus anything add_expense raises
        """
        correlation_id = create_correlation_id()
        group = await self._load_member_group(
            group_id, caller, "add expenses to", correlation_id
        )

        suggestion = self._receipt_parser.parse(raw_text)
        if not suggestion.has_amount:
            raise ValidationError(MISSING_FIELDS, "No amount found on the receipt")

        splits = build_splits(
            split_mode,
            suggestion.detected_amount,
            group.members,
            split_values,
        )

        expense = await self.add_expense(
            group_id=group_id,
            description=description or suggestion.merchant_hint or "Receipt",
            amount=suggestion.detected_amount,
            splits=splits,
            caller=caller,
            date=suggestion.detected_date,
            idempotency_key=idempotency_key,
            correlation_id=correlation_id,
        )
        return expense, suggestion


class PersonalFinanceFlow:
    """
    Orchestrates a user's personal income/expense log.

    After every recorded expense, if cumulative expenses have just
    reached the alert share of cumulative income, the owner is emailed.
    The alert is best-effort: a failed send is logged, the transaction
    stays recorded.
    """

    def __init__(
        self,
        transaction_storage: TransactionStorageInterface,
        notifier: Optional[NotifierInterface] = None,
        directory: Optional[UserDirectoryInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = transaction_storage
        self._notifier = notifier
        self._directory = directory
        self._audit_logger = audit_logger

    async def _list(self, user_id: str) -> list[PersonalTransaction]:
        try:
            return await self._storage.list_transactions(user_id)
        except StorageError as e:
            logger.error("storage_failed", operation="list transactions", error=str(e))
            raise LedgerStorageError(f"Could not list transactions: {e}")

    async def add_transaction(
        self,
        caller: str,
        type: Any,
        amount: Any,
        category: Optional[str],
        description: Optional[str],
        date: Optional[datetime] = None,
    ) -> PersonalTransaction:
        """
        Record an income or expense for the caller.

        Raises:
            ValidationError: On missing or malformed fields
            LedgerStorageError: If the transaction could not be stored
        """
        correlation_id = create_correlation_id()

        if amount is None or not category or not description or type is None:
            raise ValidationError(MISSING_FIELDS, "Please provide type, amount, category and description")

        try:
            transaction_type = TransactionType(type)
        except ValueError:
            raise ValidationError("invalid type", f"Unknown transaction type: {type!r}")

        value = to_decimal(amount)
        if value <= 0:
            raise ValidationError(INVALID_AMOUNT, "Amount must be greater than zero")

        fields = dict(
            user_id=caller,
            type=transaction_type,
            amount=value,
            category=category,
            description=description,
        )
        if date is not None:
            fields["date"] = _as_utc(date)
        try:
            transaction = PersonalTransaction(**fields)
        except PydanticValidationError as e:
            raise ValidationError("invalid transaction", str(e))

        existing = await self._list(caller)
        before = summarize(caller, existing)

        try:
            await self._storage.save_transaction(transaction)
        except StorageError as e:
            logger.error("storage_failed", operation="save transaction", error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_storage_failed(
                    operation="save transaction",
                    error_message=str(e),
                    entity_id=transaction.id,
                    correlation_id=correlation_id,
                )
            raise LedgerStorageError(f"Could not save transaction: {e}")

        if self._audit_logger:
            await self._audit_logger.log_transaction_recorded(
                transaction_id=transaction.id,
                user_id=caller,
                type_=transaction_type.value,
                amount=value,
                correlation_id=correlation_id,
            )

        if transaction_type == TransactionType.EXPENSE:
            after = summarize(caller, [transaction, *existing])
            await self._maybe_alert(before, after, correlation_id)

        return transaction

    async def _maybe_alert(
        self,
        before: PersonalSummary,
        after: PersonalSummary,
        correlation_id: UUID,
    ) -> None:
        ratio = Decimal(str(get_settings().personal.spending_alert_ratio))
        if not crossed_alert_threshold(before, after, ratio):
            return
        if self._notifier is None:
            logger.info("spending_alert_skipped", user_id=after.user_id, reason="no notifier")
            return

        try:
            user = await self._directory.get_user(after.user_id) if self._directory else None
            if user is None:
                logger.info("spending_alert_skipped", user_id=after.user_id, reason="no email")
                return
            subject, body = build_alert_message(after, get_settings().ledger.currency)
            await self._notifier.send(user.email, subject, body)
        except Exception as e:
            logger.warning("spending_alert_failed", user_id=after.user_id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="email",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return

        if self._audit_logger:
            await self._audit_logger.log_spending_alert_sent(
                user_id=after.user_id,
                ratio=after.spend_ratio,
                correlation_id=correlation_id,
            )

    async def list_transactions(self, caller: str) -> list[PersonalTransaction]:
        """The caller's transactions, newest first."""
        return await self._list(caller)

    async def delete_transaction(self, transaction_id: UUID, caller: str) -> None:
        """
        Delete one of the caller's transactions.

        Raises:
            TransactionNotFoundError: Unknown id
            AuthorizationError: The transaction belongs to someone else
        """
        try:
            transaction = await self._storage.get_transaction(transaction_id)
        except StorageError as e:
            raise LedgerStorageError(f"Could not load transaction: {e}")

        if transaction is None:
            raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")
        if transaction.user_id != caller:
            raise AuthorizationError("Not authorized to delete this transaction")

        try:
            deleted = await self._storage.delete_transaction(transaction_id)
        except StorageError as e:
            raise LedgerStorageError(f"Could not delete transaction: {e}")
        if not deleted:
            raise TransactionNotFoundError(f"Transaction not found: {transaction_id}")

        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                transaction_id=transaction_id,
                user_id=caller,
            )

    async def summary(self, caller: str) -> PersonalSummary:
        return summarize(caller, await self._list(caller))


def create_app_components(
    use_storage: bool = False,
) -> tuple[GroupLedgerFlow, PersonalFinanceFlow, LedgerQueries, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    False (the default) wires in-memory storage,
                    for tests and local runs.

    Returns:
        (group_flow, personal_flow, queries, sheets_client)
    """
    sheets_client = None
    ledger_storage: LedgerStorageInterface
    transaction_storage: TransactionStorageInterface
    directory: UserDirectoryInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            ledger_storage = GoogleSheetsLedgerStorage(sheets_client)
            transaction_storage = GoogleSheetsTransactionStorage(sheets_client)
            directory = GoogleSheetsUserDirectory(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            use_storage = False
            sheets_client = None

    if not use_storage:
        ledger_storage = InMemoryLedgerStorage()
        transaction_storage = InMemoryTransactionStorage()
        directory = InMemoryUserDirectory()
        audit_logger = AuditLogger()  # Local-only logging

    notifier: NotifierInterface
    try:
        notifier = SmtpEmailNotifier()
    except Exception as e:
        logger.info("email_not_configured", error=str(e))
        notifier = LogOnlyNotifier()

    access_gate = AccessGate(audit_logger)

    group_flow = GroupLedgerFlow(
        ledger_storage=ledger_storage,
        directory=directory,
        audit_logger=audit_logger,
        access_gate=access_gate,
    )

    personal_flow = PersonalFinanceFlow(
        transaction_storage=transaction_storage,
        notifier=notifier,
        directory=directory,
        audit_logger=audit_logger,
    )

    queries = LedgerQueries(
        ledger_storage=ledger_storage,
        transaction_storage=transaction_storage,
        access_gate=access_gate,
        directory=directory,
    )

    return group_flow, personal_flow, queries, sheets_client
