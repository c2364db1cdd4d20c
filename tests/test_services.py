"""
Tests for services: receipt parsing, notifications, settings and the
Google Sheets storage mapping (against an in-process fake worksheet).
"""

import asyncio
import smtplib
import pytest
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from splitledger.audit import AuditLogger
from splitledger.config import NotificationSettings, get_settings, validate_all_settings
from splitledger.config.settings import LedgerSettings
from splitledger.ledger import BalanceUpdateEngine
from splitledger.models.ledger import Expense, ExpenseKind, Group, SplitLine
from splitledger.models.personal import PersonalTransaction, TransactionType
from splitledger.services.directory import GoogleSheetsUserDirectory
from splitledger.services.notification import NotificationError, SmtpEmailNotifier
from splitledger.services.receipts import ReceiptTextParser, find_amounts, parse_date
from splitledger.services.storage import (
    ConflictError,
    DuplicateError,
    GoogleSheetsLedgerStorage,
    GoogleSheetsTransactionStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    StorageError,
)
from splitledger.services.storage.google_sheets import (
    EXPENSE_COLUMNS,
    GROUP_COLUMNS,
    TRANSACTION_COLUMNS,
    USER_COLUMNS,
)


def run_async(coro):
    """Run a coroutine on a fresh event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestReceiptTextParser:

    def test_labelled_total_wins_over_largest_amount(self):
        text = "PIZZA PLACE\nMargherita 12.00\nSubtotal 20.00\nTax 1.60\nTotal 21.60\nCash 50.00"
        suggestion = ReceiptTextParser().parse(text)
        assert suggestion.detected_amount == Decimal("21.60")
        assert suggestion.merchant_hint == "PIZZA PLACE"
        assert Decimal("50.00") in suggestion.candidate_amounts

    def test_largest_amount_without_total_line(self):
        suggestion = ReceiptTextParser().parse("Shop\n$3.50\n$12.25\n$1.00")
        assert suggestion.detected_amount == Decimal("12.25")

    def test_thousands_separators_and_currency_marks(self):
        assert find_amounts("Rs.1,234.56 and ₹ 99.00 and 1234.50") == [
            Decimal("1234.56"), Decimal("99.00"), Decimal("1234.50"),
        ]

    def test_numbers_without_two_decimals_are_ignored(self):
        assert find_amounts("Table 12, guests 4, pi 3.14159") == []

    def test_dates(self):
        assert parse_date("2024-03-12") == datetime(2024, 3, 12, tzinfo=timezone.utc)
        assert parse_date("12/03/2024") == datetime(2024, 3, 12, tzinfo=timezone.utc)
        assert parse_date("12/03/24") == datetime(2024, 3, 12, tzinfo=timezone.utc)
        assert parse_date("99/99/9999") is None

    def test_empty_text(self):
        suggestion = ReceiptTextParser().parse(None)
        assert suggestion.detected_amount is None
        assert suggestion.detected_date is None
        assert suggestion.merchant_hint is None
        assert not suggestion.has_amount


class FakeSMTP:
    """Records what would have been sent."""

    instances: list = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in_as = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in_as = user

    def send_message(self, message):
        self.messages.append(message)


class RefusingSMTP(FakeSMTP):
    def login(self, user, password):
        raise smtplib.SMTPAuthenticationError(535, b"bad credentials")


def notification_settings(**overrides):
    values = dict(
        smtp_host="smtp.example.com",
        smtp_port=2525,
        smtp_user="alerts",
        smtp_password="secret",
        sender="Split Ledger <alerts@example.com>",
    )
    values.update(overrides)
    return NotificationSettings(**values)


class TestSmtpEmailNotifier:

    def test_send_builds_and_delivers_message(self, monkeypatch):
        FakeSMTP.instances = []
        monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
        notifier = SmtpEmailNotifier(notification_settings())

        run_async(notifier.send("alice@example.com", "Spending alert", "You spent a lot"))

        smtp = FakeSMTP.instances[0]
        assert (smtp.host, smtp.port) == ("smtp.example.com", 2525)
        assert smtp.started_tls
        assert smtp.logged_in_as == "alerts"
        message = smtp.messages[0]
        assert message["To"] == "alice@example.com"
        assert message["Subject"] == "Spending alert"
        assert "You spent a lot" in message.get_content()

    def test_authentication_failure_is_not_retried(self, monkeypatch):
        FakeSMTP.instances = []
        monkeypatch.setattr(smtplib, "SMTP", RefusingSMTP)
        notifier = SmtpEmailNotifier(notification_settings())

        with pytest.raises(NotificationError):
            run_async(notifier.send("alice@example.com", "Subject", "Body"))
        assert len(FakeSMTP.instances) == 1


class TestSettings:

    def test_ledger_defaults(self):
        settings = LedgerSettings()
        assert settings.split_tolerance == 0.1
        assert settings.balance_tolerance == 1e-6
        assert settings.idempotency_window_seconds == 86400
        assert settings.default_group_order == "updated_desc"

    def test_ledger_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv("LEDGER_SPLIT_TOLERANCE", "0.05")
        monkeypatch.setenv("LEDGER_DEFAULT_GROUP_ORDER", "name")
        settings = LedgerSettings()
        assert settings.split_tolerance == 0.05
        assert settings.default_group_order == "name"

    def test_unknown_group_order_is_rejected(self, monkeypatch):
        monkeypatch.setenv("LEDGER_DEFAULT_GROUP_ORDER", "random")
        with pytest.raises(ValueError):
            LedgerSettings()

    def test_validate_all_settings_reports_missing_notification_config(self, monkeypatch):
        monkeypatch.delenv("NOTIFY_SMTP_HOST", raising=False)
        monkeypatch.delenv("NOTIFY_SENDER", raising=False)
        results = validate_all_settings()
        assert results["ledger"] is True
        assert results["notification"] is False
        assert "notification_error" in results

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the storage classes."""

    def __init__(self, header):
        self.rows = [list(header)]
        self.fail_updates = False
        self.reads = 0
        # Row another process writes right after the next update lands
        self.overwrite_after_update = None

    def get_all_values(self):
        self.reads += 1
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update(self, range_name=None, values=None, value_input_option=None):
        if self.fail_updates:
            raise RuntimeError("quota exceeded")
        row_idx = int(range_name.split(":")[0][1:])
        self.rows[row_idx - 1] = [str(v) for v in values[0]]
        if self.overwrite_after_update is not None:
            self.rows[row_idx - 1] = self.overwrite_after_update
            self.overwrite_after_update = None

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:

    def __init__(self):
        self.groups = FakeWorksheet(GROUP_COLUMNS)
        self.expenses = FakeWorksheet(EXPENSE_COLUMNS)
        self.users = FakeWorksheet(USER_COLUMNS)
        self.transactions = FakeWorksheet(TRANSACTION_COLUMNS)

    def get_groups_sheet(self):
        return self.groups

    def get_expenses_sheet(self):
        return self.expenses

    def get_users_sheet(self):
        return self.users

    def get_transactions_sheet(self):
        return self.transactions


def dinner(group: Group) -> Expense:
    return Expense(
        group_id=group.id,
        description="Dinner",
        amount=Decimal("90"),
        paid_by="alice",
        splits=[SplitLine(member_id="bob", amount=Decimal("90"))],
        idempotency_key="req-7",
    )


class TestGoogleSheetsStorage:

    def test_group_and_expense_round_trip_through_rows(self):
        async def scenario():
            client = FakeSheetsClient()
            storage = GoogleSheetsLedgerStorage(client)
            group = await storage.create_group(Group.new(name="Flat", created_by="alice", members=["alice", "bob"]))
            updated = group.model_copy(update={"balances": {"alice": Decimal("90"), "bob": Decimal("-90")}})
            expense = dinner(group)
            await storage.commit_expense(updated, 0, expense)
            return (
                await storage.get_group(group.id),
                await storage.list_expenses(group.id),
                await storage.find_by_idempotency_key(group.id, "req-7"),
                await storage.list_groups_for_member("bob"),
                expense,
            )

        group, expenses, by_key, bobs_groups, expense = run_async(scenario())
        assert group.version == 1
        assert group.balances == {"alice": Decimal("90"), "bob": Decimal("-90")}
        assert expenses == [expense]
        assert by_key.id == expense.id
        assert [g.id for g in bobs_groups] == [group.id]

    def test_stale_version_conflicts(self):
        async def scenario():
            storage = GoogleSheetsLedgerStorage(FakeSheetsClient())
            group = await storage.create_group(Group.new(name="Flat", created_by="alice", members=["alice", "bob"]))
            await storage.commit_expense(group, 3, dinner(group))

        with pytest.raises(ConflictError):
            run_async(scenario())

    def test_failed_group_write_rolls_back_expense_row(self):
        async def scenario():
            client = FakeSheetsClient()
            storage = GoogleSheetsLedgerStorage(client)
            group = await storage.create_group(Group.new(name="Flat", created_by="alice", members=["alice", "bob"]))
            client.groups.fail_updates = True
            with pytest.raises(StorageError):
                await storage.commit_expense(group, 0, dinner(group))
            return client, await storage.get_group(group.id)

        client, group = run_async(scenario())
        assert len(client.expenses.rows) == 1  # header only
        assert group.version == 0

    def test_commit_overwritten_by_another_process_conflicts_and_rolls_back(self):
        async def scenario():
            client = FakeSheetsClient()
            storage = GoogleSheetsLedgerStorage(client)
            group = await storage.create_group(Group.new(name="Flat", created_by="alice", members=["alice", "bob"]))
            theirs = group.model_copy(update={
                "balances": {"alice": Decimal("-10"), "bob": Decimal("10")},
                "version": 1,
            })
            client.groups.overwrite_after_update = storage._group_to_row(theirs)
            ours = group.model_copy(update={"balances": {"alice": Decimal("90"), "bob": Decimal("-90")}})
            with pytest.raises(ConflictError):
                await storage.commit_expense(ours, 0, dinner(group))
            return client, await storage.get_group(group.id)

        client, group = run_async(scenario())
        assert len(client.expenses.rows) == 1  # header only
        assert group.balances == {"alice": Decimal("-10"), "bob": Decimal("10")}

    def test_engine_recomputes_after_losing_a_commit_race(self):
        async def scenario():
            client = FakeSheetsClient()
            storage = GoogleSheetsLedgerStorage(client)
            engine = BalanceUpdateEngine(storage)
            group = await storage.create_group(Group.new(name="Flat", created_by="alice", members=["alice", "bob"]))
            theirs = group.model_copy(update={
                "balances": {"alice": Decimal("-10"), "bob": Decimal("10")},
                "version": 1,
            })
            client.groups.overwrite_after_update = storage._group_to_row(theirs)
            await engine.apply(
                group.id, ExpenseKind.EXPENSE, "Dinner", Decimal("90"), "alice",
                [SplitLine(member_id="bob", amount=Decimal("90"))],
            )
            return client, await storage.get_group(group.id)

        client, group = run_async(scenario())
        assert group.version == 2
        assert group.balances == {"alice": Decimal("80"), "bob": Decimal("-80")}
        assert len(client.expenses.rows) == 2

    def test_duplicate_group_is_not_retried(self):
        async def scenario():
            client = FakeSheetsClient()
            storage = GoogleSheetsLedgerStorage(client)
            group = await storage.create_group(Group.new(name="Flat", created_by="alice", members=["alice", "bob"]))
            reads_before = client.groups.reads
            with pytest.raises(DuplicateError):
                await storage.create_group(group)
            return client.groups.reads - reads_before

        assert run_async(scenario()) == 1

    def test_transactions_round_trip_and_delete(self):
        async def scenario():
            storage = GoogleSheetsTransactionStorage(FakeSheetsClient())
            transaction = PersonalTransaction(
                user_id="alice",
                type=TransactionType.INCOME,
                amount=Decimal("1500.00"),
                category="Salary",
                description="Pay",
            )
            await storage.save_transaction(transaction)
            listed = await storage.list_transactions("alice")
            deleted = await storage.delete_transaction(transaction.id)
            return transaction, listed, deleted, await storage.list_transactions("alice")

        transaction, listed, deleted, after = run_async(scenario())
        assert listed == [transaction]
        assert deleted is True
        assert after == []

    def test_sheets_user_directory(self):
        async def scenario():
            client = FakeSheetsClient()
            client.users.rows.append(["bob", "Bob@Example.com", "Bob"])
            client.users.rows.append(["", "", ""])
            directory = GoogleSheetsUserDirectory(client)
            return (
                await directory.find_by_emails(["bob@example.com", "nobody@example.com"]),
                await directory.get_user("bob"),
            )

        found, bob = run_async(scenario())
        assert [u.id for u in found] == ["bob"]
        assert bob.name == "Bob"


class TestInMemoryStorageQueries:

    def test_audit_events_by_entity_and_recent(self):
        async def scenario():
            audit_storage = InMemoryAuditStorage()
            audit = AuditLogger(audit_storage)
            group = Group.new(name="Flat", created_by="alice", members=["alice", "bob"])
            await audit.log_group_created(group.id, group.name, group.members, actor_id="alice")
            await audit.log_access_denied(group.id, actor_id="mallory", action="read")
            return (
                group,
                await audit_storage.get_events_by_entity("group", group.id),
                await audit_storage.get_recent_events(limit=1),
            )

        group, by_entity, recent = run_async(scenario())
        assert [e.entity_id for e in by_entity] == [group.id] * len(by_entity)
        assert len(by_entity) >= 1
        assert len(recent) == 1

    def test_get_expense_after_commit(self):
        async def scenario():
            storage = InMemoryLedgerStorage()
            group = await storage.create_group(Group.new(name="Flat", created_by="alice", members=["alice", "bob"]))
            expense = dinner(group)
            await storage.commit_expense(group, 0, expense)
            return expense, await storage.get_expense(expense.id), await storage.get_expense(uuid4())

        expense, found, missing = run_async(scenario())
        assert found == expense
        assert missing is None
