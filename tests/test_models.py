"""
Tests for Split Ledger models

Test strategy:
1. Unit tests for individual components (models, validators, builders)
2. Flow tests against in-memory storage
3. No real Google Sheets or SMTP calls in tests
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from splitledger.models.ledger import (
    DirectoryUser,
    Expense,
    ExpenseKind,
    Group,
    SplitLine,
)
from splitledger.models.personal import (
    PersonalSummary,
    PersonalTransaction,
    TransactionType,
)
from splitledger.models.receipt import ReceiptSuggestion
from splitledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestGroupModel:
    """Tests for the Group model."""

    def test_new_group_has_zero_balances(self):
        """Every founding member starts at zero."""
        group = Group.new(name="Trip", created_by="alice", members=["alice", "bob"])
        assert group.balances == {"alice": Decimal("0"), "bob": Decimal("0")}
        assert group.version == 0
        assert group.balance_total == Decimal("0")

    def test_group_name_strips_whitespace(self):
        group = Group.new(name="  Flat 4B  ", created_by="alice", members=["alice"])
        assert group.name == "Flat 4B"

    def test_group_rejects_duplicate_members(self):
        with pytest.raises(ValueError):
            Group.new(name="Trip", created_by="alice", members=["alice", "alice"])

    def test_group_requires_creator_membership(self):
        with pytest.raises(ValueError):
            Group.new(name="Trip", created_by="alice", members=["bob"])

    def test_group_requires_balance_per_member(self):
        """Balance keys must match the member set exactly."""
        with pytest.raises(ValueError):
            Group(
                name="Trip",
                created_by="alice",
                members=["alice", "bob"],
                balances={"alice": Decimal("0")},
            )

    def test_ordered_balances_follow_member_order(self):
        group = Group(
            name="Trip",
            created_by="carol",
            members=["carol", "alice", "bob"],
            balances={"alice": Decimal("5"), "bob": Decimal("-2"), "carol": Decimal("-3")},
        )
        ordered = group.ordered_balances()
        assert [b.member_id for b in ordered] == ["carol", "alice", "bob"]
        assert ordered[0].balance == Decimal("-3")

    def test_is_member(self):
        group = Group.new(name="Trip", created_by="alice", members=["alice", "bob"])
        assert group.is_member("bob")
        assert not group.is_member("mallory")


class TestExpenseModel:
    """Tests for the Expense model."""

    def test_expense_creation(self):
        expense = Expense(
            group_id=uuid4(),
            description="Dinner",
            amount=Decimal("90"),
            paid_by="alice",
            splits=[SplitLine(member_id=m, amount=Decimal("30")) for m in ("alice", "bob", "carol")],
        )
        assert expense.kind == ExpenseKind.EXPENSE
        assert expense.split_total == Decimal("90")
        assert expense.unallocated_amount == Decimal("0")
        assert isinstance(expense.splits, tuple)

    def test_expense_rejects_non_positive_amount(self):
        with pytest.raises(ValueError):
            Expense(
                group_id=uuid4(),
                description="Nothing",
                amount=Decimal("0"),
                paid_by="alice",
                splits=[SplitLine(member_id="alice", amount=Decimal("0"))],
            )

    def test_expense_is_frozen(self):
        expense = Expense(
            group_id=uuid4(),
            description="Taxi",
            amount=Decimal("20"),
            paid_by="alice",
            splits=[SplitLine(member_id="bob", amount=Decimal("20"))],
        )
        with pytest.raises(ValueError):
            expense.amount = Decimal("25")

    def test_settlement_needs_exactly_one_split(self):
        with pytest.raises(ValueError):
            Expense(
                group_id=uuid4(),
                kind=ExpenseKind.SETTLEMENT,
                description="Payback",
                amount=Decimal("10"),
                paid_by="bob",
                splits=[
                    SplitLine(member_id="alice", amount=Decimal("5")),
                    SplitLine(member_id="carol", amount=Decimal("5")),
                ],
            )

    def test_settlement_cannot_pay_oneself(self):
        with pytest.raises(ValueError):
            Expense(
                group_id=uuid4(),
                kind=ExpenseKind.SETTLEMENT,
                description="Payback",
                amount=Decimal("10"),
                paid_by="bob",
                splits=[SplitLine(member_id="bob", amount=Decimal("10"))],
            )

    def test_payload_fingerprint_ignores_ids_and_timestamps(self):
        """Two submissions of the same payload have the same fingerprint."""
        group_id = uuid4()
        kwargs = dict(
            group_id=group_id,
            description="Dinner",
            amount=Decimal("90"),
            paid_by="alice",
            splits=[SplitLine(member_id="bob", amount=Decimal("90"))],
        )
        assert Expense(**kwargs).payload_fingerprint() == Expense(**kwargs).payload_fingerprint()


class TestPersonalModels:
    """Tests for personal finance models."""

    def test_transaction_creation(self):
        transaction = PersonalTransaction(
            user_id="alice",
            type=TransactionType.EXPENSE,
            amount=Decimal("120.50"),
            category="Food",
            description="Groceries",
        )
        assert transaction.type == TransactionType.EXPENSE
        assert transaction.date.tzinfo is not None

    def test_transaction_rejects_negative_amount(self):
        with pytest.raises(ValueError):
            PersonalTransaction(
                user_id="alice",
                type=TransactionType.INCOME,
                amount=Decimal("-1"),
                category="Salary",
                description="Oops",
            )

    def test_summary_spend_ratio(self):
        summary = PersonalSummary(
            user_id="alice",
            total_income=Decimal("1000"),
            total_expense=Decimal("800"),
        )
        assert summary.spend_ratio == Decimal("0.8")
        assert summary.net == Decimal("200")

    def test_summary_spend_ratio_without_income(self):
        summary = PersonalSummary(user_id="alice", total_expense=Decimal("50"))
        assert summary.spend_ratio is None


class TestReceiptAndUserModels:

    def test_receipt_suggestion_has_amount(self):
        assert ReceiptSuggestion(detected_amount=Decimal("12.50")).has_amount
        assert not ReceiptSuggestion().has_amount

    def test_directory_user_email_is_lowercased(self):
        user = DirectoryUser(id="u1", email=" Alice@Example.COM ", name="Alice")
        assert user.email == "alice@example.com"

    def test_directory_user_rejects_non_email(self):
        with pytest.raises(ValueError):
            DirectoryUser(id="u1", email="alice")


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            description="Test group created",
        )
        assert event.event_type == AuditEventType.GROUP_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_APPLIED,
            description="Expense applied",
            details={"amount": "90"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "expense_applied"
        assert log_dict["details"]["amount"] == "90"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            description="Non-member denied",
            actor_id="mallory",
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "access_denied"  # event_type
        assert row[6] == "mallory"  # actor_id

    def test_builder_expense_applied_uses_kind(self):
        """Settlements get their own event type."""
        event = AuditEventBuilder.expense_applied(
            expense_id=uuid4(),
            group_id=uuid4(),
            kind="settlement",
            amount=Decimal("30"),
            paid_by="bob",
            deltas={"bob": Decimal("30"), "alice": Decimal("-30")},
        )
        assert event.event_type == AuditEventType.SETTLEMENT_APPLIED
        assert event.details["deltas"] == {"bob": "30", "alice": "-30"}

    def test_builder_expense_rejected_is_warning(self):
        correlation_id = uuid4()
        event = AuditEventBuilder.expense_rejected(
            group_id=uuid4(),
            actor_id="alice",
            reason="split mismatch",
            message="Split amounts do not match",
            correlation_id=correlation_id,
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.details["reason"] == "split mismatch"
        assert event.correlation_id == correlation_id


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
