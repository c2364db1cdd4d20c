"""Tests for the split validator and split builders."""

import pytest
from decimal import Decimal

from splitledger.ledger.errors import ValidationError
from splitledger.models.ledger import ExpenseKind, Group, SplitLine
from splitledger.validation import (
    SplitMode,
    SplitValidator,
    build_splits,
    coerce_split,
    equal_split,
    exact_split,
    percentage_split,
    to_decimal,
)


@pytest.fixture
def group():
    return Group.new(name="Trip", created_by="alice", members=["alice", "bob", "carol"])


@pytest.fixture
def validator():
    return SplitValidator(tolerance=Decimal("0.1"))


def reason_of(excinfo) -> str:
    return excinfo.value.reason


class TestSplitValidator:
    """Checks run in order; the first failure decides the reason."""

    def test_valid_expense_is_normalized(self, group, validator):
        total, lines = validator.validate(
            group=group,
            description="Dinner",
            amount=90,
            splits=[{"user": "alice", "amount": 30}, ("bob", "30"), SplitLine(member_id="carol", amount=Decimal("30"))],
            paid_by="alice",
        )
        assert total == Decimal("90")
        assert [line.member_id for line in lines] == ["alice", "bob", "carol"]
        assert all(isinstance(line.amount, Decimal) for line in lines)

    def test_blank_description_is_missing_fields(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "   ", 90, [("alice", 90)], "alice")
        assert reason_of(excinfo) == "missing fields"

    def test_missing_amount_is_missing_fields(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", None, [("alice", 90)], "alice")
        assert reason_of(excinfo) == "missing fields"

    def test_empty_splits_is_missing_fields(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", 90, [], "alice")
        assert reason_of(excinfo) == "missing fields"

    def test_non_positive_amount_is_invalid_amount(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", -5, [("alice", -5)], "alice")
        assert reason_of(excinfo) == "invalid amount"

    def test_non_numeric_amount_is_invalid_amount(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", "ninety", [("alice", 90)], "alice")
        assert reason_of(excinfo) == "invalid amount"

    def test_negative_split_is_invalid_amount(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", 90, [("alice", 100), ("bob", -10)], "alice")
        assert reason_of(excinfo) == "invalid amount"

    def test_split_mismatch_beyond_tolerance(self, group, validator):
        """90 vs 89.80 is off by 0.2."""
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", 90, [("alice", "30"), ("bob", "30"), ("carol", "29.80")], "alice")
        assert reason_of(excinfo) == "split mismatch"

    def test_split_within_tolerance_is_accepted(self, group, validator):
        """100 split as 33.33 x 3 is off by 0.01."""
        total, lines = validator.validate(
            group, "Groceries", 100,
            [("alice", "33.33"), ("bob", "33.33"), ("carol", "33.33")],
            "alice",
        )
        assert total - sum(line.amount for line in lines) == Decimal("0.01")

    def test_non_member_split(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", 90, [("alice", 45), ("mallory", 45)], "alice")
        assert reason_of(excinfo) == "non-member"

    def test_non_member_payer(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", 90, [("alice", 90)], "mallory")
        assert reason_of(excinfo) == "non-member"

    def test_mismatch_reported_before_membership(self, group, validator):
        """Order matters: split mismatch wins over non-member."""
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Dinner", 90, [("mallory", 10)], "alice")
        assert reason_of(excinfo) == "split mismatch"

    def test_settlement_to_self_is_invalid(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(group, "Payback", 30, [("bob", 30)], "bob", kind=ExpenseKind.SETTLEMENT)
        assert reason_of(excinfo) == "invalid settlement"

    def test_settlement_with_two_lines_is_invalid(self, group, validator):
        with pytest.raises(ValidationError) as excinfo:
            validator.validate(
                group, "Payback", 30, [("alice", 15), ("carol", 15)], "bob",
                kind=ExpenseKind.SETTLEMENT,
            )
        assert reason_of(excinfo) == "invalid settlement"

    def test_tolerance_defaults_to_settings(self):
        assert SplitValidator().tolerance == Decimal("0.1")


class TestCoercion:

    def test_to_decimal_avoids_float_expansion(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_to_decimal_rejects_booleans(self):
        with pytest.raises(ValidationError):
            to_decimal(True)

    def test_to_decimal_rejects_nan(self):
        with pytest.raises(ValidationError):
            to_decimal("NaN")

    def test_coerce_split_accepts_member_id_key(self):
        line = coerce_split({"member_id": "bob", "amount": "12.5"})
        assert line == SplitLine(member_id="bob", amount=Decimal("12.5"))

    def test_coerce_split_requires_member(self):
        with pytest.raises(ValidationError) as excinfo:
            coerce_split({"amount": 5})
        assert reason_of(excinfo) == "missing fields"


class TestSplitBuilders:

    def test_equal_split_distributes_remainder_cents(self):
        lines = equal_split(Decimal("100"), ["alice", "bob", "carol"])
        assert [line.amount for line in lines] == [
            Decimal("33.34"), Decimal("33.33"), Decimal("33.33"),
        ]

    def test_equal_split_sums_to_total(self):
        lines = equal_split("10.01", ["a", "b", "c", "d"])
        assert sum(line.amount for line in lines) == Decimal("10.01")
        assert [line.amount for line in lines] == [
            Decimal("2.51"), Decimal("2.50"), Decimal("2.50"), Decimal("2.50"),
        ]

    def test_equal_split_needs_members(self):
        with pytest.raises(ValidationError):
            equal_split(10, [])

    def test_percentage_split(self):
        lines = percentage_split(200, {"alice": 50, "bob": 30, "carol": 20})
        assert {line.member_id: line.amount for line in lines} == {
            "alice": Decimal("100.00"),
            "bob": Decimal("60.00"),
            "carol": Decimal("40.00"),
        }

    def test_percentage_split_sums_to_total(self):
        lines = percentage_split(100, {"alice": "33.34", "bob": "33.33", "carol": "33.33"})
        assert sum(line.amount for line in lines) == Decimal("100")

    def test_percentage_split_must_total_100(self):
        with pytest.raises(ValidationError) as excinfo:
            percentage_split(100, {"alice": 50, "bob": 40})
        assert reason_of(excinfo) == "percentage mismatch"

    def test_percentage_within_tolerance_is_accepted(self):
        lines = percentage_split(100, {"alice": "50", "bob": "49.95"})
        assert sum(line.amount for line in lines) == Decimal("100")

    def test_percentage_split_never_gives_a_zero_share_a_negative_amount(self, group, validator):
        lines = percentage_split(Decimal("10"), {"alice": 0, "bob": "50.05", "carol": "49.95"})
        assert [(line.member_id, line.amount) for line in lines] == [
            ("alice", Decimal("0.00")), ("bob", Decimal("5.01")), ("carol", Decimal("4.99")),
        ]
        total, _ = validator.validate(group, "Taxi", Decimal("10"), lines, "bob")
        assert total == Decimal("10")

    def test_percentage_split_of_a_few_cents(self):
        lines = percentage_split("0.02", {"alice": 25, "bob": 25, "carol": 25, "dave": 25})
        assert [line.amount for line in lines] == [
            Decimal("0.01"), Decimal("0.01"), Decimal("0.00"), Decimal("0.00"),
        ]

    def test_exact_split_passes_through(self):
        lines = exact_split({"alice": "10", "bob": 5})
        assert [(l.member_id, l.amount) for l in lines] == [
            ("alice", Decimal("10")), ("bob", Decimal("5")),
        ]

    def test_build_splits_dispatches_on_mode(self):
        lines = build_splits("equal", 30, ["alice", "bob", "carol"])
        assert [line.amount for line in lines] == [Decimal("10.00")] * 3

        lines = build_splits(SplitMode.PERCENTAGE, 30, [], {"alice": 100})
        assert lines[0].amount == Decimal("30")

    def test_build_splits_needs_values_for_exact(self):
        with pytest.raises(ValidationError):
            build_splits(SplitMode.EXACT, 30, ["alice"])
