"""
Split Validation

DESIGN DECISION: A proposed expense is checked in a fixed order, and the
first failing check rejects it:

1. PRESENCE   - description, amount and splits are all there
2. AMOUNTS    - the total is positive, no split is negative
3. SUM        - the splits add up to the total (within tolerance)
4. MEMBERSHIP - the payer and every split member belong to the group
5. SHAPE      - a settlement pays exactly one other member

WHY THIS ORDER:
The cheap structural checks come first so the caller gets the most basic
problem back. Membership needs the group, so it runs last among the
amount-independent checks.

IMPORTANT: Validation NEVER silently fixes issues. The tolerance exists
only to absorb float noise from clients; the drift it lets through is
reported by the balance engine.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from splitledger.config import get_settings
from splitledger.ledger.errors import ValidationError
from splitledger.models.ledger import ExpenseKind, Group, SplitLine


MISSING_FIELDS = "missing fields"
INVALID_AMOUNT = "invalid amount"
SPLIT_MISMATCH = "split mismatch"
NON_MEMBER = "non-member"
INVALID_SETTLEMENT = "invalid settlement"


def to_decimal(value: Any) -> Decimal:
    """
    Convert a client-supplied number to Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1"), not the
    binary expansion.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError(INVALID_AMOUNT, f"Not an amount: {value!r}")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(INVALID_AMOUNT, f"Not an amount: {value!r}")
    if not result.is_finite():
        raise ValidationError(INVALID_AMOUNT, f"Not an amount: {value!r}")
    return result


def coerce_split(raw: Any) -> SplitLine:
    """
    Accept a SplitLine, a (member, amount) pair or a mapping.

    Mappings may use "member_id" or "user" for the member, matching
    what web clients send.
    """
    if isinstance(raw, SplitLine):
        return raw

    if isinstance(raw, dict):
        member = raw.get("member_id", raw.get("user"))
        amount = raw.get("amount")
    elif isinstance(raw, (tuple, list)) and len(raw) == 2:
        member, amount = raw
    else:
        raise ValidationError(MISSING_FIELDS, f"Unrecognized split line: {raw!r}")

    if member is None or amount is None or str(member).strip() == "":
        raise ValidationError(MISSING_FIELDS, "Every split needs a member and an amount")

    try:
        return SplitLine(member_id=str(member), amount=to_decimal(amount))
    except PydanticValidationError as e:
        raise ValidationError(MISSING_FIELDS, f"Invalid split line: {e}")


class SplitValidator:
    """
    Validates a proposed expense against a group.

    Accept or reject only: there is no partial acceptance.
    """

    def __init__(self, tolerance: Optional[Decimal] = None):
        """
        Initialize validator.

        Args:
            tolerance: Max |sum(splits) - amount|. Defaults to the
                       configured split tolerance.
        """
        if tolerance is None:
            tolerance = Decimal(str(get_settings().ledger.split_tolerance))
        self._tolerance = tolerance

    @property
    def tolerance(self) -> Decimal:
        return self._tolerance

    def _check_presence(
        self,
        description: Optional[str],
        amount: Any,
        splits: Optional[Iterable[Any]],
    ) -> list[SplitLine]:
        if not description or not str(description).strip():
            raise ValidationError(MISSING_FIELDS, "Please provide a description")
        if amount is None or (isinstance(amount, str) and not amount.strip()):
            raise ValidationError(MISSING_FIELDS, "Please provide an amount")
        lines = [coerce_split(raw) for raw in (splits or [])]
        if not lines:
            raise ValidationError(MISSING_FIELDS, "Please provide at least one split")
        return lines

    def _check_amounts(self, amount: Decimal, lines: list[SplitLine]) -> None:
        if amount <= 0:
            raise ValidationError(INVALID_AMOUNT, "Amount must be greater than zero")
        for line in lines:
            if line.amount < 0:
                raise ValidationError(
                    INVALID_AMOUNT,
                    f"Split for {line.member_id} is negative ({line.amount})",
                )

    def _check_sum(self, amount: Decimal, lines: list[SplitLine]) -> None:
        split_total = sum((line.amount for line in lines), Decimal("0"))
        if abs(split_total - amount) > self._tolerance:
            raise ValidationError(
                SPLIT_MISMATCH,
                f"Split amounts ({split_total}) do not match total amount ({amount})",
            )

    def _check_membership(
        self,
        group: Group,
        paid_by: str,
        lines: list[SplitLine],
    ) -> None:
        if not group.is_member(paid_by):
            raise ValidationError(NON_MEMBER, f"Payer {paid_by} is not a group member")
        for line in lines:
            if not group.is_member(line.member_id):
                raise ValidationError(
                    NON_MEMBER,
                    f"Split member {line.member_id} is not a group member",
                )

    def _check_settlement(self, paid_by: str, lines: list[SplitLine]) -> None:
        if len(lines) != 1:
            raise ValidationError(
                INVALID_SETTLEMENT, "A settlement pays exactly one member"
            )
        if lines[0].member_id == paid_by:
            raise ValidationError(
                INVALID_SETTLEMENT, "A settlement cannot be paid to oneself"
            )

    def validate(
        self,
        group: Group,
        description: Optional[str],
        amount: Any,
        splits: Optional[Iterable[Any]],
        paid_by: str,
        kind: ExpenseKind = ExpenseKind.EXPENSE,
    ) -> tuple[Decimal, list[SplitLine]]:
        """
        Run every check in order.

        Returns:
            (amount, split_lines) normalized to Decimal

        Raises:
            ValidationError: On the first failing check; `reason` names it
        """
        lines = self._check_presence(description, amount, splits)
        total = to_decimal(amount)

        self._check_amounts(total, lines)
        self._check_sum(total, lines)
        self._check_membership(group, paid_by, lines)

        if kind == ExpenseKind.SETTLEMENT:
            self._check_settlement(paid_by, lines)

        return total, lines
