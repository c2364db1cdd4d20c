"""
Core Data Models for the Group Ledger

These models define the strict schemas for groups, expenses and balances.
They are designed to:
1. Enforce structural invariants at construction time
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep balances as a real mapping keyed by member id

DESIGN DECISION: Expenses are frozen. History is append-only; a mistake
is corrected by recording a new expense with inverted splits, never by
editing an old one.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class ExpenseKind(str, Enum):
    """
    What an expense record represents.

    Both kinds go through the exact same balance update; the tag only
    makes the intent visible in history and audits.
    """
    EXPENSE = "expense"        # Payer fronted money for the group
    SETTLEMENT = "settlement"  # Debtor paid a creditor back


# =============================================================================
# GROUP
# =============================================================================

class MemberBalance(BaseModel):
    """A (member, balance) pair, used where presentation needs member order."""

    member_id: str
    balance: Decimal


class Group(BaseModel):
    """
    A group of members sharing expenses.

    Sign convention for balances:
    - positive: the member is owed money by the group
    - negative: the member owes the group

    The sum of all balances is zero. That is checked by the balance
    engine after every mutation, not here, so storage can load a
    corrupted group and the fault is reported where it is detected.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique group ID"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Group name"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    created_by: str = Field(
        ...,
        min_length=1,
        description="Member id of the creator"
    )
    members: list[str] = Field(
        ...,
        min_length=1,
        description="Ordered member ids, creator included"
    )
    balances: dict[str, Decimal] = Field(
        ...,
        description="member id -> signed balance"
    )

    # Optimistic concurrency: bumped on every balance commit
    version: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_membership(self) -> 'Group':
        if len(set(self.members)) != len(self.members):
            raise ValueError("Group members must be unique")

        if self.created_by not in self.members:
            raise ValueError("Group creator must be a member")

        if set(self.balances) != set(self.members):
            raise ValueError("Every member needs exactly one balance entry")

        return self

    @classmethod
    def new(
        cls,
        name: str,
        created_by: str,
        members: list[str],
        description: Optional[str] = None,
    ) -> 'Group':
        """Create a group with a zero balance for every founding member."""
        return cls(
            name=name,
            description=description,
            created_by=created_by,
            members=list(members),
            balances={member: Decimal("0") for member in members},
        )

    def is_member(self, member_id: str) -> bool:
        return member_id in self.balances

    def balance_of(self, member_id: str) -> Decimal:
        return self.balances[member_id]

    @property
    def balance_total(self) -> Decimal:
        return sum(self.balances.values(), Decimal("0"))

    def ordered_balances(self) -> list[MemberBalance]:
        """Balances in member order."""
        return [
            MemberBalance(member_id=member, balance=self.balances[member])
            for member in self.members
        ]


# =============================================================================
# EXPENSE
# =============================================================================

class SplitLine(BaseModel):
    """How much of an expense one member consumed."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    member_id: str = Field(..., min_length=1)
    amount: Decimal = Field(
        ...,
        description="Amount consumed; zero is allowed, negatives are rejected by the validator"
    )


class Expense(BaseModel):
    """
    An applied expense or settlement.

    CRITICAL: Only expenses that passed validation AND whose balance
    update committed are ever constructed with an id that reaches storage.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    kind: ExpenseKind = ExpenseKind.EXPENSE

    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0)
    paid_by: str = Field(..., min_length=1)
    date: datetime = Field(default_factory=utc_now)
    splits: tuple[SplitLine, ...] = Field(..., min_length=1)

    created_at: datetime = Field(default_factory=utc_now)
    idempotency_key: Optional[str] = Field(default=None, max_length=200)

    # amount - sum(splits); reported drift that was absorbed by the payer
    unallocated_amount: Decimal = Decimal("0")

    @model_validator(mode='after')
    def validate_settlement_shape(self) -> 'Expense':
        if self.kind == ExpenseKind.SETTLEMENT:
            if len(self.splits) != 1:
                raise ValueError("A settlement has exactly one split line")
            if self.splits[0].member_id == self.paid_by:
                raise ValueError("A settlement cannot be paid to oneself")
        return self

    @property
    def split_total(self) -> Decimal:
        return sum((line.amount for line in self.splits), Decimal("0"))

    @property
    def is_settlement(self) -> bool:
        return self.kind == ExpenseKind.SETTLEMENT

    def payload_fingerprint(self) -> tuple:
        """The client-supplied part of the expense, for duplicate detection."""
        return (
            self.kind.value,
            self.description,
            self.amount,
            self.paid_by,
            tuple((line.member_id, line.amount) for line in self.splits),
        )


class GroupDetail(BaseModel):
    """A group together with its expense history (newest first)."""

    group: Group
    expenses: list[Expense] = Field(default_factory=list)


# =============================================================================
# USERS
# =============================================================================

class DirectoryUser(BaseModel):
    """A user known to the user directory."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, max_length=254)
    name: str = Field(default="", max_length=100)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError(f"Not an email address: {v}")
        return v.lower()
