"""
Personal Finance Models

A user's own income and expense log, independent of any group.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from splitledger.models.ledger import utc_now


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class PersonalTransaction(BaseModel):
    """A single income or expense entry owned by one user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1, max_length=200)
    date: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)


class PersonalSummary(BaseModel):
    """Totals over all of a user's transactions."""

    user_id: str
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    transaction_count: int = Field(default=0, ge=0)
    expense_by_category: dict[str, Decimal] = Field(default_factory=dict)

    @property
    def net(self) -> Decimal:
        return self.total_income - self.total_expense

    @property
    def spend_ratio(self) -> Optional[Decimal]:
        """Expenses as a fraction of income; None when there is no income."""
        if self.total_income <= 0:
            return None
        return self.total_expense / self.total_income
