"""
Receipt Models

CRITICAL: A ReceiptSuggestion is PROPOSED data, NOT verified.
It only pre-fills an expense; the expense still goes through the
normal validation pipeline with no relaxation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from splitledger.models.ledger import utc_now


class ReceiptSuggestion(BaseModel):
    """What the text heuristics think a receipt says."""

    suggestion_id: UUID = Field(default_factory=uuid4)
    parsed_at: datetime = Field(default_factory=utc_now)

    raw_text: str = Field(default="", description="OCR text as received")
    detected_amount: Optional[Decimal] = Field(
        default=None,
        description="Best guess at the total: a labelled total, else the largest amount"
    )
    detected_date: Optional[datetime] = None
    candidate_amounts: list[Decimal] = Field(default_factory=list)
    merchant_hint: Optional[str] = Field(
        default=None,
        max_length=200,
        description="First non-empty line of the receipt, often the merchant"
    )

    @property
    def has_amount(self) -> bool:
        return self.detected_amount is not None and self.detected_amount > 0
