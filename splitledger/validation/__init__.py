"""Expense validation package."""

from splitledger.validation.validator import (
    INVALID_AMOUNT,
    INVALID_SETTLEMENT,
    MISSING_FIELDS,
    NON_MEMBER,
    SPLIT_MISMATCH,
    SplitValidator,
    coerce_split,
    to_decimal,
)
from splitledger.validation.splits import (
    PERCENTAGE_MISMATCH,
    SplitMode,
    build_splits,
    equal_split,
    exact_split,
    percentage_split,
)

__all__ = [
    "INVALID_AMOUNT",
    "INVALID_SETTLEMENT",
    "MISSING_FIELDS",
    "NON_MEMBER",
    "PERCENTAGE_MISMATCH",
    "SPLIT_MISMATCH",
    "SplitMode",
    "SplitValidator",
    "build_splits",
    "coerce_split",
    "equal_split",
    "exact_split",
    "percentage_split",
    "to_decimal",
]
