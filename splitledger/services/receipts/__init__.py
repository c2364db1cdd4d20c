"""Receipt text heuristics package."""

from splitledger.services.receipts.parser import (
    ReceiptTextParser,
    find_amounts,
    parse_date,
)

__all__ = [
    "ReceiptTextParser",
    "find_amounts",
    "parse_date",
]
