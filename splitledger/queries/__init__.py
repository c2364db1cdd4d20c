"""Query package: read-only views and exports."""

from splitledger.queries.ledger_queries import (
    GROUP_EXPENSE_COLUMNS,
    PERSONAL_TRANSACTION_COLUMNS,
    LedgerQueries,
    MemberTotal,
)

__all__ = [
    "GROUP_EXPENSE_COLUMNS",
    "PERSONAL_TRANSACTION_COLUMNS",
    "LedgerQueries",
    "MemberTotal",
]
