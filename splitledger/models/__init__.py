"""
Data Models Package

This package contains all Pydantic models used in the Split Ledger system.
All data flowing through the system must conform to these schemas.
"""

from splitledger.models.ledger import (
    DirectoryUser,
    Expense,
    ExpenseKind,
    Group,
    GroupDetail,
    MemberBalance,
    SplitLine,
    utc_now,
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

__all__ = [
    # Ledger models
    "DirectoryUser",
    "Expense",
    "ExpenseKind",
    "Group",
    "GroupDetail",
    "MemberBalance",
    "SplitLine",
    "utc_now",
    # Personal finance models
    "PersonalSummary",
    "PersonalTransaction",
    "TransactionType",
    # Receipt models
    "ReceiptSuggestion",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
