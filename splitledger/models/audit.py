"""
Audit Models for Split Ledger

Every balance-changing action in the system is logged for audit purposes.
This provides:
1. Complete traceability of who moved money between whom
2. Debugging information when the ledger drifts
3. A record of degraded operations (lookups or alerts that failed)

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from splitledger.models.ledger import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Groups
    GROUP_CREATED = "group_created"
    ACCESS_DENIED = "access_denied"

    # Expenses and settlements
    EXPENSE_APPLIED = "expense_applied"
    SETTLEMENT_APPLIED = "settlement_applied"
    EXPENSE_REJECTED = "expense_rejected"
    DUPLICATE_SUBMISSION = "duplicate_submission"
    ROUNDING_DRIFT = "rounding_drift"

    # Personal finance
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_DELETED = "transaction_deleted"
    SPENDING_ALERT_SENT = "spending_alert_sent"

    # Failures
    STORAGE_FAILED = "storage_failed"
    INVARIANT_VIOLATION = "invariant_violation"
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'group', 'expense', 'transaction')"
    )
    entity_id: Optional[UUID] = None

    # Who triggered it (as supplied by the auth collaborator)
    actor_id: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one add-expense request)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            self.actor_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


def _money(value: Decimal) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.group_created(group_id, name, members, actor)
        event = AuditEventBuilder.expense_applied(expense, deltas, correlation_id)
    """

    @staticmethod
    def group_created(
        group_id: UUID,
        name: str,
        members: list[str],
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Group created: {name} ({len(members)} members)",
            details={"members": members},
        )

    @staticmethod
    def access_denied(
        group_id: UUID,
        actor_id: str,
        action: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Non-member denied: {action}",
            details={"action": action},
        )

    @staticmethod
    def expense_applied(
        expense_id: UUID,
        group_id: UUID,
        kind: str,
        amount: Decimal,
        paid_by: str,
        deltas: dict[str, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.SETTLEMENT_APPLIED
            if kind == "settlement"
            else AuditEventType.EXPENSE_APPLIED
        )
        return AuditEvent(
            event_type=event_type,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=paid_by,
            correlation_id=correlation_id,
            description=f"{kind.capitalize()} of {_money(amount)} applied",
            details={
                "group_id": str(group_id),
                "amount": _money(amount),
                "deltas": {member: _money(d) for member, d in deltas.items()},
            },
        )

    @staticmethod
    def expense_rejected(
        group_id: UUID,
        actor_id: str,
        reason: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Expense rejected: {reason}",
            details={"reason": reason},
            error_message=message,
        )

    @staticmethod
    def duplicate_submission(
        expense_id: UUID,
        idempotency_key: str,
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_SUBMISSION,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Re-submitted expense ignored; returning original",
            details={"idempotency_key": idempotency_key},
        )

    @staticmethod
    def rounding_drift(
        expense_id: UUID,
        group_id: UUID,
        drift: Decimal,
        payer: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROUNDING_DRIFT,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=payer,
            correlation_id=correlation_id,
            description=f"Split sum off by {_money(drift)}; absorbed by payer",
            details={"group_id": str(group_id), "drift": _money(drift)},
        )

    @staticmethod
    def transaction_recorded(
        transaction_id: UUID,
        user_id: str,
        type_: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"Personal {type_} of {_money(amount)} recorded",
            details={"type": type_, "amount": _money(amount)},
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description="Personal transaction deleted",
        )

    @staticmethod
    def spending_alert_sent(
        user_id: str,
        ratio: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPENDING_ALERT_SENT,
            entity_type="user",
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"Spending alert sent at {ratio:.0%} of income",
            details={"ratio": str(ratio)},
        )

    @staticmethod
    def storage_failed(
        operation: str,
        error_message: str,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Storage failure during {operation}; nothing applied",
            details={"operation": operation},
            error_message=error_message,
        )

    @staticmethod
    def invariant_violation(
        group_id: UUID,
        balance_total: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVARIANT_VIOLATION,
            severity=AuditSeverity.CRITICAL,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description="Group balances no longer sum to zero",
            details={"balance_total": _money(balance_total)},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.WARNING,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
