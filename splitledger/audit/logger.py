"""
Audit Logger

DESIGN DECISION: Every balance change and every degraded operation is logged.
This provides:
1. Complete traceability of money moving between members
2. Debugging capability when balances drift
3. Visibility of swallowed dependency failures

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from splitledger.models.audit import AuditEvent, AuditEventBuilder
from splitledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_group_created(
        self,
        group_id: UUID,
        name: str,
        members: list[str],
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.group_created(
            group_id=group_id,
            name=name,
            members=members,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_access_denied(
        self,
        group_id: UUID,
        actor_id: str,
        action: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.access_denied(
            group_id=group_id,
            actor_id=actor_id,
            action=action,
            correlation_id=correlation_id,
        ))

    async def log_expense_applied(
        self,
        expense_id: UUID,
        group_id: UUID,
        kind: str,
        amount: Decimal,
        paid_by: str,
        deltas: dict[str, Decimal],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a committed expense or settlement with its balance deltas."""
        await self.log(AuditEventBuilder.expense_applied(
            expense_id=expense_id,
            group_id=group_id,
            kind=kind,
            amount=amount,
            paid_by=paid_by,
            deltas=deltas,
            correlation_id=correlation_id,
        ))

    async def log_expense_rejected(
        self,
        group_id: UUID,
        actor_id: str,
        reason: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.expense_rejected(
            group_id=group_id,
            actor_id=actor_id,
            reason=reason,
            message=message,
            correlation_id=correlation_id,
        ))

    async def log_duplicate_submission(
        self,
        expense_id: UUID,
        idempotency_key: str,
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.duplicate_submission(
            expense_id=expense_id,
            idempotency_key=idempotency_key,
            actor_id=actor_id,
            correlation_id=correlation_id,
        ))

    async def log_rounding_drift(
        self,
        expense_id: UUID,
        group_id: UUID,
        drift: Decimal,
        payer: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.rounding_drift(
            expense_id=expense_id,
            group_id=group_id,
            drift=drift,
            payer=payer,
            correlation_id=correlation_id,
        ))

    async def log_transaction_recorded(
        self,
        transaction_id: UUID,
        user_id: str,
        type_: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_recorded(
            transaction_id=transaction_id,
            user_id=user_id,
            type_=type_,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        transaction_id: UUID,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_spending_alert_sent(
        self,
        user_id: str,
        ratio: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.spending_alert_sent(
            user_id=user_id,
            ratio=ratio,
            correlation_id=correlation_id,
        ))

    async def log_storage_failed(
        self,
        operation: str,
        error_message: str,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_failed(
            operation=operation,
            error_message=error_message,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_invariant_violation(
        self,
        group_id: UUID,
        balance_total: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invariant_violation(
            group_id=group_id,
            balance_total=balance_total,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed call to a collaborator (directory, email)."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new request (e.g., add-expense).
    Pass it through all subsequent operations.
    """
    return uuid4()
