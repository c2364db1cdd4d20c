"""Access control: only members may see or change a group."""

from typing import Optional
from uuid import UUID

import structlog

from splitledger.audit import AuditLogger
from splitledger.ledger.errors import AuthorizationError
from splitledger.models.ledger import Group


logger = structlog.get_logger(__name__)


class AccessGate:
    """
    Membership check in front of every group operation.

    Any member may read the group and add expenses or settlements.
    """

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._audit_logger = audit_logger

    async def require_member(
        self,
        group: Group,
        caller: str,
        action: str = "read",
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raises:
            AuthorizationError: If caller is not a member of group
        """
        if group.is_member(caller):
            return

        logger.warning(
            "access_denied",
            group_id=str(group.id),
            caller=caller,
            action=action,
        )
        if self._audit_logger:
            await self._audit_logger.log_access_denied(
                group_id=group.id,
                actor_id=caller,
                action=action,
                correlation_id=correlation_id,
            )
        raise AuthorizationError(f"Not authorized to {action} this group")
