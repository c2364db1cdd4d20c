"""
Group Membership Resolver

Turns the identifiers typed in at group creation into member ids.

DESIGN DECISION: Resolution is best-effort.
Unknown emails are dropped without complaint, and if the directory is
unreachable the group is still created with the creator alone. The
failure is logged and audited, never raised.
"""

from typing import Iterable, Optional
from uuid import UUID

import structlog

from splitledger.audit import AuditLogger
from splitledger.services.directory import UserDirectoryInterface, normalize_email


logger = structlog.get_logger(__name__)


class GroupMembershipResolver:
    """Resolves creator + identifiers to an ordered member list."""

    def __init__(
        self,
        directory: UserDirectoryInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._directory = directory
        self._audit_logger = audit_logger

    async def resolve(
        self,
        creator_id: str,
        identifiers: Optional[Iterable[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[str]:
        """
        Resolve member identifiers.

        Returns:
            Member ids, creator first, each at most once
        """
        emails = []
        for identifier in identifiers or []:
            if not identifier or not str(identifier).strip():
                continue
            email = normalize_email(str(identifier))
            if email not in emails:
                emails.append(email)

        members = [creator_id]
        if not emails:
            return members

        try:
            users = await self._directory.find_by_emails(emails)
        except Exception as e:
            logger.warning(
                "directory_lookup_failed",
                creator_id=creator_id,
                identifier_count=len(emails),
                error=str(e),
            )
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="user_directory",
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return members

        for user in users:
            if user.id not in members:
                members.append(user.id)

        unresolved = len(emails) - len({u.email for u in users})
        if unresolved:
            logger.info("identifiers_unresolved", creator_id=creator_id, count=unresolved)

        return members
