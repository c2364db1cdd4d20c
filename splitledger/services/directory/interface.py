"""
User Directory Interface

The directory maps external identifiers (emails) to member ids. It is an
external collaborator: group creation must keep working when it is down,
so callers treat DirectoryError as a degraded lookup, not a failure.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from splitledger.models.ledger import DirectoryUser


class UserDirectoryInterface(ABC):
    """Abstract lookup of users by email or id."""

    @abstractmethod
    async def find_by_emails(self, emails: Iterable[str]) -> list[DirectoryUser]:
        """
        Look up users by email.

        Emails are compared trimmed and case-insensitively. Unknown
        emails are simply absent from the result.

        Raises:
            DirectoryError: If the directory cannot be reached
        """
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        pass


def normalize_email(email: str) -> str:
    return email.strip().lower()


class DirectoryError(Exception):
    """The user directory could not answer."""
    pass
