"""In-memory user directory, for tests and local use."""

from typing import Iterable, Optional

from splitledger.models.ledger import DirectoryUser
from splitledger.services.directory.interface import (
    UserDirectoryInterface,
    normalize_email,
)


class InMemoryUserDirectory(UserDirectoryInterface):

    def __init__(self, users: Optional[Iterable[DirectoryUser]] = None):
        self._by_id: dict[str, DirectoryUser] = {}
        self._by_email: dict[str, DirectoryUser] = {}
        for user in users or []:
            self.add_user(user)

    def add_user(self, user: DirectoryUser) -> None:
        self._by_id[user.id] = user
        self._by_email[normalize_email(user.email)] = user

    async def find_by_emails(self, emails: Iterable[str]) -> list[DirectoryUser]:
        found = []
        for email in emails:
            user = self._by_email.get(normalize_email(email))
            if user is not None:
                found.append(user)
        return found

    async def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        return self._by_id.get(user_id)
