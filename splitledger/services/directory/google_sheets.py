"""
Google Sheets user directory.

Reads the Users worksheet (id, email, name). The sheet is read once per
lookup; directories are small.
"""

from typing import Iterable, Optional

from splitledger.models.ledger import DirectoryUser
from splitledger.services.directory.interface import (
    DirectoryError,
    UserDirectoryInterface,
    normalize_email,
)
from splitledger.services.storage.google_sheets import GoogleSheetsClient, row_to_user


class GoogleSheetsUserDirectory(UserDirectoryInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _all_users(self) -> list[DirectoryUser]:
        try:
            rows = self._client.get_users_sheet().get_all_values()[1:]
        except Exception as e:
            raise DirectoryError(f"Failed to read users: {e}")

        users = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                users.append(row_to_user(row))
            except Exception:
                continue  # Skip malformed rows
        return users

    async def find_by_emails(self, emails: Iterable[str]) -> list[DirectoryUser]:
        wanted = [normalize_email(e) for e in emails]
        if not wanted:
            return []
        by_email = {normalize_email(user.email): user for user in self._all_users()}
        return [by_email[email] for email in wanted if email in by_email]

    async def get_user(self, user_id: str) -> Optional[DirectoryUser]:
        for user in self._all_users():
            if user.id == user_id:
                return user
        return None
