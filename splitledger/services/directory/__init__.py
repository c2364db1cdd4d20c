"""User directory: resolves emails to member ids."""

from splitledger.services.directory.interface import (
    DirectoryError,
    UserDirectoryInterface,
    normalize_email,
)
from splitledger.services.directory.memory import InMemoryUserDirectory
from splitledger.services.directory.google_sheets import GoogleSheetsUserDirectory

__all__ = [
    "DirectoryError",
    "GoogleSheetsUserDirectory",
    "InMemoryUserDirectory",
    "UserDirectoryInterface",
    "normalize_email",
]
