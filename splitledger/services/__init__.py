"""Services package: storage, user directory, notifications, receipt parsing."""

from splitledger.services.storage import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    GoogleSheetsTransactionStorage,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
)
from splitledger.services.directory import (
    DirectoryError,
    GoogleSheetsUserDirectory,
    InMemoryUserDirectory,
    UserDirectoryInterface,
)
from splitledger.services.notification import (
    LogOnlyNotifier,
    NotificationError,
    NotifierInterface,
    SmtpEmailNotifier,
)
from splitledger.services.receipts import ReceiptTextParser

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "ConflictError",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "GoogleSheetsTransactionStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "StorageError",
    "TransactionStorageInterface",
    # Directory services
    "DirectoryError",
    "GoogleSheetsUserDirectory",
    "InMemoryUserDirectory",
    "UserDirectoryInterface",
    # Notification services
    "LogOnlyNotifier",
    "NotificationError",
    "NotifierInterface",
    "SmtpEmailNotifier",
    # Receipt parsing
    "ReceiptTextParser",
]
