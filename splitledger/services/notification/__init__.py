"""Notification services package."""

from splitledger.services.notification.notifier import (
    LogOnlyNotifier,
    NotificationError,
    NotifierInterface,
    SmtpEmailNotifier,
)

__all__ = [
    "LogOnlyNotifier",
    "NotificationError",
    "NotifierInterface",
    "SmtpEmailNotifier",
]
