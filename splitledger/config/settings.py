"""
Configuration Management for Split Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable of the ledger (tolerances, retry counts, the idempotency
window) lives in one place and is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


GROUP_ORDERS = ("updated_desc", "updated_asc", "created_desc", "name")


class LedgerSettings(BaseSettings):
    """Group ledger and balance engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    split_tolerance: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Max absolute difference between split sum and expense amount"
    )
    balance_tolerance: float = Field(
        default=1e-6,
        gt=0.0,
        description="Max absolute drift of the sum of group balances"
    )
    idempotency_window_seconds: int = Field(
        default=86400,
        ge=0,
        description="How long an idempotency key suppresses re-submission"
    )
    conflict_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts when a concurrent writer committed first"
    )
    default_group_order: str = Field(
        default="updated_desc",
        description="Ordering of list-groups results"
    )
    currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="Display currency code"
    )

    @field_validator('default_group_order')
    @classmethod
    def validate_group_order(cls, v: str) -> str:
        if v not in GROUP_ORDERS:
            raise ValueError(f"Unsupported group order: {v}. Allowed: {GROUP_ORDERS}")
        return v


class PersonalSettings(BaseSettings):
    """Personal finance configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PERSONAL_",
        extra="ignore"
    )

    spending_alert_ratio: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Expense/income ratio at which the owner is alerted"
    )


class NotificationSettings(BaseSettings):
    """Outgoing email (SMTP) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        extra="ignore"
    )

    smtp_host: str = Field(
        ...,
        description="SMTP server host"
    )
    smtp_port: int = Field(
        default=587,
        ge=1,
        le=65535,
    )
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    sender: str = Field(
        ...,
        description="From address, e.g. 'Split Ledger <alerts@example.com>'"
    )
    use_tls: bool = True
    timeout_seconds: float = Field(default=10.0, gt=0)


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    groups_sheet_name: str = Field(default="Groups")
    expenses_sheet_name: str = Field(default="Expenses")
    users_sheet_name: str = Field(default="Users")
    transactions_sheet_name: str = Field(default="Transactions")
    audit_sheet_name: str = Field(default="AuditLog")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def personal(self) -> PersonalSettings:
        return PersonalSettings()

    @property
    def notification(self) -> NotificationSettings:
        return NotificationSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an
    additional "<name>_error" entry for every failure.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "personal", "notification", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
