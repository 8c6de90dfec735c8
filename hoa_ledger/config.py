"""Ledger configuration from environment variables and .env file."""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class LedgerSettings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(
        default="sqlite:///./hoa_ledger.db",
        description="SQLAlchemy connection string",
    )
    database_echo: bool = Field(default=False, description="Log SQL queries")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/ledger.log", description="Log file path")

    # Locale
    locale: str = Field(default="es_MX", description="Locale for amounts and dates")

    # Telegram (notifications are only logged when no token is set)
    telegram_bot_token: str | None = Field(
        default=None, description="Telegram bot token for resident notifications"
    )

    # Receipts
    receipts_dir: str = Field(
        default="receipts", description="Directory where official receipts are written"
    )
    receipts_base_url: str = Field(
        default="/receipts", description="Public URL prefix for official receipts"
    )
    folio_prefix: str = Field(default="CP", description="Prefix of payment receipt folios")

    # Batch jobs
    system_user_id: int | None = Field(
        default=None, description="User recorded as applier of automatic surcharges"
    )

    # API
    api_title: str = Field(default="HOA Ledger API", description="API title")
    api_version: str = Field(default="0.1.0", description="API version")
    api_host: str = Field(default="0.0.0.0", description="Host the admin API binds to")
    api_port: int = Field(default=8000, description="Port the admin API listens on")


_settings: LedgerSettings | None = None


def get_settings() -> LedgerSettings:
    """Get settings instance (lazy loaded).

    Returns:
        LedgerSettings instance loaded from environment
    """
    global _settings
    if _settings is None:
        _settings = LedgerSettings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None


__all__ = ["LedgerSettings", "get_settings", "reset_settings"]
