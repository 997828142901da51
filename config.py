"""
Configuration management for Portfolio Ledger.
Uses pydantic-settings for type-safe, centralized configuration.
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    # Database
    database_url: str = "sqlite:///portfolio_ledger.db"
    db_echo: bool = False

    # Owner of transactions when no user is given
    default_user_id: str = "local"

    # Quote retrieval
    quote_cache_ttl_seconds: int = 900
    quote_failure_ttl_seconds: int = 300
    quote_cache_size: int = 256
    quote_min_interval_seconds: float = 0.7
    quote_max_workers: int = 2
    quote_refresh_minutes: int = 15

    # Trade journal
    journal_base_currency: str = "SGD"
    journal_currencies: List[str] = ["SGD", "USD", "MYR", "HKD"]
    journal_default_template: str = "moomoo"

    # Logging
    log_level: str = "INFO"

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
