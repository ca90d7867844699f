"""Configuration management for the Digital Library service.

Settings are read from the environment (``DIGITAL_LIBRARY_`` prefix) and an
optional ``.env`` file:
1. Service metadata - name and version reported by the tool server
2. Storage - database location or an explicit SQLAlchemy URL
3. Lending rules - loan period used when a book is borrowed
4. Logging - level and debug switch
"""

from datetime import timedelta
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LibraryConfig(BaseSettings):
    """Digital Library configuration.

    Every field can be overridden through an environment variable, e.g.
    ``DIGITAL_LIBRARY_LOAN_PERIOD_DAYS=21``.
    """

    model_config = SettingsConfigDict(
        # Use DIGITAL_LIBRARY_ prefix for all env vars
        env_prefix="DIGITAL_LIBRARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Service Metadata ===

    server_name: str = Field(
        default="digital-library",
        description="Server name announced to tool clients",
        pattern=r"^[a-z0-9-]+$",
    )

    server_version: str = Field(
        default="0.1.0",
        description="Server version",
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9.]+)?$",
    )

    transport: str = Field(
        default="stdio",
        description="Tool server transport",
        pattern=r"^(stdio|streamable_http)$",
    )

    # === Database Configuration ===

    database_path: Path = Field(
        default=Path("data/library.db"),
        description="SQLite database file path",
    )

    database_url: str | None = Field(
        default=None,
        description="Explicit SQLAlchemy URL; takes precedence over database_path",
    )

    # === Lending Rules ===

    loan_period_days: int = Field(
        default=14,
        description="Number of days a borrowed book may be kept",
        ge=1,
        le=90,
    )

    # === Query Limits ===

    default_page_size: int = Field(
        default=20,
        description="Page size used when a listing does not ask for one",
        ge=1,
        le=100,
    )

    max_page_size: int = Field(
        default=100,
        description="Largest page size a listing may request",
        ge=1,
        le=1000,
    )

    # === Development Configuration ===

    debug: bool = Field(
        default=False,
        description="Enable debug logging",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: Path) -> Path:
        """Resolve the database path to an absolute location."""
        return v.absolute()

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept log levels in any case."""
        return v.upper() if isinstance(v, str) else v

    @property
    def is_development(self) -> bool:
        """True when running with debug output."""
        return self.debug or self.log_level == "DEBUG"

    @property
    def loan_period(self) -> timedelta:
        """Loan period as a ``timedelta``."""
        return timedelta(days=self.loan_period_days)

    def get_database_url(self) -> str:
        """Get the SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.database_path}"


# === Global Configuration Instance ===


class _ConfigStore:
    """Internal storage for configuration singleton."""

    _instance: LibraryConfig | None = None


def get_config() -> LibraryConfig:
    """Get or create the global configuration instance."""
    if _ConfigStore._instance is None:  # type: ignore[reportPrivateUsage]
        _ConfigStore._instance = LibraryConfig()  # type: ignore[reportPrivateUsage]
    return _ConfigStore._instance  # type: ignore[reportPrivateUsage]


def set_config(config: LibraryConfig) -> None:
    """Install an explicit configuration (used by tests and embedding code)."""
    _ConfigStore._instance = config  # type: ignore[reportPrivateUsage]


def reset_config() -> None:
    """Reset configuration so the next ``get_config`` re-reads the environment."""
    _ConfigStore._instance = None  # type: ignore[reportPrivateUsage]
