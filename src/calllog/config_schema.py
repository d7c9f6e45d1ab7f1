"""Pydantic configuration schema for the call log dispatcher.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup.

Usage:
    from calllog.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class StoreConfig(BaseModel):
    """Call history store configuration."""

    db_path: str = Field(
        default="data/calllog.db",
        description="Path to the SQLite call history database",
    )
    busy_timeout_ms: int = Field(
        default=10000,
        ge=0,
        le=600000,
        description="How long SQLite waits on a locked database (milliseconds)",
    )

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Ensure the database path is usable."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class QueryConfig(BaseModel):
    """Fetch behaviour configuration."""

    log_limit: int = Field(
        default=-1,
        ge=-1,
        le=10000,
        description="Rows returned per fetch; -1 or 0 uses the built-in default of 1000",
    )


class LoggingConfig(BaseModel):
    """Log output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum log level for commands run without --debug",
    )


class AppConfig(BaseModel):
    """Root configuration schema for the call log dispatcher.

    This model validates the entire config.yaml structure. If validation
    fails, the command exits with a clear error.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    store: StoreConfig = Field(default_factory=StoreConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    slots: dict[int, list[str]] = Field(
        default_factory=dict,
        description="SIM slot index -> backend account ids (first id is used for filtering)",
    )

    @field_validator("slots")
    @classmethod
    def validate_slots(cls, v: dict[int, list[str]]) -> dict[int, list[str]]:
        """Slot indexes are zero-based."""
        for slot, account_ids in v.items():
            if slot < 0:
                raise ValueError(f"Slot index {slot} must be zero or positive")
            if any(not account_id.strip() for account_id in account_ids):
                raise ValueError(f"Slot {slot} has an empty account id")
        return v
