"""Configuration loading for the call log dispatcher.

config.yaml is read with PyYAML and checked against the pydantic models in
config_schema. get_config() caches the result for the life of the process;
reset_config() drops the cache (tests use it between cases).

The file location is CALLLOG_CONFIG_PATH when set, else config/config.yaml.

Usage:
    from calllog.config import get_config

    config = get_config()
    dispatcher = CallLogDispatcher.from_config(config, listener)
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from calllog.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from calllog.core.errors import ConfigLoadError, ConfigValidationError
from calllog.core.logging import get_logger

logger = get_logger(__name__)

CONFIG_PATH_ENV = "CALLLOG_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path("config/config.yaml")

# pydantic error type -> message template (anything else uses pydantic's text)
_ERROR_TEMPLATES = {
    "missing": "Missing required field '{field}'",
    "string_type": "Field '{field}' must be a string",
    "int_type": "Field '{field}' must be an integer",
    "int_parsing": "Field '{field}' must be an integer",
    "bool_parsing": "Field '{field}' must be true or false",
    "literal_error": "Field '{field}': {msg}",
}

_lock = threading.Lock()
_cached: AppConfig | None = None


def config_path() -> Path:
    """Where config.yaml is read from."""
    override = os.environ.get(CONFIG_PATH_ENV)
    return Path(override) if override else DEFAULT_CONFIG_PATH


def _describe(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"])
        template = _ERROR_TEMPLATES.get(item["type"], "Field '{field}': {msg}")
        lines.append("  - " + template.format(field=field, msg=item["msg"]))
    return "\n".join(lines)


def _read_yaml(path: Path) -> dict[str, Any]:
    """Parse `path` into a mapping; an empty file is an empty mapping.

    Raises:
        ConfigLoadError: If the file is missing, unparsable, or not a mapping
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Copy config/config.yaml.example to {path} or set {CONFIG_PATH_ENV}"
        )

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file {path} must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _build(data: dict[str, Any], path: Path) -> AppConfig:
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{_describe(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"{path} uses config schema version {config.schema_version}, which is newer than "
            f"the supported version {CURRENT_SCHEMA_VERSION}. Upgrade calllog or edit the file."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Read and validate config.yaml, bypassing the cache.

    Args:
        path: File to read; defaults to config_path()

    Raises:
        ConfigLoadError: If the file cannot be read or parsed
        ConfigValidationError: If the contents are invalid
    """
    path = path or config_path()
    logger.debug("config_loading", path=str(path))

    config = _build(_read_yaml(path), path)

    logger.info(
        "config_loaded",
        path=str(path),
        schema_version=config.schema_version,
        db_path=config.store.db_path,
        slots=sorted(config.slots),
    )
    return config


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use.

    Without a config file the defaults apply: the dispatcher works out of the
    box against data/calllog.db with no slot mapping.

    Raises:
        ConfigLoadError: If the file exists but cannot be parsed
        ConfigValidationError: If the file is invalid
    """
    global _cached

    with _lock:
        if _cached is None:
            path = config_path()
            if path.exists():
                _cached = load_config(path)
            else:
                logger.info("config_defaults_used", path=str(path))
                _cached = AppConfig()
        return _cached


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file and summarise it, leaving the cache alone.

    Returns:
        (True, summary) for a valid file, (False, reason) otherwise
    """
    try:
        config = load_config(path or config_path())
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    limit = config.query.log_limit
    unmapped = sum(1 for account_ids in config.slots.values() if not account_ids)
    slots = f"{len(config.slots)} slots"
    if unmapped:
        slots += f" ({unmapped} without an account, fetched unfiltered)"
    return True, (
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - store: {config.store.db_path}\n"
        f"  - fetch limit: {limit if limit > 0 else 'default'}\n"
        f"  - {slots}"
    )


def reset_config() -> None:
    """Forget the cached configuration."""
    global _cached
    with _lock:
        _cached = None
