from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    DatabaseConfig,
    ImportConfig,
    OnRowError,
    PersistenceSettings,
)

"""Config loader.

Responsibilities:
- Load YAML config (default ``config/import.yml``)
- Validate it against the JSON schema shipped next to this module
- Apply defaults and build the frozen ImportConfig
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "load_config",
]

DEFAULT_CONFIG_PATH = Path("config/import.yml")
SCHEMA_PATH = Path(__file__).parent / "config_schema.json"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not valid JSON, or the config data
            fails validation (missing keys, wrong types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _persistence(raw: dict[str, Any]) -> PersistenceSettings:
    defaults = PersistenceSettings()
    return PersistenceSettings(
        table_prefix=raw.get("table_prefix", defaults.table_prefix),
        entity=raw.get("entity", defaults.entity),
        author_user_id=raw.get("author_user_id", defaults.author_user_id),
        documents_root=Path(raw.get("documents_root", defaults.documents_root)),
        on_row_error=OnRowError(raw.get("on_row_error", defaults.on_row_error.value)),
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ImportConfig(
        work_directory=Path(data["work_directory"]),
        language=data.get("language", "fr"),
        abort_on_validation_errors=data.get("abort_on_validation_errors", True),
        persistence=_persistence(data.get("persistence") or {}),
        database=db,
        logs_directory=Path(data.get("logs_directory", "./logs")),
    )
