from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

"""Config dataclasses for the salary import tool.

Loaded from YAML by ``salaryimport.config.loader``; these classes only carry
the typed values. Database settings are a fallback: environment variables
(``DATABASE_URL`` / ``PGDSN`` / ``PGHOST`` ...) take precedence at connect time.
"""

__all__ = [
    "DatabaseConfig",
    "OnRowError",
    "PersistenceSettings",
    "ImportConfig",
]


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


class OnRowError(Enum):
    """What a failing row does to the rest of the persistence batch."""
    SKIP_ROW = "skip_row"  # SAVEPOINT 単位で巻き戻し、残りの行は続行
    ROLLBACK_BATCH = "rollback_batch"  # 1 行でも失敗したら全件 ROLLBACK


@dataclass(frozen=True)
class PersistenceSettings:
    table_prefix: str = "llx_"
    entity: int = 1  # multi-company entity id written on salary / payment rows
    author_user_id: int = 1  # fk_user_author of every created record
    documents_root: Path = Path("./documents")  # salaries/<id>/ lives under here
    on_row_error: OnRowError = OnRowError.SKIP_ROW


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for one import run."""
    work_directory: Path  # staging area for uploaded xlsx / zip
    language: str = "fr"  # fr | en
    abort_on_validation_errors: bool = True  # 検証エラーが 1 件でもあれば照合前に中断
    persistence: PersistenceSettings = field(default_factory=PersistenceSettings)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logs_directory: Path = Path("./logs")
