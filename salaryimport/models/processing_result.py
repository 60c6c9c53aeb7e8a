from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from .run_log import RunLog
from .salary_rows import EnrichedRow, PersistedRow

"""Processing result models for the salary import.

PersistResult is what the persister hands back for one batch; ImportResult
aggregates a whole run (preview or import) for the SUMMARY line and the CLI
exit code.
"""

__all__ = [
    "PersistResult",
    "ImportStatus",
    "ImportResult",
]


@dataclass(frozen=True)
class PersistResult:
    persisted: dict[int, PersistedRow]  # 元の行 index -> 生成 ID
    failed_rows: list[int]  # 1-based display rows that could not be saved
    rolled_back: bool = False  # rollback_batch: nothing of this batch was kept

    @property
    def persisted_count(self) -> int:
        return len(self.persisted)

    @property
    def pdf_attached_count(self) -> int:
        return sum(1 for p in self.persisted.values() if p.pdf_attached)


class ImportStatus(Enum):
    OK = "ok"  # 全行成功
    ROW_ERRORS = "row_errors"  # 行単位のエラーあり (検証 / 照合 / 保存)
    FATAL = "fatal"  # 入力ファイル / アーカイブ / DB 障害で処理不能


@dataclass
class ImportResult:
    """Aggregated outcome of one run."""
    status: ImportStatus
    dry_run: bool
    start_time: datetime
    end_time: datetime
    total_rows: int = 0  # 読み込んだデータ行数
    valid_rows: int = 0
    enriched_rows: int = 0
    pdf_matched: int = 0
    persisted_rows: int = 0
    failed_rows: int = 0
    rolled_back: bool = False
    preview: dict[int, EnrichedRow] = field(default_factory=dict)
    log: RunLog = field(default_factory=RunLog)
    error_log_path: Path | None = None

    @property
    def elapsed_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def throughput_rows_per_sec(self) -> float:
        elapsed = self.elapsed_seconds
        if elapsed <= 0:
            return 0.0
        return round(self.persisted_rows / elapsed, 2)

    @property
    def errors(self) -> list[str]:
        return self.log.errors

    @property
    def warnings(self) -> list[str]:
        return self.log.warnings
