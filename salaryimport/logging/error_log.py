from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import ErrorRecord
from ..models.run_log import RunLog

"""Error log buffering.

- JSON Lines 固定スキーマ (ErrorRecord のキーのみ)
- 実行ごとに `logs/errors-YYYYMMDD-HHMMSS.log` (UTC) を生成 (エラーがある時のみ)
- バッファリングして flush 時にまとめて追記
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
    "LOGS_DIR",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    - ファイルパスは初回アクセスで決定
    - スレッド安全性不要 (シリアル実行)
    """
    def __init__(self, logs_dir: Path = LOGS_DIR) -> None:
        self.logs_dir = logs_dir
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self.logs_dir / f"errors-{stamp}.log"
        return self._file_path

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def extend_from_run_log(self, file: str, log: RunLog) -> int:
        """Buffer every error of ``log`` against ``file``. Returns the count added."""
        added = 0
        for message in log.error_messages():
            self.append(
                ErrorRecord.create(
                    file=file,
                    row=message.row,
                    stage=message.stage.value,
                    error_type=message.code,
                    message=message.text,
                )
            )
            added += 1
        return added

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records to the log file; None when nothing was buffered."""
        if not self._records:
            return None
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return fp
