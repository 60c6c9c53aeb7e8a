from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display service with tqdm (TTY only).

- 単一の tqdm インスタンス、非 TTY (CI / パイプ) では無効化
- 永続化ステージの行単位で更新、postfix に成功 / 失敗件数
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Row progress bar used while salaries are written.

    In non-TTY environments the bar is disabled to avoid ANSI control
    sequence spam; counters are still kept.
    """

    def __init__(self, total_rows: int, *, description: str = "Importing salaries") -> None:
        self.total_rows = total_rows
        self.description = description
        self.saved = 0
        self.failed = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def row_done(self, row_num: int, ok: bool) -> None:
        """Callback for ``SalaryPersister.persist_all(on_row=...)``."""
        if ok:
            self.saved += 1
        else:
            self.failed += 1
        if self.enabled and self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_postfix(row=row_num, saved=self.saved, failed=self.failed)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
