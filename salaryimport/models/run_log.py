from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

"""Per-run message accumulator.

Every stage (read / validate / enrich / match / persist) appends its messages to
a RunLog owned by the caller instead of keeping error arrays on the component
instances. Messages keep their insertion order so they can be shown to the
operator verbatim.
"""

__all__ = [
    "Level",
    "Stage",
    "RunMessage",
    "RunLog",
]


class Level(Enum):
    ERROR = "error"
    WARNING = "warning"


class Stage(Enum):
    """Pipeline stage a message was produced in."""
    INPUT = "input"
    VALIDATION = "validation"
    LOOKUP = "lookup"
    ARCHIVE = "archive"
    PERSISTENCE = "persistence"


@dataclass(frozen=True)
class RunMessage:
    level: Level
    stage: Stage
    code: str  # UPPER_SNAKE, e.g. EMPTY_LABEL
    row: int  # 1-based display row, -1 when not row related
    text: str


@dataclass
class RunLog:
    """Ordered list of errors and warnings for one import run."""
    messages: list[RunMessage] = field(default_factory=list)

    def error(self, stage: Stage, code: str, text: str, row: int = -1) -> None:
        self.messages.append(RunMessage(Level.ERROR, stage, code, row, text))

    def warning(self, stage: Stage, code: str, text: str, row: int = -1) -> None:
        self.messages.append(RunMessage(Level.WARNING, stage, code, row, text))

    @property
    def errors(self) -> list[str]:
        return [m.text for m in self.messages if m.level is Level.ERROR]

    @property
    def warnings(self) -> list[str]:
        return [m.text for m in self.messages if m.level is Level.WARNING]

    def error_messages(self, stage: Stage | None = None) -> list[RunMessage]:
        return [
            m for m in self.messages
            if m.level is Level.ERROR and (stage is None or m.stage is stage)
        ]

    def has_errors(self, stage: Stage | None = None) -> bool:
        return bool(self.error_messages(stage))

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self.messages)
