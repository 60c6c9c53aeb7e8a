"""Domain models for the salary import tool.

Row lifecycle (ImportRow -> ValidatedRow -> EnrichedRow -> PersistedRow), the
per-run message log, configuration and result aggregates.
"""

from .config_models import DatabaseConfig, ImportConfig, OnRowError, PersistenceSettings
from .processing_result import ImportResult, ImportStatus, PersistResult
from .run_log import Level, RunLog, RunMessage, Stage
from .salary_rows import (
    EnrichedRow,
    ImportRow,
    PdfCandidate,
    PersistedRow,
    SegmentCombination,
    ValidatedRow,
)

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "OnRowError",
    "PersistenceSettings",
    # Row models
    "ImportRow",
    "ValidatedRow",
    "EnrichedRow",
    "PdfCandidate",
    "SegmentCombination",
    "PersistedRow",
    # Run log
    "Level",
    "RunLog",
    "RunMessage",
    "Stage",
    # Results
    "ImportResult",
    "ImportStatus",
    "PersistResult",
]
