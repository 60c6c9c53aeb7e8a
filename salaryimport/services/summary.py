from __future__ import annotations

from ..models.processing_result import ImportResult

"""SUMMARY line rendering.

Format::

    SUMMARY mode={preview|import} status={ok|row_errors|fatal} rows={n} valid={n}
    enriched={n} pdf={n} persisted={n} failed={n} errors={n} warnings={n}
    elapsed_sec={x} throughput_rps={x}

(one line; wrapped here for readability)
"""

__all__ = [
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Integers without a decimal point, small values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(value)


def render_summary_line(result: ImportResult) -> str:
    """Render the SUMMARY line of one run.

    >>> from datetime import datetime, timezone
    >>> from salaryimport.models.processing_result import ImportResult, ImportStatus
    >>> start = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
    >>> end = datetime(2024, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
    >>> r = ImportResult(status=ImportStatus.OK, dry_run=False, start_time=start,
    ...                  end_time=end, total_rows=4, valid_rows=4, enriched_rows=4,
    ...                  persisted_rows=4)
    >>> render_summary_line(r)  # doctest: +ELLIPSIS
    'SUMMARY mode=import status=ok rows=4 valid=4 enriched=4 pdf=0 persisted=4 ...'
    """
    mode = "preview" if result.dry_run else "import"
    return (
        f"SUMMARY mode={mode} "
        f"status={result.status.value} "
        f"rows={result.total_rows} "
        f"valid={result.valid_rows} "
        f"enriched={result.enriched_rows} "
        f"pdf={result.pdf_matched} "
        f"persisted={result.persisted_rows} "
        f"failed={result.failed_rows} "
        f"errors={len(result.errors)} "
        f"warnings={len(result.warnings)} "
        f"elapsed_sec={format_number(result.elapsed_seconds)} "
        f"throughput_rps={format_number(result.throughput_rows_per_sec)}"
    )
