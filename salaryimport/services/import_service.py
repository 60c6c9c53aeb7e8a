from __future__ import annotations

import dataclasses
import json
import logging
import shutil
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..archive.pdf_archive import ArchiveError, PdfArchive
from ..db.persister import PersistenceError, SalaryPersister
from ..excel.reader import SheetData, SpreadsheetError, read_salary_sheet
from ..logging.error_log import ErrorLogBuffer
from ..lookup.entity_lookup import EntityLookup, LookupQueryError
from ..matching.filename_matcher import find_pdf_for_user
from ..messages import Messages
from ..models.config_models import ImportConfig
from ..models.processing_result import ImportResult, ImportStatus, PersistResult
from ..models.run_log import RunLog, Stage
from ..models.salary_rows import EnrichedRow, PdfCandidate
from ..validation.validator import RowValidator
from .progress import ProgressTracker

"""Salary import orchestration.

Two-step flow, as an operator would use it:

1. preview: stage the spreadsheet (and optional payslip ZIP) in the work
   directory, read -> validate -> enrich -> match payslips, show the rows
2. import: persist the previewed rows, then remove the staged files

``run(dry_run=True)`` stops after step 1 and keeps the staged files so the
preview saved with ``save_preview`` can be imported later (``import_preview``).

Fatal problems (unreadable spreadsheet, corrupt archive, database failure)
raise ProcessingError internally and end the run with status FATAL. Row
problems are messages in the RunLog and end with status ROW_ERRORS.
"""

__all__ = [
    "ProcessingError",
    "PREVIEW_FORMAT_VERSION",
    "SalaryImportService",
]

logger = logging.getLogger(__name__)

PREVIEW_FORMAT_VERSION = 1


class ProcessingError(Exception):
    """Fatal error that stops the run (already recorded in the RunLog)."""


class SalaryImportService:
    def __init__(
        self,
        config: ImportConfig,
        cursor: Any = None,
        *,
        reader: Callable[[Path], SheetData] = read_salary_sheet,
        validator: RowValidator | None = None,
        lookup: EntityLookup | None = None,
        archive: PdfArchive | None = None,
        persister: SalaryPersister | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.config = config
        self.messages = Messages(config.language)
        self.work_dir = config.work_directory
        self.reader = reader
        self.validator = validator or RowValidator(self.messages)
        self.lookup = lookup or EntityLookup(
            cursor, config.persistence.table_prefix, self.messages
        )
        self.archive = archive or PdfArchive(self.work_dir)
        self.persister = persister or SalaryPersister(
            cursor, config.persistence, self.messages
        )
        self.error_log = error_log or ErrorLogBuffer(config.logs_directory)

        self.log = RunLog()
        self.headers: dict[int, str] = {}
        self.pdfs: list[PdfCandidate] = []
        self.preview: dict[int, EnrichedRow] = {}
        self.staged_xlsx: str | None = None
        self.staged_zip: str | None = None
        self.extracted_folder: str | None = None
        self._stats: dict[str, int] = {}

    def _fatal(self, stage: Stage, code: str, **params: Any) -> ProcessingError:
        text = self.messages(code, **params)
        self.log.error(stage, code, text)
        return ProcessingError(text)

    def _stage_file(self, source: Path) -> Path:
        self.work_dir.mkdir(parents=True, exist_ok=True)
        dest = self.work_dir / source.name
        try:
            if source.resolve() != dest.resolve():
                shutil.copy2(source, dest)
        except OSError as e:
            raise self._fatal(Stage.INPUT, "FILE_NOT_READABLE", path=str(source)) from e
        return dest

    # --- staging ---------------------------------------------------------

    def stage_spreadsheet(self, xlsx_path: Path) -> Path:
        """Copy the salary spreadsheet into the work directory."""
        if not xlsx_path.is_file():
            raise self._fatal(Stage.INPUT, "FILE_NOT_FOUND", path=str(xlsx_path))
        ext = xlsx_path.suffix.lower().lstrip(".")
        if ext != "xlsx":
            raise self._fatal(Stage.INPUT, "NOT_XLSX", ext=ext)
        staged = self._stage_file(xlsx_path)
        self.staged_xlsx = staged.name
        return staged

    def stage_archive(self, zip_path: Path | None) -> int:
        """Copy and extract the payslip archive. No archive is not an error.

        Returns the number of PDFs found.
        """
        if zip_path is None:
            return 0
        if not zip_path.is_file():
            raise self._fatal(Stage.INPUT, "FILE_NOT_FOUND", path=str(zip_path))
        ext = zip_path.suffix.lower().lstrip(".")
        if ext != "zip":
            raise self._fatal(Stage.INPUT, "NOT_ZIP", ext=ext)
        staged = self._stage_file(zip_path)
        self.staged_zip = staged.name
        self.extracted_folder = staged.stem
        try:
            self.pdfs = self.archive.extract(staged, self.extracted_folder)
        except ArchiveError as e:
            raise self._fatal(Stage.ARCHIVE, "ARCHIVE_ERROR", detail=e) from e
        logger.info("archive=%s pdfs=%d", staged.name, len(self.pdfs))
        return len(self.pdfs)

    # --- preview ---------------------------------------------------------

    def _abort_before(self, next_stage: str) -> bool:
        if self.config.abort_on_validation_errors and self.log.has_errors():
            logger.info("row errors found, stopping before %s", next_stage)
            return True
        return False

    def process_for_preview(self) -> dict[int, EnrichedRow]:
        """Read, validate, enrich and match the staged spreadsheet.

        Returns the preview rows keyed by their original data row index. The
        result is empty when row errors stopped the run
        (``abort_on_validation_errors``).
        """
        self.preview = {}
        if self.staged_xlsx is None:
            raise self._fatal(Stage.INPUT, "NO_DATA_TO_IMPORT")
        try:
            sheet = self.reader(self.work_dir / self.staged_xlsx)
        except SpreadsheetError as e:
            raise self._fatal(Stage.INPUT, e.code, **e.params) from e
        self.headers = sheet.headers
        self._stats["total_rows"] = len(sheet.rows)

        validated = self.validator.validate_all(sheet.rows, self.log)
        self._stats["valid_rows"] = len(validated)
        if self._abort_before("lookup"):
            return {}

        try:
            enriched = self.lookup.enrich_all(validated, self.log)
        except LookupQueryError as e:
            raise self._fatal(Stage.LOOKUP, "LOOKUP_QUERY_FAILED", detail=e) from e
        self._stats["enriched_rows"] = len(enriched)
        if self._abort_before("payslip matching"):
            return {}

        matched = 0
        for index, row in enriched.items():
            pdf = find_pdf_for_user(row.firstname, row.lastname, self.pdfs) or ""
            if pdf:
                matched += 1
            self.preview[index] = dataclasses.replace(row, pdf=pdf)
        self._stats["pdf_matched"] = matched
        logger.info(
            "rows=%d valid=%d enriched=%d pdf=%d",
            len(sheet.rows), len(validated), len(enriched), matched,
        )
        return self.preview

    def preview_table(self) -> list[dict[str, Any]]:
        """Preview rows as display dicts (formatted dates, payslip name or "none")."""
        no_pdf = self.messages("NO_PDF")
        return [
            {
                "row": index + 2,
                "user": row.user_name,
                "datep": row.datep_display,
                "amount": row.amount,
                "typepayment": row.typepayment_label,
                "label": row.label,
                "datesp": row.datesp_display,
                "dateep": row.dateep_display,
                "paye": row.paye,
                "account": row.account_label,
                "pdf": row.pdf_display or no_pdf,
            }
            for index, row in self.preview.items()
        ]

    # --- preview file ----------------------------------------------------

    def save_preview(self, path: Path) -> Path:
        """Write the preview and its staging state as JSON for a later import."""
        payload = {
            "version": PREVIEW_FORMAT_VERSION,
            "work_directory": str(self.work_dir),
            "xlsx": self.staged_xlsx,
            "zip": self.staged_zip,
            "folder": self.extracted_folder,
            "rows": {str(index): row.to_dict() for index, row in self.preview.items()},
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        return path

    def load_preview(self, path: Path) -> dict[int, EnrichedRow]:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            if payload.get("version") != PREVIEW_FORMAT_VERSION:
                raise ValueError(f"unsupported version: {payload.get('version')}")
            rows = {int(k): EnrichedRow.from_dict(v) for k, v in payload["rows"].items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise self._fatal(Stage.INPUT, "INVALID_PREVIEW", detail=e) from e
        self.staged_xlsx = payload.get("xlsx")
        self.staged_zip = payload.get("zip")
        self.extracted_folder = payload.get("folder")
        self.preview = dict(sorted(rows.items()))
        return self.preview

    # --- import ----------------------------------------------------------

    def execute_import(self, rows: dict[int, EnrichedRow] | None = None) -> PersistResult:
        rows = self.preview if rows is None else rows
        if not rows:
            raise self._fatal(Stage.PERSISTENCE, "NO_DATA_TO_IMPORT")
        with ProgressTracker(len(rows)) as progress:
            try:
                result = self.persister.persist_all(rows, self.log, on_row=progress.row_done)
            except PersistenceError as e:
                raise self._fatal(Stage.PERSISTENCE, "PERSIST_FAILED", detail=e) from e
        return result

    def cleanup(self) -> bool:
        """Remove the staged spreadsheet, archive and extraction folder.

        Failures are warnings; returns False when something could not be removed.
        """
        failures: list[str] = []
        if self.staged_xlsx:
            xlsx = self.work_dir / self.staged_xlsx
            try:
                xlsx.unlink(missing_ok=True)
            except OSError as e:
                failures.append(f"failed to delete XLSX file {xlsx}: {e}")
        if self.extracted_folder:
            failures.extend(self.archive.cleanup(self.extracted_folder, self.staged_zip))
        for detail in failures:
            self.log.warning(Stage.INPUT, "CLEANUP_FAILED", self.messages("CLEANUP_FAILED", detail=detail))
        self.staged_xlsx = self.staged_zip = self.extracted_folder = None
        return not failures

    # --- whole run -------------------------------------------------------

    def _reset(self) -> None:
        self.log = RunLog()
        self.preview = {}
        self.pdfs = []
        self._stats = {}

    def _finish(
        self,
        start: datetime,
        dry_run: bool,
        file_name: str,
        fatal: bool,
        persisted: PersistResult | None,
    ) -> ImportResult:
        if fatal:
            status = ImportStatus.FATAL
        elif self.log.has_errors():
            status = ImportStatus.ROW_ERRORS
        else:
            status = ImportStatus.OK
        result = ImportResult(
            status=status,
            dry_run=dry_run,
            start_time=start,
            end_time=datetime.now(UTC),
            total_rows=self._stats.get("total_rows", 0),
            valid_rows=self._stats.get("valid_rows", 0),
            enriched_rows=self._stats.get("enriched_rows", 0),
            pdf_matched=self._stats.get("pdf_matched", 0),
            persisted_rows=persisted.persisted_count if persisted else 0,
            failed_rows=len(persisted.failed_rows) if persisted else 0,
            rolled_back=persisted.rolled_back if persisted else False,
            preview=dict(self.preview),
            log=self.log,
        )
        if self.error_log.extend_from_run_log(file_name, self.log):
            result.error_log_path = self.error_log.flush()
        return result

    def run(self, xlsx_path: Path, zip_path: Path | None = None, dry_run: bool = False) -> ImportResult:
        """Preview (``dry_run``) or preview + import one spreadsheet."""
        self._reset()
        start = datetime.now(UTC)
        fatal = False
        persisted: PersistResult | None = None
        try:
            self.stage_spreadsheet(xlsx_path)
            self.stage_archive(zip_path)
            rows = self.process_for_preview()
            if not dry_run and rows:
                persisted = self.execute_import(rows)
        except ProcessingError as e:
            logger.error("%s", e)
            fatal = True
        finally:
            # dry run で行が残った場合のみ staging を保持 (後で import_preview)
            if not dry_run or fatal or not self.preview:
                self.cleanup()
        return self._finish(start, dry_run, xlsx_path.name, fatal, persisted)

    def import_preview(self, preview_path: Path) -> ImportResult:
        """Import rows previously written by ``save_preview``, then clean up."""
        self._reset()
        start = datetime.now(UTC)
        fatal = False
        file_name = preview_path.name
        persisted: PersistResult | None = None
        try:
            self.load_preview(preview_path)
            file_name = self.staged_xlsx or file_name
            count = len(self.preview)
            self._stats.update(
                total_rows=count,
                valid_rows=count,
                enriched_rows=count,
                pdf_matched=sum(1 for r in self.preview.values() if r.pdf),
            )
            persisted = self.execute_import()
        except ProcessingError as e:
            logger.error("%s", e)
            fatal = True
        finally:
            self.cleanup()
        return self._finish(start, False, file_name, fatal, persisted)
