from __future__ import annotations

import hashlib
import logging
import shutil
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import psycopg2
from psycopg2 import sql

from ..messages import Messages
from ..models.config_models import OnRowError, PersistenceSettings
from ..models.processing_result import PersistResult
from ..models.run_log import RunLog, Stage
from ..models.salary_rows import EnrichedRow, PersistedRow

"""Write enriched salary rows into the host database.

One row produces, in this order:

1. ``salary``            (ref = next salary counter)
2. ``bank``              (amount negated, label ``(SalaryPayment)``)
3. ``payment_salary``    (ref = next payment counter, links salary + bank)
4. ``bank_url`` x2       (bank line -> payment card, bank line -> user card)
5. payslip PDF moved to ``<documents_root>/salaries/<salary_id>/`` and indexed
   in ``ecm_files`` (failure is only a warning)

Transaction boundaries are explicit (``BEGIN`` / ``COMMIT`` / ``ROLLBACK`` via
the cursor, connection in autocommit). With ``on_row_error=skip_row`` every row
runs under a SAVEPOINT so one bad row does not poison the batch; with
``rollback_batch`` the first bad row discards everything.

Generated ids come from ``RETURNING rowid``. Insert failures raise
PersistenceError, they are never returned as sentinel ids.
"""

__all__ = [
    "PersistenceError",
    "PdfAttachError",
    "SalaryPersister",
    "BANK_LINE_LABEL",
    "PAYMENT_URL",
    "USER_URL",
]

logger = logging.getLogger(__name__)

BANK_LINE_LABEL = "(SalaryPayment)"
PAYMENT_URL = "/salaries/payment_salary/card.php?id="
PAYMENT_URL_LABEL = "(paiement)"
USER_URL = "/user/card.php?id="

_ROW_SAVEPOINT = "salary_row"
_PDF_SAVEPOINT = "salary_pdf_index"


class PersistenceError(Exception):
    pass


class PdfAttachError(Exception):
    """Payslip could not be moved or indexed; the salary itself is kept."""


class SalaryPersister:
    def __init__(
        self,
        cursor: Any,
        settings: PersistenceSettings | None = None,
        messages: Messages | None = None,
    ) -> None:
        self.cursor = cursor
        self.settings = settings or PersistenceSettings()
        self.messages = messages or Messages()
        self._salary_ref_counter = 0
        self._payment_ref_counter = 0
        self._counters_initialized = False
        # rollback_batch で巻き戻す PDF 移動 (dest, src)
        self._moved_pdfs: list[tuple[Path, Path]] = []

    # --- low level -------------------------------------------------------

    def _table(self, name: str) -> sql.Identifier:
        return sql.Identifier(f"{self.settings.table_prefix}{name}")

    def _execute(self, statement: str | sql.Composable, params: Sequence[Any] | None = None) -> None:
        try:
            self.cursor.execute(statement, params)
        except psycopg2.Error as e:
            raise PersistenceError(f"{e}".strip()) from e

    def _insert(self, table: str, values: dict[str, Any]) -> int:
        """INSERT one record and return its generated ``rowid``."""
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING rowid").format(
            self._table(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in values),
            sql.SQL(", ").join(sql.Placeholder() * len(values)),
        )
        try:
            self.cursor.execute(query, list(values.values()))
            returned = self.cursor.fetchone()
        except psycopg2.Error as e:
            raise PersistenceError(f"failed inserting into {table}: {e}".strip()) from e
        if not returned:
            raise PersistenceError(f"failed inserting into {table}: no rowid returned")
        return int(returned[0])

    def _last_numeric_ref(self, table: str) -> int:
        query = sql.SQL(
            "SELECT ref FROM {} WHERE ref ~ '^[0-9]+$' ORDER BY CAST(ref AS BIGINT) DESC LIMIT 1"
        ).format(self._table(table))
        try:
            self.cursor.execute(query)
            row = self.cursor.fetchone()
        except psycopg2.Error as e:
            raise PersistenceError(f"error getting last {table} ref: {e}".strip()) from e
        return int(row[0]) if row else 0

    # --- references ------------------------------------------------------

    def init_counters(self) -> None:
        """Seed both reference counters from the highest numeric ref in the database."""
        self._salary_ref_counter = self._last_numeric_ref("salary")
        self._payment_ref_counter = self._last_numeric_ref("payment_salary")
        self._counters_initialized = True

    def next_salary_ref(self) -> str:
        if not self._counters_initialized:
            self.init_counters()
        self._salary_ref_counter += 1
        return str(self._salary_ref_counter)

    def next_payment_ref(self) -> str:
        if not self._counters_initialized:
            self.init_counters()
        self._payment_ref_counter += 1
        return str(self._payment_ref_counter)

    def _release_refs(self) -> None:
        # 直前の行で予約した ref を返却 (SAVEPOINT 巻き戻し時)
        self._salary_ref_counter -= 1
        self._payment_ref_counter -= 1

    # --- inserts ---------------------------------------------------------

    def insert_salary(self, ref: str, row: EnrichedRow) -> int:
        return self._insert(
            "salary",
            {
                "ref": ref,
                "datep": row.datep,
                "amount": row.amount,
                "fk_typepayment": row.typepayment,
                "label": row.label,
                "datesp": row.datesp,
                "dateep": row.dateep,
                "paye": row.paye,
                "fk_user": row.user_id,
                "fk_account": row.account,
                "fk_user_author": self.settings.author_user_id,
                "entity": self.settings.entity,
            },
        )

    def insert_bank_transaction(self, row: EnrichedRow) -> int:
        """Bank line of the payment: an expense, so the amount is negated."""
        return self._insert(
            "bank",
            {
                "datec": row.datep,
                "datev": row.datep,
                "dateo": row.datep,
                "amount": -row.amount,
                "label": BANK_LINE_LABEL,
                "fk_account": row.account,
                "fk_user_author": self.settings.author_user_id,
                "fk_type": row.typepaymentcode,
            },
        )

    def insert_payment_salary(self, ref: str, row: EnrichedRow, bank_id: int, salary_id: int) -> int:
        return self._insert(
            "payment_salary",
            {
                "ref": ref,
                "datep": row.datep,
                "amount": row.amount,
                "fk_typepayment": row.typepayment,
                "label": row.label,
                "datesp": row.datesp,
                "dateep": row.dateep,
                "fk_user": row.user_id,
                "fk_bank": bank_id,
                "fk_salary": salary_id,
                "fk_user_author": self.settings.author_user_id,
                "entity": self.settings.entity,
            },
        )

    def insert_bank_url(self, bank_id: int, url_id: int, url: str, label: str, url_type: str) -> int:
        return self._insert(
            "bank_url",
            {
                "fk_bank": bank_id,
                "url_id": url_id,
                "url": url,
                "label": label,
                "type": url_type,
            },
        )

    # --- payslip ---------------------------------------------------------

    def _index_pdf(self, dest: Path, salary_id: int) -> None:
        rel_dir = f"salaries/{salary_id}"
        values = {
            "label": hashlib.md5(dest.read_bytes()).hexdigest(),
            "entity": self.settings.entity,
            "filepath": rel_dir,
            "filename": dest.name,
            "fullpath_orig": dest.name,
            "gen_or_uploaded": "uploaded",
            "src_object_type": "salary",
            "src_object_id": salary_id,
            "fk_user_c": self.settings.author_user_id,
            "date_c": datetime.now(UTC),
        }
        self._execute(f"SAVEPOINT {_PDF_SAVEPOINT}")
        try:
            self._insert("ecm_files", values)
        except PersistenceError:
            self._execute(f"ROLLBACK TO SAVEPOINT {_PDF_SAVEPOINT}")
            raise
        self._execute(f"RELEASE SAVEPOINT {_PDF_SAVEPOINT}")

    def move_pdf_to_salary(self, pdf_path: str, salary_id: int) -> Path | None:
        """Move a payslip into the salary's document folder and index it.

        Returns the destination path, or None when there is no file to move.

        Raises:
            PdfAttachError: the folder cannot be created, the move fails, or the
                ``ecm_files`` record cannot be written.
        """
        if not pdf_path:
            return None
        src = Path(pdf_path)
        if not src.is_file():
            return None
        dest_dir = self.settings.documents_root / "salaries" / str(salary_id)
        dest = dest_dir / src.name
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src), str(dest))
        except OSError as e:
            raise PdfAttachError(f"failed to move PDF file to {dest}: {e}") from e
        self._moved_pdfs.append((dest, src))
        try:
            self._index_pdf(dest, salary_id)
        except (PersistenceError, OSError) as e:
            raise PdfAttachError(f"failed to index PDF file in database: {e}") from e
        return dest

    def _restore_moved_pdfs(self) -> None:
        for dest, src in reversed(self._moved_pdfs):
            try:
                shutil.move(str(dest), str(src))
            except OSError as e:
                logger.warning("could not restore %s to %s: %s", dest, src, e)
        self._moved_pdfs.clear()

    # --- rows ------------------------------------------------------------

    def persist_row(self, row: EnrichedRow, row_num: int, log: RunLog) -> PersistedRow:
        """Write every record of one row.

        Raises:
            PersistenceError: any insert failed. The caller owns the transaction
                and decides what gets rolled back.
        """
        salary_ref = self.next_salary_ref()
        payment_ref = self.next_payment_ref()

        salary_id = self.insert_salary(salary_ref, row)
        bank_id = self.insert_bank_transaction(row)
        # payment_salary を bank_url より先に作成 (リンク先 ID が必要)
        payment_id = self.insert_payment_salary(payment_ref, row, bank_id, salary_id)
        self.insert_bank_url(bank_id, payment_id, PAYMENT_URL, PAYMENT_URL_LABEL, "payment_salary")
        self.insert_bank_url(bank_id, row.user_id, USER_URL, row.user_name, "user")

        attached = False
        if row.pdf:
            try:
                attached = self.move_pdf_to_salary(row.pdf, salary_id) is not None
            except PdfAttachError as e:
                log.warning(
                    Stage.PERSISTENCE,
                    "PDF_ATTACH_FAILED",
                    self.messages("PDF_ATTACH_FAILED", file=row.pdf_display, row=row_num, detail=e),
                    row=row_num,
                )

        logger.debug(
            "row=%d salary_id=%d ref=%s payment_id=%d bank_id=%d pdf=%s",
            row_num, salary_id, salary_ref, payment_id, bank_id, attached,
        )
        return PersistedRow(
            salary_id=salary_id,
            salary_ref=salary_ref,
            payment_id=payment_id,
            payment_ref=payment_ref,
            bank_id=bank_id,
            pdf_attached=attached,
        )

    def _row_failed(self, log: RunLog, row_num: int, error: PersistenceError) -> None:
        log.error(
            Stage.PERSISTENCE,
            "PERSIST_ROW_FAILED",
            self.messages("PERSIST_ROW_FAILED", row=row_num, detail=error),
            row=row_num,
        )

    def _abort(self) -> None:
        """ROLLBACK the batch, put moved payslips back and forget the counters."""
        try:
            self.cursor.execute("ROLLBACK")
        except psycopg2.Error as e:  # pragma: no cover
            logger.warning("rollback failed: %s", e)
        self._restore_moved_pdfs()
        self._counters_initialized = False

    def persist_all(
        self,
        rows: dict[int, EnrichedRow],
        log: RunLog,
        on_row: Callable[[int, bool], None] | None = None,
    ) -> PersistResult:
        """Persist a batch inside one explicit transaction.

        ``on_row(row_num, ok)`` is called after each row (progress display).

        Raises:
            PersistenceError: the transaction itself could not be opened, the
                counters could not be read, or COMMIT failed. Nothing is kept.
        """
        policy = self.settings.on_row_error
        persisted: dict[int, PersistedRow] = {}
        failed: list[int] = []
        self._moved_pdfs.clear()

        self._execute("BEGIN")
        try:
            self.init_counters()
            for index, row in rows.items():
                row_num = index + 2
                if policy is OnRowError.SKIP_ROW:
                    self._execute(f"SAVEPOINT {_ROW_SAVEPOINT}")
                    try:
                        persisted[index] = self.persist_row(row, row_num, log)
                    except PersistenceError as e:
                        self._execute(f"ROLLBACK TO SAVEPOINT {_ROW_SAVEPOINT}")
                        self._release_refs()
                        self._row_failed(log, row_num, e)
                        failed.append(row_num)
                        if on_row is not None:
                            on_row(row_num, False)
                        continue
                    self._execute(f"RELEASE SAVEPOINT {_ROW_SAVEPOINT}")
                else:
                    try:
                        persisted[index] = self.persist_row(row, row_num, log)
                    except PersistenceError as e:
                        self._row_failed(log, row_num, e)
                        self._abort()
                        log.error(
                            Stage.PERSISTENCE, "BATCH_ROLLED_BACK", self.messages("BATCH_ROLLED_BACK")
                        )
                        if on_row is not None:
                            on_row(row_num, False)
                        return PersistResult(persisted={}, failed_rows=[row_num], rolled_back=True)
                if on_row is not None:
                    on_row(row_num, True)
            self._execute("COMMIT")
        except PersistenceError:
            self._abort()
            raise
        self._moved_pdfs.clear()
        logger.info("persisted=%d failed=%d", len(persisted), len(failed))
        return PersistResult(persisted=persisted, failed_rows=failed)
