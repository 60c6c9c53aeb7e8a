from __future__ import annotations

import dataclasses
import hashlib
from unittest.mock import MagicMock

import psycopg2
import pytest

from salaryimport.db.persister import (
    BANK_LINE_LABEL,
    PAYMENT_URL,
    USER_URL,
    PdfAttachError,
    PersistenceError,
    SalaryPersister,
)
from salaryimport.models.config_models import OnRowError, PersistenceSettings
from salaryimport.models.run_log import RunLog, Stage


@pytest.fixture()
def settings(temp_workdir):
    return PersistenceSettings(documents_root=temp_workdir / "documents")


@pytest.fixture()
def payslip(temp_workdir):
    folder = temp_workdir / "work" / "fiches"
    folder.mkdir()
    path = folder / "jean_dupont.pdf"
    path.write_bytes(b"%PDF-1.4 jean")
    return path


def test_reference_counters_continue_from_database(make_db_cursor, settings):
    persister = SalaryPersister(make_db_cursor(last_refs={"salary": 41}), settings)
    assert persister.next_salary_ref() == "42"
    assert persister.next_salary_ref() == "43"
    assert persister.next_payment_ref() == "1"


def test_row_records(fake_db_cursor, settings, enriched_row):
    persister = SalaryPersister(fake_db_cursor, settings)
    persisted = persister.persist_row(enriched_row, 2, RunLog())

    assert persisted.salary_id == 1
    assert persisted.salary_ref == "1"
    assert persisted.payment_ref == "1"
    assert persisted.pdf_attached is False

    salary = fake_db_cursor.rows_of("salary")[0]
    assert salary["amount"] == 2500.0
    assert salary["datep"] == "2024-01-31"
    assert salary["fk_user"] == 7
    assert salary["fk_typepayment"] == 2
    assert salary["fk_account"] == 1
    assert salary["paye"] == 1
    assert salary["entity"] == 1

    bank = fake_db_cursor.rows_of("bank")[0]
    assert bank["amount"] == -2500.0
    assert bank["label"] == BANK_LINE_LABEL
    assert bank["fk_type"] == "VIR"

    payment = fake_db_cursor.rows_of("payment_salary")[0]
    assert payment["fk_bank"] == persisted.bank_id
    assert payment["fk_salary"] == persisted.salary_id

    urls = fake_db_cursor.rows_of("bank_url")
    assert [(u["url"], u["label"], u["type"]) for u in urls] == [
        (PAYMENT_URL, "(paiement)", "payment_salary"),
        (USER_URL, "Jean Dupont", "user"),
    ]
    assert urls[0]["url_id"] == persisted.payment_id
    assert urls[1]["url_id"] == 7


def test_insert_order(fake_db_cursor, settings, enriched_row):
    SalaryPersister(fake_db_cursor, settings).persist_row(enriched_row, 2, RunLog())
    assert fake_db_cursor.statements == [
        "INSERT salary",
        "INSERT bank",
        "INSERT payment_salary",
        "INSERT bank_url",
        "INSERT bank_url",
    ]


def test_payslip_moved_and_indexed(fake_db_cursor, settings, enriched_row, payslip, temp_workdir):
    row = dataclasses.replace(enriched_row, pdf=str(payslip))
    log = RunLog()
    persisted = SalaryPersister(fake_db_cursor, settings).persist_row(row, 2, log)

    dest = temp_workdir / "documents" / "salaries" / "1" / "jean_dupont.pdf"
    assert persisted.pdf_attached is True
    assert dest.exists()
    assert not payslip.exists()
    ecm = fake_db_cursor.rows_of("ecm_files")[0]
    assert ecm["filepath"] == "salaries/1"
    assert ecm["filename"] == "jean_dupont.pdf"
    assert ecm["src_object_type"] == "salary"
    assert ecm["src_object_id"] == 1
    assert ecm["label"] == hashlib.md5(b"%PDF-1.4 jean").hexdigest()
    assert len(log) == 0


def test_missing_payslip_file_is_not_attached(fake_db_cursor, settings, enriched_row, temp_workdir):
    row = dataclasses.replace(enriched_row, pdf=str(temp_workdir / "gone.pdf"))
    log = RunLog()
    persisted = SalaryPersister(fake_db_cursor, settings).persist_row(row, 2, log)
    assert persisted.pdf_attached is False
    assert fake_db_cursor.rows_of("ecm_files") == []
    assert len(log) == 0


def test_payslip_index_failure_is_a_warning(make_db_cursor, settings, enriched_row, payslip):
    cursor = make_db_cursor(fail_inserts={"ecm_files": {1}})
    row = dataclasses.replace(enriched_row, pdf=str(payslip))
    log = RunLog()
    persisted = SalaryPersister(cursor, settings).persist_row(row, 6, log)

    assert persisted.pdf_attached is False
    assert log.errors == []
    assert [(m.code, m.stage, m.row) for m in log.messages] == [
        ("PDF_ATTACH_FAILED", Stage.PERSISTENCE, 6)
    ]
    assert "jean_dupont.pdf" in log.warnings[0]
    assert "ROLLBACK TO SAVEPOINT salary_pdf_index" in cursor.statements


def test_move_pdf_raises_attach_error(fake_db_cursor, enriched_row, payslip, temp_workdir):
    # documents_root がファイル -> mkdir 失敗
    blocker = temp_workdir / "blocker"
    blocker.write_text("x")
    persister = SalaryPersister(fake_db_cursor, PersistenceSettings(documents_root=blocker))
    with pytest.raises(PdfAttachError):
        persister.move_pdf_to_salary(str(payslip), 1)


def test_insert_failure_raises(make_db_cursor, settings, enriched_row):
    cursor = make_db_cursor(fail_inserts={"payment_salary": {1}})
    with pytest.raises(PersistenceError, match="payment_salary"):
        SalaryPersister(cursor, settings).persist_row(enriched_row, 2, RunLog())


class TestPersistAllSkipRow:
    def test_all_rows_committed(self, fake_db_cursor, settings, enriched_row):
        calls = []
        rows = {0: enriched_row, 1: dataclasses.replace(enriched_row, amount=100.0)}
        result = SalaryPersister(fake_db_cursor, settings).persist_all(
            rows, RunLog(), on_row=lambda n, ok: calls.append((n, ok))
        )
        assert result.persisted_count == 2
        assert result.failed_rows == []
        assert result.rolled_back is False
        assert [p.salary_ref for p in result.persisted.values()] == ["1", "2"]
        assert calls == [(2, True), (3, True)]
        assert fake_db_cursor.statements[0] == "BEGIN"
        assert fake_db_cursor.statements[1] == "SAVEPOINT salary_row"
        assert fake_db_cursor.statements[-1] == "COMMIT"

    def test_failed_row_is_skipped_and_refs_reused(self, make_db_cursor, settings, enriched_row):
        cursor = make_db_cursor(
            last_refs={"salary": 10, "payment_salary": 4},
            fail_inserts={"bank": {2}},
        )
        rows = {0: enriched_row, 1: enriched_row, 2: enriched_row}
        log = RunLog()
        calls = []
        result = SalaryPersister(cursor, settings).persist_all(
            rows, log, on_row=lambda n, ok: calls.append((n, ok))
        )

        assert sorted(result.persisted) == [0, 2]
        assert result.failed_rows == [3]
        assert [p.salary_ref for p in result.persisted.values()] == ["11", "12"]
        assert [p.payment_ref for p in result.persisted.values()] == ["5", "6"]
        assert calls == [(2, True), (3, False), (4, True)]
        assert "ROLLBACK TO SAVEPOINT salary_row" in cursor.statements
        assert cursor.statements[-1] == "COMMIT"
        assert [(m.code, m.row) for m in log.messages] == [("PERSIST_ROW_FAILED", 3)]
        assert "ligne 3" in log.errors[0]


class TestPersistAllRollbackBatch:
    @pytest.fixture()
    def batch_settings(self, temp_workdir):
        return PersistenceSettings(
            documents_root=temp_workdir / "documents",
            on_row_error=OnRowError.ROLLBACK_BATCH,
        )

    def test_first_failure_discards_everything(
        self, make_db_cursor, batch_settings, enriched_row, payslip, temp_workdir
    ):
        cursor = make_db_cursor(fail_inserts={"bank": {2}})
        rows = {
            0: dataclasses.replace(enriched_row, pdf=str(payslip)),
            1: enriched_row,
            2: enriched_row,
        }
        log = RunLog()
        result = SalaryPersister(cursor, batch_settings).persist_all(rows, log)

        assert result.rolled_back is True
        assert result.persisted == {}
        assert result.failed_rows == [3]
        assert cursor.statements[-1] == "ROLLBACK"
        assert "COMMIT" not in cursor.statements
        assert "SAVEPOINT salary_row" not in cursor.statements
        # 3 行目は実行されない
        assert len(cursor.rows_of("salary")) == 2
        # 移動済み PDF は元の場所へ戻る
        assert payslip.exists()
        assert not (temp_workdir / "documents" / "salaries" / "1" / "jean_dupont.pdf").exists()
        assert [m.code for m in log.messages] == ["PERSIST_ROW_FAILED", "BATCH_ROLLED_BACK"]

    def test_success_commits(self, fake_db_cursor, batch_settings, enriched_row):
        result = SalaryPersister(fake_db_cursor, batch_settings).persist_all({0: enriched_row}, RunLog())
        assert result.persisted_count == 1
        assert fake_db_cursor.statements == [
            "BEGIN",
            "INSERT salary",
            "INSERT bank",
            "INSERT payment_salary",
            "INSERT bank_url",
            "INSERT bank_url",
            "COMMIT",
        ]


def _failing_cursor(fail_on: str) -> MagicMock:
    cursor = MagicMock()
    executed = []

    def execute(query, params=None):
        text = query if isinstance(query, str) else repr(query)
        executed.append(text)
        if fail_on in text:
            raise psycopg2.OperationalError("server closed the connection")

    cursor.execute.side_effect = execute
    cursor.fetchone.return_value = None
    cursor.executed = executed
    return cursor


def test_begin_failure_raises(settings, enriched_row):
    cursor = _failing_cursor("BEGIN")
    with pytest.raises(PersistenceError, match="server closed"):
        SalaryPersister(cursor, settings).persist_all({0: enriched_row}, RunLog())


def test_counter_failure_rolls_back(settings, enriched_row):
    cursor = _failing_cursor("SELECT ref")
    with pytest.raises(PersistenceError, match="last salary ref"):
        SalaryPersister(cursor, settings).persist_all({0: enriched_row}, RunLog())
    assert cursor.executed[-1] == "ROLLBACK"
