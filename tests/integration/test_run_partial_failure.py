from __future__ import annotations

import json
from pathlib import Path

from salaryimport.cli.__main__ import main as cli_main
from salaryimport.logging.init import reset_logging

"""Integration test: a row fails while being written.

- skip_row: the failing row is rolled back to its SAVEPOINT, the others commit,
  exit code 2, the error log names the row
- rollback_batch: nothing is kept and moved payslips go back to the staging
  folder before it is cleaned up
"""


def _three_rows(make_xlsx, salary_line) -> Path:
    return make_xlsx(
        [
            salary_line(),
            salary_line("Marie", "Martin"),
            salary_line(Montant=1200.0, **{"Libellé": "Prime"}),
        ]
    )


def test_skip_row_keeps_other_rows(write_config, cli_db, make_xlsx, salary_line, capsys, temp_workdir):
    cli_db.fail_inserts = {"payment_salary": {2}}
    reset_logging()
    code = cli_main(["import", str(_three_rows(make_xlsx, salary_line))])
    out = capsys.readouterr().out
    reset_logging()

    assert code == 2
    assert "persisted=2 failed=1" in out
    assert "ERROR Erreur lors de l'enregistrement de la ligne 3" in out
    assert cli_db.statements[-1] == "COMMIT"
    assert cli_db.statements.count("ROLLBACK TO SAVEPOINT salary_row") == 1
    # ref は欠番なしで採番
    payments = cli_db.rows_of("payment_salary")
    assert [p["ref"] for p in payments] == ["1", "2"]

    log_files = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(log_files) == 1
    record = json.loads(log_files[0].read_text(encoding="utf-8").splitlines()[0])
    assert record["row"] == 3
    assert record["stage"] == "persistence"
    assert record["error_type"] == "PERSIST_ROW_FAILED"


def test_rollback_batch_discards_everything(
    write_config, cli_db, make_xlsx, make_zip, salary_line, capsys, temp_workdir
):
    write_config.write_text(
        write_config.read_text(encoding="utf-8").replace("skip_row", "rollback_batch"),
        encoding="utf-8",
    )
    cli_db.fail_inserts = {"bank": {3}}
    payslips = make_zip(["jean_dupont.pdf"])
    reset_logging()
    code = cli_main(["import", str(_three_rows(make_xlsx, salary_line)), "--zip", str(payslips)])
    out = capsys.readouterr().out
    reset_logging()

    assert code == 2
    assert "persisted=0 failed=1" in out
    assert "ERROR Import annulé" in out
    assert cli_db.statements[-1] == "ROLLBACK"
    assert "COMMIT" not in cli_db.statements
    assert not (temp_workdir / "documents" / "salaries" / "1" / "jean_dupont.pdf").exists()
    assert list((temp_workdir / "work").iterdir()) == []


def test_missing_payslip_target_is_only_a_warning(
    write_config, cli_db, make_xlsx, make_zip, salary_line, capsys
):
    cli_db.fail_inserts = {"ecm_files": {1}}
    payslips = make_zip(["jean_dupont.pdf"])
    reset_logging()
    code = cli_main(["import", str(make_xlsx([salary_line()])), "--zip", str(payslips)])
    out = capsys.readouterr().out
    reset_logging()

    assert code == 0
    assert "WARN PDF jean_dupont.pdf non joint au salaire de la ligne 2" in out
    assert "persisted=1 failed=0 errors=0 warnings=1" in out
