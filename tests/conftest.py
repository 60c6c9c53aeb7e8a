# Shared pytest fixtures
from __future__ import annotations

import re
import tempfile
import zipfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pandas as pd
import psycopg2
import pytest

from salaryimport.logging.init import reset_logging
from salaryimport.models.salary_rows import EnrichedRow, ValidatedRow

HEADERS = [
    "Prénom",
    "Nom",
    "Date de paiement",
    "Montant",
    "Type de paiement",
    "Libellé",
    "Date de début",
    "Date de fin",
    "Payé",
    "Compte bancaire",
]

# 2024-01-31 / 2024-01-01 のシリアル値
SERIAL_2024_01_31 = 45322
SERIAL_2024_01_01 = 45292

PDF_BYTES = b"%PDF-1.4\n%%EOF\n"


@pytest.fixture(autouse=True)
def _fresh_logging():
    # salaryimport ロガーのハンドラは capsys の stdout を掴むため毎回作り直す
    reset_logging()
    yield
    reset_logging()


def _salary_line(firstname: str = "Jean", lastname: str = "Dupont", **overrides: Any) -> list[Any]:
    values = {
        "Prénom": firstname,
        "Nom": lastname,
        "Date de paiement": SERIAL_2024_01_31,
        "Montant": 2500.0,
        "Type de paiement": "VIR",
        "Libellé": "Salaire Janvier 2024",
        "Date de début": SERIAL_2024_01_01,
        "Date de fin": SERIAL_2024_01_31,
        "Payé": "oui",
        "Compte bancaire": "COMPTE1",
    }
    values.update(overrides)
    return [values[h] for h in HEADERS]


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        (p / "work").mkdir()
        (p / "documents").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """work_directory: ./work
logs_directory: ./logs
language: fr
abort_on_validation_errors: true
persistence:
  table_prefix: llx_
  entity: 1
  author_user_id: 1
  documents_root: ./documents
  on_row_error: skip_row
database:
  host: localhost
  port: 5432
  user: dolibarr
  password: secret
  database: dolibarr
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def make_xlsx(temp_workdir: Path) -> Callable[..., Path]:
    """Write a real .xlsx (header row + data rows) with pandas/openpyxl."""
    def _make(rows: list[list[Any]], name: str = "salaires.xlsx", headers: list[str] | None = None) -> Path:
        path = temp_workdir / "data" / name
        df = pd.DataFrame(rows, columns=headers or HEADERS)
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Salaires", index=False)
        return path
    return _make


@pytest.fixture()
def make_zip(temp_workdir: Path) -> Callable[..., Path]:
    def _make(names: list[str], name: str = "fiches.zip") -> Path:
        path = temp_workdir / "data" / name
        with zipfile.ZipFile(path, "w") as zf:
            for member in names:
                zf.writestr(member, PDF_BYTES)
        return path
    return _make


@pytest.fixture()
def validated_row() -> ValidatedRow:
    return ValidatedRow(
        firstname="Jean",
        lastname="Dupont",
        datep="2024-01-31",
        datep_display="31/01/2024",
        amount=2500.0,
        label="Salaire Janvier 2024",
        datesp="2024-01-01",
        datesp_display="01/01/2024",
        dateep="2024-01-31",
        dateep_display="31/01/2024",
        typepayment_code="VIR",
        paye=1,
        account_ref="COMPTE1",
    )


@pytest.fixture()
def enriched_row(validated_row: ValidatedRow) -> EnrichedRow:
    return EnrichedRow.from_validated(
        validated_row,
        user_id=7,
        user_name="Jean Dupont",
        typepayment=2,
        typepaymentcode="VIR",
        typepayment_label="Virement",
        account=1,
        account_label="Compte courant",
    )


def _folded(mapping: dict[Any, Any], key: Any) -> tuple[Any, Any] | None:
    """Case-insensitive dict lookup, like ``lower(col) = lower(%s)`` on PostgreSQL.

    Returns ``(stored_key, value)`` so the fake answers with the stored spelling.
    """

    def fold(k: Any) -> Any:
        return tuple(p.lower() for p in k) if isinstance(k, tuple) else k.lower()

    for stored, value in mapping.items():
        if fold(stored) == fold(key):
            return stored, value
    return None


def _answer_lookup(
    text: str,
    params: tuple[Any, ...],
    users: dict[tuple[str, str], int],
    payment_types: dict[str, tuple[int, str]],
    accounts: dict[str, tuple[int, str, str]],
) -> tuple[Any, ...] | None:
    if "bank_account" in text:
        hit = _folded(accounts, params[0])
        return hit[1] if hit else None
    if "c_paiement" in text:
        hit = _folded(payment_types, params[0])
        return (hit[1][0], hit[0], hit[1][1]) if hit else None
    lastname, firstname = params
    hit = _folded(users, (firstname, lastname))
    return (hit[1], hit[0][0], hit[0][1]) if hit else None


def _lookup_cursor(
    users: dict[tuple[str, str], int] | None = None,
    payment_types: dict[str, tuple[int, str]] | None = None,
    accounts: dict[str, tuple[int, str, str]] | None = None,
) -> MagicMock:
    """MagicMock cursor answering the three lookup queries from dicts.

    users: (firstname, lastname) -> rowid
    payment_types: code -> (id, libelle)
    accounts: ref or label -> (rowid, ref, label)
    """
    users = users if users is not None else {("Jean", "Dupont"): 7}
    payment_types = payment_types if payment_types is not None else {"VIR": (2, "Virement")}
    accounts = accounts if accounts is not None else {"COMPTE1": (1, "COMPTE1", "Compte courant")}
    cursor = MagicMock()
    state: dict[str, Any] = {"next": None}

    def execute(query: Any, params: Any = None) -> None:
        # psycopg2.sql.Composed の repr にテーブル名が含まれる
        text = repr(query)
        params = tuple(params or ())
        state["next"] = _answer_lookup(text, params, users, payment_types, accounts)

    cursor.execute.side_effect = execute
    cursor.fetchone.side_effect = lambda: state["next"]
    return cursor


@pytest.fixture()
def fake_lookup_cursor() -> MagicMock:
    return _lookup_cursor()


@pytest.fixture()
def salary_line() -> Callable[..., list[Any]]:
    """Factory: one spreadsheet data line in HEADERS order."""
    return _salary_line


@pytest.fixture()
def make_lookup_cursor() -> Callable[..., MagicMock]:
    return _lookup_cursor


_IDENTIFIER_RE = re.compile(r"Identifier\('([^']+)'\)")


class FakeDbCursor:
    """In-memory stand-in for a psycopg2 cursor on the host database.

    Answers the lookup SELECTs from dicts (same shapes as ``_lookup_cursor``),
    seeds ``SELECT ref`` from ``last_refs`` and hands out sequential ids for
    ``INSERT ... RETURNING rowid``. ``fail_inserts`` maps a table name (without
    prefix) to the 1-based insert attempts that raise ``psycopg2.Error``.
    """

    def __init__(
        self,
        users: dict[tuple[str, str], int] | None = None,
        payment_types: dict[str, tuple[int, str]] | None = None,
        accounts: dict[str, tuple[int, str, str]] | None = None,
        last_refs: dict[str, int] | None = None,
        fail_inserts: dict[str, set[int]] | None = None,
        prefix: str = "llx_",
    ) -> None:
        self.users = users if users is not None else {("Jean", "Dupont"): 7, ("Marie", "Martin"): 8}
        self.payment_types = payment_types if payment_types is not None else {"VIR": (2, "Virement")}
        self.accounts = accounts if accounts is not None else {"COMPTE1": (1, "COMPTE1", "Compte courant")}
        self.last_refs = last_refs or {}
        self.fail_inserts = fail_inserts or {}
        self.prefix = prefix
        self.statements: list[str] = []  # BEGIN / SAVEPOINT ... / INSERT <table> の順序記録
        self.inserts: list[tuple[str, dict[str, Any]]] = []
        self._attempts: dict[str, int] = {}
        self._next: Any = None

    def execute(self, query: Any, params: Any = None) -> None:
        self._next = None
        if isinstance(query, str):
            self.statements.append(query)
            return
        text = repr(query)
        names = _IDENTIFIER_RE.findall(text)
        table = names[0][len(self.prefix):] if names[0].startswith(self.prefix) else names[0]
        params = list(params or [])
        if "SELECT ref" in text:
            ref = self.last_refs.get(table)
            self._next = (str(ref),) if ref is not None else None
        elif "INSERT INTO" in text:
            attempt = self._attempts.get(table, 0) + 1
            self._attempts[table] = attempt
            self.statements.append(f"INSERT {table}")
            if attempt in self.fail_inserts.get(table, set()):
                raise psycopg2.DatabaseError(f"insert into {table} rejected")
            self.inserts.append((table, dict(zip(names[1:], params))))
            self._next = (sum(1 for t, _ in self.inserts if t == table),)
        else:
            self._next = _answer_lookup(
                text, tuple(params), self.users, self.payment_types, self.accounts
            )

    def fetchone(self) -> Any:
        return self._next

    def rows_of(self, table: str) -> list[dict[str, Any]]:
        return [values for t, values in self.inserts if t == table]


@pytest.fixture()
def make_db_cursor() -> Callable[..., FakeDbCursor]:
    return FakeDbCursor


@pytest.fixture()
def fake_db_cursor() -> FakeDbCursor:
    return FakeDbCursor()


@pytest.fixture()
def cli_db(monkeypatch) -> FakeDbCursor:
    """Route the CLI database connection to a FakeDbCursor."""
    cursor = FakeDbCursor()

    @contextmanager
    def _connection(cfg: Any) -> Iterator[FakeDbCursor]:
        yield cursor

    monkeypatch.setattr("salaryimport.cli.__main__._db_connection", _connection)
    return cursor
