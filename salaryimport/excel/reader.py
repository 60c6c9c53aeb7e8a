from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from ..models.salary_rows import ImportRow
from ..validation.validator import (
    COL_AMOUNT,
    COL_BANK_ACCOUNT,
    COL_END_DATE,
    COL_FIRSTNAME,
    COL_LABEL,
    COL_LASTNAME,
    COL_PAID,
    COL_PAYMENT_DATE,
    COL_PAYMENT_TYPE,
    COL_START_DATE,
)

"""Salary spreadsheet reader.

- 1行目をヘッダ行、2行目以降をデータ行として扱う (先頭シートのみ)
- ヘッダが空の列は無視 (キーを割り当てない)
- ヘッダは仏英どちらの表記でも正規化キーへ対応付け、未知ヘッダはそのまま
- 全セル空の行はスキップ

pandas + openpyxl で読み込み、NaN は None に変換する。
"""

__all__ = [
    "COLUMN_MAPPING",
    "SpreadsheetError",
    "SheetData",
    "normalize_header",
    "fix_encoding",
    "read_salary_sheet",
]

COLUMN_MAPPING: dict[str, str] = {
    # French
    "prénom": COL_FIRSTNAME,
    "nom": COL_LASTNAME,
    "date de paiement": COL_PAYMENT_DATE,
    "montant": COL_AMOUNT,
    "libellé": COL_LABEL,
    "date de début": COL_START_DATE,
    "date de fin": COL_END_DATE,
    "type de paiement": COL_PAYMENT_TYPE,
    "payé": COL_PAID,
    "compte bancaire": COL_BANK_ACCOUNT,
    # English
    "first name": COL_FIRSTNAME,
    "firstname": COL_FIRSTNAME,
    "last name": COL_LASTNAME,
    "lastname": COL_LASTNAME,
    "payment date": COL_PAYMENT_DATE,
    "amount": COL_AMOUNT,
    "label": COL_LABEL,
    "start date": COL_START_DATE,
    "end date": COL_END_DATE,
    "payment type": COL_PAYMENT_TYPE,
    "paid": COL_PAID,
    "bank account": COL_BANK_ACCOUNT,
}


class SpreadsheetError(Exception):
    """Fatal input problem with the salary spreadsheet.

    ``code`` is the message catalogue key, ``params`` its placeholders.
    """

    def __init__(self, code: str, message: str, **params: object) -> None:
        super().__init__(message)
        self.code = code
        self.params = params


@dataclass
class SheetData:
    headers: dict[int, str]  # 1-based column index -> normalized key
    rows: list[ImportRow]  # non-empty data rows, in sheet order


def normalize_header(header: Any) -> Any:
    if not isinstance(header, str):
        return header
    return COLUMN_MAPPING.get(header.strip().lower(), header)


def fix_encoding(value: Any) -> Any:
    """Repair text that was UTF-8 encoded twice (``"Ã©"`` -> ``"é"``).

    Best effort: the text is re-encoded as Latin-1 and decoded as UTF-8; when
    either step fails the value is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    try:
        repaired = value.encode("latin-1").decode("utf-8")
    except UnicodeError:
        return value
    return repaired


def _cell(value: Any) -> Any:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):  # pragma: no cover (array-like cell)
        pass
    if hasattr(value, "item") and not isinstance(value, (str, pd.Timestamp)):
        # numpy scalar -> python scalar
        value = value.item()
    return fix_encoding(value)


def read_salary_sheet(path: Path) -> SheetData:
    """Read the first sheet of an ``.xlsx`` salary file.

    Raises:
        SpreadsheetError: missing / unreadable file, wrong extension, workbook
            that cannot be parsed, or no data row at all.
    """
    if not path.exists():
        raise SpreadsheetError("FILE_NOT_FOUND", f"file not found: {path}", path=str(path))
    if not os.access(path, os.R_OK):
        raise SpreadsheetError("FILE_NOT_READABLE", f"file not readable: {path}", path=str(path))
    ext = path.suffix.lower().lstrip(".")
    if ext != "xlsx":
        raise SpreadsheetError("NOT_XLSX", f"file must be xlsx, got: {ext}", ext=ext)

    try:
        df = pd.read_excel(path, sheet_name=0, header=None, dtype=object, engine="openpyxl")
    except Exception as e:
        raise SpreadsheetError("XLSX_UNREADABLE", f"cannot read xlsx: {e}", detail=str(e)) from e

    if df.shape[0] == 0:
        raise SpreadsheetError("NO_DATA_ROWS", "no data rows found in file")

    headers: dict[int, str] = {}
    for col_index, raw in enumerate(df.iloc[0].tolist(), start=1):
        header = _cell(raw)
        if header is None or header == "":
            continue
        headers[col_index] = normalize_header(header)

    rows: list[ImportRow] = []
    for values in df.iloc[1:].itertuples(index=False, name=None):
        row: ImportRow = {}
        has_data = False
        for col_index, key in headers.items():
            value = _cell(values[col_index - 1])
            row[key] = value
            if value is not None and value != "":
                has_data = True
        if has_data:
            rows.append(row)

    if not rows:
        raise SpreadsheetError("NO_DATA_ROWS", "no data rows found in file")
    return SheetData(headers=headers, rows=rows)
