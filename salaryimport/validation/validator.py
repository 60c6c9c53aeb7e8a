from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pandas as pd

from ..messages import Messages
from ..models.run_log import RunLog, Stage
from ..models.salary_rows import ImportRow, ValidatedRow

"""Row validation / normalization for the salary spreadsheet.

Every parser returns ``None`` on failure. ``0`` / ``0.0`` are real values
(an explicit zero amount, an unpaid flag) and must be tested with ``is None``.

Date cells arrive in three shapes:
- spreadsheet serial day counts (int / float, or numeric strings)
- ``datetime`` objects (openpyxl converts date formatted cells)
- free text dates ("2024-01-15", "01/31/2024"), parsed locale independently;
  slash dates are always month/day/year
"""

__all__ = [
    "COL_FIRSTNAME",
    "COL_LASTNAME",
    "COL_PAYMENT_DATE",
    "COL_AMOUNT",
    "COL_LABEL",
    "COL_START_DATE",
    "COL_END_DATE",
    "COL_PAYMENT_TYPE",
    "COL_PAID",
    "COL_BANK_ACCOUNT",
    "REQUIRED_FIELDS",
    "parse_excel_date",
    "format_date_for_display",
    "parse_amount",
    "parse_paye",
    "RowValidator",
]

# 正規化済み列キー (excel.reader のヘッダ対応表の出力側)
COL_FIRSTNAME = "Prénom"
COL_LASTNAME = "Nom"
COL_PAYMENT_DATE = "Date de paiement"
COL_AMOUNT = "Montant"
COL_LABEL = "Libellé"
COL_START_DATE = "Date de début"
COL_END_DATE = "Date de fin"
COL_PAYMENT_TYPE = "Type de paiement"
COL_PAID = "Payé"
COL_BANK_ACCOUNT = "Compte bancaire"

REQUIRED_FIELDS: tuple[str, ...] = (
    COL_FIRSTNAME,
    COL_LASTNAME,
    COL_PAYMENT_DATE,
    COL_AMOUNT,
    COL_LABEL,
    COL_START_DATE,
    COL_END_DATE,
    COL_PAYMENT_TYPE,
    COL_PAID,
    COL_BANK_ACCOUNT,
)

# 1970-01-01 のシリアル値 (1900 年うるう年バグ込み)
EXCEL_UNIX_EPOCH_SERIAL = 25569
SECONDS_PER_DAY = 86400

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
# PHP is_numeric 相当 (nan / inf / 1_000 は不可)
_NUMERIC_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_SPACES = (" ", "\u00a0", "\u202f")
# m/d/Y (strtotime と同じ解釈)
_SLASH_DATE_RE = re.compile(r"^\d{1,2}/\d{1,2}/(\d{2}|\d{4})$")

_PAID_YES = {"oui", "yes", "1"}
_PAID_NO = {"non", "no", "0"}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and value == ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_text_date(text: str) -> datetime | None:
    """ISO dates exactly, slash dates as month/day/year, anything else through pandas.

    ``01/02/2024`` is 2 January; ``31/01/2024`` has no month 31 and is rejected
    rather than silently read day-first.
    """
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    slash = _SLASH_DATE_RE.match(text)
    if slash:
        fmt = "%m/%d/%Y" if len(slash.group(1)) == 4 else "%m/%d/%y"
        parsed = pd.to_datetime(text, format=fmt, errors="coerce")
    else:
        parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def _to_datetime(value: Any) -> datetime | None:
    """Decode a date cell into a datetime, or None when it cannot be decoded."""
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and not _NUMERIC_RE.match(value.strip()):
        return _parse_text_date(value.strip())
    if isinstance(value, str):
        serial = float(value.strip())
    elif _is_number(value):
        serial = float(value)
    else:
        return None
    if math.isnan(serial) or math.isinf(serial):
        return None
    seconds = (serial - EXCEL_UNIX_EPOCH_SERIAL) * SECONDS_PER_DAY
    if seconds < 0:
        return None
    try:
        return _UNIX_EPOCH + timedelta(seconds=seconds)
    except OverflowError:
        return None


def parse_excel_date(value: Any) -> str | None:
    """Spreadsheet date cell -> ``YYYY-MM-DD``.

    >>> parse_excel_date(44197)
    '2021-01-01'
    """
    decoded = _to_datetime(value)
    return decoded.strftime("%Y-%m-%d") if decoded is not None else None


def format_date_for_display(value: Any) -> str | None:
    """Spreadsheet date cell -> ``DD/MM/YYYY`` for the preview."""
    decoded = _to_datetime(value)
    return decoded.strftime("%d/%m/%Y") if decoded is not None else None


def parse_amount(value: Any) -> float | None:
    """Parse an amount, accepting French decimal commas and spaced thousands.

    ``"1 500,50"`` -> 1500.5, ``"0"`` -> 0.0, ``""`` / ``None`` / ``"abc"`` -> None.
    """
    if _is_blank(value):
        return None
    if value == 0 or value == "0":
        return 0.0
    if _is_number(value):
        number = float(value)
        return None if math.isinf(number) else number
    if not isinstance(value, str):
        return None
    text = value.replace(",", ".")
    for space in _SPACES:
        text = text.replace(space, "")
    if not _NUMERIC_RE.match(text):
        return None
    number = float(text)
    return None if math.isinf(number) else number


def parse_paye(value: Any) -> int | None:
    """``oui`` / ``yes`` / ``1`` -> 1, ``non`` / ``no`` / ``0`` -> 0, else None."""
    if _is_blank(value):
        return None
    if isinstance(value, bool):
        # openpyxl は真偽値セルを bool で返す
        return int(value)
    if _is_number(value) and float(value).is_integer():
        value = int(value)
    normalized = str(value).strip().lower()
    if normalized in _PAID_YES:
        return 1
    if normalized in _PAID_NO:
        return 0
    return None


def _text(row: Mapping[str, Any], key: str) -> str:
    value = row.get(key)
    if _is_blank(value):
        return ""
    return str(value).strip()


class RowValidator:
    """Turn ImportRows into ValidatedRows, reporting every failing field.

    A row is checked field by field in a fixed order and all failures are
    recorded (no short circuit). When any field fails the row yields ``None``;
    partially valid fields are discarded.
    """

    required_fields = REQUIRED_FIELDS

    def __init__(self, messages: Messages | None = None) -> None:
        self.messages = messages or Messages()

    def _date_field(
        self,
        row: Mapping[str, Any],
        key: str,
        row_num: int,
        empty_code: str,
        invalid_code: str,
        failures: list[tuple[str, str]],
    ) -> tuple[str, str] | None:
        raw = row.get(key)
        # 0 / "0" は未入力扱い
        if _is_blank(raw) or (isinstance(raw, str) and raw.strip() in ("", "0")) or raw == 0:
            failures.append((empty_code, self.messages(empty_code, row=row_num)))
            return None
        parsed = parse_excel_date(raw)
        if parsed is None:
            failures.append(
                (invalid_code, self.messages(invalid_code, value=raw, row=row_num))
            )
            return None
        return parsed, format_date_for_display(raw) or ""

    def validate_row(self, row: ImportRow, row_num: int, log: RunLog) -> ValidatedRow | None:
        """Validate one row; ``row_num`` is the 1-based spreadsheet row shown to the operator."""
        msg = self.messages
        failures: list[tuple[str, str]] = []

        firstname = _text(row, COL_FIRSTNAME)
        lastname = _text(row, COL_LASTNAME)
        if not firstname or not lastname:
            failures.append(("EMPTY_NAME", msg("EMPTY_NAME", row=row_num)))

        datep = self._date_field(
            row, COL_PAYMENT_DATE, row_num, "EMPTY_PAYMENT_DATE", "INVALID_PAYMENT_DATE", failures
        )

        amount = parse_amount(row.get(COL_AMOUNT))
        if amount is None:
            failures.append(("INVALID_AMOUNT", msg("INVALID_AMOUNT", row=row_num)))

        label = _text(row, COL_LABEL)
        if not label:
            failures.append(("EMPTY_LABEL", msg("EMPTY_LABEL", row=row_num)))

        datesp = self._date_field(
            row, COL_START_DATE, row_num, "EMPTY_START_DATE", "INVALID_START_DATE", failures
        )
        dateep = self._date_field(
            row, COL_END_DATE, row_num, "EMPTY_END_DATE", "INVALID_END_DATE", failures
        )

        typepayment_code = _text(row, COL_PAYMENT_TYPE)
        if not typepayment_code:
            failures.append(("EMPTY_PAYMENT_TYPE", msg("EMPTY_PAYMENT_TYPE", row=row_num)))

        raw_paye = row.get(COL_PAID)
        paye: int | None = None
        if _is_blank(raw_paye):
            failures.append(("EMPTY_PAID", msg("EMPTY_PAID", row=row_num)))
        else:
            paye = parse_paye(raw_paye)
            if paye is None:
                failures.append(("INVALID_PAID", msg("INVALID_PAID", row=row_num)))

        account_ref = _text(row, COL_BANK_ACCOUNT)
        if not account_ref:
            failures.append(("EMPTY_BANK_ACCOUNT", msg("EMPTY_BANK_ACCOUNT", row=row_num)))

        for code, text in failures:
            log.error(Stage.VALIDATION, code, text, row=row_num)
        if failures or datep is None or datesp is None or dateep is None:
            return None
        if amount is None or paye is None:
            return None

        return ValidatedRow(
            firstname=firstname,
            lastname=lastname,
            datep=datep[0],
            datep_display=datep[1],
            amount=amount,
            label=label,
            datesp=datesp[0],
            datesp_display=datesp[1],
            dateep=dateep[0],
            dateep_display=dateep[1],
            typepayment_code=typepayment_code,
            paye=paye,
            account_ref=account_ref,
        )

    def validate_all(self, rows: list[ImportRow], log: RunLog) -> dict[int, ValidatedRow]:
        """Validate every row, keeping the valid ones under their original index.

        Display row numbers are ``index + 2`` (row 1 is the header row).
        """
        validated: dict[int, ValidatedRow] = {}
        for index, row in enumerate(rows):
            result = self.validate_row(row, index + 2, log)
            if result is not None:
                validated[index] = result
        return validated
