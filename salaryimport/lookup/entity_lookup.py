from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import psycopg2
from psycopg2 import sql

from ..messages import Messages
from ..models.run_log import RunLog, Stage
from ..models.salary_rows import EnrichedRow, ValidatedRow

"""Resolve spreadsheet references to host database records.

- 従業員: llx_user を firstname / lastname で検索 (大文字小文字を区別しない)
- 支払種別: c_paiement を code で検索 (キャッシュキーは大文字化)
- 銀行口座: bank_account を ref または label で検索 (同上)

Each lookup caches its result per instance, misses included, so a batch of
rows naming the same employee only queries once. Comparisons are
case-insensitive in SQL as well as in the cache keys, so a cached miss never
hides a row spelled differently. Query failures are fatal to the run and raise
LookupQueryError; "not found" is a row-level message.
"""

__all__ = [
    "LookupQueryError",
    "UserRecord",
    "PaymentTypeRecord",
    "BankAccountRecord",
    "EntityLookup",
]

logger = logging.getLogger(__name__)

_MISS = object()


class LookupQueryError(Exception):
    pass


@dataclass(frozen=True)
class UserRecord:
    rowid: int
    name: str  # "firstname lastname" as stored in the host database


@dataclass(frozen=True)
class PaymentTypeRecord:
    id: int
    code: str
    label: str


@dataclass(frozen=True)
class BankAccountRecord:
    rowid: int
    ref: str
    label: str


class EntityLookup:
    def __init__(
        self,
        cursor: Any,
        table_prefix: str = "llx_",
        messages: Messages | None = None,
    ) -> None:
        self.cursor = cursor
        self.table_prefix = table_prefix
        self.messages = messages or Messages()
        self._user_cache: dict[str, Any] = {}
        self._payment_type_cache: dict[str, Any] = {}
        self._bank_account_cache: dict[str, Any] = {}

    def _table(self, name: str) -> sql.Identifier:
        return sql.Identifier(f"{self.table_prefix}{name}")

    def _fetchone(self, query: sql.Composed, params: tuple[Any, ...]) -> tuple[Any, ...] | None:
        try:
            self.cursor.execute(query, params)
            return self.cursor.fetchone()
        except psycopg2.Error as e:
            raise LookupQueryError(f"lookup query failed: {e}") from e

    def find_user_by_name(self, firstname: str, lastname: str) -> UserRecord | None:
        key = f"{firstname}|{lastname}".lower()
        cached = self._user_cache.get(key, _MISS)
        if cached is not _MISS:
            return cached
        query = sql.SQL(
            "SELECT rowid, firstname, lastname FROM {} "
            "WHERE lower(lastname) = lower(%s) AND lower(firstname) = lower(%s)"
        ).format(self._table("user"))
        row = self._fetchone(query, (lastname, firstname))
        record = UserRecord(rowid=int(row[0]), name=f"{row[1]} {row[2]}") if row else None
        self._user_cache[key] = record
        return record

    def find_payment_type(self, code: str) -> PaymentTypeRecord | None:
        key = code.upper()
        cached = self._payment_type_cache.get(key, _MISS)
        if cached is not _MISS:
            return cached
        query = sql.SQL("SELECT id, code, libelle FROM {} WHERE upper(code) = upper(%s)").format(
            self._table("c_paiement")
        )
        row = self._fetchone(query, (code,))
        record = PaymentTypeRecord(id=int(row[0]), code=row[1], label=row[2]) if row else None
        self._payment_type_cache[key] = record
        return record

    def find_bank_account(self, ref_or_label: str) -> BankAccountRecord | None:
        """Match the account by ``ref`` or by ``label``."""
        key = ref_or_label.lower()
        cached = self._bank_account_cache.get(key, _MISS)
        if cached is not _MISS:
            return cached
        query = sql.SQL(
            "SELECT rowid, ref, label FROM {} WHERE lower(ref) = lower(%s) OR lower(label) = lower(%s)"
        ).format(self._table("bank_account"))
        row = self._fetchone(query, (ref_or_label, ref_or_label))
        record = BankAccountRecord(rowid=int(row[0]), ref=row[1], label=row[2]) if row else None
        self._bank_account_cache[key] = record
        return record

    def clear_cache(self) -> None:
        self._user_cache.clear()
        self._payment_type_cache.clear()
        self._bank_account_cache.clear()

    def enrich_row(self, row: ValidatedRow, row_num: int, log: RunLog) -> EnrichedRow | None:
        """Resolve the three references of one row.

        All three lookups run even when an earlier one misses, so the operator
        sees every unresolved reference of the row at once.
        """
        msg = self.messages

        user = self.find_user_by_name(row.firstname, row.lastname)
        if user is None:
            log.error(Stage.LOOKUP, "USER_NOT_FOUND", msg("USER_NOT_FOUND", row=row_num), row=row_num)

        payment_type = self.find_payment_type(row.typepayment_code)
        if payment_type is None:
            log.error(
                Stage.LOOKUP,
                "PAYMENT_TYPE_NOT_FOUND",
                msg("PAYMENT_TYPE_NOT_FOUND", code=row.typepayment_code, row=row_num),
                row=row_num,
            )

        account = self.find_bank_account(row.account_ref)
        if account is None:
            log.error(
                Stage.LOOKUP,
                "BANK_ACCOUNT_NOT_FOUND",
                msg("BANK_ACCOUNT_NOT_FOUND", ref=row.account_ref, row=row_num),
                row=row_num,
            )

        if user is None or payment_type is None or account is None:
            return None
        return EnrichedRow.from_validated(
            row,
            user_id=user.rowid,
            user_name=user.name,
            typepayment=payment_type.id,
            typepaymentcode=payment_type.code,
            typepayment_label=payment_type.label,
            account=account.rowid,
            account_label=account.label,
        )

    def enrich_all(self, rows: dict[int, ValidatedRow], log: RunLog) -> dict[int, EnrichedRow]:
        enriched: dict[int, EnrichedRow] = {}
        for index, row in rows.items():
            result = self.enrich_row(row, index + 2, log)
            if result is not None:
                enriched[index] = result
        logger.debug("enriched=%d/%d", len(enriched), len(rows))
        return enriched
