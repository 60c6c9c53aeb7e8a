from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

"""Row-level domain models for the salary import.

The lifecycle of one spreadsheet row is:

    ImportRow (dict) -> ValidatedRow -> EnrichedRow -> PersistedRow

PdfCandidate / SegmentCombination belong to the payslip matching side and are
built from the extracted ZIP archive.
"""

__all__ = [
    "ImportRow",
    "ValidatedRow",
    "EnrichedRow",
    "PdfCandidate",
    "SegmentCombination",
    "PersistedRow",
]

# 正規化済み列キー -> セル値 (str / int / float / datetime / None)
ImportRow = dict[str, Any]


@dataclass(frozen=True)
class ValidatedRow:
    """Normalized and typed spreadsheet row.

    Either every field validated or the row does not exist at all; the
    validator never builds a partially populated instance.
    """
    firstname: str
    lastname: str
    datep: str  # payment date, YYYY-MM-DD
    datep_display: str  # DD/MM/YYYY
    amount: float
    label: str
    datesp: str  # period start
    datesp_display: str
    dateep: str  # period end
    dateep_display: str
    typepayment_code: str  # resolved during enrichment
    paye: int  # 0 | 1
    account_ref: str  # resolved during enrichment

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EnrichedRow(ValidatedRow):
    """ValidatedRow plus the host database identifiers it refers to.

    Instances are frozen; the matched payslip is attached with
    ``dataclasses.replace(row, pdf=path)``.
    """
    user_id: int
    user_name: str
    typepayment: int  # payment type id
    typepaymentcode: str
    typepayment_label: str
    account: int  # bank account id
    account_label: str
    pdf: str = ""  # matched payslip path or ""

    @classmethod
    def from_validated(cls, row: ValidatedRow, **resolved: Any) -> EnrichedRow:
        return cls(**row.to_dict(), **resolved)

    @property
    def pdf_display(self) -> str:
        return Path(self.pdf).name if self.pdf else ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnrichedRow:
        """Rebuild a row from ``to_dict()`` output (saved preview files)."""
        known = {f.name for f in fields(cls)}
        missing = sorted(n for n in known if n not in data and n != "pdf")
        if missing:
            raise ValueError(f"preview row missing keys: {missing}")
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class SegmentCombination:
    """Contiguous run of filename segments joined with '-'."""
    value: str
    indices: frozenset[int]


@dataclass(frozen=True)
class PdfCandidate:
    """A payslip PDF found in the extracted archive."""
    filename: str
    path: str
    name_tokens: tuple[str, ...]  # lowercase stem split on "_"

    @classmethod
    def from_path(cls, path: Path) -> PdfCandidate:
        stem = path.stem.lower()
        return cls(filename=path.name, path=str(path), name_tokens=tuple(stem.split("_")))


@dataclass(frozen=True)
class PersistedRow:
    """Identifiers generated while persisting one EnrichedRow."""
    salary_id: int
    salary_ref: str
    payment_id: int
    payment_ref: str
    bank_id: int
    pdf_attached: bool = False
