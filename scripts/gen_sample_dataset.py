#!/usr/bin/env python3
"""Sample dataset generation for the salary import.

Writes a salary spreadsheet in the expected format (row 1: French headers,
row 2+: one salary per row, dates as spreadsheet serial numbers) and, unless
``--no-zip``, a payslip archive with one placeholder PDF per employee named
``firstname_lastname.pdf``.

``--invalid-ratio`` blanks or corrupts a share of the cells so validation
messages can be tried out.
"""
from __future__ import annotations

import argparse
import sys
import zipfile
from datetime import date
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

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

FIRSTNAMES = ["Jean", "Marie", "Pierre", "Sophie", "François", "Jean-Pierre", "Anne Marie", "Éloïse"]
LASTNAMES = ["Dupont", "Martin", "Durand", "Lefebvre", "Müller", "De La Fontaine", "O'Brien", "Petit"]
PAYMENT_TYPES = ["VIR", "CHQ", "LIQ"]
MONTHS_FR = [
    "Janvier", "Février", "Mars", "Avril", "Mai", "Juin",
    "Juillet", "Août", "Septembre", "Octobre", "Novembre", "Décembre",
]

# 1970-01-01 のシリアル値
EXCEL_UNIX_EPOCH_SERIAL = 25569

# 最小の 1 ページ PDF (中身は検証しない)
PLACEHOLDER_PDF = (
    b"%PDF-1.4\n1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
    b"2 0 obj<</Type/Pages/Kids[3 0 R]/Count 1>>endobj\n"
    b"3 0 obj<</Type/Page/Parent 2 0 R/MediaBox[0 0 595 842]>>endobj\n"
    b"trailer<</Root 1 0 R>>\n%%EOF\n"
)


def to_serial(d: date) -> int:
    return (d - date(1970, 1, 1)).days + EXCEL_UNIX_EPOCH_SERIAL


def month_end(year: int, month: int) -> date:
    return (pd.Timestamp(year=year, month=month, day=1) + pd.offsets.MonthEnd(0)).date()


def generate_salary_rows(
    rows: int,
    year: int,
    month: int,
    account: str,
    invalid_ratio: float = 0.0,
    seed: int = 42,
) -> pd.DataFrame:
    """Build the salary DataFrame (one row per employee and month)."""
    rng = np.random.default_rng(seed)
    start = date(year, month, 1)
    end = month_end(year, month)
    data: list[list[Any]] = []
    for i in range(rows):
        firstname = FIRSTNAMES[i % len(FIRSTNAMES)]
        lastname = LASTNAMES[(i // len(FIRSTNAMES)) % len(LASTNAMES)]
        if i >= len(FIRSTNAMES) * len(LASTNAMES):
            lastname = f"{lastname}{i}"
        data.append([
            firstname,
            lastname,
            to_serial(end),
            float(np.round(rng.uniform(1500, 4500), 2)),
            str(rng.choice(PAYMENT_TYPES)),
            f"Salaire {MONTHS_FR[month - 1]} {year}",
            to_serial(start),
            to_serial(end),
            str(rng.choice(["oui", "non"], p=[0.9, 0.1])),
            account,
        ])

    if invalid_ratio > 0:
        for row in data:
            if rng.random() < invalid_ratio:
                col = int(rng.integers(0, len(HEADERS)))
                # 空欄 or 解釈できない値
                row[col] = "" if rng.random() < 0.5 else "???"

    return pd.DataFrame(data, columns=HEADERS)


def create_salary_file(output_path: Path, df: pd.DataFrame) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name="Salaires", index=False)
    print(f"Created salary file: {output_path} ({len(df)} rows)")


def create_payslip_zip(output_path: Path, df: pd.DataFrame) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    names: set[str] = set()
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for firstname, lastname in zip(df["Prénom"], df["Nom"], strict=True):
            if not isinstance(firstname, str) or not isinstance(lastname, str):
                continue
            # 空白は "_" 区切りとして扱われるので、ファイル名でも "_" に揃える
            name = f"{firstname}_{lastname}".replace(" ", "_") + ".pdf"
            if name in names:
                continue
            names.add(name)
            zf.writestr(name, PLACEHOLDER_PDF)
    print(f"Created payslip archive: {output_path} ({len(names)} PDFs)")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a sample salary spreadsheet and payslip archive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/salaires.xlsx
  %(prog)s data/salaires.xlsx --rows 200 --year 2024 --month 2 --account COMPTE1
  %(prog)s data/broken.xlsx --invalid-ratio 0.2 --no-zip
        """,
    )
    parser.add_argument("output", type=Path, help="Output .xlsx path")
    parser.add_argument("--rows", type=int, default=8, help="Number of salary rows (default: 8)")
    parser.add_argument("--year", type=int, default=2024)
    parser.add_argument("--month", type=int, default=1)
    parser.add_argument("--account", default="COMPTE1", help="Bank account ref or label")
    parser.add_argument("--invalid-ratio", type=float, default=0.0, help="Share of rows to corrupt")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--no-zip", action="store_true", help="Do not write the payslip archive")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if not 1 <= args.month <= 12:
        print("Error: --month must be between 1 and 12", file=sys.stderr)
        return 1
    if not 0.0 <= args.invalid_ratio <= 1.0:
        print("Error: --invalid-ratio must be between 0 and 1", file=sys.stderr)
        return 1

    df = generate_salary_rows(
        args.rows, args.year, args.month, args.account, args.invalid_ratio, args.seed
    )
    try:
        create_salary_file(args.output, df)
        if not args.no_zip:
            create_payslip_zip(args.output.with_suffix(".zip"), df)
    except OSError as e:
        print(f"Error generating dataset: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
