from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from pathlib import Path

from ..models.salary_rows import PdfCandidate

"""Payslip archive handling.

The operator uploads a ZIP of payslips next to the spreadsheet. The archive is
extracted under the work directory and every ``*.pdf`` (case-insensitive) found
at the top of the extraction folder becomes a PdfCandidate whose name tokens are
the lowercase filename stem split on ``_``.
"""

__all__ = [
    "ArchiveError",
    "PdfArchive",
    "default_work_dir",
    "scan_directory_for_pdfs",
]

logger = logging.getLogger(__name__)


class ArchiveError(Exception):
    """ZIP missing, corrupt or unsafe. Distinct from 'no payslip matched'."""


def default_work_dir() -> Path:
    return Path(tempfile.gettempdir()) / "salaryimport"


def scan_directory_for_pdfs(directory: Path) -> list[PdfCandidate]:
    """List PDF candidates directly under ``directory`` (sorted by filename)."""
    if not directory.is_dir():
        return []
    return [
        PdfCandidate.from_path(p)
        for p in sorted(directory.iterdir(), key=lambda p: p.name)
        if p.is_file() and p.suffix.lower() == ".pdf"
    ]


class PdfArchive:
    """Extract payslip archives into ``work_dir`` and clean them up afterwards."""

    def __init__(self, work_dir: Path | None = None) -> None:
        self.work_dir = work_dir if work_dir is not None else default_work_dir()

    def extract(self, zip_path: Path, folder: str | None = None) -> list[PdfCandidate]:
        """Extract ``zip_path`` into ``work_dir/folder`` and return the PDFs found.

        Raises:
            ArchiveError: archive not found, not a valid ZIP, or a member would be
                written outside the extraction folder.
        """
        if not zip_path.exists():
            raise ArchiveError(f"ZIP file not found: {zip_path}")
        target = self.work_dir / (folder or zip_path.stem)
        try:
            with zipfile.ZipFile(zip_path) as zf:
                root = target.resolve()
                for member in zf.namelist():
                    dest = (target / member).resolve()
                    if dest != root and root not in dest.parents:
                        raise ArchiveError(f"unsafe path in archive: {member}")
                target.mkdir(parents=True, exist_ok=True)
                zf.extractall(target)
        except zipfile.BadZipFile as e:
            raise ArchiveError(f"failed to open ZIP archive {zip_path}: {e}") from e
        except OSError as e:
            raise ArchiveError(f"failed to extract ZIP archive to {target}: {e}") from e

        candidates = scan_directory_for_pdfs(target)
        logger.debug("archive=%s extracted_to=%s pdfs=%d", zip_path.name, target, len(candidates))
        return candidates

    def cleanup(self, folder: str, zip_name: str | None = None) -> list[str]:
        """Remove an extraction folder (and the staged ZIP). Returns failure details."""
        failures: list[str] = []
        if zip_name is not None:
            zip_path = self.work_dir / zip_name
            try:
                zip_path.unlink(missing_ok=True)
            except OSError as e:
                failures.append(f"failed to delete ZIP file {zip_path}: {e}")
        folder_path = self.work_dir / folder
        if folder_path.is_dir():
            try:
                shutil.rmtree(folder_path)
            except OSError as e:
                failures.append(f"failed to delete folder {folder_path}: {e}")
        return failures
