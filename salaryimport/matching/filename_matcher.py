from __future__ import annotations

from collections.abc import Iterable, Sequence

from ..models.salary_rows import PdfCandidate, SegmentCombination
from .normalizer import normalize_name

"""Match payslip PDFs to employees from their filenames.

Filename convention: ``firstname[_firstname...]_lastname[_lastname...].pdf``.
A candidate matches an employee when one contiguous run of segments equals the
normalized firstname and another, non-overlapping, run equals the normalized
lastname. Joining runs with ``-`` lets compound names match whether they were
typed with a hyphen or a space (``Jean-Pierre`` / ``Jean Pierre`` both match
``jean_pierre_dupont.pdf``); requiring disjoint runs stops a single segment from
standing for both names (``martin.pdf`` is not Martin Martin's payslip,
``martin_martin.pdf`` is).
"""

__all__ = [
    "generate_consecutive_combinations",
    "indices_overlap",
    "find_pdf_for_user",
    "matches_firstname",
    "matches_lastname",
    "matches_user_name",
]


def generate_consecutive_combinations(tokens: Sequence[str]) -> list[SegmentCombination]:
    """All contiguous sub-runs of ``tokens``, ordered by start index then length.

    ``["jean", "pierre", "dupont"]`` gives ``jean``, ``jean-pierre``,
    ``jean-pierre-dupont``, ``pierre``, ``pierre-dupont``, ``dupont``:
    n(n+1)/2 entries for n tokens.
    """
    count = len(tokens)
    combinations: list[SegmentCombination] = []
    for start in range(count):
        for length in range(1, count - start + 1):
            end = start + length
            combinations.append(
                SegmentCombination(
                    value="-".join(tokens[start:end]),
                    indices=frozenset(range(start, end)),
                )
            )
    return combinations


def indices_overlap(first: Iterable[int], second: Iterable[int]) -> bool:
    return not set(first).isdisjoint(second)


def _candidate_matches(candidate: PdfCandidate, firstname: str, lastname: str) -> bool:
    firstname_hits: list[frozenset[int]] = []
    lastname_hits: list[frozenset[int]] = []
    for combo in generate_consecutive_combinations(candidate.name_tokens):
        value = normalize_name(combo.value)
        if value == firstname:
            firstname_hits.append(combo.indices)
        if value == lastname:
            lastname_hits.append(combo.indices)
    return any(
        not indices_overlap(fn, ln) for fn in firstname_hits for ln in lastname_hits
    )


def find_pdf_for_user(
    firstname: str, lastname: str, candidates: Iterable[PdfCandidate]
) -> str | None:
    """Return the path of the first candidate naming this employee, else None.

    Candidates are scanned in input order; the first one with a valid
    firstname/lastname pair wins, there is no ranking between several matches.
    """
    norm_first = normalize_name(firstname)
    norm_last = normalize_name(lastname)
    if not norm_first or not norm_last:
        return None
    for candidate in candidates:
        if _candidate_matches(candidate, norm_first, norm_last):
            return candidate.path
    return None


def matches_firstname(segment: str, firstname: str) -> bool:
    return normalize_name(segment) == normalize_name(firstname)


def matches_lastname(segment: str, lastname: str) -> bool:
    return normalize_name(segment) == normalize_name(lastname)


def matches_user_name(segment: str, firstname: str, lastname: str) -> bool:
    """True when one filename segment equals either the firstname or the lastname."""
    return matches_firstname(segment, firstname) or matches_lastname(segment, lastname)
