from __future__ import annotations

import re
from html.entities import codepoint2name

"""Name normalization for payslip matching.

Names typed in the spreadsheet and segments cut out of PDF filenames are compared
through the same canonical form:

1. HTML-entity encode the text (``é`` -> ``&eacute;``, ``'`` -> ``&#039;``)
2. fold accent / diaeresis / cedilla / ligature entities back to their base
   letters (``&eacute;`` -> ``e``, ``&aelig;`` -> ``ae``)
3. collapse every run of characters outside ``[0-9a-z]`` into ``-``
4. trim ``-`` and spaces at both ends, lowercase

Entities that are not letter variants (``&#039;``, ``&amp;`` ...) become plain
separators in step 3, so ``O'Brien`` normalizes to ``o-039-brien``: the letters
are never dropped.
"""

__all__ = [
    "normalize_name",
    "encode_entities",
]

_ACCENT_ENTITY_RE = re.compile(
    r"&([a-z]{1,2})(acute|cedil|circ|grave|lig|orn|ring|slash|th|tilde|uml);",
    re.IGNORECASE,
)
_NON_ALNUM_RE = re.compile(r"[^0-9a-z]+", re.IGNORECASE)

# codepoint2name に apostrophe は無いので数値参照で補う
_ENTITY_OVERRIDES = {ord("'"): "&#039;"}


def encode_entities(text: str) -> str:
    """Replace every character that has an HTML entity by that entity."""
    out: list[str] = []
    for ch in text:
        cp = ord(ch)
        if cp in _ENTITY_OVERRIDES:
            out.append(_ENTITY_OVERRIDES[cp])
        elif cp in codepoint2name:
            out.append(f"&{codepoint2name[cp]};")
        else:
            out.append(ch)
    return "".join(out)


def normalize_name(text: str | None) -> str:
    """Return the canonical comparison form of a person name or filename segment.

    >>> normalize_name("François")
    'francois'
    >>> normalize_name("Jean Pierre")
    'jean-pierre'
    """
    if not text:
        return ""
    folded = _ACCENT_ENTITY_RE.sub(r"\1", encode_entities(str(text)))
    return _NON_ALNUM_RE.sub("-", folded).strip(" -").lower()
