"""
Text canonicalization shared by every retrieval component.

Queries, entry fields and lexicon terms all go through normalize_text,
so comparisons are accent- and case-insensitive everywhere.
"""

import re
import unicodedata
from typing import List

_NON_WORD = re.compile(r"[\W_]+")


def normalize_text(text: str) -> str:
    """
    Lowercase, strip diacritics, turn punctuation into spaces, collapse spaces.

    Total and idempotent: normalize_text(normalize_text(x)) == normalize_text(x).

    >>> normalize_text("Qu'est-ce que le Takaful ?")
    'qu est ce que le takaful'
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(_NON_WORD.sub(" ", stripped).split())


def tokenize(text: str) -> List[str]:
    """Normalized whitespace tokens."""
    normalized = normalize_text(text)
    return normalized.split() if normalized else []
