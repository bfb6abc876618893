"""Title normalisation used for show identity decisions.

Identity matching is deliberately strict: two titles refer to the same show
only when their fuzz keys are equal. Scored, partial matching belongs to
:mod:`anime_sentinel.services.search`.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

_AMPERSAND_PATTERN = re.compile(r"\s*&\s*")
_NON_WORD_PATTERN = re.compile(r"[\W_]+")


def fuzz_title(title: str) -> str:
    """Reduce ``title`` to a comparison key.

    The key is case-folded and keeps only letters and digits (of any script),
    so differences in spacing, punctuation and casing disappear. ``&`` is read
    as ``and`` so "Kiss & Tell" and "Kiss and Tell" share a key. Applying the
    function to its own output returns the same key.
    """
    if not title:
        return ""
    normalized = unicodedata.normalize("NFKC", title)
    normalized = _AMPERSAND_PATTERN.sub(" and ", normalized)
    return _NON_WORD_PATTERN.sub("", normalized.casefold())


def fuzzy_match(first: str, second: str) -> bool:
    """Return ``True`` when both titles name the same show."""
    if first is None or second is None:
        return False
    first_key = fuzz_title(first)
    second_key = fuzz_title(second)
    if first_key or second_key:
        return first_key == second_key
    # Titles made only of symbols have empty keys; compare them literally.
    stripped = first.strip().casefold()
    return bool(stripped) and stripped == second.strip().casefold()


def matches_any(title: str, candidates: Iterable[str]) -> bool:
    return any(fuzzy_match(candidate, title) for candidate in candidates)


def unique_titles(titles: Iterable[str | None]) -> list[str]:
    """Drop blanks and case-insensitive duplicates, keeping first casing."""
    seen: set[str] = set()
    result: list[str] = []
    for title in titles:
        if not isinstance(title, str):
            continue
        cleaned = title.strip()
        key = cleaned.casefold()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result
