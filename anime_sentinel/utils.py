# anime_sentinel/utils.py

import re


def extract_first_int(text: str) -> int | None:
    """Safely extracts the first integer from a string."""
    if not text:
        return None
    match = re.search(r"\d+", text.strip())
    return int(match.group(0)) if match else None


def slice_between(text: str, start: str, end: str | None = None) -> str:
    """
    Returns the text between the first ``start`` marker and the next ``end``
    marker after it.

    An absent ``start`` marker gives an empty string. An absent ``end`` marker
    (or ``end=None``) returns everything after ``start``.

    Examples:
        - slice_between("a[b]c", "[", "]") -> "b"
        - slice_between("a[b", "[", "]") -> "b"
        - slice_between("abc", "[", "]") -> ""
    """
    if not text:
        return ""
    start_index = text.find(start)
    if start_index == -1:
        return ""
    remainder = text[start_index + len(start) :]
    if end is None:
        return remainder
    end_index = remainder.find(end)
    return remainder if end_index == -1 else remainder[:end_index]


def clean_whitespace(text: str) -> str:
    """Collapses runs of whitespace (including non-breaking spaces) to one space."""
    return re.sub(r"\s+", " ", (text or "").replace("\xa0", " ")).strip()


def split_list(text: str, separators: tuple[str, ...] = (", ",)) -> list[str]:
    """Splits ``text`` on any of ``separators`` and drops empty parts."""
    if not text:
        return []
    pattern = "|".join(re.escape(sep) for sep in separators)
    return [part.strip() for part in re.split(pattern, text) if part.strip()]
