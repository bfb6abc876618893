# anime_sentinel/services/episodes.py

from typing import Any

from ..config import logger
from ..models import ExtractedRecord


def _episode_number(value: Any) -> int | float | None:
    """Parses an episode number such as "005" or "12.5"; None when not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return int(number) if number.is_integer() else number


def expand_episode_range(record: ExtractedRecord) -> list[dict[str, Any]]:
    """
    Expands an episode row that covers several episodes into one entry each.

    Listings like "Show Episode 005 - 008" arrive as a single record with
    ``episode_num_start="005"`` and ``episode_num_end="008"``; this returns
    four attribute maps numbered 5 to 8 that otherwise share the record's
    attributes. Bounds that are missing or not whole numbers leave the record
    as its only entry. A reversed range is read in ascending order.
    """
    attributes = dict(record.attributes)
    start = _episode_number(attributes.get("episode_num_start"))
    end = _episode_number(attributes.get("episode_num_end"))
    if start is None and end is None:
        return [attributes]
    if start is None or end is None:
        number = start if start is not None else end
        return [{**attributes, "episode_num_start": number, "episode_num_end": number}]

    if not isinstance(start, int) or not isinstance(end, int):
        if start == end:
            return [{**attributes, "episode_num_start": start, "episode_num_end": end}]
        logger.debug(
            f"[EPISODES] Not expanding fractional range {start}-{end} "
            f"from {record.source_id}"
        )
        return [attributes]

    if start > end:
        start, end = end, start
    return [
        {**attributes, "episode_num_start": number, "episode_num_end": number}
        for number in range(start, end + 1)
    ]
