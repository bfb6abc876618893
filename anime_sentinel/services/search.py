# anime_sentinel/services/search.py

import re
from collections.abc import Iterable
from dataclasses import dataclass

from thefuzz import fuzz

from ..models import LocalShow


@dataclass
class ScoredShow:
    show: LocalShow
    score: int


def _ordered_words_pattern(query: str, separator: str) -> re.Pattern[str] | None:
    """Pattern matching the query's words in order with anything in between."""
    words = [w for w in re.split(separator, query.casefold()) if w]
    if not words:
        return None
    return re.compile(".*".join(re.escape(w) for w in words))


def title_matches(title: str, query: str, *, loose: bool = False) -> bool:
    """Whether ``title`` is a plausible hit for the free-text ``query``.

    Tried in order: the query as a substring; its words in order ignoring
    anything that is not a letter or digit; its words in order ignoring
    anything that is not a letter. With ``loose`` the query's letters only
    have to appear in the same order, anywhere in the title.
    """
    title_cf = title.casefold()
    query_cf = query.strip().casefold()
    if not query_cf:
        return False
    if query_cf in title_cf:
        return True

    for separator in (r"[^a-z0-9]+", r"[^a-z]+"):
        pattern = _ordered_words_pattern(query_cf, separator)
        if pattern is not None and pattern.search(title_cf):
            return True

    if loose:
        letters = re.sub(r"[^a-z]", "", query_cf)
        if letters and re.search(".*".join(letters), title_cf):
            return True
    return False


def score_show(show: LocalShow, query: str) -> int:
    """Best similarity between ``query`` and any of the show's titles."""
    query_lc = query.strip().lower()
    return max(
        (fuzz.ratio(query_lc, title.lower()) for title in show.alts.titles()),
        default=0,
    )


def rank_shows(shows: Iterable[LocalShow], query: str) -> list[ScoredShow]:
    """Score every show against ``query``, best first.

    Shows with equal scores keep their incoming order.
    """
    scored = [ScoredShow(show, score_show(show, query)) for show in shows]
    return sorted(scored, key=lambda item: item.score, reverse=True)


def search_shows(
    shows: Iterable[LocalShow],
    query: str,
    *,
    types: Iterable[str] | None = None,
    genres: Iterable[str] | None = None,
    loose: bool = False,
) -> list[ScoredShow]:
    """Filter ``shows`` by type, genre and title, then rank them by relevance.

    ``types`` keeps shows whose type is listed; ``genres`` keeps shows that
    have at least one of the listed genres. An empty query returns every
    remaining show ordered by title.
    """
    wanted_types = {t.lower() for t in types} if types is not None else None
    wanted_genres = {g.lower() for g in genres} if genres is not None else None

    candidates: list[LocalShow] = []
    for show in shows:
        if wanted_types is not None and (show.type or "").lower() not in wanted_types:
            continue
        if wanted_genres is not None and wanted_genres.isdisjoint(
            g.lower() for g in show.genres
        ):
            continue
        candidates.append(show)

    if not query.strip():
        return [
            ScoredShow(show, 0)
            for show in sorted(candidates, key=lambda s: s.title.casefold())
        ]

    matching = [
        show
        for show in candidates
        if any(title_matches(t, query, loose=loose) for t in show.alts.titles())
    ]
    return rank_shows(matching, query)
