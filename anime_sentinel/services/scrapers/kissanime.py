import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from ...utils import clean_whitespace
from .adapter import (
    ScrapeTarget,
    SourceAdapter,
    TargetKind,
    ThumbnailTarget,
    selector_extractor,
)

HOMEPAGE = "http://kissanime.ru"
VALID_TYPES = ("TV", "OVA", "Movie", "Special", "ONA")
_INFO_BLOCK = "div.bigBarContainer div.barContent div:nth-of-type(2)"
_SHOW_PAGE_TITLE = re.compile(r"^.* anime \| Watch .* anime online in high quality$")
_DESCRIPTION_CUTOFF = re.compile(r"\s\.\.\.\n\s*$")


def clean_name(name: str) -> str:
    return re.sub(r" \((?:Dub|Sub)\)$", "", name.strip())


def type_from_name(name: str) -> str:
    return "dub" if name.strip().endswith(" (Dub)") else "sub"


def _link_text(row: Tag, selector: str) -> str:
    anchor = row.select_one(selector)
    return anchor.get_text(strip=True) if isinstance(anchor, Tag) else ""


def _link_url(row: Tag, selector: str | None) -> str | None:
    anchor = row.select_one(selector) if selector else row
    if not isinstance(anchor, Tag):
        return None
    href = anchor.get("href")
    return HOMEPAGE + href if isinstance(href, str) else None


def _streamer_urls(selector: str | None):
    def _extract(row: Tag, page: BeautifulSoup) -> list[dict[str, Any]]:
        name = _link_text(row, selector) if selector else row.get_text(strip=True)
        url = _link_url(row, selector)
        return [{"type": type_from_name(name), "url": url}] if url else []

    return _extract


def _name(selector: str | None):
    def _extract(row: Tag, page: BeautifulSoup) -> str | None:
        name = _link_text(row, selector) if selector else row.get_text(strip=True)
        return clean_name(name) or None

    return _extract


def _tooltip(row: Tag) -> BeautifulSoup | None:
    # Search rows carry their description and thumbnail as HTML in a tooltip.
    cell = row if row.name == "td" else row.select_one("td:first-of-type")
    tooltip = cell.get("title") if isinstance(cell, Tag) else None
    if not isinstance(tooltip, str) or not tooltip.strip():
        return None
    return BeautifulSoup(tooltip, "lxml")


def _search_description(row: Tag, page: BeautifulSoup) -> str | None:
    tooltip = _tooltip(row)
    paragraph = tooltip.select_one("div p") if tooltip is not None else None
    if not isinstance(paragraph, Tag):
        return None
    text = _DESCRIPTION_CUTOFF.sub("...", paragraph.get_text())
    return text.strip() or None


def _search_thumbnail(row: Tag, page: BeautifulSoup) -> str | None:
    tooltip = _tooltip(row)
    image = tooltip.select_one("img") if tooltip is not None else None
    src = image.get("src") if isinstance(image, Tag) else None
    return src if isinstance(src, str) else None


def _is_show_page(page: BeautifulSoup) -> bool:
    title = page.select_one("title")
    if not isinstance(title, Tag):
        return False
    return bool(_SHOW_PAGE_TITLE.match(clean_whitespace(title.get_text())))


def _genre_labels(row: Tag) -> list[str]:
    selector = f'{_INFO_BLOCK} p:has(span:-soup-contains("Genres:")) a'
    return [a.get_text(strip=True) for a in row.select(selector)]


def _show_type(row: Tag, page: BeautifulSoup) -> str | None:
    genres = _genre_labels(row)
    return next((t for t in VALID_TYPES if t in genres), None)


def _show_genres(row: Tag, page: BeautifulSoup) -> list[str]:
    return [g for g in _genre_labels(row) if g not in VALID_TYPES and g != "Dub"]


def _show_description(row: Tag, page: BeautifulSoup) -> str | None:
    paragraph = row.select_one(f"{_INFO_BLOCK} p:nth-last-of-type(2)")
    if not isinstance(paragraph, Tag):
        return None
    return paragraph.decode_contents().strip() or None


def _related_is_episode_link(row: Tag) -> bool:
    href = row.get("href")
    return isinstance(href, str) and href.count("/") > 2


def _episode_words(row: Tag) -> list[str]:
    return clean_whitespace(_link_text(row, "td:first-of-type a")).split(" ")


def _episode_num_start(row: Tag, page: BeautifulSoup) -> str | None:
    """First episode of a row like "Show Episode 005 - 008" (or its only one)."""
    words = _episode_words(row)
    last = words.pop() if words else ""
    if last.replace(".", "", 1).isdigit() and len(words) >= 2 and words[-1] == "-":
        return words[-2]
    return last or None


def _episode_num_end(row: Tag, page: BeautifulSoup) -> str | None:
    words = _episode_words(row)
    return words[-1] if words and words[-1] else None


def _translation_type(row: Tag, page: BeautifulSoup) -> str:
    return type_from_name(_link_text(page, "a.bigChar"))


_MIRRORS = ("Openload", "RapidVideo", "Streamango", "Beta Server")


def _episode_sources(row: Tag, page: BeautifulSoup) -> list[dict[str, Any]]:
    source_url = _link_url(row, "td:first-of-type a")
    if source_url is None:
        return []
    return [
        {
            "name": mirror,
            "url": f"{source_url}&s={mirror.split()[0].lower()}",
            "flags": ["cloudflare", "mixed-content"],
        }
        for mirror in _MIRRORS
    ]


kissanime = SourceAdapter(
    id="kissanime",
    display_name="KissAnime",
    homepage_url=HOMEPAGE,
    targets={
        TargetKind.SEARCH: ScrapeTarget(
            row_selector="table.listing tr",
            row_skip=2,
            attributes={
                "streamer_urls": _streamer_urls("td:first-of-type a"),
                "name": _name("td:first-of-type a"),
                "description": _search_description,
            },
            thumbnail=ThumbnailTarget(
                row_selector="table.listing td:first-of-type",
                get_url=_search_thumbnail,
            ),
        ),
        TargetKind.SHOW: ScrapeTarget(
            check_if_page=_is_show_page,
            attributes={
                "streamer_urls": _streamer_urls("a.bigChar"),
                "name": _name("a.bigChar"),
                "alt_names": selector_extractor(
                    f'{_INFO_BLOCK} p:has(span:-soup-contains("Other name:")) a',
                    many=True,
                ),
                "description": _show_description,
                "type": _show_type,
                "genres": _show_genres,
            },
            thumbnail=ThumbnailTarget(
                row_selector=(
                    'div#rightside div.barContent div[style="text-align: center"] img'
                ),
                get_url=selector_extractor(None, attr="src"),
            ),
        ),
        TargetKind.SHOW_RELATED: ScrapeTarget(
            row_selector=(
                "div#rightside div:nth-of-type(3) div.barContent div:nth-of-type(2) a"
            ),
            row_ignore=_related_is_episode_link,
            attributes={
                "streamer_urls": _streamer_urls(None),
                "name": _name(None),
            },
        ),
        TargetKind.SHOW_EPISODES: ScrapeTarget(
            row_selector="table.listing tr",
            row_skip=2,
            cannot_count=True,
            attributes={
                "episode_num_start": _episode_num_start,
                "episode_num_end": _episode_num_end,
                "translation_type": _translation_type,
                "source_url": lambda row, page: _link_url(row, "td:first-of-type a"),
                "sources": _episode_sources,
            },
        ),
    },
)
