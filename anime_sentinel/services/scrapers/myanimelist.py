"""Client for the reference catalog (MyAnimeList).

Three independent access paths are offered: the structured XML search API,
the free-text search results page, and a show's detail page. Every path
returns "no data" on network failures instead of raising, so callers can fall
through to their next option.

Detail pages are parsed one field at a time (see ``DETAIL_FIELD_PARSERS``).
The parsers locate values by their label text, so a layout change on the
site breaks the affected field only.
"""

from __future__ import annotations

import re
import urllib.parse
from collections.abc import Callable
from datetime import date, datetime
from typing import Any

import httpx
from bs4 import BeautifulSoup, Tag

from ...config import CatalogSettings, logger
from ...models import CatalogMirror, CatalogSearchHit, CatalogSearchResult
from ...utils import clean_whitespace, extract_first_int, slice_between, split_list
from ..titles import unique_titles
from .adapter import ScrapeTarget, SourceAdapter, TargetKind, register_adapter
from .engine import extract, parse_page
from .utils import fetch_page

SEARCH_RESULTS_START = "Search Results</div>"
SEARCH_RESULTS_END = "</table>"
IMAGE_PATH_MARKER = "/images/anime/"
NOT_AVAILABLE = "Not available"
UNKNOWN_DATE = "?"

_ANIME_ID_PATTERN = re.compile(r"/anime/(\d+)(?:/|$)")


# --- Search results page adapter ---


def _search_mal_id(row: Tag, page: BeautifulSoup) -> int | None:
    for anchor in row.select("a[href]"):
        href = anchor.get("href")
        match = _ANIME_ID_PATTERN.search(href) if isinstance(href, str) else None
        if match:
            return int(match.group(1))
    return None


def _search_thumbnail_path(row: Tag, page: BeautifulSoup) -> str | None:
    for image in row.select("img"):
        for attr in ("data-src", "src", "srcset"):
            value = image.get(attr)
            if isinstance(value, str) and IMAGE_PATH_MARKER in value:
                path = slice_between(value, IMAGE_PATH_MARKER)
                return path.split("?", 1)[0].split(" ", 1)[0] or None
    return None


def _search_title(row: Tag, page: BeautifulSoup) -> str | None:
    strong = row.select_one("strong")
    if not isinstance(strong, Tag):
        return None
    return clean_whitespace(strong.get_text()) or None


myanimelist = SourceAdapter(
    id="myanimelist",
    display_name="MyAnimeList",
    homepage_url="https://myanimelist.net",
    targets={
        TargetKind.SEARCH: ScrapeTarget(
            row_selector="tr",
            attributes={
                "mal_id": _search_mal_id,
                "thumbnail_url": _search_thumbnail_path,
                "title": _search_title,
            },
        ),
    },
)
register_adapter(myanimelist)


# --- Structured search payload ---


def parse_search_api(payload: str) -> list[CatalogSearchHit]:
    """Parse the XML returned by the structured search endpoint."""
    if not payload or not payload.strip():
        return []
    soup = parse_page(payload, xml=True)

    hits: list[CatalogSearchHit] = []
    for entry in soup.find_all("entry"):
        if not isinstance(entry, Tag):
            continue
        mal_id = extract_first_int(_xml_text(entry, "id") or "")
        title = _xml_text(entry, "title")
        if mal_id is None or not title:
            logger.debug(f"[MAL] Skipping API entry without id or title: {entry!s:.120}")
            continue
        hits.append(
            CatalogSearchHit(
                id=mal_id,
                title=title,
                english=_xml_text(entry, "english"),
                synonyms=split_list(_xml_text(entry, "synonyms") or "", ("; ",)),
            )
        )
    return hits


def _xml_text(entry: Tag, name: str) -> str | None:
    node = entry.find(name)
    if not isinstance(node, Tag):
        return None
    text = node.get_text().strip()
    return text or None


# --- Detail page field parsers ---


def parse_episode_amount(text: str | None) -> int | None:
    """``"24"`` -> 24. The site uses zero (or "Unknown") for unknown counts."""
    amount = extract_first_int(text or "")
    return amount or None


def parse_duration(text: str | None) -> int | None:
    """Parse ``"1 hr. 30 min."``, ``"24 min. per ep."`` or ``"45"`` to minutes."""
    if not text:
        return None
    hours_part, has_hours, minutes_part = text.partition("hr.")
    if not has_hours:
        hours, minutes_part = 0, hours_part
    else:
        hours = extract_first_int(hours_part) or 0

    if "sec" in minutes_part and "min" not in minutes_part:
        minutes = 0
    else:
        minutes = extract_first_int(minutes_part) or 0

    duration = hours * 60 + minutes
    return duration or None


_AIRING_FORMATS = {
    3: ("%b %d, %Y", "%B %d, %Y"),
    2: ("%b, %Y", "%B, %Y", "%b %Y", "%B %Y"),
    1: ("%Y",),
}


def parse_airing_date(text: str | None) -> date | None:
    """Parse one side of an airing range.

    ``"Jan 5, 2020"`` is a full date, ``"Jan, 2020"`` falls on the first of
    the month and ``"2020"`` on January 1st.
    """
    cleaned = clean_whitespace(text or "")
    if not cleaned or cleaned == UNKNOWN_DATE:
        return None
    formats = _AIRING_FORMATS.get(len(cleaned.split(" ")), ())
    for fmt in formats:
        try:
            # Missing day/month default to 1 in strptime.
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    logger.debug(f"[MAL] Unrecognised airing date '{cleaned}'")
    return None


def parse_aired(text: str | None) -> tuple[date | None, date | None]:
    """Split an "Aired" value into its start and end dates."""
    cleaned = clean_whitespace(text or "")
    if not cleaned or cleaned == NOT_AVAILABLE:
        return None, None
    parts = cleaned.split(" to ")
    return parse_airing_date(parts[0]), parse_airing_date(parts[-1])


def parse_genres(labels: list[str]) -> list[str]:
    """Lower-case and deduplicate genre labels, keeping their order."""
    genres: list[str] = []
    for label in labels:
        genre = clean_whitespace(label).lower()
        if genre and genre not in genres:
            genres.append(genre)
    return genres


def parse_thumbnail_id(src: str | None) -> str | None:
    """Turn ``.../images/anime/7/12345.jpg`` into ``7-12345.jpg``."""
    if not src or IMAGE_PATH_MARKER not in src:
        return None
    path = slice_between(src, IMAGE_PATH_MARKER).split("?", 1)[0]
    return path.replace("/", "-") or None


def _label_span(soup: BeautifulSoup, label: str) -> Tag | None:
    pattern = re.compile(rf"^\s*{re.escape(label)}\s*$")
    for span in soup.find_all("span", class_="dark_text"):
        if isinstance(span, Tag) and pattern.match(span.get_text()):
            return span
    return None


def _labeled_value(soup: BeautifulSoup, label: str) -> str | None:
    """Text that follows a ``<span class="dark_text">Label:</span>`` marker."""
    span = _label_span(soup, label)
    if span is None or not isinstance(span.parent, Tag):
        return None
    text = clean_whitespace(span.parent.get_text(" "))
    value = clean_whitespace(text.replace(clean_whitespace(span.get_text()), "", 1))
    return value or None


def _labeled_links(soup: BeautifulSoup, label: str) -> list[str]:
    span = _label_span(soup, label)
    if span is None or not isinstance(span.parent, Tag):
        return []
    return [a.get_text(strip=True) for a in span.parent.find_all("a")]


def _field_title(soup: BeautifulSoup) -> str | None:
    for selector in ('span[itemprop="name"]', "h1.title-name", "h1"):
        tag = soup.select_one(selector)
        if isinstance(tag, Tag):
            title = clean_whitespace(tag.get_text())
            if title:
                return title
    return None


def _field_alternative_titles(soup: BeautifulSoup) -> list[str]:
    """Every title listed under the "Alternative Titles" heading."""
    heading = next(
        (
            h2
            for h2 in soup.find_all("h2")
            if isinstance(h2, Tag)
            and clean_whitespace(h2.get_text()).lower() == "alternative titles"
        ),
        None,
    )
    if heading is None:
        return []

    titles: list[str] = []
    for tag in heading.find_all_next(["span", "h2"]):
        if not isinstance(tag, Tag) or tag.name == "h2":
            break
        if "dark_text" not in (tag.get("class") or []):
            continue
        if not isinstance(tag.parent, Tag):
            continue
        label = clean_whitespace(tag.get_text())
        line = clean_whitespace(tag.parent.get_text(" ")).replace(label, "", 1)
        separators = ("; ",) if label == "English:" else (", ", "; ")
        titles.extend(split_list(clean_whitespace(line), separators))
    return titles


def _field_description(soup: BeautifulSoup) -> str:
    tag = soup.select_one('[itemprop="description"]')
    return tag.get_text().strip() if isinstance(tag, Tag) else ""


def _field_type(soup: BeautifulSoup) -> str | None:
    links = _labeled_links(soup, "Type:")
    value = links[0] if links else _labeled_value(soup, "Type:")
    return value.strip().lower() if value else None


def _field_thumbnail_id(soup: BeautifulSoup) -> str | None:
    for image in soup.find_all("img"):
        if not isinstance(image, Tag):
            continue
        for attr in ("data-src", "src"):
            thumbnail_id = parse_thumbnail_id(image.get(attr))  # type: ignore[arg-type]
            if thumbnail_id:
                return thumbnail_id
    return None


DETAIL_FIELD_PARSERS: dict[str, Callable[[BeautifulSoup], Any]] = {
    "title": _field_title,
    "alts": _field_alternative_titles,
    "description": _field_description,
    "type": _field_type,
    "episode_amount": lambda soup: parse_episode_amount(
        _labeled_value(soup, "Episodes:")
    ),
    "episode_duration": lambda soup: parse_duration(_labeled_value(soup, "Duration:")),
    "genres": lambda soup: parse_genres(
        _labeled_links(soup, "Genres:") or _labeled_links(soup, "Genre:")
    ),
    "aired": lambda soup: parse_aired(_labeled_value(soup, "Aired:")),
    "thumbnail_id": _field_thumbnail_id,
}


def parse_detail_page(page: str | BeautifulSoup) -> dict[str, Any]:
    """Run every field parser; a failing parser only loses its own field."""
    soup = parse_page(page)
    fields: dict[str, Any] = {}
    for name, parser in DETAIL_FIELD_PARSERS.items():
        try:
            fields[name] = parser(soup)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"[MAL] Could not parse field '{name}': {exc}")
            fields[name] = None
    return fields


class MyAnimeListClient:
    """Reference catalog client.

    An ``httpx.AsyncClient`` may be shared across calls; without one each
    request opens a short-lived client.
    """

    def __init__(
        self,
        settings: CatalogSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or CatalogSettings()
        self.client = client
        self.base_url = self.settings.base_url.rstrip("/")

    def api_search_url(self, query: str) -> str:
        return f"{self.settings.api_search_url}?q={urllib.parse.quote_plus(query)}"

    def search_url(self, query: str) -> str:
        formatted_query = urllib.parse.quote_plus(query)
        return f"{self.base_url}/anime.php?q={formatted_query}&gx=1&genre[]=12"

    def details_url(self, mal_id: int) -> str:
        return f"{self.base_url}/anime/{mal_id}"

    def thumbnail_url(self, path: str | None) -> str:
        return f"{self.settings.cdn_url}{path}" if path else ""

    async def _fetch(self, url: str, *, auth: tuple[str, str] | None = None):
        return await fetch_page(
            url,
            client=self.client,
            timeout=self.settings.timeout,
            auth=auth,
            source="MAL",
        )

    async def search_api(self, query: str) -> list[CatalogSearchHit]:
        """Query the structured search endpoint."""
        if not query.strip():
            return []
        payload = await self._fetch(
            self.api_search_url(query), auth=self.settings.credentials
        )
        if not payload:
            return []
        hits = parse_search_api(payload)
        logger.info(f"[MAL] API search for '{query}' returned {len(hits)} entries")
        return hits

    async def search(
        self, query: str, limit: int | None = None
    ) -> list[CatalogSearchResult]:
        """Scrape the free-text search results page.

        At most ``limit`` results are returned, defaulting to the configured
        ``search_limit``.
        """
        if limit is None:
            limit = self.settings.search_limit
        if not query.strip():
            return []
        page = await self._fetch(self.search_url(query))
        if not page:
            return []

        region = slice_between(page, SEARCH_RESULTS_START, SEARCH_RESULTS_END)
        if not region:
            logger.info(f"[MAL] No search results section for '{query}'")
            return []

        results: list[CatalogSearchResult] = []
        for record in extract(myanimelist, TargetKind.SEARCH, region):
            mal_id = record.get("mal_id")
            if mal_id is None:
                continue
            results.append(
                CatalogSearchResult(
                    mal_id=mal_id,
                    title=record.get("title", ""),
                    thumbnail_url=self.thumbnail_url(record.get("thumbnail_url")),
                    details_url=self.details_url(mal_id),
                )
            )
            if len(results) >= limit:
                break

        logger.info(f"[MAL] Search page for '{query}' returned {len(results)} shows")
        return results

    async def get_anime_data(self, mal_id: int) -> CatalogMirror | None:
        """Scrape the detail page of ``mal_id`` into a read-only snapshot."""
        page = await self._fetch(self.details_url(mal_id))
        if not page:
            return None

        fields = parse_detail_page(page)
        title = fields.get("title")
        if not title:
            logger.warning(f"[MAL] No title found on details page of {mal_id}")
            return None

        airing_start, airing_end = fields.get("aired") or (None, None)
        thumbnail_id = fields.get("thumbnail_id")
        return CatalogMirror(
            mal_id=mal_id,
            title=title,
            alts=tuple(unique_titles([title, *(fields.get("alts") or [])])),
            description=fields.get("description") or "",
            type=fields.get("type"),
            genres=tuple(fields.get("genres") or []),
            episode_amount=fields.get("episode_amount"),
            episode_duration=fields.get("episode_duration"),
            airing_start=airing_start,
            airing_end=airing_end,
            thumbnail_id=thumbnail_id,
            details_url=self.details_url(mal_id),
            thumbnail_url=(
                self.thumbnail_url(thumbnail_id.replace("-", "/", 1))
                if thumbnail_id
                else ""
            ),
        )
