from __future__ import annotations

from typing import Any

from bs4 import BeautifulSoup, Tag

from ...config import logger
from ...models import ExtractedRecord
from .adapter import RowPredicate, ScrapeTarget, SourceAdapter, TargetKind


def parse_page(
    page: str | bytes | BeautifulSoup, *, xml: bool = False
) -> BeautifulSoup:
    """Return ``page`` as a parsed document, parsing raw markup with lxml."""
    if isinstance(page, BeautifulSoup):
        return page
    return BeautifulSoup(page or "", "xml" if xml else "lxml")


def _select_rows(target: ScrapeTarget, soup: BeautifulSoup) -> list[Tag]:
    """Apply the row selector, ``row_skip`` and ``row_ignore`` of ``target``."""
    if target.row_selector is None:
        rows: list[Tag] = [soup]
    else:
        rows = [r for r in soup.select(target.row_selector) if isinstance(r, Tag)]

    rows = rows[target.row_skip :]
    if target.row_ignore is not None:
        rows = [row for row in rows if not _ignored(target.row_ignore, row)]
    return rows


def _ignored(row_ignore: RowPredicate, row: Tag) -> bool:
    try:
        return bool(row_ignore(row))
    except Exception as exc:  # noqa: BLE001
        logger.warning(f"[SCRAPER] row_ignore failed, keeping row: {exc}")
        return False


def _extract_row(
    adapter: SourceAdapter, target: ScrapeTarget, row: Tag, soup: BeautifulSoup
) -> dict[str, Any]:
    """Run every attribute extractor against a single row.

    A failing extractor only costs its own attribute, which is left as
    ``None``; the rest of the row is still usable.
    """
    attributes: dict[str, Any] = {}
    for name, extractor in target.attributes.items():
        try:
            attributes[name] = extractor(row, soup)
        except Exception as exc:  # noqa: BLE001
            logger.debug(
                f"[SCRAPER] {adapter.id}: Attribute '{name}' could not be extracted: {exc}"
            )
            attributes[name] = None
    return attributes


def extract(
    adapter: SourceAdapter,
    kind: TargetKind | str,
    page: str | bytes | BeautifulSoup,
) -> list[ExtractedRecord]:
    """Turn ``page`` into one :class:`ExtractedRecord` per matched row.

    No matching rows is a normal outcome (e.g. a search without results) and
    gives an empty list. For ``cannot_count`` targets each record may describe
    a range of items; expanding it is up to the consumer.
    """
    target = adapter.target(kind)
    soup = parse_page(page)

    if target.check_if_page is not None and not target.check_if_page(soup):
        logger.info(
            f"[SCRAPER] {adapter.id}: Page is not a '{TargetKind(kind).value}' page"
        )
        return []

    rows = _select_rows(target, soup)
    logger.debug(
        f"[SCRAPER] {adapter.id}: Found {len(rows)} rows using selector "
        f"'{target.row_selector}'"
    )
    return [
        ExtractedRecord(
            source_id=adapter.id,
            attributes=_extract_row(adapter, target, row, soup),
        )
        for row in rows
    ]


def extract_thumbnails(
    adapter: SourceAdapter,
    kind: TargetKind | str,
    page: str | bytes | BeautifulSoup,
) -> list[str | None]:
    """Collect image URLs using the target's own thumbnail row selector."""
    target = adapter.target(kind)
    if target.thumbnail is None:
        return []
    soup = parse_page(page)

    urls: list[str | None] = []
    for row in soup.select(target.thumbnail.row_selector):
        if not isinstance(row, Tag):
            continue
        try:
            url = target.thumbnail.get_url(row, soup)
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"[SCRAPER] {adapter.id}: Thumbnail not extracted: {exc}")
            url = None
        urls.append(url if isinstance(url, str) and url else None)
    return urls
