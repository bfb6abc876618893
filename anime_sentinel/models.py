# anime_sentinel/models.py

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Union

from .services.titles import fuzzy_match

LOCAL_ORIGIN = "local"
CATALOG_ORIGIN = "myanimelist"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ExtractedRecord:
    """Structured attributes scraped from one row of one source page."""

    source_id: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        value = self.attributes.get(name)
        return default if value is None else value


@dataclass(frozen=True)
class AltTitle:
    """One alternate title and where it came from.

    Attributes:
        title: The title in its original casing.
        origin: Source id the title was discovered on.
        confirmed: ``True`` for titles stored on a show, ``False`` for titles
            only suggested by the reference catalog.
    """

    title: str
    origin: str
    confirmed: bool = True


class AlternateTitleSet:
    """Ordered, case-insensitively deduplicated collection of titles."""

    def __init__(self, entries: Iterable[AltTitle] = ()) -> None:
        self._entries: dict[str, AltTitle] = {}
        for entry in entries:
            self.add(entry.title, entry.origin, confirmed=entry.confirmed)

    @classmethod
    def from_titles(
        cls, titles: Iterable[str | None], origin: str, *, confirmed: bool = True
    ) -> AlternateTitleSet:
        alts = cls()
        alts.extend(titles, origin, confirmed=confirmed)
        return alts

    def add(self, title: str | None, origin: str, *, confirmed: bool = True) -> bool:
        """Add ``title`` unless it is blank or already present.

        Returns whether the set changed. An existing title keeps its casing and
        origin, but a catalog suggestion is promoted once it gets confirmed.
        """
        if not isinstance(title, str) or not title.strip():
            return False
        cleaned = title.strip()
        key = cleaned.casefold()
        existing = self._entries.get(key)
        if existing is None:
            self._entries[key] = AltTitle(cleaned, origin, confirmed)
            return True
        if confirmed and not existing.confirmed:
            self._entries[key] = AltTitle(existing.title, existing.origin, True)
            return True
        return False

    def extend(
        self, titles: Iterable[str | None], origin: str, *, confirmed: bool = True
    ) -> int:
        return sum(self.add(title, origin, confirmed=confirmed) for title in titles)

    def merge(self, other: AlternateTitleSet) -> int:
        return sum(
            self.add(entry.title, entry.origin, confirmed=entry.confirmed)
            for entry in other
        )

    def put_first(self, title: str, origin: str) -> None:
        """Make sure ``title`` is present and listed before every other title."""
        key = title.strip().casefold()
        entry = self._entries.pop(key, None) or AltTitle(title.strip(), origin, True)
        self._entries = {key: entry, **self._entries}

    def titles(self) -> list[str]:
        return [entry.title for entry in self._entries.values()]

    def confirmed(self) -> list[str]:
        return [entry.title for entry in self._entries.values() if entry.confirmed]

    def suggested(self) -> list[str]:
        return [entry.title for entry in self._entries.values() if not entry.confirmed]

    def matches(self, title: str) -> bool:
        """Whether any title in the set fuzzy-matches ``title``."""
        return any(fuzzy_match(entry.title, title) for entry in self._entries.values())

    def __iter__(self) -> Iterator[AltTitle]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, title: object) -> bool:
        return isinstance(title, str) and title.strip().casefold() in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AlternateTitleSet):
            return NotImplemented
        return list(self._entries.values()) == list(other._entries.values())

    def __repr__(self) -> str:
        return f"AlternateTitleSet({self.titles()!r})"


@dataclass
class LocalShow:
    """A show owned by this system. Episodes are attached to it elsewhere."""

    title: str
    id: int | None = None
    alts: AlternateTitleSet = field(default_factory=AlternateTitleSet)
    description: str = ""
    type: str | None = None
    genres: list[str] = field(default_factory=list)
    mal_id: int | None = None
    thumbnail_id: str | None = None
    episode_amount: int | None = None
    episode_duration: int | None = None
    airing_start: date | None = None
    airing_end: date | None = None
    cache_updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.title = self.title.strip()
        if not self.title:
            raise ValueError("A show needs a non-empty title.")
        if self.title not in self.alts:
            self.alts.put_first(self.title, LOCAL_ORIGIN)

    def rename(self, title: str, origin: str = LOCAL_ORIGIN) -> None:
        """Change the primary title; the previous one stays as an alternate."""
        self.title = title.strip()
        if self.title not in self.alts:
            self.alts.put_first(self.title, origin)

    def to_record(self) -> dict[str, Any]:
        """Return the persisted field map for this show."""
        return {
            "id": self.id,
            "mal_id": self.mal_id,
            "thumbnail_id": self.thumbnail_id,
            "title": self.title,
            "alts": self.alts.titles(),
            "description": self.description,
            "type": self.type,
            "genres": list(self.genres),
            "episode_amount": self.episode_amount,
            "episode_duration": self.episode_duration,
            "airing_start": _iso(self.airing_start),
            "airing_end": _iso(self.airing_end),
            "cache_updated_at": self.cache_updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> LocalShow:
        cache_updated_at = record.get("cache_updated_at")
        return cls(
            id=record.get("id"),
            title=record["title"],
            alts=AlternateTitleSet.from_titles(record.get("alts") or [], LOCAL_ORIGIN),
            description=record.get("description") or "",
            type=record.get("type"),
            genres=list(record.get("genres") or []),
            mal_id=record.get("mal_id"),
            thumbnail_id=record.get("thumbnail_id"),
            episode_amount=record.get("episode_amount"),
            episode_duration=record.get("episode_duration"),
            airing_start=_parse_iso_date(record.get("airing_start")),
            airing_end=_parse_iso_date(record.get("airing_end")),
            cache_updated_at=(
                datetime.fromisoformat(cache_updated_at)
                if cache_updated_at
                else utcnow()
            ),
        )


@dataclass(frozen=True)
class CatalogMirror:
    """Read-only snapshot of a reference catalog entry."""

    mal_id: int
    title: str
    alts: tuple[str, ...] = ()
    description: str = ""
    type: str | None = None
    genres: tuple[str, ...] = ()
    episode_amount: int | None = None
    episode_duration: int | None = None
    airing_start: date | None = None
    airing_end: date | None = None
    thumbnail_id: str | None = None
    details_url: str = ""
    thumbnail_url: str = ""

    def alternate_titles(self, *, confirmed: bool = False) -> AlternateTitleSet:
        alts = AlternateTitleSet.from_titles(
            [self.title, *self.alts], CATALOG_ORIGIN, confirmed=confirmed
        )
        return alts


CanonicalShow = Union[LocalShow, CatalogMirror]


@dataclass
class CatalogSearchHit:
    """An entry returned by the catalog's structured search endpoint."""

    id: int
    title: str
    english: str | None = None
    synonyms: list[str] = field(default_factory=list)

    def alternate_titles(self) -> AlternateTitleSet:
        return AlternateTitleSet.from_titles(
            [self.title, self.english, *self.synonyms], CATALOG_ORIGIN, confirmed=False
        )


@dataclass
class CatalogSearchResult:
    """A row from the catalog's free-text search results page."""

    mal_id: int
    title: str
    thumbnail_url: str = ""
    details_url: str = ""


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        return date.fromisoformat(value)
    return None
