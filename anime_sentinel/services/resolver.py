# anime_sentinel/services/resolver.py

from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from ..config import ResolverSettings, logger
from ..models import (
    CATALOG_ORIGIN,
    CanonicalShow,
    CatalogMirror,
    CatalogSearchHit,
    CatalogSearchResult,
    ExtractedRecord,
    LocalShow,
    utcnow,
)
from ..state import ShowConflictError, ShowRepository
from .cache import (
    CachePolicy,
    InMemoryRefreshCoalescer,
    RefreshCoalescer,
    ShowCacheMonitor,
)
from .titles import fuzz_title


class CatalogClient(Protocol):
    async def search_api(self, query: str) -> list[CatalogSearchHit]: ...

    async def search(
        self, query: str, limit: int | None = ...
    ) -> list[CatalogSearchResult]: ...

    async def get_anime_data(self, mal_id: int) -> CatalogMirror | None: ...


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class ShowResolver:
    """Finds the canonical show a title or scraped record refers to.

    Resolution tries, in order and stopping at the first hit:

    1. the alternate titles of every locally stored show;
    2. the catalog's structured search, matching each hit's titles;
    3. the catalog's search page, matching the full title set of each
       candidate's detail page.

    Within a step the first candidate that matches wins. When nothing
    matches, :meth:`resolve_by_title` returns ``None``; the provisioning
    methods create a new show instead.
    """

    def __init__(
        self,
        repository: ShowRepository,
        catalog: CatalogClient,
        *,
        settings: ResolverSettings | None = None,
        cache_policy: CachePolicy | None = None,
        coalescer: RefreshCoalescer | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.settings = settings or ResolverSettings()
        self._clock = clock
        self.cache_monitor: ShowCacheMonitor | None = None
        if cache_policy is not None:
            self.cache_monitor = ShowCacheMonitor(
                cache_policy,
                coalescer or InMemoryRefreshCoalescer(),
                self.refresh_show,
            )

    def _observe(self, show: LocalShow) -> LocalShow:
        if self.cache_monitor is not None:
            self.cache_monitor.check(show, self._clock())
        return show

    # --- Matching ---

    def match_local(self, title: str) -> LocalShow | None:
        """Return the first stored show with an alternate title matching ``title``."""
        for show in self.repository.all():
            if show.alts.matches(title):
                return show
        return None

    async def _match_catalog_api(self, title: str) -> int | None:
        hits = await self.catalog.search_api(title)
        for hit in hits[: self.settings.api_candidate_limit]:
            if hit.alternate_titles().matches(title):
                logger.info(
                    f"[RESOLVER] '{title}' matched catalog id {hit.id} via API search"
                )
                return hit.id
        return None

    async def _match_catalog_pages(self, title: str) -> CatalogMirror | None:
        limit = self.settings.fallback_probe_limit
        results = await self.catalog.search(title, limit=limit)
        for result in results[:limit]:
            mirror = await self.catalog.get_anime_data(result.mal_id)
            if mirror is None:
                continue
            if mirror.alternate_titles().matches(title):
                logger.info(
                    f"[RESOLVER] '{title}' matched catalog id {mirror.mal_id} "
                    "via the search page"
                )
                return mirror
        return None

    async def _match_catalog(
        self, title: str
    ) -> tuple[int, CatalogMirror | None] | None:
        mal_id = await self._match_catalog_api(title)
        if mal_id is not None:
            return mal_id, None
        mirror = await self._match_catalog_pages(title)
        if mirror is not None:
            return mirror.mal_id, mirror
        return None

    async def find_mal_id(self, title: str) -> int | None:
        """Look ``title`` up in the reference catalog only."""
        match = await self._match_catalog(title)
        return match[0] if match is not None else None

    # --- Resolution ---

    async def resolve_by_title(self, title: str) -> CanonicalShow | None:
        """Return the show ``title`` names, or ``None`` when nothing matches.

        A catalog match without a local counterpart comes back as a
        :class:`CatalogMirror`; nothing is stored.
        """
        title = title.strip()
        if not title:
            return None

        local = self.match_local(title)
        if local is not None:
            logger.debug(f"[RESOLVER] '{title}' matched local show {local.id}")
            return self._observe(local)

        match = await self._match_catalog(title)
        if match is None:
            logger.info(f"[RESOLVER] No show found for '{title}'")
            return None

        mal_id, mirror = match
        existing = self.repository.get_by_mal_id(mal_id)
        if existing is not None:
            return self._observe(existing)

        if mirror is None:
            mirror = await self.catalog.get_anime_data(mal_id)
        if mirror is None:
            logger.warning(
                f"[RESOLVER] Catalog id {mal_id} matched '{title}' but its details "
                "could not be fetched"
            )
        return mirror

    async def resolve_from_record(self, record: ExtractedRecord) -> LocalShow:
        """Return the stored show for a scraped record, creating it if needed."""
        name = record.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"Record from '{record.source_id}' has no show name")

        resolved = await self.resolve_by_title(name)
        if isinstance(resolved, LocalShow):
            if self._merge_record(resolved, record):
                self.repository.save(resolved)
                logger.info(
                    f"[RESOLVER] Merged titles from {record.source_id} into "
                    f"show {resolved.id}"
                )
            return resolved
        return await self._provision(name.strip(), resolved, record)

    async def add_show_with_title(self, title: str) -> LocalShow:
        """Return the stored show for ``title``, creating it if needed."""
        resolved = await self.resolve_by_title(title)
        if isinstance(resolved, LocalShow):
            return resolved
        return await self._provision(title.strip(), resolved, None)

    # --- Provisioning ---

    async def _provision(
        self,
        title: str,
        mirror: CatalogMirror | None,
        record: ExtractedRecord | None,
    ) -> LocalShow:
        """Create the show under a per-identity lock.

        The lookup is repeated inside the lock, so a concurrent or retried
        call for the same show returns the show the first call stored.
        """
        if not title:
            raise ValueError("Cannot create a show without a title")
        key = f"mal:{mirror.mal_id}" if mirror else f"title:{fuzz_title(title)}"

        async with self.repository.lock(key):
            existing = (
                self.repository.get_by_mal_id(mirror.mal_id) if mirror else None
            ) or self.match_local(title)
            if existing is None and mirror is not None:
                existing = self._unlinked_owner(mirror)
                if existing is not None:
                    self._link_to_mirror(existing, mirror)
                    if record is not None:
                        self._merge_record(existing, record)
                    self.repository.save(existing)
                    logger.info(
                        f"[RESOLVER] Linked show {existing.id} '{existing.title}' "
                        f"to catalog id {mirror.mal_id}"
                    )
                    return existing
            if existing is not None:
                if record is not None and self._merge_record(existing, record):
                    self.repository.save(existing)
                return existing

            show = (
                self._show_from_mirror(mirror)
                if mirror
                else LocalShow(title=title, cache_updated_at=self._clock())
            )
            if record is not None:
                self._merge_record(show, record)
            show = self.repository.add(show)

        logger.info(
            f"[RESOLVER] Created show {show.id} '{show.title}'"
            + (f" from catalog id {mirror.mal_id}" if mirror else "")
        )
        return show

    def _unlinked_owner(self, mirror: CatalogMirror) -> LocalShow | None:
        """Return a stored show without a catalog id sharing a title with ``mirror``."""
        titles = mirror.alternate_titles()
        for show in self.repository.all():
            if show.mal_id is not None:
                continue
            if any(titles.matches(title) for title in show.alts.titles()):
                return show
        return None

    @staticmethod
    def _link_to_mirror(show: LocalShow, mirror: CatalogMirror) -> None:
        show.mal_id = mirror.mal_id
        show.alts.merge(mirror.alternate_titles(confirmed=True))
        show.description = show.description or mirror.description
        show.type = show.type or mirror.type
        show.genres = show.genres or list(mirror.genres)
        for field_name in (
            "thumbnail_id",
            "episode_amount",
            "episode_duration",
            "airing_start",
            "airing_end",
        ):
            if getattr(show, field_name) is None:
                setattr(show, field_name, getattr(mirror, field_name))

    def _show_from_mirror(self, mirror: CatalogMirror) -> LocalShow:
        return LocalShow(
            title=mirror.title,
            alts=mirror.alternate_titles(confirmed=True),
            description=mirror.description,
            type=mirror.type,
            genres=list(mirror.genres),
            mal_id=mirror.mal_id,
            thumbnail_id=mirror.thumbnail_id,
            episode_amount=mirror.episode_amount,
            episode_duration=mirror.episode_duration,
            airing_start=mirror.airing_start,
            airing_end=mirror.airing_end,
            cache_updated_at=self._clock(),
        )

    @staticmethod
    def _merge_record(show: LocalShow, record: ExtractedRecord) -> bool:
        """Add the record's titles to ``show`` and fill its metadata gaps."""
        titles = [record.get("name"), *_as_list(record.get("alt_names"))]
        changed = show.alts.extend(titles, record.source_id) > 0

        description = record.get("description")
        if not show.description and isinstance(description, str) and description:
            show.description = description
            changed = True
        show_type = record.get("type")
        if show.type is None and isinstance(show_type, str) and show_type:
            show.type = show_type.lower()
            changed = True
        genres = [
            g.lower() for g in _as_list(record.get("genres")) if isinstance(g, str)
        ]
        if not show.genres and genres:
            show.genres = list(dict.fromkeys(genres))
            changed = True
        return changed

    # --- Cache refresh ---

    async def refresh_show(self, show: LocalShow) -> LocalShow:
        """Re-fetch catalog metadata for ``show`` and mark its cache fresh."""
        mal_id = show.mal_id or await self.find_mal_id(show.title)
        mirror = await self.catalog.get_anime_data(mal_id) if mal_id else None

        if mirror is not None:
            # Checked before touching ``show``, which is the stored object.
            owner = self.repository.get_by_mal_id(mirror.mal_id)
            if owner is not None and owner.id != show.id:
                raise ShowConflictError(
                    f"Show {owner.id} already has catalog id {mirror.mal_id}", owner
                )
            owner = self.repository.get_by_title(mirror.title, exclude_id=show.id)
            if owner is not None:
                raise ShowConflictError(
                    f"Show {owner.id} already has the title '{owner.title}'", owner
                )
            show.mal_id = mirror.mal_id
            show.rename(mirror.title, CATALOG_ORIGIN)
            show.alts.merge(mirror.alternate_titles(confirmed=True))
            show.description = mirror.description or show.description
            show.type = mirror.type or show.type
            show.genres = list(mirror.genres) or show.genres
            show.thumbnail_id = mirror.thumbnail_id or show.thumbnail_id
            for field_name in (
                "episode_amount",
                "episode_duration",
                "airing_start",
                "airing_end",
            ):
                value = getattr(mirror, field_name)
                if value is not None:
                    setattr(show, field_name, value)
        else:
            logger.info(f"[RESOLVER] No catalog data to refresh '{show.title}'")

        show.cache_updated_at = self._clock()
        self.repository.save(show)
        logger.info(f"[RESOLVER] Refreshed cached data of show {show.id}")
        return show
