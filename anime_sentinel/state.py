# anime_sentinel/state.py

import asyncio
import contextlib
import json
import os
from collections.abc import AsyncIterator
from typing import Protocol

from .config import logger
from .models import LocalShow
from .services.titles import fuzz_title


class ShowConflictError(Exception):
    """Raised when storing a show would duplicate an existing identity."""

    def __init__(self, message: str, existing: LocalShow) -> None:
        super().__init__(message)
        self.existing = existing


class ShowRepository(Protocol):
    """What the resolver needs from the persistence layer."""

    def all(self) -> list[LocalShow]: ...

    def get(self, show_id: int) -> LocalShow | None: ...

    def get_by_mal_id(self, mal_id: int) -> LocalShow | None: ...

    def get_by_title(
        self, title: str, *, exclude_id: int | None = None
    ) -> LocalShow | None: ...

    def add(self, show: LocalShow) -> LocalShow: ...

    def save(self, show: LocalShow) -> None: ...

    def lock(self, key: str) -> contextlib.AbstractAsyncContextManager[None]: ...


class _KeyLock:
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class InMemoryShowRepository:
    """Process-local show storage.

    ``add`` enforces the identity constraints a relational store would carry
    as unique indexes: one show per catalog id and per normalized primary
    title. ``lock`` holds one ``asyncio.Lock`` per key so that
    resolve-then-provision sequences for the same show run one at a time; a
    key's lock is dropped once no task holds or waits for it.
    """

    def __init__(self, shows: list[LocalShow] | None = None) -> None:
        self._shows: dict[int, LocalShow] = {}
        self._next_id = 1
        self._locks: dict[str, _KeyLock] = {}
        for show in shows or []:
            self.add(show)

    def all(self) -> list[LocalShow]:
        return list(self._shows.values())

    def get(self, show_id: int) -> LocalShow | None:
        return self._shows.get(show_id)

    def get_by_mal_id(self, mal_id: int) -> LocalShow | None:
        return next(
            (show for show in self._shows.values() if show.mal_id == mal_id), None
        )

    def get_by_title(
        self, title: str, *, exclude_id: int | None = None
    ) -> LocalShow | None:
        """Return the show whose primary title has the same fuzz key as ``title``.

        ``exclude_id`` skips one show, so a show can be checked against every
        other stored show.
        """
        key = fuzz_title(title)
        return next(
            (
                show
                for show in self._shows.values()
                if (exclude_id is None or show.id != exclude_id)
                and fuzz_title(show.title) == key
            ),
            None,
        )

    def _check_conflicts(self, show: LocalShow) -> None:
        if show.mal_id is not None:
            existing = next(
                (
                    other
                    for other in self._shows.values()
                    if other.mal_id == show.mal_id and other.id != show.id
                ),
                None,
            )
            if existing is not None:
                raise ShowConflictError(
                    f"Show {existing.id} already has catalog id {show.mal_id}",
                    existing,
                )
        existing = self.get_by_title(show.title, exclude_id=show.id)
        if existing is not None:
            raise ShowConflictError(
                f"Show {existing.id} already has the title '{existing.title}'",
                existing,
            )

    def add(self, show: LocalShow) -> LocalShow:
        if show.id is not None and show.id in self._shows:
            raise ShowConflictError(
                f"Show id {show.id} is already taken", self._shows[show.id]
            )
        self._check_conflicts(show)
        if show.id is None:
            show.id = self._next_id
        self._next_id = max(self._next_id, show.id) + 1
        self._shows[show.id] = show
        logger.info(f"[STATE] Added show {show.id}: '{show.title}'")
        return show

    def save(self, show: LocalShow) -> None:
        if show.id is None or show.id not in self._shows:
            raise KeyError(f"Show '{show.title}' has not been added")
        self._check_conflicts(show)
        self._shows[show.id] = show

    @contextlib.asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]


def save_state(file_path: str, repository: InMemoryShowRepository) -> None:
    """Saves every show's persisted fields to a JSON file."""
    data_to_save = {"shows": [show.to_record() for show in repository.all()]}

    try:
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump(data_to_save, f, indent=4, ensure_ascii=False)
        logger.info(f"Saved state: {len(data_to_save['shows'])} shows.")
    except OSError as e:
        logger.error(f"Could not save persistence file to '{file_path}': {e}")


def load_state(file_path: str) -> InMemoryShowRepository:
    """Loads shows from a JSON file written by :func:`save_state`."""
    if not os.path.exists(file_path):
        logger.info(
            f"Persistence file '{file_path}' not found. Starting with a fresh state."
        )
        return InMemoryShowRepository()

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        shows = [LocalShow.from_record(record) for record in data.get("shows", [])]
        repository = InMemoryShowRepository(shows)
    except (
        json.JSONDecodeError,
        OSError,
        KeyError,
        ValueError,
        ShowConflictError,
    ) as e:
        logger.error(
            f"Could not read or parse persistence file '{file_path}': {e}. Starting fresh."
        )
        return InMemoryShowRepository()

    logger.info(f"Loaded state: {len(shows)} shows.")
    return repository
