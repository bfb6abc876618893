import shutil
import sys
import uuid
from collections.abc import Generator
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Ensure root path is available for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from anime_sentinel.models import CatalogMirror, LocalShow  # noqa: E402
from anime_sentinel.state import InMemoryShowRepository  # noqa: E402

REPO_TMP_ROOT = Path(__file__).resolve().parent / "_tmp"

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _ensure_repo_tmp_root() -> Path:
    REPO_TMP_ROOT.mkdir(exist_ok=True)
    return REPO_TMP_ROOT


class RepoTmpPathFactory:
    """Replacement for pytest's tmp_path_factory constrained to the repo."""

    def __init__(self, root: Path):
        self._root = root
        self._created: list[Path] = []

    def mktemp(self, basename: str, numbered: bool = True) -> Path:
        suffix = f"_{uuid.uuid4().hex}" if numbered else ""
        directory = basename if not suffix else f"{basename}{suffix}"
        path = self._root / directory
        path.mkdir(parents=True, exist_ok=False)
        self._created.append(path)
        return path

    def cleanup(self, path: Path | None = None) -> None:
        targets = [path] if path is not None else list(self._created)
        for target in targets:
            shutil.rmtree(target, ignore_errors=True)
            if target in self._created:
                self._created.remove(target)


@pytest.fixture(scope="session")
def tmp_path_factory() -> Generator[RepoTmpPathFactory, None, None]:
    factory = RepoTmpPathFactory(_ensure_repo_tmp_root())
    yield factory
    factory.cleanup()


@pytest.fixture
def tmp_path(tmp_path_factory: RepoTmpPathFactory) -> Generator[Path, None, None]:
    path = tmp_path_factory.mktemp("tmp")
    try:
        yield path
    finally:
        tmp_path_factory.cleanup(path)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def repository() -> InMemoryShowRepository:
    return InMemoryShowRepository()


@pytest.fixture
def make_show():
    def _make(title: str, *alts: str, **fields) -> LocalShow:
        fields.setdefault("cache_updated_at", FIXED_NOW)
        show = LocalShow(title=title, **fields)
        show.alts.extend(alts, "local")
        return show

    return _make


@pytest.fixture
def make_mirror():
    def _make(mal_id: int, title: str, *alts: str, **fields) -> CatalogMirror:
        return CatalogMirror(mal_id=mal_id, title=title, alts=tuple(alts), **fields)

    return _make


@pytest.fixture
def catalog():
    """A catalog client double that finds nothing unless told otherwise."""
    client = AsyncMock()
    client.search_api = AsyncMock(return_value=[])
    client.search = AsyncMock(return_value=[])
    client.get_anime_data = AsyncMock(return_value=None)
    return client
