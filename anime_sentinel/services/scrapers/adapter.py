from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml  # type: ignore[import-untyped]
from bs4 import BeautifulSoup, Tag

from ...config import logger

# An extractor receives the matched row and the whole page.
Extractor = Callable[[Tag, BeautifulSoup], Any]
RowPredicate = Callable[[Tag], bool]
PagePredicate = Callable[[BeautifulSoup], bool]

CONFIG_DIR = Path(__file__).resolve().parent / "configs"

# Cache for adapter configurations to avoid repeated disk reads.
_config_cache: dict[Path, dict[str, Any]] = {}

# Explicit registry of every adapter known to the process, keyed by source id.
ADAPTERS: dict[str, SourceAdapter] = {}


class ConfigurationError(Exception):
    """Raised when an adapter configuration is missing required fields."""


class TargetKind(str, enum.Enum):
    SEARCH = "search"
    SHOW = "show"
    SHOW_RELATED = "show_related"
    SHOW_EPISODES = "show_episodes"


@dataclass(frozen=True)
class ThumbnailTarget:
    row_selector: str
    get_url: Extractor


@dataclass(frozen=True)
class ScrapeTarget:
    """How to turn one kind of page into records.

    ``row_selector`` enumerates the repeated elements; ``None`` treats the
    whole page as a single row (show detail pages). ``cannot_count`` marks
    rows that stand for a range of items (e.g. "Episode 5 - 8") rather than
    exactly one.
    """

    attributes: Mapping[str, Extractor]
    row_selector: Optional[str] = None
    row_skip: int = 0
    row_ignore: Optional[RowPredicate] = None
    thumbnail: Optional[ThumbnailTarget] = None
    cannot_count: bool = False
    check_if_page: Optional[PagePredicate] = None


@dataclass(frozen=True)
class SourceAdapter:
    """Declarative description of one external source."""

    id: str
    display_name: str
    homepage_url: str
    targets: Mapping[TargetKind, ScrapeTarget] = field(default_factory=dict)

    def target(self, kind: TargetKind | str) -> ScrapeTarget:
        kind = TargetKind(kind)
        try:
            return self.targets[kind]
        except KeyError:
            raise KeyError(
                f"Adapter '{self.id}' has no '{kind.value}' target"
            ) from None


def register_adapter(adapter: SourceAdapter) -> SourceAdapter:
    """Add ``adapter`` to the registry, replacing any adapter with its id."""
    if adapter.id in ADAPTERS and ADAPTERS[adapter.id] is not adapter:
        logger.warning(f"[SCRAPER] Replacing registered adapter '{adapter.id}'")
    ADAPTERS[adapter.id] = adapter
    return adapter


def get_adapter(source_id: str) -> SourceAdapter:
    try:
        return ADAPTERS[source_id]
    except KeyError:
        raise KeyError(f"No adapter registered for source '{source_id}'") from None


def registered_adapters() -> list[SourceAdapter]:
    return list(ADAPTERS.values())


# --- Selector-based extractors ---


def _clean(value: str, strip_suffix: list[str]) -> str:
    for suffix in strip_suffix:
        if value.endswith(suffix):
            value = value[: -len(suffix)]
    return value.strip()


def selector_extractor(
    selector: str | None,
    *,
    attr: str | None = None,
    many: bool = False,
    scope: str = "row",
    prefix: str = "",
    strip_suffix: list[str] | None = None,
) -> Extractor:
    """Build an extractor from a CSS selector.

    The value is the element text, or the attribute ``attr`` when given.
    ``many`` collects every match into a list. ``scope="page"`` evaluates the
    selector against the whole page instead of the row. ``prefix`` is
    prepended to every non-empty value (e.g. the homepage for relative links).
    A selector of ``None`` targets the row itself.
    """
    suffixes = strip_suffix or []

    def _value(tag: Tag) -> str | None:
        if attr is None:
            raw = tag.get_text(" ", strip=True)
        else:
            found = tag.get(attr)
            raw = " ".join(found) if isinstance(found, list) else found
        if not isinstance(raw, str):
            return None
        cleaned = _clean(raw, suffixes)
        return f"{prefix}{cleaned}" if cleaned else None

    def _extract(row: Tag, page: BeautifulSoup) -> Any:
        root: Tag = page if scope == "page" else row
        if selector is None:
            tags = [root]
        elif many:
            tags = [t for t in root.select(selector) if isinstance(t, Tag)]
        else:
            found = root.select_one(selector)
            tags = [found] if isinstance(found, Tag) else []
        values = [v for v in (_value(t) for t in tags) if v is not None]
        if many:
            return values
        return values[0] if values else None

    return _extract


def constant_extractor(value: Any) -> Extractor:
    def _extract(row: Tag, page: BeautifulSoup) -> Any:
        return value

    return _extract


# --- YAML adapter configurations ---


def load_adapter_config(config_path: Path) -> dict[str, Any]:
    """Load and minimally validate a YAML adapter configuration.

    To improve performance, configuration files are cached in-memory after the
    first load. Subsequent calls with the same ``config_path`` return the cached
    data, avoiding repeated disk I/O.
    """

    resolved_path = config_path.resolve()
    cached = _config_cache.get(resolved_path)
    if cached is not None:
        return cached

    if not resolved_path.exists():
        raise FileNotFoundError(f"Adapter config not found: {resolved_path}")

    with resolved_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Adapter config is not a mapping: {resolved_path}")

    required = {"id", "display_name", "homepage_url", "targets"}
    missing = required - data.keys()
    if missing:
        raise ConfigurationError(f"Config missing keys: {', '.join(sorted(missing))}")

    _config_cache[resolved_path] = data
    return data


def _attribute_from_config(name: str, spec: Any, homepage_url: str) -> Extractor:
    if isinstance(spec, str):
        return selector_extractor(spec)
    if not isinstance(spec, dict):
        raise ConfigurationError(f"Attribute '{name}' must be a selector or mapping")
    if "value" in spec:
        return constant_extractor(spec["value"])
    prefix = spec.get("prefix", "")
    if prefix == "homepage":
        prefix = homepage_url
    return selector_extractor(
        spec.get("selector"),
        attr=spec.get("attr"),
        many=bool(spec.get("many", False)),
        scope=spec.get("scope", "row"),
        prefix=prefix,
        strip_suffix=list(spec.get("strip_suffix", [])),
    )


def _target_from_config(
    kind: TargetKind, spec: dict[str, Any], homepage_url: str
) -> ScrapeTarget:
    attributes_spec = spec.get("attributes")
    if not isinstance(attributes_spec, dict) or not attributes_spec:
        raise ConfigurationError(f"Target '{kind.value}' defines no attributes")

    attributes = {
        name: _attribute_from_config(name, attr_spec, homepage_url)
        for name, attr_spec in attributes_spec.items()
    }

    row_ignore: RowPredicate | None = None
    ignore_selector = spec.get("row_ignore")
    if isinstance(ignore_selector, str):
        # Rows that contain a match for the selector are dropped.
        def row_ignore(row: Tag, _selector: str = ignore_selector) -> bool:
            return row.select_one(_selector) is not None

    check_if_page: PagePredicate | None = None
    page_selector = spec.get("check_if_page")
    if isinstance(page_selector, str):

        def check_if_page(page: BeautifulSoup, _selector: str = page_selector) -> bool:
            return page.select_one(_selector) is not None

    thumbnail: ThumbnailTarget | None = None
    thumb_spec = spec.get("thumbnail")
    if isinstance(thumb_spec, dict) and thumb_spec.get("row_selector"):
        thumbnail = ThumbnailTarget(
            row_selector=thumb_spec["row_selector"],
            get_url=selector_extractor(
                thumb_spec.get("selector"),
                attr=thumb_spec.get("attr", "src"),
                prefix=thumb_spec.get("prefix", ""),
            ),
        )

    row_skip = spec.get("row_skip", 0)
    if not isinstance(row_skip, int) or row_skip < 0:
        raise ConfigurationError(
            f"Target '{kind.value}' row_skip must be a non-negative integer"
        )

    return ScrapeTarget(
        attributes=attributes,
        row_selector=spec.get("row_selector"),
        row_skip=row_skip,
        row_ignore=row_ignore,
        thumbnail=thumbnail,
        cannot_count=bool(spec.get("cannot_count", False)),
        check_if_page=check_if_page,
    )


def adapter_from_config(data: dict[str, Any]) -> SourceAdapter:
    """Compile a loaded YAML configuration into a :class:`SourceAdapter`."""
    homepage_url = str(data["homepage_url"]).rstrip("/")
    targets_spec = data["targets"]
    if not isinstance(targets_spec, dict):
        raise ConfigurationError("'targets' must be a mapping of target kinds")

    targets: dict[TargetKind, ScrapeTarget] = {}
    for raw_kind, spec in targets_spec.items():
        try:
            kind = TargetKind(raw_kind)
        except ValueError:
            raise ConfigurationError(f"Unknown target kind '{raw_kind}'") from None
        if not isinstance(spec, dict):
            raise ConfigurationError(f"Target '{raw_kind}' must be a mapping")
        targets[kind] = _target_from_config(kind, spec, homepage_url)

    return SourceAdapter(
        id=str(data["id"]),
        display_name=str(data["display_name"]),
        homepage_url=homepage_url,
        targets=targets,
    )


def load_adapter(config_path: Path) -> SourceAdapter:
    return adapter_from_config(load_adapter_config(config_path))


def register_config_adapters(config_dir: Path = CONFIG_DIR) -> list[SourceAdapter]:
    """Register every ``*.yaml`` adapter found in ``config_dir``.

    A broken configuration is logged and skipped so one bad file does not
    take every other source down with it.
    """
    if not config_dir.exists():
        return []
    loaded: list[SourceAdapter] = []
    for path in sorted(config_dir.glob("*.yaml")):
        try:
            adapter = load_adapter(path)
        except (ConfigurationError, yaml.YAMLError) as exc:
            logger.error(f"[SCRAPER] Failed to load adapter config {path.name}: {exc}")
            continue
        loaded.append(register_adapter(adapter))
    return loaded
