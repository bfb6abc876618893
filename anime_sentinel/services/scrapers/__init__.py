from .adapter import (
    ADAPTERS,
    ConfigurationError,
    ScrapeTarget,
    SourceAdapter,
    TargetKind,
    ThumbnailTarget,
    get_adapter,
    load_adapter,
    load_adapter_config,
    register_adapter,
    register_config_adapters,
    registered_adapters,
    selector_extractor,
)
from .engine import extract, extract_thumbnails, parse_page
from .kissanime import kissanime
from .myanimelist import DETAIL_FIELD_PARSERS, MyAnimeListClient, parse_detail_page
from .utils import fetch_page

register_adapter(kissanime)
register_config_adapters()

__all__ = [
    "ADAPTERS",
    "ConfigurationError",
    "ScrapeTarget",
    "SourceAdapter",
    "TargetKind",
    "ThumbnailTarget",
    "get_adapter",
    "load_adapter",
    "load_adapter_config",
    "register_adapter",
    "register_config_adapters",
    "registered_adapters",
    "selector_extractor",
    "extract",
    "extract_thumbnails",
    "parse_page",
    "kissanime",
    "DETAIL_FIELD_PARSERS",
    "MyAnimeListClient",
    "parse_detail_page",
    "fetch_page",
]
