# anime_sentinel/config.py

import configparser
import logging
import os
from dataclasses import dataclass, field

# --- Constants ---
CATALOG_BASE_URL = "https://myanimelist.net"
CATALOG_API_SEARCH_URL = "https://myanimelist.net/api/anime/search.xml"
CATALOG_CDN_URL = "https://cdn.myanimelist.net/images/anime/"
CATALOG_SEARCH_LIMIT = 64
CATALOG_FALLBACK_PROBE_LIMIT = 8
CATALOG_API_CANDIDATE_LIMIT = 16
CACHE_REFRESH_MIN_HOURS = 168
CACHE_REFRESH_MAX_HOURS = 336
CACHE_REFRESH_LEASE_SECONDS = 300
REQUEST_TIMEOUT_SECONDS = 30.0
CONFIG_FILE = "config.ini"

# Setup basic logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass(frozen=True)
class CatalogSettings:
    """Connection details for the reference catalog."""

    base_url: str = CATALOG_BASE_URL
    api_search_url: str = CATALOG_API_SEARCH_URL
    cdn_url: str = CATALOG_CDN_URL
    username: str | None = None
    password: str | None = None
    timeout: float = REQUEST_TIMEOUT_SECONDS
    search_limit: int = CATALOG_SEARCH_LIMIT

    @property
    def credentials(self) -> tuple[str, str] | None:
        if self.username and self.password:
            return self.username, self.password
        return None


@dataclass(frozen=True)
class ResolverSettings:
    api_candidate_limit: int = CATALOG_API_CANDIDATE_LIMIT
    fallback_probe_limit: int = CATALOG_FALLBACK_PROBE_LIMIT


@dataclass(frozen=True)
class CacheSettings:
    min_hours: float = CACHE_REFRESH_MIN_HOURS
    max_hours: float = CACHE_REFRESH_MAX_HOURS
    refresh_lease_seconds: float = CACHE_REFRESH_LEASE_SECONDS


@dataclass(frozen=True)
class Settings:
    catalog: CatalogSettings = field(default_factory=CatalogSettings)
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)


def get_configuration(config_path: str = CONFIG_FILE) -> Settings:
    """
    Reads catalog credentials, resolver limits and cache tuning from an INI
    file. Every section is optional; anything left out falls back to the
    module constants above.
    """
    if not os.path.exists(config_path):
        logger.info(
            f"[CONFIG] Configuration file '{config_path}' not found. Using defaults."
        )
        return Settings()

    config = configparser.ConfigParser()
    with open(config_path, encoding="utf-8") as f:
        config.read_string(f.read())

    settings = Settings(
        catalog=_load_catalog_config(config),
        resolver=_load_resolver_config(config),
        cache=_load_cache_config(config),
    )
    logger.info(f"[CONFIG] Configuration loaded from '{config_path}'.")
    return settings


def _positive_int(
    config: configparser.ConfigParser, section: str, key: str, fallback: int
) -> int:
    try:
        value = config.getint(section, key, fallback=fallback)
    except ValueError as e:
        raise ValueError(f"[{section}] {key} must be an integer: {e}") from e
    if value < 1:
        raise ValueError(f"[{section}] {key} must be at least 1, got {value}.")
    return value


def _positive_float(
    config: configparser.ConfigParser, section: str, key: str, fallback: float
) -> float:
    try:
        value = config.getfloat(section, key, fallback=fallback)
    except ValueError as e:
        raise ValueError(f"[{section}] {key} must be a number: {e}") from e
    if value <= 0:
        raise ValueError(f"[{section}] {key} must be positive, got {value}.")
    return value


def _load_catalog_config(config: configparser.ConfigParser) -> CatalogSettings:
    """Loads the catalog section, treating placeholder credentials as unset."""
    section = "myanimelist"
    username = config.get(section, "username", fallback=None)
    password = config.get(section, "password", fallback=None)
    if username in ("", "YOUR_USERNAME_HERE"):
        username = None
    if password in ("", "YOUR_PASSWORD_HERE"):
        password = None
    if username and not password:
        logger.warning(
            "[CONFIG] Catalog username set without a password; API search will be unauthenticated."
        )

    return CatalogSettings(
        base_url=config.get(section, "base_url", fallback=CATALOG_BASE_URL).rstrip(
            "/"
        ),
        api_search_url=config.get(
            section, "api_search_url", fallback=CATALOG_API_SEARCH_URL
        ),
        cdn_url=config.get(section, "cdn_url", fallback=CATALOG_CDN_URL),
        username=username,
        password=password,
        timeout=_positive_float(config, "http", "timeout", REQUEST_TIMEOUT_SECONDS),
        search_limit=_positive_int(
            config, section, "search_limit", CATALOG_SEARCH_LIMIT
        ),
    )


def _load_resolver_config(config: configparser.ConfigParser) -> ResolverSettings:
    section = "resolver"
    return ResolverSettings(
        api_candidate_limit=_positive_int(
            config, section, "api_candidate_limit", CATALOG_API_CANDIDATE_LIMIT
        ),
        fallback_probe_limit=_positive_int(
            config, section, "fallback_probe_limit", CATALOG_FALLBACK_PROBE_LIMIT
        ),
    )


def _load_cache_config(config: configparser.ConfigParser) -> CacheSettings:
    """Loads the staleness window; the lower bound may not exceed the upper."""
    section = "cache"
    min_hours = _positive_float(config, section, "min_hours", CACHE_REFRESH_MIN_HOURS)
    max_hours = _positive_float(config, section, "max_hours", CACHE_REFRESH_MAX_HOURS)
    if min_hours > max_hours:
        raise ValueError(
            f"[cache] min_hours ({min_hours}) is greater than max_hours ({max_hours})."
        )
    return CacheSettings(
        min_hours=min_hours,
        max_hours=max_hours,
        refresh_lease_seconds=_positive_float(
            config, section, "refresh_lease_seconds", CACHE_REFRESH_LEASE_SECONDS
        ),
    )
