from __future__ import annotations

import httpx

from ...config import REQUEST_TIMEOUT_SECONDS, logger

BROWSER_HEADERS = {
    # Several sources return HTTP 403 unless common browser headers are
    # supplied. These values mimic a typical desktop browser.
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/115.0 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
        "image/webp,*/*;q=0.8"
    ),
}


async def fetch_page(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
    auth: tuple[str, str] | None = None,
    source: str = "SCRAPER",
) -> str | None:
    """Fetch ``url`` and return the response text.

    Transport errors, timeouts, error statuses and empty bodies all give
    ``None``; callers treat that as "no data" and move on. When ``client`` is
    given it is reused, otherwise a short-lived client is opened.
    """
    logger.debug(f"[{source}] GET {url}")

    try:
        if client is None:
            async with httpx.AsyncClient(
                timeout=timeout, follow_redirects=True
            ) as own_client:
                response = await own_client.get(url, headers=BROWSER_HEADERS, auth=auth)
        else:
            response = await client.get(
                url, headers=BROWSER_HEADERS, auth=auth, timeout=timeout
            )
        logger.debug(f"[{source}] GET {url} -> {response.status_code}")
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.warning(f"[{source}] HTTP {exc.response.status_code} fetching {url}")
        logger.debug(f"[{source}] Error response body: {exc.response.text[:200]!r}")
        return None
    except httpx.HTTPError as exc:
        logger.error(f"[{source}] Request error fetching {url}: {exc!r}")
        return None

    if not response.text.strip():
        logger.warning(f"[{source}] Empty response from {url}")
        return None
    return response.text
