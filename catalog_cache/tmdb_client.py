"""
TMDB (The Movie Database) API client.

The upstream catalog collaborator of the cache: all HTTP calls to TMDB
route through this module.  Two operations are exposed, matching what the
sync coordinator and read-through callers need:

  - ``fetch_by_id(key)``          full detail document for one item
  - ``fetch_popular_page(page)``  one page of the popular listing

Failures are raised as typed exceptions from :mod:`catalog_cache.errors`
rather than returned as ``None``: callers distinguish a missing item, a
rate-limit signal, rejected credentials and everything else.  This client
never retries on its own; backoff policy belongs to the caller.
"""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from catalog_cache.config import Settings, get_settings
from catalog_cache.errors import AuthenticationError, NotFound, RateLimited, UpstreamError
from catalog_cache.models import CatalogItem, PopularPage, split_key

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT: float = 30.0  # seconds

# TMDB serves at most 500 listing pages regardless of total_pages.
_MAX_LISTING_PAGE: int = 500


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Interpret a ``Retry-After`` header as a delay in seconds.

    Accepts both the delta-seconds and the HTTP-date forms.  Returns
    ``None`` when the header is absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class TMDBClient:
    """
    Async HTTP client for the TMDB v3 REST API.

    Authentication is handled internally; the API key is sent as a query
    parameter and never appears in log output.

    Usage::

        client = TMDBClient()
        page = await client.fetch_popular_page(1)
        item = await client.fetch_by_id("movie-550")
        await client.close()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialise the underlying ``httpx.AsyncClient`` with a fixed timeout.

        Args:
            settings:  Application settings; the cached singleton when omitted.
            transport: Optional httpx transport, used by tests to stub TMDB.
        """
        settings = settings or get_settings()
        self._api_key: str = settings.tmdb_api_key
        self._base_url: str = settings.tmdb_base_url.rstrip("/")
        self._language: str = settings.tmdb_language
        self.media_type: str = settings.tmdb_media_types[0]
        self.page_size: int = settings.sync_page_size
        self._client: httpx.AsyncClient = httpx.AsyncClient(
            timeout=httpx.Timeout(_REQUEST_TIMEOUT),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client and release any held connections."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        not_found_key: Optional[str] = None,
    ) -> Any:
        """
        Execute a GET request against TMDB and return the parsed JSON body.

        Args:
            path: API path starting with a slash, e.g. ``"/movie/popular"``.
            params: Optional query parameters (API key and language are added).
            not_found_key: Catalog key reported if TMDB answers 404.

        Returns:
            Parsed JSON response body.

        Raises:
            RateLimited: HTTP 429, with the ``Retry-After`` delay if given.
            AuthenticationError: HTTP 401.
            NotFound: HTTP 404.
            UpstreamError: Timeouts, network errors, other HTTP errors and
                undecodable bodies.
        """
        url = f"{self._base_url}{path}"
        request_params: Dict[str, Any] = dict(params) if params else {}
        request_params.setdefault("language", self._language)
        log_url = str(httpx.URL(url, params=request_params))
        request_params["api_key"] = self._api_key

        logger.debug("TMDB request: GET %s", log_url)
        try:
            response = await self._client.get(url, params=request_params)
        except httpx.TimeoutException as exc:
            logger.error("TMDB request timed out: GET %s — %s", log_url, exc)
            raise UpstreamError(f"TMDB request timed out: {log_url}") from exc
        except httpx.RequestError as exc:
            logger.error("TMDB network error: GET %s — %s", log_url, exc)
            raise UpstreamError(f"TMDB network error: {log_url}") from exc

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(
                "TMDB rate-limited (429) on GET %s — retry after %s",
                log_url,
                f"{retry_after:.1f}s" if retry_after is not None else "unspecified",
            )
            raise RateLimited(retry_after)

        if response.status_code == 401:
            logger.error("TMDB rejected credentials (401) on GET %s", log_url)
            raise AuthenticationError("TMDB rejected the API key", status_code=401)

        if response.status_code == 404:
            logger.debug("TMDB not found (404): GET %s", log_url)
            raise NotFound(not_found_key or path)

        if response.is_error:
            body_snippet = response.text[:500] if response.text else "<empty body>"
            logger.error(
                "TMDB HTTP error %d on GET %s — body: %s",
                response.status_code,
                log_url,
                body_snippet,
            )
            raise UpstreamError(
                f"TMDB HTTP error {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            logger.error("TMDB JSON decode error on GET %s — %s", log_url, exc)
            raise UpstreamError(f"TMDB returned invalid JSON: {log_url}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_by_id(self, key: str) -> CatalogItem:
        """
        Fetch the full detail document for one catalog item.

        Endpoint: ``GET /{media_type}/{id}``

        Args:
            key: Catalog key, e.g. ``"movie-550"`` or ``"tv-1399"``.

        Returns:
            Detail item (``summary=False``).

        Raises:
            NotFound: If TMDB has no such item or *key* is malformed.
            RateLimited, AuthenticationError, UpstreamError: See ``_request``.
        """
        try:
            media_type, item_id = split_key(key)
        except ValueError as exc:
            raise NotFound(key) from exc

        data = await self._request(f"/{media_type}/{item_id}", not_found_key=key)
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected detail payload for {key}")
        return CatalogItem(id=item_id, media_type=media_type, data=data, summary=False)

    async def fetch_popular_page(self, page: int, media_type: Optional[str] = None) -> PopularPage:
        """
        Fetch one page of the popular listing for *media_type*.

        Endpoint: ``GET /{media_type}/popular?page={page}``

        Listing entries are summaries: they lack runtime, genre names and
        other detail fields, so items are marked ``summary=True``.

        Args:
            page: 1-based page number.
            media_type: ``"movie"`` or ``"tv"``; defaults to the first configured listing.

        Returns:
            PopularPage with ``has_more`` False on the last available page.
        """
        media_type = media_type or self.media_type
        data = await self._request(f"/{media_type}/popular", params={"page": page})
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected listing payload for page {page}")

        items = [
            CatalogItem(
                id=str(result.get("id") or ""),
                media_type=media_type,
                data=result,
                summary=True,
            )
            for result in data.get("results") or []
            if isinstance(result, dict)
        ]
        total_pages = int(data.get("total_pages") or page)
        has_more = page < min(total_pages, _MAX_LISTING_PAGE)

        logger.debug(
            "fetch_popular_page: %s page %d/%d returned %d items",
            media_type,
            page,
            total_pages,
            len(items),
        )
        return PopularPage(page=page, items=items, has_more=has_more)
