"""
Tests for catalog_cache.tmdb_client.TMDBClient.

TMDB is stubbed with ``httpx.MockTransport``; no live calls are made.
"""

from typing import Callable

import httpx
import pytest

from catalog_cache.config import Settings
from catalog_cache.errors import AuthenticationError, NotFound, RateLimited, UpstreamError
from catalog_cache.tmdb_client import TMDBClient, _parse_retry_after


def _client(handler: Callable[[httpx.Request], httpx.Response], **overrides) -> TMDBClient:
    settings = Settings(tmdb_api_key="secret-key", **overrides)
    return TMDBClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_popular_page() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "page": 2,
                "total_pages": 3,
                "results": [{"id": 1, "title": "A"}, {"id": 2, "title": "B"}],
            },
        )

    client = _client(handler)
    try:
        page = await client.fetch_popular_page(2)
    finally:
        await client.close()

    assert page.page == 2
    assert page.has_more is True
    assert [i.key for i in page.items] == ["movie-1", "movie-2"]
    assert all(i.summary for i in page.items)

    request = seen[0]
    assert request.url.path == "/3/movie/popular"
    assert request.url.params["page"] == "2"
    assert request.url.params["language"] == "fr-FR"
    assert request.url.params["api_key"] == "secret-key"


@pytest.mark.asyncio
async def test_last_page_has_no_more() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"page": 3, "total_pages": 3, "results": []})

    client = _client(handler)
    try:
        page = await client.fetch_popular_page(3)
    finally:
        await client.close()
    assert page.has_more is False
    assert page.items == []


@pytest.mark.asyncio
async def test_tv_listing_uses_tv_path() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"total_pages": 1, "results": [{"id": 9, "name": "S"}]})

    client = _client(handler, tmdb_media_types=["tv"])
    try:
        page = await client.fetch_popular_page(1)
    finally:
        await client.close()
    assert paths == ["/3/tv/popular"]
    assert page.items[0].key == "tv-9"


@pytest.mark.asyncio
async def test_listing_media_type_override() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"total_pages": 1, "results": [{"id": 9, "name": "S"}]})

    client = _client(handler)
    try:
        assert client.media_type == "movie"
        page = await client.fetch_popular_page(1, media_type="tv")
    finally:
        await client.close()
    assert paths == ["/3/tv/popular"]
    assert page.items[0].media_type == "tv"


@pytest.mark.asyncio
async def test_fetch_by_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/movie/550"
        return httpx.Response(200, json={"id": 550, "title": "Fight Club", "runtime": 139})

    client = _client(handler)
    try:
        item = await client.fetch_by_id("movie-550")
    finally:
        await client.close()
    assert item.key == "movie-550"
    assert item.summary is False
    assert item.data["runtime"] == 139


@pytest.mark.asyncio
async def test_not_found() -> None:
    client = _client(lambda request: httpx.Response(404, json={"status_code": 34}))
    try:
        with pytest.raises(NotFound) as exc_info:
            await client.fetch_by_id("movie-0")
    finally:
        await client.close()
    assert exc_info.value.key == "movie-0"


@pytest.mark.asyncio
async def test_malformed_key_is_not_found() -> None:
    client = _client(lambda request: pytest.fail("no request expected"))
    try:
        with pytest.raises(NotFound):
            await client.fetch_by_id("550")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_rate_limited_carries_retry_after() -> None:
    client = _client(lambda request: httpx.Response(429, headers={"Retry-After": "7"}))
    try:
        with pytest.raises(RateLimited) as exc_info:
            await client.fetch_popular_page(1)
    finally:
        await client.close()
    assert exc_info.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_rate_limited_without_hint() -> None:
    client = _client(lambda request: httpx.Response(429))
    try:
        with pytest.raises(RateLimited) as exc_info:
            await client.fetch_popular_page(1)
    finally:
        await client.close()
    assert exc_info.value.retry_after is None


@pytest.mark.asyncio
async def test_unauthorized() -> None:
    client = _client(lambda request: httpx.Response(401, json={"status_code": 7}))
    try:
        with pytest.raises(AuthenticationError):
            await client.fetch_popular_page(1)
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_server_error() -> None:
    client = _client(lambda request: httpx.Response(503, text="maintenance"))
    try:
        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_popular_page(1)
    finally:
        await client.close()
    assert exc_info.value.status_code == 503
    assert not isinstance(exc_info.value, (RateLimited, NotFound, AuthenticationError))


@pytest.mark.asyncio
async def test_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    try:
        with pytest.raises(UpstreamError):
            await client.fetch_by_id("movie-1")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_invalid_json() -> None:
    client = _client(lambda request: httpx.Response(200, text="<html>"))
    try:
        with pytest.raises(UpstreamError):
            await client.fetch_popular_page(1)
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_api_key_not_logged(caplog: pytest.LogCaptureFixture) -> None:
    client = _client(lambda request: httpx.Response(500))
    try:
        with caplog.at_level("DEBUG", logger="catalog_cache.tmdb_client"):
            with pytest.raises(UpstreamError):
                await client.fetch_popular_page(1)
    finally:
        await client.close()
    assert "secret-key" not in caplog.text


def test_parse_retry_after() -> None:
    assert _parse_retry_after(None) is None
    assert _parse_retry_after("3") == 3.0
    assert _parse_retry_after("garbage") is None
    assert _parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
