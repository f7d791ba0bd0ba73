"""
HTTP Fetcher Tests

All traffic goes through httpx.MockTransport; the cache lives in tmp_path.
"""

import asyncio

import httpx
import pytest

from ficsync.config import FetchConfig
from ficsync.errors import ErrorCode, RetrievalError
from ficsync.fetcher import FetchCache, CachedResponse, HttpFetcher, RateLimiter


class MockSite:
    """Request handler recording what the server saw."""

    def __init__(self):
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/old":
            return httpx.Response(301, headers={"location": "https://fics.example/new"})
        if path == "/missing":
            return httpx.Response(404, text="gone")
        if path == "/login":
            return httpx.Response(200, text="welcome", headers={"set-cookie": "sid=abc123; Path=/"})
        return httpx.Response(200, text=f"page {path}")

    def cookie_header(self, index: int = -1) -> str:
        return self.requests[index].headers.get("cookie", "")


def config_for(tmp_path, **overrides) -> FetchConfig:
    values = {"cache_dir": tmp_path / "cache", "requests_per_second": 0}
    values.update(overrides)
    return FetchConfig(**values)


def run_with_fetcher(tmp_path, scenario, server=None, **overrides):
    server = server or MockSite()

    async def main():
        async with HttpFetcher(config_for(tmp_path, **overrides), transport=httpx.MockTransport(server)) as fetch:
            return await scenario(fetch)

    return asyncio.run(main()), server


class TestCaching:

    def test_second_request_is_served_from_cache(self, tmp_path):
        async def scenario(fetch):
            first = await fetch("https://fics.example/a")
            second = await fetch("https://fics.example/a")
            return first, second, fetch.live_requests

        (first, second, live), server = run_with_fetcher(tmp_path, scenario)

        assert first == second == ("https://fics.example/a", "page /a")
        assert live == 1
        assert len(server.requests) == 1

    def test_final_url_survives_the_cache(self, tmp_path):
        async def scenario(fetch):
            await fetch("https://fics.example/old")
            return await fetch("https://fics.example/old")

        result, server = run_with_fetcher(tmp_path, scenario)

        assert result == ("https://fics.example/new", "page /new")
        assert len(server.requests) == 2  # redirect plus target, once

    def test_cache_break_goes_live_and_refreshes(self, tmp_path):
        async def scenario(fetch):
            await fetch("https://fics.example/a")
            await fetch.with_options(cache_break=True)("https://fics.example/a")
            await fetch("https://fics.example/a")
            return fetch.live_requests

        live, server = run_with_fetcher(tmp_path, scenario)

        assert live == 2

    def test_no_cache_argument_bypasses_cache(self, tmp_path):
        async def scenario(fetch):
            await fetch("https://fics.example/a")
            await fetch("https://fics.example/a", no_cache=True)
            return fetch.live_requests

        live, _ = run_with_fetcher(tmp_path, scenario)

        assert live == 2

    def test_views_share_one_session(self, tmp_path):
        async def scenario(fetch):
            view = fetch.with_options(cache_break=True)
            await view("https://fics.example/a")
            return fetch.live_requests, view.cache_break, fetch.cache_break

        (live, view_break, base_break), _ = run_with_fetcher(tmp_path, scenario)

        assert live == 1
        assert view_break is True
        assert base_break is False

    def test_clear_url(self, tmp_path):
        async def scenario(fetch):
            await fetch("https://fics.example/a")
            fetch.clear_url("https://fics.example/a")
            await fetch("https://fics.example/a")
            return fetch.live_requests

        live, _ = run_with_fetcher(tmp_path, scenario)

        assert live == 2


class TestOffline:

    def test_cache_miss_without_network(self, tmp_path):
        async def scenario(fetch):
            with pytest.raises(RetrievalError) as excinfo:
                await fetch("https://fics.example/a")
            return excinfo.value

        error, server = run_with_fetcher(tmp_path, scenario, no_network=True)

        assert error.code == ErrorCode.NOT_CACHED
        assert server.requests == []

    def test_offline_serves_cache_even_when_breaking(self, tmp_path):
        async def warm(fetch):
            await fetch("https://fics.example/a")

        run_with_fetcher(tmp_path, warm)

        async def scenario(fetch):
            return await fetch.with_options(cache_break=True)("https://fics.example/a")

        result, server = run_with_fetcher(tmp_path, scenario, no_network=True)

        assert result == ("https://fics.example/a", "page /a")
        assert server.requests == []


class TestErrors:

    def test_http_error_status(self, tmp_path):
        async def scenario(fetch):
            with pytest.raises(RetrievalError) as excinfo:
                await fetch("https://fics.example/missing")
            return excinfo.value

        error, _ = run_with_fetcher(tmp_path, scenario)

        assert error.status == 404
        assert error.code == ErrorCode.HTTP_ERROR
        assert str(error) == "HTTP 404 (status 404) at https://fics.example/missing"

    def test_error_responses_are_not_cached(self, tmp_path):
        async def scenario(fetch):
            with pytest.raises(RetrievalError):
                await fetch("https://fics.example/missing")
            with pytest.raises(RetrievalError) as excinfo:
                await fetch.with_options(no_network=True)("https://fics.example/missing")
            return excinfo.value

        error, _ = run_with_fetcher(tmp_path, scenario)

        assert error.code == ErrorCode.NOT_CACHED

    def test_transport_failure(self, tmp_path):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario(fetch):
            with pytest.raises(RetrievalError) as excinfo:
                await fetch("https://fics.example/a")
            return excinfo.value

        error, _ = run_with_fetcher(tmp_path, scenario, server=refuse)

        assert error.code == ErrorCode.NETWORK_ERROR

    def test_timeout(self, tmp_path):
        def stall(request):
            raise httpx.ReadTimeout("too slow", request=request)

        async def scenario(fetch):
            with pytest.raises(RetrievalError) as excinfo:
                await fetch("https://fics.example/a")
            return excinfo.value

        error, _ = run_with_fetcher(tmp_path, scenario, server=stall)

        assert error.code == ErrorCode.TIMEOUT


class TestCookies:

    def test_cache_hit_restores_session_cookies(self, tmp_path):
        async def login(fetch):
            await fetch("https://fics.example/login")

        run_with_fetcher(tmp_path, login)

        async def scenario(fetch):
            await fetch("https://fics.example/login")  # cache hit, no request
            await fetch.with_options(cache_break=True)("https://fics.example/threads/1")

        _, server = run_with_fetcher(tmp_path, scenario)

        assert len(server.requests) == 1
        assert "sid=abc123" in server.cookie_header()

    def test_global_cookie_is_sent(self, tmp_path):
        async def scenario(fetch):
            fetch.set_global_cookie("xf_user=12345")
            await fetch("https://fics.example/a")

        _, server = run_with_fetcher(tmp_path, scenario)

        assert "xf_user=12345" in server.cookie_header()

    def test_malformed_global_cookie(self, tmp_path):
        async def scenario(fetch):
            with pytest.raises(ValueError):
                fetch.set_global_cookie("xf_user")

        run_with_fetcher(tmp_path, scenario)


class TestFetchCache:

    def test_unreadable_entry_is_a_miss(self, tmp_path):
        cache = FetchCache(tmp_path)
        cache.put(CachedResponse("https://fics.example/a", "https://fics.example/a", 200, "x", "now"))
        entry_path = next(tmp_path.rglob("*.json"))
        entry_path.write_text("{truncated", encoding="utf-8")

        assert cache.get("https://fics.example/a") is None

    def test_put_then_get(self, tmp_path):
        cache = FetchCache(tmp_path)
        cache.put(CachedResponse(
            "https://fics.example/a", "https://fics.example/b", 200, "body", "now",
            cookies=[("sid", "1", "fics.example", "/")]
        ))

        entry = cache.get("https://fics.example/a")

        assert entry.final_url == "https://fics.example/b"
        assert entry.cookies == [("sid", "1", "fics.example", "/")]


class TestRateLimiter:

    def test_disabled_limiter_never_sleeps(self, monkeypatch):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)

        async def scenario():
            limiter = RateLimiter(0)
            for _ in range(5):
                await limiter.acquire()

        asyncio.run(scenario())

        assert delays == []

    def test_requests_are_spaced(self, monkeypatch):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)

        async def scenario():
            limiter = RateLimiter(10)
            for _ in range(3):
                await limiter.acquire()

        asyncio.run(scenario())

        assert len(delays) == 2
        assert 0 < delays[0] <= 0.1
        assert delays[0] < delays[1] <= 0.2
