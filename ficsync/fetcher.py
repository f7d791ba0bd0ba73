"""
HTTP Fetcher

The fetch capability handed to sites and to the retrieval protocol.

GUARANTEES:
===========
1. Successful responses are cached on disk together with the cookies they set
2. A cache hit re-attaches those cookies to the shared cookie jar
3. Live requests respect the concurrency cap and requests-per-second throttle
4. Failures raise RetrievalError - there are no retries at this layer

All option views returned by `with_options` share one session: HTTP client,
cache, cookie jar, semaphore and rate limiter.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple
import asyncio
import hashlib
import json
import logging

import httpx

from .config import FetchConfig
from .errors import ErrorCode, RetrievalError


logger = logging.getLogger(__name__)


class Fetch(ABC):
    """
    Interface of a fetch capability.

    Calling it returns `(final_url, body)`.
    """

    @abstractmethod
    async def __call__(self, url: str, no_cache: bool = False) -> Tuple[str, str]:
        ...

    @abstractmethod
    def with_options(
        self,
        cache_break: Optional[bool] = None,
        no_network: Optional[bool] = None
    ) -> 'Fetch':
        """View of this capability with different cache options."""
        ...


# =============================================================================
# CACHE
# =============================================================================

@dataclass
class CachedResponse:
    url: str
    final_url: str
    status: int
    body: str
    fetched_at: str
    cookies: List[Tuple[str, str, str, str]] = field(default_factory=list)


class FetchCache:
    """One JSON file per URL, keyed by the URL's SHA-256."""

    def __init__(self, base_path: Path):
        self._base_path = Path(base_path)

    def _path_for(self, url: str) -> Path:
        key = hashlib.sha256(url.encode('utf-8')).hexdigest()
        return self._base_path / key[:2] / f"{key}.json"

    def get(self, url: str) -> Optional[CachedResponse]:
        path = self._path_for(url)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
            data['cookies'] = [tuple(c) for c in data.get('cookies', [])]
            return CachedResponse(**data)
        except (ValueError, TypeError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", path, e)
            return None

    def put(self, entry: CachedResponse):
        path = self._path_for(entry.url)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix('.tmp')
        tmp_path.write_text(json.dumps(asdict(entry)), encoding='utf-8')
        tmp_path.replace(path)

    def clear_url(self, url: str):
        path = self._path_for(url)
        if path.exists():
            path.unlink()


# =============================================================================
# THROTTLING
# =============================================================================

class RateLimiter:
    """Spaces request starts at least 1/requests_per_second apart."""

    def __init__(self, requests_per_second: float):
        self._interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        if not self._interval:
            return
        loop = asyncio.get_running_loop()
        async with self._lock:
            now = loop.time()
            delay = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self._interval
        if delay > 0:
            await asyncio.sleep(delay)


# =============================================================================
# FETCHER
# =============================================================================

class FetchSession:
    """State shared by every view of an HttpFetcher."""

    def __init__(self, config: FetchConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.cache = FetchCache(config.cache_dir)
        self.client = httpx.AsyncClient(
            timeout=config.timeout,
            headers={'User-Agent': config.user_agent},
            follow_redirects=True,
            transport=transport
        )
        self.semaphore = asyncio.Semaphore(config.max_concurrency)
        self.limiter = RateLimiter(config.requests_per_second)
        self.live_requests = 0

    def load_cookies(self, cookies: List[Tuple[str, str, str, str]]):
        for name, value, domain, path in cookies:
            self.client.cookies.set(name, value, domain=domain, path=path or '/')

    async def fetch_live(self, url: str) -> Tuple[str, str]:
        async with self.semaphore:
            await self.limiter.acquire()
            self.live_requests += 1
            logger.debug("GET %s", url)
            try:
                response = await self.client.get(url)
            except httpx.TimeoutException:
                raise RetrievalError("Request timed out", link=url, code=ErrorCode.TIMEOUT)
            except httpx.TransportError as e:
                raise RetrievalError(f"Network error: {e}", link=url, code=ErrorCode.NETWORK_ERROR)

        final_url = str(response.url)
        if response.status_code >= 400:
            raise RetrievalError(
                f"HTTP {response.status_code}",
                link=url,
                status=response.status_code,
                code=ErrorCode.HTTP_ERROR
            )

        self.cache.put(CachedResponse(
            url=url,
            final_url=final_url,
            status=response.status_code,
            body=response.text,
            fetched_at=datetime.now(timezone.utc).isoformat(),
            cookies=[
                (cookie.name, cookie.value, cookie.domain, cookie.path)
                for cookie in response.cookies.jar
            ]
        ))
        return final_url, response.text

    async def aclose(self):
        await self.client.aclose()


class HttpFetcher(Fetch):
    """
    httpx-backed fetch capability with an on-disk cache.

    `cache_break` skips cached responses (new ones are still stored);
    `no_network` serves from the cache only.
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        session: Optional[FetchSession] = None,
        cache_break: Optional[bool] = None,
        no_network: Optional[bool] = None
    ):
        self._config = config or FetchConfig()
        self._session = session or FetchSession(self._config, transport)
        self._cache_break = self._config.cache_break if cache_break is None else cache_break
        self._no_network = self._config.no_network if no_network is None else no_network

    def with_options(
        self,
        cache_break: Optional[bool] = None,
        no_network: Optional[bool] = None
    ) -> 'HttpFetcher':
        return HttpFetcher(
            self._config,
            session=self._session,
            cache_break=self._cache_break if cache_break is None else cache_break,
            no_network=self._no_network if no_network is None else no_network
        )

    def set_global_cookie(self, cookie: str):
        """Send a "name=value" cookie with every request."""
        name, _, value = cookie.partition('=')
        if not name or not value:
            raise ValueError(f"Cookie must look like name=value, got {cookie!r}")
        self._session.client.cookies.set(name.strip(), value.strip())

    async def __call__(self, url: str, no_cache: bool = False) -> Tuple[str, str]:
        cached = None
        if not (self._cache_break or no_cache) or self._no_network:
            cached = self._session.cache.get(url)
        if cached is not None:
            logger.debug("cache hit %s", url)
            self._session.load_cookies(cached.cookies)
            return cached.final_url, cached.body
        if self._no_network:
            raise RetrievalError(
                "Not in cache and network access is disabled",
                link=url,
                code=ErrorCode.NOT_CACHED
            )
        return await self._session.fetch_live(url)

    def clear_url(self, url: str):
        self._session.cache.clear_url(url)

    @property
    def cache_break(self) -> bool:
        return self._cache_break

    @property
    def no_network(self) -> bool:
        return self._no_network

    @property
    def live_requests(self) -> int:
        return self._session.live_requests

    async def aclose(self):
        await self._session.aclose()

    async def __aenter__(self) -> 'HttpFetcher':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
