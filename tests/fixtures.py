"""
Test Fixtures

Builders for fic documents plus an in-memory Site and a recording Fetch.

RULES:
======
1. No fixture touches the network
2. Remote state is declared up front in a RemoteFic, never generated
3. Every fetch is recorded with the cache option it was made under
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple

from ficsync.contracts import Chapter, ChapterContent, ChapterList, Fic
from ficsync.errors import RetrievalError
from ficsync.fetcher import Fetch
from ficsync.registry import Site, default_registry


BASE = "https://fics.example"
FIC_LINK = f"{BASE}/threads/test-fic.1"


def ts(day: int, hour: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, tzinfo=timezone.utc)


def chapter_link(n: int, link: str = FIC_LINK) -> str:
    return f"{link}/post-{n}"


def chapter(n: int, **fields) -> Chapter:
    """Chapter n with a stable name, link and creation date."""
    values = {
        'order': 0,
        'name': f"Chapter {n}",
        'link': chapter_link(n),
        'created': ts(n),
    }
    values.update(fields)
    return Chapter(**values)


def make_fic(
    chapters: Tuple[Chapter, ...] = (),
    title: str = "Test Fic",
    link: str = FIC_LINK,
    site: Optional[Site] = None,
    **fields
) -> Fic:
    """A document as it looks after loading: unset tags are None."""
    fic = Fic(site=site)
    fic.title = title
    fic.link = link
    fic.tags = None
    for name, value in fields.items():
        setattr(fic, name, value)
    fic.chapters = ChapterList.from_records(replace(c) for c in chapters)
    return fic


def add_subfic(fic: Fic, title: str, chapters: Tuple[Chapter, ...] = (), **fields):
    subfic = fic.add_subfic()
    subfic.title = title
    subfic.tags = None
    for name, value in fields.items():
        setattr(subfic, name, value)
    subfic.chapters = ChapterList.from_records(replace(c) for c in chapters)
    return subfic


# =============================================================================
# FETCH
# =============================================================================

class RecordingFetch(Fetch):
    """
    Serves `pages` and records `(url, cache_break)` for every call.

    Views made by `with_options` share pages, redirects, failures and calls.
    """

    def __init__(
        self,
        pages: Optional[Dict[str, str]] = None,
        redirects: Optional[Dict[str, str]] = None,
        failures: Optional[Dict[str, Exception]] = None,
        cache_break: bool = False,
        calls: Optional[List[Tuple[str, bool]]] = None
    ):
        self.pages = pages if pages is not None else {}
        self.redirects = redirects if redirects is not None else {}
        self.failures = failures if failures is not None else {}
        self.cache_break = cache_break
        self.calls = calls if calls is not None else []

    async def __call__(self, url: str, no_cache: bool = False) -> Tuple[str, str]:
        self.calls.append((url, self.cache_break or no_cache))
        if url in self.failures:
            raise self.failures[url]
        final_url = self.redirects.get(url, url)
        return final_url, self.pages.get(final_url, '')

    def with_options(self, cache_break: Optional[bool] = None, no_network: Optional[bool] = None) -> 'RecordingFetch':
        return RecordingFetch(
            self.pages,
            self.redirects,
            self.failures,
            self.cache_break if cache_break is None else cache_break,
            self.calls
        )

    def urls(self) -> List[str]:
        return [url for url, _ in self.calls]


# =============================================================================
# SITE
# =============================================================================

@dataclass
class RemoteFic:
    """What the remote side currently says about one fic."""
    title: str = "Test Fic"
    author: Optional[str] = None
    author_url: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    chapters: List[Chapter] = field(default_factory=list)
    scraped_chapters: Optional[List[Chapter]] = None  # None: same as chapters
    index_status: Optional[int] = None  # Chapter index fails with this status

    def fill(self, fic: Fic, scraped: bool):
        fic.title = self.title
        fic.author = self.author
        fic.author_url = self.author_url
        fic.description = self.description
        fic.tags = list(self.tags)
        fic.created = self.created
        fic.modified = self.modified
        chapters = self.chapters
        if scraped and self.scraped_chapters is not None:
            chapters = self.scraped_chapters
        for c in chapters:
            fic.chapters.admit(c)


def index_url(link: str = FIC_LINK) -> str:
    return f"{link}/threadmarks"


class StubSite(Site):
    """Site backed by the `remote` class attribute."""

    publisher = BASE
    publisher_name = "Stub Forum"
    remote: RemoteFic = RemoteFic()

    @classmethod
    def matches(cls, link: str) -> bool:
        return link.startswith(BASE)

    async def get_fic_metadata(self, fetch: Fetch, fic: Fic) -> None:
        await fetch(index_url(self.link))
        if self.remote.index_status is not None:
            raise RetrievalError("Index unavailable", link=index_url(self.link), status=self.remote.index_status)
        self.remote.fill(fic, scraped=False)

    async def scrape_fic_metadata(self, fetch: Fetch, fic: Fic) -> None:
        await fetch(self.link)
        self.remote.fill(fic, scraped=True)

    async def get_chapter(self, fetch: Fetch, chapter: Chapter) -> ChapterContent:
        final_url, body = await fetch(chapter.fetch_with())
        return ChapterContent(
            link=chapter.link,
            final_url=final_url,
            created=ts(1),
            author="Chapter Author",
            content=body
        )


def stub_lookup(remote: RemoteFic):
    """Site lookup serving `remote` for every link."""
    def lookup(link: str) -> Site:
        StubSite.remote = remote
        return StubSite(link)
    return lookup


@contextmanager
def registered_stub(remote: RemoteFic) -> Iterator[type]:
    """Register StubSite with the default registry for the duration."""
    StubSite.remote = remote
    default_registry().register(StubSite)
    try:
        yield StubSite
    finally:
        default_registry().unregister(StubSite)
        StubSite.remote = RemoteFic()
