"""
Site Registry

Maps a fic URL to the Site implementation that knows how to read it.

A Site turns remote pages into fic and chapter data. Concrete scrapers live
outside this package. They are registered in code with `register_site`, or
published by their package under the "ficsync.sites" entry point group:

    [project.entry-points."ficsync.sites"]
    example = "example_sites.forum:ForumSite"
"""

from __future__ import annotations
from importlib.metadata import entry_points
from typing import List, Optional, Type, TYPE_CHECKING
from urllib.parse import urljoin, urlparse
import logging

from .errors import UnknownSiteError

if TYPE_CHECKING:
    from .contracts import Chapter, ChapterContent, Fic
    from .fetcher import Fetch


logger = logging.getLogger(__name__)

SITE_ENTRY_POINT_GROUP = "ficsync.sites"


class Site:
    """
    Base class for a remote source of fics.

    Subclasses implement `matches` and the three coroutines. Any of the
    coroutines may raise RetrievalError with a status code.
    """

    publisher: Optional[str] = None
    publisher_name: Optional[str] = None

    def __init__(self, link: str):
        self.link = link

    @classmethod
    def matches(cls, link: str) -> bool:
        raise NotImplementedError

    @property
    def hostname(self) -> str:
        return urlparse(self.link).hostname or ''

    def normalize_link(self, href: Optional[str], base: Optional[str] = None) -> Optional[str]:
        """Resolve href against base (or the fic link) and drop the fragment."""
        if not href:
            return None
        return urljoin(base or self.link, href).split('#', 1)[0]

    async def get_fic_metadata(self, fetch: 'Fetch', fic: 'Fic') -> None:
        """Fill fic fields and chapters from the structured chapter index."""
        raise NotImplementedError

    async def scrape_fic_metadata(self, fetch: 'Fetch', fic: 'Fic') -> None:
        """Fill fic fields and chapters by walking the story pages."""
        raise NotImplementedError

    async def get_chapter(self, fetch: 'Fetch', chapter: 'Chapter') -> 'ChapterContent':
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.link!r})"


class SiteRegistry:
    """
    Ordered list of Site classes; the first match wins.

    With an `entry_point_group`, Site classes published by installed
    packages under that group are registered on first use, after any
    registered in code.
    """

    def __init__(self, entry_point_group: Optional[str] = None):
        self._sites: List[Type[Site]] = []
        self._entry_point_group = entry_point_group
        self._plugins_loaded = entry_point_group is None

    def register(self, site_cls: Type[Site]) -> Type[Site]:
        """Register a Site class. Usable as a class decorator."""
        if site_cls not in self._sites:
            self._sites.append(site_cls)
        return site_cls

    def unregister(self, site_cls: Type[Site]):
        if site_cls in self._sites:
            self._sites.remove(site_cls)

    def load_plugins(self):
        """Register the Site classes published under the entry point group."""
        if self._plugins_loaded:
            return
        for entry_point in entry_points(group=self._entry_point_group):
            site_cls = entry_point.load()
            if not (isinstance(site_cls, type) and issubclass(site_cls, Site)):
                raise TypeError(f"Entry point {entry_point.name!r} is not a Site class: {site_cls!r}")
            logger.debug("Loaded site %s from entry point %s", site_cls.__name__, entry_point.name)
            self.register(site_cls)
        self._plugins_loaded = True

    def for_url(self, link: Optional[str]) -> Site:
        self.load_plugins()
        if link:
            for site_cls in self._sites:
                if site_cls.matches(link):
                    return site_cls(link)
        raise UnknownSiteError(link or '<no link>')

    @property
    def sites(self) -> List[Type[Site]]:
        self.load_plugins()
        return list(self._sites)


_default_registry = SiteRegistry(entry_point_group=SITE_ENTRY_POINT_GROUP)


def register_site(site_cls: Type[Site]) -> Type[Site]:
    """Register a Site class with the default registry."""
    return _default_registry.register(site_cls)


def site_for(link: Optional[str]) -> Site:
    """Site instance for a URL from the default registry."""
    return _default_registry.for_url(link)


def default_registry() -> SiteRegistry:
    return _default_registry
