"""
Retrieval Protocol

Produces a freshly fetched Fic representing the current remote state.

PROTOCOL:
=========
1. Pick the retrieval mode from the stored document's markers and the
   caller's preference
2. Run that mode once through the cache - this re-attaches the session
   cookies a cached fetch carries, so the live fetch is not served a
   logged-out view. The result is discarded
3. Run it again with the cache broken; this is the authoritative result
4. Inflate lazily fetched chapter data through the cache

Fetch failures propagate to the caller. Nothing is retried here.
"""

from __future__ import annotations
from typing import Awaitable, Callable
import logging

from .contracts import Fic, RetrievalMode
from .errors import RetrievalError
from .fetcher import Fetch
from .inflate import fic_inflate
from .registry import Site, site_for


logger = logging.getLogger(__name__)

SiteLookup = Callable[[str], Site]


def select_mode(existing_fic: Fic, from_threadmarks: bool, from_scrape: bool) -> RetrievalMode:
    """
    Retrieval mode for an update of `existing_fic`.

    A document first read by scraping is always scraped again; one first
    read through the structured endpoint always uses it.
    """
    use_threadmarks = bool((not existing_fic.scrape_meta and from_threadmarks) or existing_fic.fetch_meta)
    use_scrape = bool(from_scrape or existing_fic.scrape_meta)

    if use_threadmarks and use_scrape:
        return RetrievalMode.THREADMARKS_AND_SCRAPE
    if use_threadmarks:
        return RetrievalMode.THREADMARKS
    return RetrievalMode.SCRAPE


def _new_fic(link: str, lookup: SiteLookup) -> Fic:
    site = lookup(link)
    fic = Fic(site=site)
    fic.link = site.link
    return fic


async def fic_from_url(fetch: Fetch, link: str, lookup: SiteLookup = site_for) -> Fic:
    """
    Read a fic from the structured chapter index.

    A 404 from the index is tolerated; if no chapters were found the
    pages are scraped instead.
    """
    fic = _new_fic(link, lookup)
    try:
        await fic.site.get_fic_metadata(fetch, fic)
    except RetrievalError as err:
        if err.status != 404:
            raise
        logger.info("No chapter index for %s, falling back to scraping", link)
    if len(fic.chapters) == 0:
        await fic.site.scrape_fic_metadata(fetch, fic)
    return fic


async def fic_from_url_and_scrape(fetch: Fetch, link: str, lookup: SiteLookup = site_for) -> Fic:
    """Read the chapter index, then scrape to fill in what it lacks."""
    fic = _new_fic(link, lookup)
    await fic.site.get_fic_metadata(fetch, fic)
    await fic.site.scrape_fic_metadata(fetch, fic)
    return fic


async def scrape_from_url(fetch: Fetch, link: str, lookup: SiteLookup = site_for) -> Fic:
    fic = _new_fic(link, lookup)
    await fic.site.scrape_fic_metadata(fetch, fic)
    return fic


_READERS = {
    RetrievalMode.THREADMARKS: fic_from_url,
    RetrievalMode.THREADMARKS_AND_SCRAPE: fic_from_url_and_scrape,
    RetrievalMode.SCRAPE: scrape_from_url,
}


async def fetch_latest_version(
    fetch: Fetch,
    existing_fic: Fic,
    from_threadmarks: bool,
    from_scrape: bool,
    lookup: SiteLookup = site_for,
    inflate: Callable[[Fic, Fetch], Awaitable[Fic]] = fic_inflate
) -> Fic:
    """Fetch the current remote version of `existing_fic`."""
    update_from = existing_fic.update_with()
    if not update_from:
        raise RetrievalError("Document has no link to update from")

    mode = select_mode(existing_fic, from_threadmarks, from_scrape)
    read = _READERS[mode]
    logger.debug("Fetching %s (%s)", update_from, mode.value)

    await read(fetch.with_options(cache_break=False), update_from, lookup)
    new_fic = await read(fetch.with_options(cache_break=True), update_from, lookup)

    return await inflate(new_fic, fetch.with_options(cache_break=False))
