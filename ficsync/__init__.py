"""
ficsync

Keeps locally stored fic documents in sync with their remote sources:
new chapters are added, missing metadata is backfilled and derived
fields are recomputed, without ever discarding stored data.
"""

from .aggregation import refresh_metadata
from .config import FetchConfig, UpdateConfig
from .contracts import (
    Chapter,
    ChapterContent,
    ChapterList,
    Fic,
    SubFic,
    RetrievalMode,
    UpdateBatch,
    UpdateResult,
    UpdateStatus,
)
from .errors import DocumentError, ErrorCode, FicSyncError, RetrievalError, UnknownSiteError
from .fetcher import Fetch, HttpFetcher
from .inflate import fic_inflate
from .merge import Reconciliation, merge_fic, reconcile
from .registry import Site, SiteRegistry, register_site, site_for
from .retrieval import fetch_latest_version, fic_from_url, fic_from_url_and_scrape, scrape_from_url
from .service import UpdateService
from .storage import FicStore

__all__ = [
    'Chapter',
    'ChapterContent',
    'ChapterList',
    'DocumentError',
    'ErrorCode',
    'Fetch',
    'FetchConfig',
    'Fic',
    'FicStore',
    'FicSyncError',
    'HttpFetcher',
    'Reconciliation',
    'RetrievalError',
    'RetrievalMode',
    'Site',
    'SiteRegistry',
    'SubFic',
    'UnknownSiteError',
    'UpdateBatch',
    'UpdateConfig',
    'UpdateResult',
    'UpdateService',
    'UpdateStatus',
    'fetch_latest_version',
    'fic_from_url',
    'fic_from_url_and_scrape',
    'fic_inflate',
    'merge_fic',
    'reconcile',
    'refresh_metadata',
    'register_site',
    'scrape_from_url',
    'site_for',
]
