"""
Update Service

Orchestrates updating a batch of stored fic documents.

DESIGN:
=======
1. Each document runs read -> retrieve -> merge -> inflate -> aggregate ->
   persist, strictly in that order
2. Documents run concurrently, at most `max_concurrency` at a time
3. A failing document is recorded as FAILED; the others carry on
4. Nothing is written unless the change log is non-empty, and a document
   is only written after merge and aggregation both completed
"""

from __future__ import annotations
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional, Union
import asyncio
import logging

from .aggregation import refresh_metadata
from .config import UpdateConfig
from .contracts import Fic, UpdateBatch, UpdateResult, UpdateStatus
from .fetcher import Fetch
from .inflate import fic_inflate
from .merge import merge_fic
from .retrieval import fetch_latest_version
from .storage import FicStore


logger = logging.getLogger(__name__)

Retrieve = Callable[[Fetch, Fic, bool, bool], Awaitable[Fic]]
Inflate = Callable[..., Awaitable[Fic]]


class UpdateService:
    """
    Coordinates retrieval, reconciliation and storage of fic documents.

    The fetch capability is shared by every document in flight; it does
    its own concurrency and rate accounting.
    """

    def __init__(
        self,
        fetch: Fetch,
        config: Optional[UpdateConfig] = None,
        store: Optional[FicStore] = None,
        retrieve: Retrieve = fetch_latest_version,
        inflate: Inflate = fic_inflate
    ):
        self._fetch = fetch
        self._config = config or UpdateConfig()
        self._store = store or FicStore()
        self._retrieve = retrieve
        self._inflate = inflate

    async def update_document(self, path: Union[str, Path]) -> UpdateResult:
        """Update one document. Errors propagate to the caller."""
        path = str(path)
        existing_fic = self._store.read(path)
        new_fic = await self._retrieve(
            self._fetch,
            existing_fic,
            self._config.from_threadmarks,
            self._config.from_scrape
        )

        changes = merge_fic(existing_fic, new_fic, self._config.add_all)
        await self._inflate(existing_fic, self._fetch.with_options(cache_break=False), changes)
        refresh_metadata(existing_fic, changes)

        if not changes:
            logger.debug("%s: no changes", path)
            return UpdateResult(path=path, status=UpdateStatus.UNCHANGED)

        self._store.write(path, existing_fic)
        return UpdateResult(path=path, status=UpdateStatus.UPDATED, changes=tuple(changes))

    async def _update_isolated(self, semaphore: asyncio.Semaphore, path: str) -> UpdateResult:
        async with semaphore:
            try:
                return await self.update_document(path)
            except Exception as e:
                logger.debug("%s failed", path, exc_info=True)
                return UpdateResult(path=path, status=UpdateStatus.FAILED, error=str(e) or type(e).__name__)

    async def update_all(self, paths: Iterable[Union[str, Path]]) -> UpdateBatch:
        """
        Update every document, at most max_concurrency at once.

        Returns batch with all results, in the order of `paths`.
        """
        started_at = datetime.now(timezone.utc)
        semaphore = asyncio.Semaphore(self._config.max_concurrency)
        results: List[UpdateResult] = await asyncio.gather(*(
            self._update_isolated(semaphore, str(path)) for path in paths
        ))
        return UpdateBatch(
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            results=tuple(results)
        )

    @property
    def config(self) -> UpdateConfig:
        return self._config
