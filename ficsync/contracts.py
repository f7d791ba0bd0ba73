"""
Fic Document Contracts

Data structures for fic documents, their chapters and update results.

BOUNDARY: Core Data Model
Every layer (retrieval, merge, aggregation, storage) exchanges these types.

INVARIANTS:
===========
1. Within one ChapterList a present `link` is unique, and admitted
   records never duplicate a listed chapter's identity
2. Within one ChapterList `name` is unique (collisions get " (n)")
3. `order` is the insertion position and never changes once assigned
4. A SubFic reads author/author_url/publisher from its parent when unset
"""

from __future__ import annotations
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Iterator, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .registry import Site


# =============================================================================
# ENUMS
# =============================================================================

class RetrievalMode(Enum):
    """How a fic is read from its remote source."""
    THREADMARKS = "threadmarks"  # Structured chapter index
    SCRAPE = "scrape"  # Walk the pages themselves
    THREADMARKS_AND_SCRAPE = "threadmarks_and_scrape"  # Index, then fill gaps


class UpdateStatus(Enum):
    """Outcome of updating one document."""
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


# =============================================================================
# CHAPTERS
# =============================================================================

@dataclass
class Chapter:
    """
    One story installment.

    `link` is the remote identity. `fetch_from` is an alternate identity,
    e.g. the URL the chapter was actually served from after a redirect.
    Fields are only ever filled in by explicit backfill rules.
    """
    order: int
    name: Optional[str]
    link: Optional[str] = None
    fetch_from: Optional[str] = None
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    author: Optional[str] = None
    author_url: Optional[str] = None
    tags: Optional[List[str]] = None
    words: Optional[int] = None

    def same_chapter(self, other: 'Chapter') -> bool:
        """Identity: matching links, or matching fetch_from values."""
        if self.link and other.link and self.link == other.link:
            return True
        if self.fetch_from and other.fetch_from and self.fetch_from == other.fetch_from:
            return True
        return False

    def fetch_with(self) -> Optional[str]:
        """URL to request when reading this chapter's content."""
        return self.fetch_from or self.link


class ChapterList(Sequence):
    """
    Ordered, deduplicated chapters of one fic.

    Insertion order is the canonical reading order. The only ways in are
    `add_chapter` and `admit`, both of which refuse a link that is already
    present and deconflict the name.
    """

    def __init__(self):
        self._chapters: List[Chapter] = []

    @classmethod
    def from_records(cls, chapters: Iterable[Chapter]) -> 'ChapterList':
        """Rebuild a stored list as-is, renumbering `order` by position."""
        result = cls()
        for chapter in chapters:
            chapter.order = len(result._chapters)
            result._chapters.append(chapter)
        return result

    def __getitem__(self, index):
        return self._chapters[index]

    def __len__(self) -> int:
        return len(self._chapters)

    def __iter__(self) -> Iterator[Chapter]:
        return iter(self._chapters)

    def __repr__(self) -> str:
        return f"ChapterList({self._chapters!r})"

    def chapter_exists(self, link: Optional[str]) -> bool:
        if not link:
            return False
        return any(chapter.link == link for chapter in self._chapters)

    def add_chapter(
        self,
        name: Optional[str],
        link: Optional[str],
        created: Optional[datetime] = None,
        **fields: Any
    ) -> Optional[Chapter]:
        """Append a new chapter unless its link is already listed."""
        if self.chapter_exists(link):
            return None
        chapter = Chapter(
            order=len(self._chapters),
            name=self._unique_name(name),
            link=link,
            created=created,
            **fields
        )
        self._chapters.append(chapter)
        return chapter

    def admit(self, chapter: Chapter) -> Optional[Chapter]:
        """
        Append a copy of an existing chapter record.

        Refused when the link is listed or when a listed chapter is the
        same chapter by identity (e.g. a shared fetch_from).
        """
        if self.chapter_exists(chapter.link):
            return None
        if any(listed.same_chapter(chapter) for listed in self._chapters):
            return None
        admitted = replace(
            chapter,
            order=len(self._chapters),
            name=self._unique_name(chapter.name),
            tags=list(chapter.tags) if chapter.tags is not None else None
        )
        self._chapters.append(admitted)
        return admitted

    def _unique_name(self, base_name: Optional[str]) -> Optional[str]:
        if base_name is None:
            return None
        taken = {chapter.name for chapter in self._chapters}
        name = base_name
        counter = 0
        while name in taken:
            counter += 1
            name = f"{base_name} ({counter})"
        return name


@dataclass
class ChapterContent:
    """What a site returns when a single chapter is read."""
    link: str
    final_url: Optional[str] = None
    fetch_from: Optional[str] = None
    author: Optional[str] = None
    author_url: Optional[str] = None
    created: Optional[datetime] = None
    modified: Optional[datetime] = None
    content: str = ''
    words: Optional[int] = None


# =============================================================================
# FIC DOCUMENTS
# =============================================================================

class FicNode:
    """Fields and chapter handling shared by a root Fic and its SubFics."""

    def __init__(self):
        self.title: Optional[str] = None
        self.link: Optional[str] = None
        self.author: Optional[str] = None
        self.author_url: Optional[str] = None
        self.created: Optional[datetime] = None
        self.modified: Optional[datetime] = None
        self.publisher: Optional[str] = None
        self.description: Optional[str] = None
        self.tags: Optional[List[str]] = []
        self.words: Optional[int] = None
        self.update_from: Optional[str] = None
        self.chapters = ChapterList()

    def update_with(self) -> Optional[str]:
        """URL the document is refreshed from."""
        return self.update_from or self.link

    def all_fics(self) -> List['FicNode']:
        return [self]

    def chapter_exists(self, link: Optional[str]) -> bool:
        return any(fic.chapters.chapter_exists(link) for fic in self.all_fics())

    def has_chapter(self, candidate: Chapter) -> bool:
        """
        True when the candidate is already recorded anywhere in the document.

        Besides identity, a candidate whose fetch_from is a stored link counts
        as known: that chapter was stored before its redirect was resolved.
        """
        for fic in self.all_fics():
            for chapter in fic.chapters:
                if chapter.same_chapter(candidate):
                    return True
        return self.chapter_exists(candidate.fetch_from)

    def add_chapter(
        self,
        name: Optional[str],
        link: Optional[str],
        created: Optional[datetime] = None,
        **fields: Any
    ) -> Optional[Chapter]:
        if self.chapter_exists(link):
            return None
        return self.chapters.add_chapter(name, link, created, **fields)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(title={self.title!r}, link={self.link!r}, chapters={len(self.chapters)})"


class Fic(FicNode):
    """
    Root fic document.

    Owns its chapters and an ordered list of SubFics. `scrape_meta` and
    `fetch_meta` record how the document was originally read and override
    the caller's retrieval preference on update.
    """

    def __init__(self, site: Optional['Site'] = None):
        super().__init__()
        self.scrape_meta: bool = False
        self.fetch_meta: bool = False
        self.fics: List[SubFic] = []
        self._site = site

    @property
    def site(self) -> 'Site':
        if self._site is None:
            from .registry import site_for
            self._site = site_for(self.update_with())
        return self._site

    @site.setter
    def site(self, value: Optional['Site']):
        self._site = value

    def all_fics(self) -> List[FicNode]:
        return [self, *self.fics]

    def add_subfic(self) -> 'SubFic':
        subfic = SubFic(self)
        self.fics.append(subfic)
        return subfic


class SubFic(FicNode):
    """
    A story nested in a root Fic. Sub-fics do not nest further.

    author, author_url and publisher read through to the parent when the
    sub-fic has no value of its own; assignment only ever sets the own value.
    """

    def __init__(self, parent: Fic):
        self.parent = parent
        self.own_author: Optional[str] = None
        self.own_author_url: Optional[str] = None
        self.own_publisher: Optional[str] = None
        super().__init__()

    @property
    def author(self) -> Optional[str]:
        return self.own_author if self.own_author is not None else self.parent.author

    @author.setter
    def author(self, value: Optional[str]):
        self.own_author = value

    @property
    def author_url(self) -> Optional[str]:
        return self.own_author_url if self.own_author_url is not None else self.parent.author_url

    @author_url.setter
    def author_url(self, value: Optional[str]):
        self.own_author_url = value

    @property
    def publisher(self) -> Optional[str]:
        return self.own_publisher if self.own_publisher is not None else self.parent.publisher

    @publisher.setter
    def publisher(self, value: Optional[str]):
        self.own_publisher = value

    @property
    def site(self) -> 'Site':
        return self.parent.site


# =============================================================================
# UPDATE RESULTS
# =============================================================================

@dataclass(frozen=True)
class UpdateResult:
    """
    Result of updating one document (success or failure).

    Failed updates are first-class outputs, not exceptions.
    """
    path: str
    status: UpdateStatus
    changes: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != UpdateStatus.FAILED


@dataclass(frozen=True)
class UpdateBatch:
    """Results of one update run, in input order."""
    started_at: datetime
    completed_at: datetime
    results: Tuple[UpdateResult, ...] = field(default_factory=tuple)

    @property
    def updated_count(self) -> int:
        return sum(1 for r in self.results if r.status == UpdateStatus.UPDATED)

    @property
    def unchanged_count(self) -> int:
        return sum(1 for r in self.results if r.status == UpdateStatus.UNCHANGED)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if r.status == UpdateStatus.FAILED)
