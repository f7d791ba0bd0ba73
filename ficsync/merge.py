"""
Merge Engine

Reconciles a stored fic against a freshly fetched copy.

RULES:
======
1. Chapters are only ever added, never removed
2. A present value is never overwritten by backfill - only absent -> present
3. Chapter dates are the exception: a remote date that differs by instant
   replaces the stored one
4. Derived fic fields (created, modified, words) are left to the
   aggregation pass
5. Every mutation is described by one entry in the returned change log
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List
import copy
import logging

from .aggregation import refresh_metadata
from .contracts import Chapter, Fic, FicNode
from .timestamps import dates_equal


logger = logging.getLogger(__name__)

FIC_SCALARS = ('publisher', 'author', 'author_url', 'update_from', 'link', 'title')
CHAPTER_SCALARS = ('name', 'link', 'fetch_from', 'author', 'author_url', 'tags', 'words')


# =============================================================================
# STEPS
# =============================================================================

def _chapters_to_add(existing_fic: Fic, new_fic: Fic, add_all: bool) -> List[Chapter]:
    """
    Walk the remote chapters newest to oldest collecting unknown ones.

    Without add_all the walk stops at the first known chapter: everything
    older is taken as already recorded, which also keeps chapters that were
    pruned from the middle of the stored list from coming back.
    """
    to_add: List[Chapter] = []
    for new_chapter in reversed(new_fic.chapters):
        if existing_fic.has_chapter(new_chapter):
            if add_all:
                continue
            break
        to_add.insert(0, new_chapter)
    return to_add


def _admit_chapters(existing_fic: Fic, new_fic: Fic, add_all: bool, changes: List[str]):
    added = 0
    for chapter in _chapters_to_add(existing_fic, new_fic, add_all):
        if existing_fic.chapters.admit(chapter) is not None:
            added += 1
    if added:
        changes.append(f"{existing_fic.title}: Added {added} new chapters")


def _backfill_fic(existing_fic: Fic, new_fic: Fic, changes: List[str]):
    if existing_fic.description is None and new_fic.description is not None:
        existing_fic.description = new_fic.description
        changes.append(f"{existing_fic.title}: Set fic description to {existing_fic.description}")

    if existing_fic.tags is None and new_fic.tags:
        existing_fic.tags = list(new_fic.tags)
        changes.append(f"{existing_fic.title}: Set fic tags to {', '.join(new_fic.tags)}")

    for prop in FIC_SCALARS:
        if getattr(existing_fic, prop) is None and getattr(new_fic, prop) is not None:
            setattr(existing_fic, prop, getattr(new_fic, prop))
            changes.append(f"{existing_fic.title}: Set fic {prop} to {getattr(existing_fic, prop)}")


def _refine_chapter(fic: FicNode, chapter: Chapter, new_chapter: Chapter, changes: List[str]):
    if new_chapter.created and not dates_equal(new_chapter.created, chapter.created):
        changes.append(
            f'{fic.title}: Updated creation date for chapter "{new_chapter.name}" '
            f'from {chapter.created} to {new_chapter.created}'
        )
        chapter.created = new_chapter.created

    if new_chapter.modified and not dates_equal(new_chapter.modified, chapter.modified):
        changes.append(
            f'{fic.title}: Updated modification date for chapter "{new_chapter.name}" '
            f'from {chapter.modified} to {new_chapter.modified}'
        )
        chapter.modified = new_chapter.modified

    for prop in CHAPTER_SCALARS:
        value = getattr(new_chapter, prop)
        if getattr(chapter, prop) is None and value is not None:
            setattr(chapter, prop, list(value) if prop == 'tags' else value)
            changes.append(f'{fic.title}: Set {prop} for chapter "{new_chapter.name}" to {value}')


def _refine_chapters(existing_fic: Fic, new_fic: Fic, changes: List[str]):
    for fic in existing_fic.all_fics():
        for chapter in fic.chapters:
            for new_chapter in new_fic.chapters:
                if chapter.same_chapter(new_chapter):
                    _refine_chapter(fic, chapter, new_chapter, changes)


def _backfill_fic_dates(existing_fic: Fic, new_fic: Fic, changes: List[str]):
    if len(existing_fic.chapters) == 0:
        return
    if existing_fic.created is None and new_fic.created is not None:
        changes.append(
            f"{existing_fic.title}: Updated fic publish time from {existing_fic.created} "
            f"to {new_fic.created} (from newFic)"
        )
        existing_fic.created = new_fic.created
    if existing_fic.modified is None and new_fic.modified is not None:
        changes.append(
            f"{existing_fic.title}: Updated fic last update time from {existing_fic.modified} "
            f"to {new_fic.modified} (from newFic)"
        )
        existing_fic.modified = new_fic.modified


# =============================================================================
# ENTRY POINTS
# =============================================================================

def merge_fic(existing_fic: Fic, new_fic: Fic, add_all: bool = False) -> List[str]:
    """
    Merge `new_fic` into `existing_fic` in place.

    Returns the change log; an empty list means nothing was touched.
    """
    changes: List[str] = []
    _admit_chapters(existing_fic, new_fic, add_all, changes)
    _backfill_fic(existing_fic, new_fic, changes)
    _refine_chapters(existing_fic, new_fic, changes)
    _backfill_fic_dates(existing_fic, new_fic, changes)

    for change in changes:
        logger.debug(change)
    return changes


@dataclass(frozen=True)
class Reconciliation:
    """A merged and re-aggregated copy of a document plus what changed."""
    fic: Fic
    changes: List[str]

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def reconcile(existing_fic: Fic, new_fic: Fic, add_all: bool = False) -> Reconciliation:
    """
    Merge and aggregate over a copy of `existing_fic`.

    The caller's document is left untouched, so a failure part way through
    never leaves it half merged.
    """
    merged = copy.deepcopy(existing_fic)
    changes = merge_fic(merged, new_fic, add_all)
    refresh_metadata(merged, changes)
    return Reconciliation(fic=merged, changes=changes)
