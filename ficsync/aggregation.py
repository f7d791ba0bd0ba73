"""
Aggregation Pass

Recomputes the derived fields of every fic in a document from its
chapters: `created` (earliest chapter), `modified` (latest chapter, a
chapter's creation date standing in for a missing modification date) and
`words` (sum, absent counted as zero).

A root fic without chapters of its own takes its dates from its sub-fics.
When there is nothing to derive a date from, the stored value is kept.
"""

from __future__ import annotations
from typing import List, Optional
from datetime import datetime

from .contracts import Fic, FicNode
from .timestamps import dates_equal, earliest, latest


def _set_created(fic: FicNode, created: Optional[datetime], source: str, changes: List[str]):
    if created is None or dates_equal(fic.created, created):
        return
    changes.append(f"{fic.title}: Updated fic publish time from {fic.created} to {created} (from {source})")
    fic.created = created


def _set_modified(fic: FicNode, modified: Optional[datetime], source: str, changes: List[str]):
    if modified is None or dates_equal(fic.modified, modified):
        return
    changes.append(f"{fic.title}: Updated fic last update time from {fic.modified} to {modified} (from {source})")
    fic.modified = modified


def _refresh_fic(fic: FicNode, changes: List[str]):
    _set_created(fic, earliest(c.created for c in fic.chapters), 'earliest chapter', changes)
    _set_modified(fic, latest(c.modified or c.created for c in fic.chapters), 'latest chapter', changes)

    words = sum(c.words or 0 for c in fic.chapters)
    if fic.words != words:
        changes.append(f"{fic.title}: Updated word count from {fic.words} to {words}")
        fic.words = words


def refresh_metadata(existing_fic: Fic, changes: List[str]) -> List[str]:
    """Recompute derived fields in place, extending and returning `changes`."""
    for fic in existing_fic.all_fics():
        _refresh_fic(fic, changes)

    if len(existing_fic.chapters) == 0:
        subfics = existing_fic.fics
        _set_created(existing_fic, earliest(f.created for f in subfics), 'earliest subfic', changes)
        _set_modified(existing_fic, latest(f.modified or f.created for f in subfics), 'latest subfic', changes)

    return changes
