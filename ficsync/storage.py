"""
Fic Document Storage

Reads and writes fic documents as JSON.

FORMAT:
=======
- Keys appear in a fixed order so unchanged documents serialize identically
- Absent values and empty lists are omitted
- Timestamps are written as UTC ISO-8601 strings
- A sub-fic stores only its own author/authorUrl/publisher, never the
  values it inherits
"""

from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import logging
import os
import tempfile

from .contracts import Chapter, ChapterList, Fic, FicNode, SubFic
from .errors import DocumentError
from .timestamps import format_timestamp, parse_timestamp


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# =============================================================================
# SERIALIZATION
# =============================================================================

def _put(result: Dict[str, Any], key: str, value: Any):
    if value is None or value is False:
        return
    if isinstance(value, list) and not value:
        return
    result[key] = value


def chapter_to_dict(chapter: Chapter) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    _put(result, 'name', chapter.name)
    _put(result, 'link', chapter.link)
    _put(result, 'fetchFrom', chapter.fetch_from)
    _put(result, 'author', chapter.author)
    _put(result, 'authorUrl', chapter.author_url)
    _put(result, 'created', format_timestamp(chapter.created))
    _put(result, 'modified', format_timestamp(chapter.modified))
    _put(result, 'tags', list(chapter.tags) if chapter.tags else None)
    _put(result, 'words', chapter.words)
    return result


def _node_to_dict(fic: FicNode, author, author_url, publisher) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    _put(result, 'title', fic.title)
    _put(result, 'link', fic.link)
    _put(result, 'updateFrom', fic.update_from)
    _put(result, 'author', author)
    _put(result, 'authorUrl', author_url)
    _put(result, 'created', format_timestamp(fic.created))
    _put(result, 'modified', format_timestamp(fic.modified))
    _put(result, 'publisher', publisher)
    _put(result, 'description', fic.description)
    _put(result, 'tags', list(fic.tags) if fic.tags else None)
    _put(result, 'words', fic.words)
    return result


def fic_to_dict(fic: Fic) -> Dict[str, Any]:
    result = _node_to_dict(fic, fic.author, fic.author_url, fic.publisher)
    _put(result, 'scrapeMeta', fic.scrape_meta)
    _put(result, 'fetchMeta', fic.fetch_meta)
    subfics = []
    for sub in fic.fics:
        sub_result = _node_to_dict(sub, sub.own_author, sub.own_author_url, sub.own_publisher)
        _put(sub_result, 'chapters', [chapter_to_dict(c) for c in sub.chapters])
        subfics.append(sub_result)
    _put(result, 'fics', subfics)
    _put(result, 'chapters', [chapter_to_dict(c) for c in fic.chapters])
    return result


# =============================================================================
# DESERIALIZATION
# =============================================================================

def _tags(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if not isinstance(value, list):
        raise DocumentError(f"tags must be a list, got {type(value).__name__}")
    tags: List[str] = []
    for tag in map(str, value):
        if tag not in tags:
            tags.append(tag)
    return tags


def _words(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DocumentError(f"words must be a number, got {value!r}")
    return int(value)


def chapter_from_dict(order: int, raw: Dict[str, Any]) -> Chapter:
    return Chapter(
        order=order,
        name=raw.get('name'),
        link=raw.get('link'),
        fetch_from=raw.get('fetchFrom'),
        created=parse_timestamp(raw.get('created')),
        modified=parse_timestamp(raw.get('modified')),
        author=raw.get('author'),
        author_url=raw.get('authorUrl'),
        tags=_tags(raw.get('tags')),
        words=_words(raw.get('words')),
    )


def _load_node(fic: FicNode, raw: Dict[str, Any]):
    fic.title = raw.get('title')
    fic.link = raw.get('link')
    fic.update_from = raw.get('updateFrom')
    fic.author = raw.get('author')
    fic.author_url = raw.get('authorUrl')
    fic.created = parse_timestamp(raw.get('created'))
    fic.modified = parse_timestamp(raw.get('modified'))
    fic.publisher = raw.get('publisher')
    fic.description = raw.get('description')
    fic.tags = _tags(raw.get('tags'))
    fic.words = _words(raw.get('words'))
    fic.chapters = ChapterList.from_records(
        chapter_from_dict(i, c) for i, c in enumerate(raw.get('chapters') or [])
    )


def fic_from_dict(raw: Dict[str, Any]) -> Fic:
    """Build a Fic from its stored form. Raises DocumentError on bad input."""
    if not isinstance(raw, dict):
        raise DocumentError("A fic document must be an object")
    try:
        fic = Fic()
        _load_node(fic, raw)
        fic.scrape_meta = bool(raw.get('scrapeMeta', False))
        fic.fetch_meta = bool(raw.get('fetchMeta', False))
        for sub_raw in raw.get('fics') or []:
            _load_node(fic.add_subfic(), sub_raw)
    except (AttributeError, TypeError, ValueError) as e:
        raise DocumentError(f"Malformed fic document: {e}")
    return fic


# =============================================================================
# STORE
# =============================================================================

class FicStore:
    """JSON files on disk, one document per file."""

    def __init__(self, indent: int = 2):
        self._indent = indent

    def dumps(self, fic: Fic) -> str:
        return json.dumps(fic_to_dict(fic), indent=self._indent, ensure_ascii=False) + '\n'

    def loads(self, text: str, path: Optional[str] = None) -> Fic:
        try:
            raw = json.loads(text)
        except ValueError as e:
            raise DocumentError(f"Invalid JSON: {e}", path=path)
        try:
            return fic_from_dict(raw)
        except DocumentError as e:
            e.path = path
            raise

    def read(self, path: PathLike) -> Fic:
        path = Path(path)
        return self.loads(path.read_text(encoding='utf-8'), path=str(path))

    def write(self, path: PathLike, fic: Fic):
        """Write atomically: a temporary file in the same directory, then replace."""
        path = Path(path)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(self.dumps(fic))
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Wrote %s", path)
