"""
Chapter Inflation

Resolves chapter metadata that a chapter index does not carry (dates,
authorship, word counts) by reading the chapters themselves.

Only chapters missing `words` or `created` are read. Stored values are
never overwritten.
"""

from __future__ import annotations
from html.parser import HTMLParser
from typing import List, Optional
import asyncio
import logging
import re

from .contracts import Chapter, ChapterContent, FicNode
from .fetcher import Fetch


logger = logging.getLogger(__name__)

_WORD = re.compile(r"[^\W_]+(?:['’\-][^\W_]+)*")


class ChapterTextParser(HTMLParser):
    """Collects the readable text of a chapter fragment."""

    hidden_tags = frozenset({'script', 'style', 'noscript', 'template'})

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.chunks: List[str] = []
        self._hidden_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self.hidden_tags:
            self._hidden_depth += 1

    def handle_endtag(self, tag):
        if tag in self.hidden_tags and self._hidden_depth:
            self._hidden_depth -= 1

    def handle_data(self, data):
        if not self._hidden_depth:
            self.chunks.append(data)

    def text(self) -> str:
        return ' '.join(self.chunks)


def html_to_text(html: str) -> str:
    parser = ChapterTextParser()
    parser.feed(html or '')
    parser.close()
    return parser.text()


def count_words(html: str) -> int:
    return len(_WORD.findall(html_to_text(html)))


def needs_inflation(chapter: Chapter) -> bool:
    return chapter.fetch_with() is not None and (chapter.words is None or chapter.created is None)


def _backfill(fic: FicNode, chapter: Chapter, content: ChapterContent, changes: Optional[List[str]]):
    updates = {
        'created': content.created,
        'modified': content.modified,
        'author': content.author,
        'author_url': content.author_url,
        'words': content.words if content.words is not None else count_words(content.content),
    }
    if content.final_url and content.final_url != chapter.link and chapter.fetch_from is None:
        updates['fetch_from'] = content.final_url
    elif content.fetch_from and chapter.fetch_from is None:
        updates['fetch_from'] = content.fetch_from

    for prop, value in updates.items():
        if getattr(chapter, prop) is None and value is not None:
            setattr(chapter, prop, value)
            if changes is not None:
                changes.append(f'{fic.title}: Set {prop} for chapter "{chapter.name}" to {value}')


async def fic_inflate(fic: FicNode, fetch: Fetch, changes: Optional[List[str]] = None) -> FicNode:
    """
    Read every chapter of `fic` (and its sub-fics) that lacks words or a
    creation date, and backfill what the site reports.

    Returns the same fic. The first read failure cancels the other reads
    and propagates once they have finished.
    """
    pending = [
        (node, chapter)
        for node in fic.all_fics()
        for chapter in node.chapters
        if needs_inflation(chapter)
    ]
    if not pending:
        return fic

    logger.debug("Inflating %d chapters of %s", len(pending), fic.title)
    reads = [asyncio.ensure_future(node.site.get_chapter(fetch, chapter)) for node, chapter in pending]
    try:
        contents = await asyncio.gather(*reads)
    finally:
        # after a failure, reads still running are cancelled and collected
        for read in reads:
            if not read.done():
                read.cancel()
        await asyncio.gather(*reads, return_exceptions=True)
    for (node, chapter), content in zip(pending, contents):
        _backfill(node, chapter, content, changes)
    return fic
