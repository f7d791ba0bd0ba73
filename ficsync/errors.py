"""
Error Types

Every failure that leaves the core is one of these exceptions.

PRINCIPLES:
===========
1. Retrieval failures propagate - the core never retries or swallows them
2. Every error carries an explicit ErrorCode
3. Merge and aggregation raise nothing under valid in-memory input
"""

from __future__ import annotations
from enum import Enum
from typing import Optional, Tuple


class ErrorCode(Enum):
    """Explicit error codes, one per failure mode."""
    HTTP_ERROR = "http_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    NOT_CACHED = "not_cached"
    UNKNOWN_SITE = "unknown_site"
    SITE_ERROR = "site_error"
    MALFORMED_DOCUMENT = "malformed_document"


class FicSyncError(Exception):
    """Base class for all ficsync errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Tuple[Tuple[str, str], ...] = ()
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context

    def with_context(self, key: str, value: str) -> 'FicSyncError':
        """Attach an extra context pair and return self."""
        self.context = self.context + ((key, value),)
        return self


class RetrievalError(FicSyncError):
    """
    Network or site failure while fetching a fic.

    `status` is the HTTP (or site-reported) status code when one exists.
    """

    def __init__(
        self,
        message: str,
        link: Optional[str] = None,
        status: Optional[int] = None,
        site: Optional[str] = None,
        code: ErrorCode = ErrorCode.SITE_ERROR
    ):
        super().__init__(code, message)
        self.link = link
        self.status = status
        self.site = site

    def __str__(self) -> str:
        parts = [self.message]
        if self.status is not None:
            parts.append(f"(status {self.status})")
        if self.link:
            parts.append(f"at {self.link}")
        return ' '.join(parts)


class UnknownSiteError(RetrievalError):
    """No registered site handles a URL."""

    def __init__(self, link: str):
        super().__init__(
            f"No site handler for {link}",
            link=link,
            code=ErrorCode.UNKNOWN_SITE
        )

    def __str__(self) -> str:
        return self.message


class DocumentError(FicSyncError):
    """A stored fic document could not be parsed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(ErrorCode.MALFORMED_DOCUMENT, message)
        self.path = path
