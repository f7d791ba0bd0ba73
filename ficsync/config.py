"""
Configuration

Plain dataclasses; the CLI builds them from arguments, FetchConfig can also
be read from the environment.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os


DEFAULT_CACHE_DIR = Path.home() / '.cache' / 'ficsync'
DEFAULT_USER_AGENT = "ficsync/1.0 (+https://pypi.org/project/ficsync/)"


@dataclass
class FetchConfig:
    """Configuration for the HTTP fetcher."""
    cache_dir: Path = DEFAULT_CACHE_DIR
    cache_break: bool = False  # Skip cached responses, still store new ones
    no_network: bool = False  # Serve only from cache
    max_concurrency: int = 4  # Live requests in flight
    requests_per_second: float = 1.0  # 0 disables throttling
    timeout: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        self.cache_dir = Path(self.cache_dir)
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.requests_per_second < 0:
            raise ValueError("requests_per_second must not be negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'FetchConfig':
        """Defaults overridden by FICSYNC_* environment variables."""
        env = os.environ if environ is None else environ
        config = cls()
        if env.get('FICSYNC_CACHE_DIR'):
            config.cache_dir = Path(env['FICSYNC_CACHE_DIR'])
        if env.get('FICSYNC_REQUESTS_PER_SECOND'):
            config.requests_per_second = float(env['FICSYNC_REQUESTS_PER_SECOND'])
        if env.get('FICSYNC_MAX_CONCURRENCY'):
            config.max_concurrency = int(env['FICSYNC_MAX_CONCURRENCY'])
        if env.get('FICSYNC_USER_AGENT'):
            config.user_agent = env['FICSYNC_USER_AGENT']
        return config


@dataclass
class UpdateConfig:
    """Configuration for a batch update run."""
    add_all: bool = False  # Full reconciliation instead of stopping at the first known chapter
    from_threadmarks: bool = True
    from_scrape: bool = False
    max_concurrency: int = 4  # Documents updated at once
    session_cookie: Optional[str] = None  # "name=value" sent with every request
    fetch: FetchConfig = None

    def __post_init__(self):
        self.fetch = self.fetch or FetchConfig()
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
