"""
ficsync command line
====================

Update stored fic documents with new chapters and metadata.

USAGE:
    python -m ficsync [OPTIONS] FIC [FIC ...]
"""
import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from .config import FetchConfig, UpdateConfig
from .contracts import UpdateBatch, UpdateStatus
from .fetcher import HttpFetcher
from .service import UpdateService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ficsync",
        description="Fetch new chapters and metadata for stored fic documents."
    )
    parser.add_argument("fic", nargs="+", help="Fic document(s) to update")
    parser.add_argument("--no-cache", dest="cache", action="store_false",
                        help="Do not answer requests from the on-disk cache")
    parser.add_argument("--no-network", dest="network", action="store_false",
                        help="Only use cached responses")
    parser.add_argument("--cache-dir", default=None, help="Directory of the response cache")
    parser.add_argument("--concurrency", type=int, default=None,
                        help="Maximum simultaneous requests (and documents)")
    parser.add_argument("--requests-per-second", type=float, default=None,
                        help="Request rate limit; 0 disables it")
    parser.add_argument("--xf-user", dest="xf_user", default=None,
                        help="Value of the xf_user session cookie")
    parser.add_argument("--scrape", action="store_true",
                        help="Scrape pages instead of reading the chapter index")
    parser.add_argument("--and-scrape", dest="and_scrape", action="store_true",
                        help="Read the chapter index, then scrape to fill gaps")
    parser.add_argument("--add-all", dest="add_all", action="store_true",
                        help="Add every unknown chapter, not just ones after the newest known chapter")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> UpdateConfig:
    overrides = {
        "cache_break": not args.cache,
        "no_network": not args.network,
    }
    if args.cache_dir:
        overrides["cache_dir"] = args.cache_dir
    if args.concurrency is not None:
        overrides["max_concurrency"] = args.concurrency
    if args.requests_per_second is not None:
        overrides["requests_per_second"] = args.requests_per_second
    fetch_config = replace(FetchConfig.from_env(), **overrides)

    return UpdateConfig(
        add_all=args.add_all,
        from_threadmarks=not args.scrape,
        from_scrape=args.scrape or args.and_scrape,
        max_concurrency=fetch_config.max_concurrency,
        session_cookie=f"xf_user={args.xf_user}" if args.xf_user else None,
        fetch=fetch_config
    )


def report(batch: UpdateBatch, out=None):
    if out is None:
        out = sys.stdout
    for result in batch.results:
        if result.status == UpdateStatus.UPDATED:
            out.write(f"{result.path}\n")
            for change in result.changes:
                out.write(f"    {change}\n")
        elif result.status == UpdateStatus.FAILED:
            out.write(f"[!] {result.path}: {result.error}\n")


async def run(config: UpdateConfig, paths: List[str]) -> UpdateBatch:
    async with HttpFetcher(config.fetch) as fetch:
        if config.session_cookie:
            fetch.set_global_cookie(config.session_cookie)
        service = UpdateService(fetch, config)
        return await service.update_all(paths)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )

    try:
        config = config_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    batch = asyncio.run(run(config, args.fic))
    report(batch)
    if args.verbose:
        print(f"[*] {batch.updated_count} updated, {batch.unchanged_count} unchanged, "
              f"{batch.failure_count} failed")
    return 1 if batch.failure_count else 0


if __name__ == "__main__":
    sys.exit(main())
