"""
Main entry point for seedcrawl.
"""

import argparse
import asyncio
import sys

from seedcrawl.crawler.errors import SeedcrawlError
from seedcrawl.crawler.request import FetchDescriptor, HttpMethod
from seedcrawl.scheduler.scheduler import Scheduler
from seedcrawl.utils.config import get_settings
from seedcrawl.utils.logging import configure_logging, get_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seedcrawl",
        description="seedcrawl - concurrent URL fetcher with browser escalation",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch = subparsers.add_parser("fetch", help="Fetch URLs and report their sizes")
    fetch.add_argument("urls", nargs="+", help="URLs to fetch")
    fetch.add_argument(
        "--concurrency", "-c",
        type=int,
        default=None,
        help="Max concurrent fetches (default: scheduler.max_concurrent)",
    )
    fetch.add_argument(
        "--no-browser",
        action="store_true",
        help="Disable browser escalation on bot challenges",
    )
    fetch.add_argument(
        "--method", "-X",
        type=str.upper,
        default="GET",
        choices=[m.value for m in HttpMethod],
        help="HTTP method",
    )
    fetch.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-request timeout in seconds",
    )
    fetch.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (default: general.log_level)",
    )
    return parser


async def run_fetch(args: argparse.Namespace) -> int:
    """Fetch every URL and print one result line per URL.

    Returns:
        Process exit code: 0 if every URL succeeded, 1 otherwise.
    """
    logger = get_logger(__name__)
    settings = get_settings()

    scheduler = Scheduler(
        settings,
        max_concurrent=args.concurrency,
        escalation_enabled=False if args.no_browser else None,
    )
    failures: list[str] = []

    def on_complete(body: str, url: str) -> None:
        print(f"OK {url} {len(body.encode('utf-8'))}")

    def on_exception(error: SeedcrawlError, descriptor: FetchDescriptor | None) -> None:
        url = descriptor.url if descriptor is not None else "?"
        failures.append(url)
        print(f"ERR {url} {error.message}")

    scheduler.on_exception = on_exception

    params: dict = {"method": args.method}
    if args.timeout is not None:
        params["timeout"] = args.timeout

    for url in args.urls:
        try:
            scheduler.add_url(url, callback=on_complete, params=params, context=url)
        except ValueError as e:
            failures.append(url)
            print(f"ERR {url} {e}")

    logger.info("Fetching", count=len(scheduler.queue), job_id=scheduler.job_id)
    await scheduler.run()
    return 1 if failures else 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(
        log_level=args.log_level or settings.general.log_level,
        json_format=False,
    )

    if args.command == "fetch":
        sys.exit(asyncio.run(run_fetch(args)))


if __name__ == "__main__":
    main()
