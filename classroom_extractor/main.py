'''
Command line entry point.

Usage:
    classroom-extractor scrape https://www.skool.com/my-community [--headed]
    classroom-extractor download-videos my-community [--module "Module title"] [--concurrency 4]
    classroom-extractor download-resources my-community [--force]
    classroom-extractor clean-partial my-community
    classroom-extractor validate-cookies [--live]

Scraping writes output/<community>/classroom-data.json and one Markdown file per lesson.
The download commands only read that file, so they can be re-run without scraping again;
files already on disk are skipped.
'''

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .cookies import check_cookies, read_cookie_file
from .downloader import clean_partial, download_resources, download_videos
from .errors import ClassroomError
from .extractor import scrape_community, verify_session
from .fetchers import MediaFetcher
from .settings import Settings, setup_logging

logger = logging.getLogger(__name__)


class InterruptHandler:
    """First Ctrl+C stops running tools and cancels the run; the second exits at once."""

    def __init__(self, task: asyncio.Task, fetcher: Optional[MediaFetcher] = None):
        self.task = task
        self.fetcher = fetcher
        self.count = 0

    def __call__(self) -> None:
        self.count += 1
        if self.count > 1:
            logger.warning("Forced exit.")
            os._exit(130)
        logger.warning("Interrupted, stopping downloads (press Ctrl+C again to force exit)...")
        if self.fetcher:
            terminated = self.fetcher.terminate_all()
            if terminated:
                logger.info(f"Terminated {terminated} running process(es)")
        self.task.cancel()

    def install(self) -> None:
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, self)
        except (NotImplementedError, RuntimeError):
            # no loop signal handlers on Windows; KeyboardInterrupt still applies
            pass


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scrape a community classroom and download its media.")
    parser.add_argument('--output_dir', default=settings.OUTPUT_DIR, help='Base output directory')
    commands = parser.add_subparsers(dest='command', required=True)

    scrape = commands.add_parser('scrape', help='Extract the classroom tree and lesson Markdown')
    scrape.add_argument('url', help='Community URL, e.g. https://www.skool.com/my-community')
    scrape.add_argument('--headed', action='store_true', help='Show the browser window')

    videos = commands.add_parser('download-videos', help='Download every lesson video')
    videos.add_argument('community', help='Community slug (folder name under the output directory)')
    videos.add_argument('--module', help='Only download videos of the module with this title')
    videos.add_argument('--concurrency', type=int, help='Parallel downloads')
    videos.add_argument('--cookies-from-browser', help='Passed through to yt-dlp (not used for Loom)')

    resources = commands.add_parser('download-resources', help='Download linked resources and images')
    resources.add_argument('community', help='Community slug (folder name under the output directory)')
    resources.add_argument('--force', action='store_true', help='Download again even if the file exists')
    resources.add_argument('--concurrency', type=int, help='Parallel downloads')

    clean = commands.add_parser('clean-partial', help='Delete video files from interrupted downloads')
    clean.add_argument('community', help='Community slug (folder name under the output directory)')

    cookies = commands.add_parser('validate-cookies', help='Check the exported session cookies')
    cookies.add_argument('--live', action='store_true', help='Also try them against the site in a headless browser')

    return parser


async def validate_cookies(settings: Settings, live: bool = False) -> int:
    path = Path(settings.COOKIES_PATH)
    check = check_cookies(read_cookie_file(path))
    logger.info(f"Parsed {check.total} cookies from {path}")
    logger.info(f"Site cookies: {check.site} ({check.valid} valid, {check.expired} expired, {check.session} session)")
    if check.key_cookies:
        logger.info(f"Key cookies present: {', '.join(check.key_cookies)}")
    if not check.usable:
        logger.error("No usable skool.com cookies. Export them again while logged in.")
        return 1
    if live:
        if not await verify_session(settings):
            logger.error("Cookies are expired or invalid: redirected to the login page.")
            return 1
        logger.info("Cookies are valid: authenticated successfully.")
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    # Load settings from .env and allow override by CLI
    settings = Settings()
    args = build_parser(settings).parse_args(argv)
    settings.OUTPUT_DIR = args.output_dir
    setup_logging(settings.LOG_LEVEL)

    handler = InterruptHandler(asyncio.current_task())
    try:
        if args.command == 'scrape':
            handler.install()
            await scrape_community(settings, args.url, headless=False if args.headed else None)
        elif args.command == 'download-videos':
            handler.fetcher = MediaFetcher(settings, args.cookies_from_browser)
            handler.install()
            report = await download_videos(settings, args.community, fetcher=handler.fetcher,
                                           module_filter=args.module, concurrency=args.concurrency)
            logger.info(f"Videos: {report.succeeded} downloaded, {report.skipped} skipped, {report.failed} failed")
        elif args.command == 'download-resources':
            handler.install()
            report = await download_resources(settings, args.community, force=args.force,
                                              concurrency=args.concurrency)
            logger.info(f"Resources: {report.succeeded} downloaded, {report.skipped} skipped, {report.failed} failed")
        elif args.command == 'clean-partial':
            clean_partial(settings, args.community)
        elif args.command == 'validate-cookies':
            return await validate_cookies(settings, live=args.live)
    except ClassroomError as e:
        logger.error(f"Error: {e}")
        return 1
    except asyncio.CancelledError:
        logger.warning("Run cancelled.")
        return 130
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
