#!/usr/bin/env python3
"""
Maps Scraper - Main Entry Point

Command line entry point for the Google Maps business scraper.

Usage:
    # Scrape a search and export CSV
    python main.py scrape --keyword "coffee shops" --area "Seattle" --max-results 50

    # Scrape with a YAML session config, rotating proxies and every export format
    python main.py scrape --config session.yaml --rotate-proxies --format all

    # Check the 2captcha balance
    python main.py balance --captcha-key YOUR_KEY
"""

import re
import sys
import signal
import asyncio
import argparse
import logging
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger("maps_scraper")


def print_progress(snapshot):
    """Single-line progress display."""
    line = (
        f"\r[{snapshot.percent_complete:5.1f}%] "
        f"{snapshot.processed}/{snapshot.found} | {snapshot.status_text}"
    )
    if snapshot.captcha_detected:
        line += " | CAPTCHA solved" if snapshot.captcha_solved else " | CAPTCHA detected"
    if snapshot.error_text:
        line += f" | {snapshot.error_text[:60]}"
    sys.stdout.write(line.ljust(120)[:120])
    sys.stdout.flush()


def export_basename(query: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", query).strip("_") or "results"
    return f"{slug}_{datetime.now().strftime('%Y%m%d_%H%M%S')}"


async def run_scrape(args) -> int:
    """Run one scrape session and export the results."""
    from core import DataExporter, ScrapeAbortedError, ScrapeSession, get_config, load_session_config
    from core.error_handler import ConfigurationError

    settings = get_config()
    try:
        session_config = load_session_config(
            args.config,
            search_keyword=args.keyword,
            geographic_area=args.area,
            max_results=args.max_results,
            phone_required=args.phone_required or None,
            proxies=args.proxy or None,
            use_proxy_rotation=args.rotate_proxies or None,
            captcha_api_key=args.captcha_key,
            min_delay_ms=args.min_delay,
            max_delay_ms=args.max_delay,
            headless=False if args.headed else None,
        )
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    records = []
    exit_code = 0
    async with ScrapeSession(progress_callback=print_progress) as session:
        if not await session.initialize(session_config):
            logger.error(f"Initialization failed: {session.progress.error_text}")
            return 1

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, session.cancel)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                pass

        try:
            records = await session.run()
        except ScrapeAbortedError as e:
            logger.error(f"Scrape aborted: {e}")
            records = e.records
            exit_code = 1
        finally:
            print()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except NotImplementedError:
                    pass

        logger.info(f"Session finished with status {session.status.value}: {len(records)} records")
        logger.debug(f"Session stats: {session.get_stats()}")

    if not records:
        logger.warning("No records to export")
        return exit_code

    exporter = DataExporter()
    base_path = Path(args.output_dir or settings.EXPORT_DIR) / export_basename(session_config.query)
    if args.format == "all":
        written = exporter.export_all(records, base_path)
        if not written:
            exit_code = 1
    elif not exporter.export(records, base_path, args.format):
        exit_code = 1

    return exit_code


async def check_balance(api_key: str) -> int:
    """Print the 2captcha account balance."""
    from core import TwoCaptchaClient, CaptchaSolverError

    try:
        async with TwoCaptchaClient(api_key) as client:
            balance = await client.get_balance()
    except CaptchaSolverError as e:
        logger.error(f"Balance check failed: {e}")
        return 1

    print(f"2captcha balance: ${balance:.2f}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Maps Scraper - extract business listings from Google Maps"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Scrape command
    scrape_parser = subparsers.add_parser('scrape', help='Scrape a search')
    scrape_parser.add_argument('--keyword', help='Search keyword, e.g. "coffee shops"')
    scrape_parser.add_argument('--area', help='Geographic area, e.g. "Seattle"')
    scrape_parser.add_argument('--max-results', type=int, help='Maximum results (0 = unlimited)')
    scrape_parser.add_argument('--config', help='Path to session config YAML')
    scrape_parser.add_argument('--phone-required', action='store_true', help='Only keep businesses with a phone number')
    scrape_parser.add_argument('--proxy', action='append', help='Proxy as host:port[:user:pass] (repeatable)')
    scrape_parser.add_argument('--rotate-proxies', action='store_true', help='Rotate proxies when a CAPTCHA cannot be solved')
    scrape_parser.add_argument('--captcha-key', help='2captcha API key (default: TWOCAPTCHA_API_KEY)')
    scrape_parser.add_argument('--min-delay', type=int, help='Minimum delay between actions in ms')
    scrape_parser.add_argument('--max-delay', type=int, help='Maximum delay between actions in ms')
    scrape_parser.add_argument('--format', choices=['csv', 'json', 'excel', 'all'], default='csv', help='Export format')
    scrape_parser.add_argument('--output-dir', help='Export directory (default: EXPORT_DIR)')
    scrape_parser.add_argument('--headed', action='store_true', help='Show the browser window')

    # Balance command
    balance_parser = subparsers.add_parser('balance', help='Check 2captcha balance')
    balance_parser.add_argument('--captcha-key', help='2captcha API key (default: TWOCAPTCHA_API_KEY)')

    return parser


def main():
    """Main entry point."""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    from core.logging_config import setup_logging
    setup_logging()

    if args.command == 'scrape':
        sys.exit(asyncio.run(run_scrape(args)))

    elif args.command == 'balance':
        from core import get_config
        api_key = args.captcha_key or get_config().TWOCAPTCHA_API_KEY
        if not api_key:
            print("❌ No 2captcha API key. Pass --captcha-key or set TWOCAPTCHA_API_KEY.")
            sys.exit(1)
        sys.exit(asyncio.run(check_balance(api_key)))


if __name__ == "__main__":
    main()
