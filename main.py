"""
Oliver Smart Cataloguing ISBN Batch Uploader: Entry Point

Usage:
    python main.py 9780143127741
    python main.py isbns.txt
    python main.py isbns.txt --config path/to/config.yaml --headless
"""

import argparse
import os
import sys

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from smartcat.auth import SessionManager
from smartcat.browser import BrowserSession
from smartcat.classifier import SearchClassifier
from smartcat.errors import NavigationError, SetupError
from smartcat.navigator import NavigationResolver
from smartcat.orchestrator import run_batch
from smartcat.report import log_summary, write_report
from smartcat.utils import (
    capture_diagnostics,
    load_config,
    load_credentials,
    parse_identifiers,
    setup_logging,
)
from smartcat.work_queue import WorkQueue

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Add ISBNs to an Oliver library catalogue through Smart Cataloguing"
    )
    parser.add_argument(
        "source",
        help="A single ISBN, or a file of ISBNs separated by newlines, commas or semicolons",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.yaml (default: ./config.yaml)",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run the browser without a window (same as HEADLESS=true)",
    )
    return parser


def main(argv: list = None) -> int:
    args = build_parser().parse_args(argv)

    # ── Setup ────────────────────────────────────────────────────────
    logger = setup_logging()
    try:
        config = load_config(args.config)
        if args.headless:
            config["headless"] = True
        credentials = load_credentials()
        identifiers = parse_identifiers(args.source)
    except (SetupError, ValueError, FileNotFoundError) as e:
        logger.error(f"Setup failed: {e}")
        return EXIT_FAILURE

    logger.info("Configuration loaded:")
    logger.info(f"  Server:           {config['base_url']}")
    logger.info(f"  User:             {credentials.username}")
    logger.info(f"  Headless:         {config['headless']}")
    logger.info(f"  Strategy order:   {', '.join(config['strategy_order'])}")
    logger.info(f"  Data directory:   {config['data_dir']}")

    # ── Work queue ───────────────────────────────────────────────────
    queue = WorkQueue(config["data_dir"])
    pending = queue.initialize(identifiers)
    if not pending:
        logger.info("No ISBNs to process. Exiting.")
        return EXIT_OK
    logger.info(f"Processing {len(pending)} ISBN(s)")

    # ── Launch browser ───────────────────────────────────────────────
    session_path = config["session_file"]
    is_headless = config["headless"]

    try:
        with sync_playwright() as p:
            # slow_mo helps humans follow along in headed mode;
            # skip it entirely in headless.
            browser = p.chromium.launch(
                headless=is_headless,
                slow_mo=0 if is_headless else config["slow_mo"],
            )
            try:
                ctx_opts: dict = {}
                if os.path.exists(session_path):
                    logger.info("Loading saved session...")
                    ctx_opts["storage_state"] = session_path
                context = browser.new_context(**ctx_opts)

                session = BrowserSession(context, config)
                session.ensure_page()
                auth = SessionManager(session, credentials, config)
                resolver = NavigationResolver(session, auth, config)
                classifier = SearchClassifier(session, resolver, config)

                try:
                    tally = run_batch(queue, resolver, classifier, session, config)
                except NavigationError as e:
                    logger.error(f"Fatal: {e}")
                    capture_diagnostics(session.page, "fatal_navigation")
                    return EXIT_FAILURE
                except OSError as e:
                    # Queue or ledger files could not be written; the
                    # in-flight ISBN stays at the queue head.
                    logger.error(f"Fatal: data directory write failed: {e}")
                    return EXIT_FAILURE

                snapshot = queue.snapshot()
                log_summary(snapshot, tally)
                write_report(config["report_file"], snapshot, tally)
                logger.info("✅ Processing complete!")
                return EXIT_OK
            finally:
                logger.info("Closing browser...")
                try:
                    browser.close()
                except PlaywrightError as e:
                    logger.debug(f"Browser close failed: {e}")
    except KeyboardInterrupt:
        # The in-flight ISBN is still at the queue head; the next run resumes it.
        logger.info("Ctrl+C detected. Progress is saved; re-run to resume.")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
