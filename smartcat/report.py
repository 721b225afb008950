"""
Human-readable summary of a batch: logged at the end of the run and written
to report.txt.  Counts come from the durable ledger, so a resumed batch
reports everything recorded across all of its runs.
"""

import logging
from datetime import datetime

from smartcat.orchestrator import BatchTally
from smartcat.work_queue import LedgerSnapshot, Outcome

logger = logging.getLogger("smartcat")


def _section(title: str, lines: list) -> str:
    body = "\n".join(lines) if lines else "None"
    return f"{title} ({len(lines)}):\n{body}\n"


def render_report(snapshot: LedgerSnapshot, tally: BatchTally, generated_at: datetime = None) -> str:
    generated_at = generated_at or datetime.now()
    error_lines = [f"{isbn}: {message}" for isbn, message in snapshot.errors]

    parts = [
        "Oliver Library Upload Report",
        f"Generated: {generated_at:%Y-%m-%d %H:%M:%S}",
        "",
        "SUMMARY:",
        f"- Total ISBNs Processed: {snapshot.total()}",
        f"- Added: {len(snapshot.added)}",
        f"- Already Exists: {len(snapshot.already_exists)}",
        f"- Not Found: {len(snapshot.not_found)}",
        f"- Errors: {len(snapshot.errors)}",
        f"- Unknown (this run): {tally.count(Outcome.UNKNOWN)}",
        f"- Processed this run: {tally.total}",
        "",
        _section("ADDED", snapshot.added),
        _section("ALREADY EXISTS", snapshot.already_exists),
        _section("NOT FOUND", snapshot.not_found),
    ]
    if error_lines:
        parts.append(_section("ERRORS", error_lines))
    return "\n".join(parts)


def write_report(path: str, snapshot: LedgerSnapshot, tally: BatchTally) -> str:
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_report(snapshot, tally))
    logger.info(f"Report saved to: {path}")
    return path


def log_summary(snapshot: LedgerSnapshot, tally: BatchTally) -> None:
    logger.info("=" * 70)
    logger.info("PROCESSING COMPLETE - REPORT")
    logger.info("=" * 70)
    for title, isbns in (("ADDED", snapshot.added),
                         ("ALREADY EXISTS", snapshot.already_exists),
                         ("NOT FOUND", snapshot.not_found)):
        logger.info(f"{title} ({len(isbns)}):")
        for isbn in isbns or ["None"]:
            logger.info(f"   - {isbn}")
    if snapshot.errors:
        logger.info(f"ERRORS ({len(snapshot.errors)}):")
        for isbn, message in snapshot.errors:
            logger.info(f"   - {isbn}: {message}")
    logger.info("=" * 70)
    logger.info(
        f"Total: {snapshot.total()} | Added: {len(snapshot.added)} | "
        f"Already Exists: {len(snapshot.already_exists)} | Not Found: {len(snapshot.not_found)} | "
        f"This run: {tally.total}"
    )
