"""
Batch orchestrator: the per-ISBN loop.

  queue head → classifier (navigator as needed) → ledger → dequeue → repeat

Every failure inside an ISBN is contained at the ISBN boundary and recorded
as ERROR.  The batch stops only when the search surface cannot be reached
before the first ISBN, or when the queue files themselves cannot be written.
"""

import logging
from dataclasses import dataclass, field

from playwright.sync_api import Error as PlaywrightError

from smartcat.browser import BrowserSession
from smartcat.classifier import ClassificationResult, SearchClassifier
from smartcat.errors import NavigationError, SmartcatError, TransportError, first_line
from smartcat.navigator import NavigationResolver
from smartcat.utils import capture_diagnostics
from smartcat.work_queue import Outcome, WorkQueue

logger = logging.getLogger("smartcat")


@dataclass
class BatchTally:
    """Outcomes produced by this run (the ledger holds the all-time view)."""

    results: list = field(default_factory=list)

    def add(self, result: ClassificationResult) -> None:
        self.results.append(result)

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    def identifiers(self, outcome: Outcome) -> list:
        return [r.identifier for r in self.results if r.outcome is outcome]

    @property
    def total(self) -> int:
        return len(self.results)

    def as_dict(self) -> dict:
        return {outcome.value: self.count(outcome) for outcome in Outcome}


def run_batch(
    queue: WorkQueue,
    resolver: NavigationResolver,
    classifier: SearchClassifier,
    session: BrowserSession,
    config: dict,
) -> BatchTally:
    """
    Process the queue until it is empty.

    Raises NavigationError if the search surface is unreachable before the
    first ISBN; nothing has been recorded at that point.
    """
    logger.info("Preparing Smart Cataloguing session...")
    try:
        ready = resolver.reach_search_surface()
    except (SmartcatError, PlaywrightError) as e:
        raise NavigationError(f"Unable to reach Smart Cataloguing interface: {first_line(e)}") from e
    if not ready:
        raise NavigationError("Unable to reach Smart Cataloguing interface")

    tally = BatchTally()
    total = len(queue)
    processed = 0
    delay_ms = config.get("item_delay_ms", 0)

    while True:
        item = queue.next_item()
        if item is None:
            break

        processed += 1
        remaining = len(queue) - 1
        logger.info(f"Progress: {processed}/{total} ({remaining} remaining in queue)")

        _log_state(queue, item.identifier)
        result = process_identifier(item.identifier, classifier, session)
        queue.record_and_advance(result.identifier, result.outcome, result.message)
        _log_state(queue, result.identifier)
        tally.add(result)

        if delay_ms and queue.peek_head() is not None:
            session.pause(delay_ms)

    return tally


def process_identifier(
    identifier: str,
    classifier: SearchClassifier,
    session: BrowserSession,
) -> ClassificationResult:
    """Classify one ISBN; any failure becomes an ERROR result, never an exception."""
    logger.info("=" * 50)
    logger.info(f"Processing ISBN: {identifier}")
    logger.info("=" * 50)

    try:
        return classifier.submit_and_classify(identifier)
    except SmartcatError as e:
        logger.error(f"Error processing ISBN {identifier}: {e}")
        capture_diagnostics(session.page, f"item_error_{identifier}")
        return ClassificationResult(identifier, Outcome.ERROR, str(e))
    except PlaywrightError as e:
        message = first_line(e)
        logger.error(f"Browser error processing ISBN {identifier}: {message}")
        if _page_closed(session):
            logger.info("  Page closed unexpectedly, opening a replacement...")
            try:
                session.ensure_page()
            except TransportError as te:
                logger.error(f"  Could not replace the page: {te}")
        else:
            capture_diagnostics(session.page, f"item_error_{identifier}")
        return ClassificationResult(identifier, Outcome.ERROR, message)
    except Exception as e:
        message = f"{type(e).__name__}: {first_line(e)}"
        logger.exception(f"Unexpected error processing ISBN {identifier}: {message}")
        if not _page_closed(session):
            capture_diagnostics(session.page, f"item_error_{identifier}")
        return ClassificationResult(identifier, Outcome.ERROR, message)


def _page_closed(session: BrowserSession) -> bool:
    page = session.page
    try:
        return page is None or page.is_closed()
    except PlaywrightError:
        return True


def _log_state(queue: WorkQueue, identifier: str) -> None:
    state = queue.state_of(identifier)
    logger.debug(f"  [queue] {identifier}: {state.value if state else 'untracked'}")
