"""
Search Classifier: submit one ISBN on the Smart Cataloguing page and reduce
the resulting page to a single Outcome.

Flow per ISBN:
  1. Make sure the search input is on screen (navigator if not)
  2. Clear input and old status → type ISBN → click Search
  3. Dismiss the "are you sure" modal Oliver sometimes shows
  4. Wait for "Search, please wait..." to appear, then to be replaced
  5. Session-loss check → re-navigate and retry the whole cycle
  6. Read the status text and the save control → Outcome

Saving is not idempotent on the server: once the save control has been
clicked the result is ADDED and nothing after that point is retried.
"""

import logging
from dataclasses import dataclass

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout

from smartcat.browser import BrowserSession
from smartcat.errors import ClassificationAmbiguity, NavigationError, SessionLossError
from smartcat.navigator import NavigationResolver
from smartcat.selectors import (
    LOGIN_LINK,
    PERMISSION_DENIED,
    SAVE_BUTTON,
    SEARCH_BUTTON,
    SEARCH_INPUT,
    SEARCHING_TEXT,
    SMART_CATALOG_PATH,
    STATUS_MESSAGE,
)
from smartcat.utils import scaled_timeout
from smartcat.work_queue import Outcome

logger = logging.getLogger("smartcat")

SEARCH_INPUT_TIMEOUT  = 15_000
SEARCH_MODAL_TIMEOUT  = 1_000
SAVE_MODAL_TIMEOUT    = 2_000
SEARCH_START_TIMEOUT  = 2_000
SEARCH_RESULT_TIMEOUT = 10_000
STATUS_GRACE_MS       = 1_500
SAVE_SETTLE_TIMEOUT   = 8_000

NOT_FOUND_TEXT = "no matching resource"
FOUND_TEXT     = "found matching resource"

# Blanks the previous ISBN's verdict so only the next search can settle the status.
_JS_CLEAR_STATUS = """
() => {
    for (const el of document.querySelectorAll('#smartCatFoundMsg, .smartCatFoundMsg')) {
        el.innerText = '';
    }
}
"""

# Both receive the transient "searching" text as their argument.
_JS_SEARCH_STARTED = """
(transient) => {
    const el = document.querySelector('#smartCatFoundMsg') || document.querySelector('.smartCatFoundMsg');
    return !!el && (el.innerText || '').includes(transient);
}
"""

_JS_SEARCH_SETTLED = """
(transient) => {
    const el = document.querySelector('#smartCatFoundMsg') || document.querySelector('.smartCatFoundMsg');
    if (!el) return false;
    const text = (el.innerText || '').trim();
    return text.length > 0 && !text.includes(transient);
}
"""


@dataclass(frozen=True)
class ClassificationResult:
    identifier: str
    outcome: Outcome
    message: str = ""


class SearchClassifier:

    def __init__(self, session: BrowserSession, resolver: NavigationResolver, config: dict):
        self.session = session
        self.resolver = resolver
        self.config = config
        self.max_attempts = config["max_search_attempts"]

    def submit_and_classify(self, identifier: str) -> ClassificationResult:
        """Run search + classification, healing lost sessions up to max_search_attempts."""
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                logger.info(f"  Search retry ({attempt}/{self.max_attempts}) for {identifier}...")

            self._ensure_search_surface()
            self._submit(identifier)
            self.session.dismiss_modal(SEARCH_MODAL_TIMEOUT)
            self._await_status()

            reason = self._session_loss_reason()
            if reason:
                logger.info(f"  Search broke session ({reason}), re-navigating...")
                if attempt == self.max_attempts:
                    break
                if not self.resolver.reach_search_surface():
                    raise NavigationError("Navigation failed after session loss")
                continue

            try:
                return self._classify(identifier)
            except ClassificationAmbiguity as e:
                logger.warning(f"  Unknown result for {identifier}: {e}")
                return ClassificationResult(identifier, Outcome.UNKNOWN, str(e))

        raise SessionLossError(
            f"Search failed after {self.max_attempts} attempts: session kept breaking"
        )

    # ── Steps ────────────────────────────────────────────────────────
    def _ensure_search_surface(self) -> None:
        if self.session.wait_for(SEARCH_INPUT, SEARCH_INPUT_TIMEOUT):
            return
        logger.info("  Search field unavailable, re-navigating...")
        if not self.resolver.reach_search_surface():
            raise NavigationError("Navigation failed")

    def _submit(self, identifier: str) -> None:
        page = self.session.ensure_page()
        page.fill(SEARCH_INPUT, "")
        page.fill(SEARCH_INPUT, identifier)
        page.evaluate(_JS_CLEAR_STATUS)
        page.click(SEARCH_BUTTON)

    def _await_status(self) -> None:
        """Wait past the transient 'searching' text; fall back to a fixed grace delay."""
        page = self.session.ensure_page()
        try:
            page.wait_for_function(
                _JS_SEARCH_STARTED, arg=SEARCHING_TEXT,
                timeout=scaled_timeout(SEARCH_START_TIMEOUT, self.config),
            )
        except PlaywrightTimeout:
            logger.debug("  Searching message not seen (fast result or no status element)")

        try:
            page.wait_for_function(
                _JS_SEARCH_SETTLED, arg=SEARCHING_TEXT,
                timeout=scaled_timeout(SEARCH_RESULT_TIMEOUT, self.config),
            )
        except PlaywrightTimeout:
            logger.debug("  Status message never settled, allowing grace period")
            page.wait_for_timeout(STATUS_GRACE_MS)

    def _session_loss_reason(self) -> str:
        session = self.session
        if session.is_visible(LOGIN_LINK):
            return "login link visible"
        if not session.on_path(SMART_CATALOG_PATH):
            return "left the Smart Cataloguing page"
        if session.is_visible(PERMISSION_DENIED):
            return "permission denied"
        return ""

    def _read_status(self) -> str:
        status = self.session.ensure_page().locator(STATUS_MESSAGE)
        if status.count() == 0:
            return ""
        return (status.first.inner_text() or "").strip()

    def _classify(self, identifier: str) -> ClassificationResult:
        status = self._read_status()
        lowered = status.lower()

        if NOT_FOUND_TEXT in lowered:
            logger.info(f"  Not found: {identifier} (no matching resource)")
            return ClassificationResult(identifier, Outcome.NOT_FOUND)

        if FOUND_TEXT in lowered:
            save_button = self.session.ensure_page().locator(SAVE_BUTTON)
            if save_button.count() == 0:
                raise ClassificationAmbiguity("Save button not found")

            if save_button.first.is_disabled():
                logger.info(f"  Already exists: {identifier} (resource already catalogued)")
                return ClassificationResult(identifier, Outcome.ALREADY_EXISTS)

            logger.info(f"  Resource found and not yet catalogued, saving {identifier}...")
            save_button.first.click()
            try:
                self.session.dismiss_modal(SAVE_MODAL_TIMEOUT)
                # Background polling can keep "load" pending; the save has already gone through.
                self.session.wait_for_load("load", SAVE_SETTLE_TIMEOUT)
            except PlaywrightError as e:
                logger.warning(f"  Post-save settle failed ({e}); save was already submitted")
            logger.info(f"  Added: {identifier}")
            return ClassificationResult(identifier, Outcome.ADDED)

        if not status:
            raise ClassificationAmbiguity("No status message")
        raise ClassificationAmbiguity(f"Unrecognised status: {status[:120]}")
