"""
Browser session: the single active page and the page-level helpers every
other module goes through.

The active page is a single-writer handle.  It changes in exactly two places:
  - adopt_page():  a menu click opened the target in a new tab/popup
  - ensure_page(): the current tab is missing or was closed
Nothing else may reassign it.
"""

import logging
import weakref
from urllib.parse import urlparse

from playwright.sync_api import BrowserContext, Dialog, Page
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout

from smartcat.errors import TransportError
from smartcat.selectors import MODAL_OK_BUTTON, MODAL_POPUP
from smartcat.utils import scaled_timeout

logger = logging.getLogger("smartcat")

# Oliver is server-rendered but keeps background polling alive, so
# "networkidle" is unreliable; domcontentloaded is enough.
WAIT_STRATEGY = "domcontentloaded"
NAV_TIMEOUT = 60_000
SETTLE_MS = 500


class BrowserSession:
    """Owns the browser context and the one page every operation acts on."""

    def __init__(self, context: BrowserContext, config: dict, page: Page = None):
        self.context = context
        self.config = config
        self._page = None
        # Weak membership: a closed page must be collectable, never kept alive here.
        self._pages_with_handlers = weakref.WeakSet()

        if context is not None:
            context.on("page", self.register_page_handlers)
        if page is not None:
            self.adopt_page(page)

    # ── Active page ──────────────────────────────────────────────────
    @property
    def page(self) -> Page | None:
        """The current active page reference (may be closed; see ensure_page)."""
        return self._page

    def ensure_page(self) -> Page:
        """Return a live active page, opening a fresh tab if it was closed."""
        if self.context is None:
            raise TransportError("Browser context is not initialised")

        if self._page is None or self._page.is_closed():
            if self._page is not None:
                logger.info("Current browser tab was closed, opening a new one...")
            else:
                logger.info("Opening browser tab...")
            try:
                new_page = self.context.new_page()
            except PlaywrightError as e:
                raise TransportError(f"Could not open a browser tab: {e}") from e
            self._page = new_page
            self.register_page_handlers(new_page)

        return self._page

    def adopt_page(self, new_page: Page) -> Page:
        """Switch the active page to *new_page*. The previous tab is abandoned, not closed."""
        if new_page is not self._page:
            logger.debug(f"  Active page switched to: {_safe_url(new_page)}")
        self._page = new_page
        self.register_page_handlers(new_page)
        return new_page

    def register_page_handlers(self, page: Page) -> None:
        """Attach the dialog auto-accept handler once per page object."""
        if page is None or page in self._pages_with_handlers:
            return
        page.on("dialog", _accept_dialog)
        self._pages_with_handlers.add(page)

    # ── Navigation ───────────────────────────────────────────────────
    def url_for(self, path: str) -> str:
        return f"{self.config['base_url']}{path}"

    def on_path(self, path: str) -> bool:
        """True when the active page URL contains *path*."""
        return path in _safe_url(self._page)

    def goto_and_wait(self, url: str) -> None:
        """
        Navigate the active page and let it settle briefly.

        Oliver sometimes redirects mid-navigation, which Playwright reports
        as net::ERR_ABORTED even though the page landed where we wanted.
        That case is tolerated; every other navigation error propagates.
        """
        page = self.ensure_page()
        target_path = urlparse(url).path
        logger.debug(f"  Navigating to: {target_path}")
        try:
            page.goto(url, wait_until=WAIT_STRATEGY, timeout=scaled_timeout(NAV_TIMEOUT, self.config))
        except PlaywrightError as e:
            if "ERR_ABORTED" in str(e) and target_path in page.url:
                logger.info(f"  Navigation to {target_path} interrupted by redirect; continuing.")
                page.wait_for_timeout(SETTLE_MS)
                return
            raise
        page.wait_for_timeout(SETTLE_MS)

    def reload(self) -> None:
        page = self.ensure_page()
        try:
            page.reload(wait_until=WAIT_STRATEGY, timeout=scaled_timeout(NAV_TIMEOUT, self.config))
        except PlaywrightError as e:
            logger.debug(f"  Reload failed ({e}), falling back to goto")
            self.goto_and_wait(page.url)

    def wait_for_load(self, state: str, base_ms: int) -> bool:
        """Wait for a load state; a timeout is reported, never raised."""
        try:
            self.ensure_page().wait_for_load_state(state, timeout=scaled_timeout(base_ms, self.config))
            return True
        except PlaywrightTimeout:
            logger.debug(f"  Load state '{state}' not reached within {base_ms}ms")
            return False

    # ── DOM checks ───────────────────────────────────────────────────
    def is_visible(self, selector: str) -> bool:
        """Non-waiting visibility check; any failure reads as not visible."""
        try:
            return self.ensure_page().locator(selector).first.is_visible()
        except PlaywrightError:
            return False

    def wait_for(self, selector: str, base_ms: int, state: str = "visible") -> bool:
        """Bounded wait for a selector. Returns False on timeout."""
        try:
            self.ensure_page().wait_for_selector(
                selector, state=state, timeout=scaled_timeout(base_ms, self.config)
            )
            return True
        except PlaywrightTimeout:
            return False

    def pause(self, ms: int) -> None:
        self.ensure_page().wait_for_timeout(ms)

    def press_escape(self) -> None:
        try:
            self.ensure_page().keyboard.press("Escape")
        except PlaywrightError:
            pass

    def dismiss_modal(self, base_ms: int) -> bool:
        """Best-effort: close Oliver's modal popup if one shows up within *base_ms*."""
        if not self.wait_for(MODAL_POPUP, base_ms, state="attached"):
            return False
        ok_button = self.ensure_page().locator(MODAL_OK_BUTTON)
        if ok_button.count() == 0:
            return False
        logger.info("  Modal dialog appeared, dismissing...")
        ok_button.first.click()
        self.pause(300)
        return True

    # ── Session snapshot ─────────────────────────────────────────────
    def save_snapshot(self, path: str) -> None:
        """Persist cookies + storage, overwriting any previous snapshot."""
        self.context.storage_state(path=path)
        logger.info(f"Session saved to: {path}")


def _accept_dialog(dialog: Dialog) -> None:
    logger.info(f"  Dialog appeared [{dialog.type}]: \"{dialog.message}\" (auto-accept)")
    try:
        dialog.accept()
    except PlaywrightError as e:
        # Another listener may already have answered it.
        if "already handled" not in str(e):
            logger.warning(f"  Failed to accept dialog: {e}")


def _safe_url(page) -> str:
    try:
        return page.url if page is not None else ""
    except PlaywrightError:
        return ""
