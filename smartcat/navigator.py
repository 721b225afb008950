"""
Navigator module: reach the Smart Cataloguing search surface.

Two strategies behind one interface (reach() -> bool), tried in the order
given by config["strategy_order"]:

  direct: goto the Smart Cataloguing URL, heal login / permission-denied
  menu:   welcome page → Cataloguing menu → Smart Cataloguing entry

Every strategy runs an explicit bounded loop.  Progress is tracked by a
small state machine:

  PROBING → AUTHENTICATING → NAVIGATING → READY
                                        ↘ FAILED
"""

import logging
import time
from enum import Enum

from playwright.sync_api import Page
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout

from smartcat.auth import SessionManager
from smartcat.browser import BrowserSession
from smartcat.errors import AuthError, NavigationError, first_line
from smartcat.selectors import (
    CATALOGUING_MENU,
    LOGIN_LINK,
    PERMISSION_DENIED,
    PERMISSION_DENIED_URL_MARKER,
    SEARCH_INPUT,
    SMART_CATALOG_MENU_ITEM,
    SMART_CATALOG_PATH,
    WELCOME_PATH,
)
from smartcat.utils import capture_diagnostics, scaled_timeout

logger = logging.getLogger("smartcat")

SEARCH_READY_TIMEOUT = 15_000
MENU_VISIBLE_TIMEOUT = 20_000
MENU_CLICK_TIMEOUT   = 5_000
MENU_CLICK_RETRIES   = 3
SUBMENU_RENDER_MS    = 1_500
POPUP_WAIT_TIMEOUT   = 4_000
LANDING_TIMEOUT      = 15_000
HISTORY_LIMIT        = 200


class NavState(str, Enum):
    PROBING        = "probing"
    AUTHENTICATING = "authenticating"
    NAVIGATING     = "navigating"
    READY          = "ready"
    FAILED         = "failed"


class Landing(str, Enum):
    """What a navigation actually landed on."""

    LOGIN_REQUIRED      = "login_required"
    PERMISSION_DENIED   = "permission_denied"
    UNEXPECTED_REDIRECT = "unexpected_redirect"
    READY               = "ready"


def classify_landing(session: BrowserSession) -> Landing:
    """Reduce the active page to one Landing value."""
    if session.is_visible(LOGIN_LINK):
        return Landing.LOGIN_REQUIRED
    if session.is_visible(PERMISSION_DENIED) or session.on_path(PERMISSION_DENIED_URL_MARKER):
        return Landing.PERMISSION_DENIED
    if not session.on_path(SMART_CATALOG_PATH):
        return Landing.UNEXPECTED_REDIRECT
    return Landing.READY


class NavigationTracker:
    """State + attempt bookkeeping for one resolver, with bounded history."""

    def __init__(self):
        self.status = NavState.PROBING
        self.strategy = ""
        self.attempt = 0
        self.max_attempts = 0
        self.state_entered_at = time.time()
        self.history: list = []  # [(timestamp, state, message), ...]

    def start(self, strategy: str, max_attempts: int) -> None:
        self.strategy = strategy
        self.attempt = 0
        self.max_attempts = max_attempts
        self.transition(NavState.PROBING, f"strategy={strategy}")

    def begin_attempt(self, attempt: int) -> None:
        self.attempt = attempt
        if attempt > 1:
            logger.info(
                f"  {self.strategy.capitalize()} navigation retry "
                f"({attempt}/{self.max_attempts})..."
            )

    def transition(self, new_status: NavState, message: str = "") -> None:
        now = time.time()
        elapsed = now - self.state_entered_at
        old = self.status
        self.status = new_status
        self.state_entered_at = now
        logger.debug(f"  [nav] {old.value} → {new_status.value} ({elapsed:.1f}s) {message}".rstrip())
        self.history.append((now, new_status.value, message))
        if len(self.history) > HISTORY_LIMIT:
            self.history = self.history[-HISTORY_LIMIT // 2:]

    @property
    def states(self) -> list:
        return [state for _, state, _ in self.history]


class NavigationStrategy:
    """One way of reaching the search surface. reach() never loops forever."""

    name = ""

    def __init__(self, session: BrowserSession, auth: SessionManager, config: dict,
                 tracker: NavigationTracker, max_attempts: int):
        self.session = session
        self.auth = auth
        self.config = config
        self.tracker = tracker
        self.max_attempts = max_attempts

    def reach(self) -> bool:
        raise NotImplementedError

    def _authenticate(self) -> bool:
        """
        True once the page is authenticated, whether or not a login ran.

        A denied page can still carry a live session; that counts as
        post-login so the caller spends at most one retry on it.
        """
        self.tracker.transition(NavState.AUTHENTICATING)
        try:
            result = self.auth.require_authenticated()
        except AuthError as e:
            logger.info(f"  Login attempt unsuccessful: {e}")
            return False
        if not result.performed_login:
            logger.info("  Session already active; retrying once as authenticated.")
        return True

    def _search_input_ready(self) -> bool:
        return self.session.wait_for(SEARCH_INPUT, SEARCH_READY_TIMEOUT)


class DirectStrategy(NavigationStrategy):
    """Goto the Smart Cataloguing URL and heal what comes back."""

    name = "direct"

    def reach(self) -> bool:
        session = self.session
        self.tracker.start(self.name, self.max_attempts)
        logger.info("  Ensuring Smart Cataloguing access (direct)...")
        attempted_login = False

        for attempt in range(1, self.max_attempts + 1):
            self.tracker.begin_attempt(attempt)
            self.tracker.transition(NavState.NAVIGATING, "goto smart cataloguing")
            session.goto_and_wait(session.url_for(SMART_CATALOG_PATH))
            landing = classify_landing(session)

            if landing is Landing.LOGIN_REQUIRED:
                if attempted_login:
                    logger.info("  Direct navigation still shows login after re-auth; abandoning.")
                    break
                logger.info("  Session not active on direct load, invoking login...")
                if not self._authenticate():
                    session.pause(1_000)
                    continue
                attempted_login = True
                continue

            if landing is Landing.PERMISSION_DENIED:
                if attempted_login:
                    logger.info("  Direct access still denied after login; abandoning.")
                    break
                logger.info("  Smart Cataloguing access denied; attempting login...")
                if not self._authenticate():
                    session.pause(1_000)
                    continue
                attempted_login = True
                continue

            if landing is Landing.UNEXPECTED_REDIRECT:
                logger.info(f"  Direct navigation redirected to {session.page.url}; abandoning.")
                break

            if self._search_input_ready():
                return True
            logger.info("  Smart Cataloguing page not ready, retrying...")

        return False


class MenuStrategy(NavigationStrategy):
    """Welcome page → Cataloguing menu → (visible) Smart Cataloguing entry."""

    name = "menu"

    def reach(self) -> bool:
        self.tracker.start(self.name, self.max_attempts)
        for attempt in range(1, self.max_attempts + 1):
            self.tracker.begin_attempt(attempt)
            try:
                if self._attempt():
                    return True
            except (NavigationError, PlaywrightError) as e:
                logger.info(f"  Menu navigation attempt {attempt} failed: {first_line(e)}")
                self.session.pause(1_000)
        return False

    def _attempt(self) -> bool:
        session = self.session
        self.tracker.transition(NavState.NAVIGATING, "goto welcome")
        session.goto_and_wait(session.url_for(WELCOME_PATH))

        if not self.auth.is_authenticated():
            logger.info("  Logged out on welcome page, attempting login...")
            if not self._authenticate():
                return False
            if not session.on_path(WELCOME_PATH):
                logger.info("  Login successful, navigating to welcome page...")
                session.goto_and_wait(session.url_for(WELCOME_PATH))
            session.pause(1_000)  # menus initialise after load
            self.tracker.transition(NavState.NAVIGATING, "back on welcome")

        if not self._wait_for_menu():
            return False

        self._open_menu()
        session.pause(SUBMENU_RENDER_MS)
        item = select_visible_menu_item(session.ensure_page())
        self._click_and_adopt(item)

        landing = classify_landing(session)
        if landing is Landing.LOGIN_REQUIRED:
            logger.info("  Menu navigation landed on login page, re-authenticating...")
            self._authenticate()
            return False
        if landing is Landing.PERMISSION_DENIED:
            logger.info("  Menu navigation returned permission denied, retrying...")
            session.pause(500)
            return False

        if self._search_input_ready():
            return True
        logger.info("  Smart Cataloguing page incomplete after menu navigation.")
        session.pause(1_000)
        return False

    def _wait_for_menu(self) -> bool:
        session = self.session
        logger.info("  Checking for cataloguing menu...")
        if session.wait_for(CATALOGUING_MENU, MENU_VISIBLE_TIMEOUT):
            return True
        logger.info("  Cataloguing menu not visible, refreshing welcome page...")
        session.reload()
        if session.wait_for(CATALOGUING_MENU, MENU_VISIBLE_TIMEOUT):
            return True
        logger.info("  Cataloguing menu still not visible after refresh.")
        return False

    def _open_menu(self) -> None:
        """Click the menu header; an overlay may swallow the first clicks."""
        session = self.session
        session.press_escape()
        session.pause(200)
        for attempt in range(1, MENU_CLICK_RETRIES + 1):
            try:
                session.ensure_page().locator(CATALOGUING_MENU).first.click(
                    timeout=scaled_timeout(MENU_CLICK_TIMEOUT, self.config)
                )
                logger.debug("  Cataloguing menu clicked")
                return
            except PlaywrightError:
                if attempt == MENU_CLICK_RETRIES:
                    raise
                logger.info(
                    f"  Cataloguing header click blocked (attempt {attempt}/{MENU_CLICK_RETRIES}), "
                    f"clearing overlays..."
                )
                session.press_escape()
                session.pause(500)

    def _click_and_adopt(self, item) -> None:
        """
        Click the submenu entry while listening for a new tab.

        The entry either navigates the current page or opens a popup.  A new
        page seen within POPUP_WAIT_TIMEOUT becomes the active page.
        """
        session = self.session
        clicked = False
        try:
            with session.context.expect_page(
                timeout=scaled_timeout(POPUP_WAIT_TIMEOUT, self.config)
            ) as new_page_info:
                item.click()
                clicked = True
            popup = new_page_info.value
        except PlaywrightTimeout:
            if not clicked:
                raise
            popup = None

        if popup is not None:
            logger.info("  Smart Cataloguing opened in a new tab; switching to it.")
            session.adopt_page(popup)
            session.wait_for_load("domcontentloaded", LANDING_TIMEOUT)
        else:
            session.wait_for_load("domcontentloaded", LANDING_TIMEOUT)


def select_visible_menu_item(page: Page):
    """
    Return the visible Smart Cataloguing menu entry.

    Oliver renders the entry twice under the same id, one copy hidden.
    Clicking the first match blindly hits the hidden copy, so only a
    visible element is acceptable.
    """
    items = page.locator(SMART_CATALOG_MENU_ITEM).all()
    logger.debug(f"  Found {len(items)} Smart Cataloguing menu items")
    for item in items:
        if item.is_visible():
            return item
    raise NavigationError(
        f"No visible Smart Cataloguing menu item found ({len(items)} hidden match(es))"
    )


STRATEGIES = {
    "direct": (DirectStrategy, "max_direct_attempts"),
    "menu":   (MenuStrategy, "max_menu_attempts"),
}


class NavigationResolver:
    """Try each configured strategy in order until one reaches the search surface."""

    def __init__(self, session: BrowserSession, auth: SessionManager, config: dict):
        self.session = session
        self.auth = auth
        self.config = config
        self.tracker = NavigationTracker()
        self.strategies = []
        for name in config["strategy_order"]:
            cls, ceiling_key = STRATEGIES[name]
            self.strategies.append(cls(session, auth, config, self.tracker, config[ceiling_key]))

    def reach_search_surface(self) -> bool:
        for strategy in self.strategies:
            try:
                reached = strategy.reach()
            except (NavigationError, PlaywrightError) as e:
                logger.warning(f"  {strategy.name.capitalize()} strategy failed: {first_line(e)}")
                reached = False
            if reached:
                self.tracker.transition(NavState.READY, f"via {strategy.name}")
                logger.info(f"  Smart Cataloguing ready (via {strategy.name}).")
                return True
            logger.info(f"  {strategy.name.capitalize()} strategy exhausted.")

        self.tracker.transition(NavState.FAILED, "all strategies exhausted")
        logger.error("Unable to reach the Smart Cataloguing search surface.")
        logger.info(f"  Navigation path: {' → '.join(self.tracker.states[-12:])}")
        capture_diagnostics(self.session.page, "search_surface_unreachable")
        return False

    @property
    def state(self) -> NavState:
        return self.tracker.status
