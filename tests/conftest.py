"""
In-memory stand-in for the Oliver web UI, shaped like the slice of the
Playwright sync API the automation touches (page, locator, context,
keyboard, dialog).  No browser is launched.

FakeOliver holds the server-side state (session, catalogue, quirks);
FakePage renders element visibility from that state plus its own URL.
"""

import json
import os
from typing import Dict, List, Optional

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout

import smartcat.utils as utils
from smartcat.auth import SessionManager
from smartcat.browser import BrowserSession
from smartcat.classifier import _JS_CLEAR_STATUS, _JS_SEARCH_SETTLED, _JS_SEARCH_STARTED, SearchClassifier
from smartcat.navigator import NavigationResolver
from smartcat.selectors import (
    CATALOGUING_MENU,
    HOME_PATH,
    LOGIN_LINK,
    LOGIN_PASSWORD,
    LOGIN_SUBMIT,
    LOGIN_USERNAME,
    LOGOUT_CONTROL,
    MODAL_OK_BUTTON,
    MODAL_POPUP,
    PERMISSION_DENIED,
    PERMISSION_DENIED_URL_MARKER,
    SAVE_BUTTON,
    SEARCH_BUTTON,
    SEARCH_INPUT,
    SEARCHING_TEXT,
    SMART_CATALOG_MENU_ITEM,
    SMART_CATALOG_PATH,
    STATUS_MESSAGE,
    WELCOME_PATH,
)
from smartcat.utils import Credentials

BASE_URL = "https://oliver.test"
USERNAME = "librarian"
PASSWORD = "s3cret-pa55"

FOUND_TEXT = "Found matching resource"
NOT_FOUND_TEXT = "No matching resource found"


class FakeOliver:
    """Server-side state shared by every page of one browser context."""

    def __init__(self):
        self.logged_in = False
        self.valid_credentials = (USERNAME, PASSWORD)
        # isbn -> "new" | "exists" | "missing" | "no_save_button" | "garbled" | "silent"
        self.catalogue: Dict[str, str] = {}
        # Quirks
        self.direct_denied = False        # direct URL → permissionDenied even when logged in
        self.direct_redirect = False      # direct URL → bounced to the home page
        self.menu_available = True        # cataloguing menu rendered on welcome
        self.menu_opens_popup = False     # Smart Cataloguing entry opens a new tab
        self.menu_click_blocked = 0       # header clicks swallowed by an overlay
        self.login_form_failures = 0      # login link clicks that render no form
        self.session_breaks = 0           # searches that silently end the session
        self.slow_results = False         # no "please wait" text; the verdict lands late
        self.modal_after_search = False
        self.modal_after_save = False
        self.close_page_on: set = set()   # searching these closes the tab
        # Observations
        self.visits: List[str] = []
        self.searches: List[str] = []
        self.saved: List[str] = []
        self.login_count = 0
        self.hidden_clicks = 0

    def outcome_for(self, isbn: str) -> str:
        return self.catalogue.get(isbn, "missing")


class FakeDialog:
    def __init__(self, type: str = "confirm", message: str = "Are you sure?"):
        self.type = type
        self.message = message
        self.accepted = 0

    def accept(self, prompt_text: Optional[str] = None) -> None:
        if self.accepted:
            raise PlaywrightError("Cannot accept dialog which is already handled!")
        self.accepted += 1


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self._page = page
        self.pressed: List[str] = []

    def press(self, key: str) -> None:
        self._page._check_open()
        self.pressed.append(key)
        if key == "Escape":
            self._page.login_dialog_open = False
            self._page.menu_open = False


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str, index: int = 0):
        self._page = page
        self.selector = selector
        self.index = index

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self._page, self.selector, 0)

    def all(self) -> List["FakeLocator"]:
        return [FakeLocator(self._page, self.selector, i) for i in range(self.count())]

    def count(self) -> int:
        return self._page._count(self.selector)

    def is_visible(self) -> bool:
        return self._page._visible(self.selector, self.index)

    def is_disabled(self) -> bool:
        self._page._check_open()
        if self.selector != SAVE_BUTTON:
            return False
        return self._page.site.outcome_for(self._page.current_isbn) == "exists"

    def inner_text(self) -> str:
        self._page._check_open()
        return self._page.status if self.selector == STATUS_MESSAGE else ""

    def click(self, timeout: Optional[float] = None) -> None:
        self._page._click(self.selector, self.index)


class FakePage:
    def __init__(self, context: "FakeContext", url: str = "about:blank"):
        self.context = context
        self.site: FakeOliver = context.site
        self._url = url
        self.closed = False
        self.keyboard = FakeKeyboard(self)
        self.handlers: Dict[str, list] = {}
        self.login_dialog_open = False
        self.menu_open = False
        self.modal_open = False
        self.fields: Dict[str, str] = {}
        self.status = ""
        self._final_status = ""
        self._late_status = None
        self.current_isbn = ""
        self.waited_ms = 0

    # ── Playwright surface ──────────────────────────────────────────
    @property
    def url(self) -> str:
        return self._url

    def is_closed(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    def on(self, event: str, handler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def title(self) -> str:
        self._check_open()
        return "Oliver"

    def content(self) -> str:
        self._check_open()
        return f"<html><body>{self._url}</body></html>"

    def screenshot(self, path: str, full_page: bool = False, timeout: float = None) -> bytes:
        self._check_open()
        with open(path, "wb") as f:
            f.write(b"PNG")
        return b"PNG"

    def goto(self, url: str, wait_until: str = None, timeout: float = None) -> None:
        self._check_open()
        self.site.visits.append(url)
        self._navigate(url)

    def reload(self, wait_until: str = None, timeout: float = None) -> None:
        self._check_open()

    def wait_for_load_state(self, state: str = "load", timeout: float = None) -> None:
        self._check_open()

    def wait_for_timeout(self, timeout: float) -> None:
        self.waited_ms += timeout
        if self._late_status is not None:
            self.status, self._late_status = self._late_status, None

    def wait_for_selector(self, selector: str, state: str = "visible", timeout: float = None):
        self._check_open()
        present = self._count(selector) > 0 if state == "attached" else self._visible(selector, 0)
        if not present:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return FakeLocator(self, selector)

    def wait_for_function(self, expression: str, arg=None, timeout: float = None):
        self._check_open()
        if expression == _JS_SEARCH_STARTED:
            if SEARCHING_TEXT in self.status:
                # The server answers right after the transient message shows.
                self.status = self._final_status
                return True
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded")
        if expression == _JS_SEARCH_SETTLED:
            if self.status and SEARCHING_TEXT not in self.status:
                return True
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded")
        raise AssertionError(f"unexpected wait_for_function: {expression!r}")

    def evaluate(self, expression: str, arg=None):
        self._check_open()
        if expression == _JS_CLEAR_STATUS:
            self.status = ""
            return None
        raise AssertionError(f"unexpected evaluate: {expression!r}")

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def fill(self, selector: str, value: str) -> None:
        self._check_open()
        self.fields[selector] = value

    def click(self, selector: str) -> None:
        self._click(selector, 0)

    # ── Test helpers ────────────────────────────────────────────────
    def emit(self, event: str, payload) -> None:
        for handler in self.handlers.get(event, []):
            handler(payload)

    def on_path(self, path: str) -> bool:
        return path in self._url

    # ── Rendering ───────────────────────────────────────────────────
    def _check_open(self) -> None:
        if self.closed:
            raise PlaywrightError("Target page, context or browser has been closed")

    def _navigate(self, url: str) -> None:
        self.menu_open = False
        self.login_dialog_open = False
        self.status = ""
        self._late_status = None
        if SMART_CATALOG_PATH in url and self.site.logged_in:
            if self.site.direct_denied:
                url = f"{BASE_URL}/oliver/{PERMISSION_DENIED_URL_MARKER}?resource=%2Fcataloguing%2FsmartCataloguing"
            elif self.site.direct_redirect:
                url = f"{BASE_URL}{HOME_PATH}"
        self._url = url

    def _denied(self) -> bool:
        return PERMISSION_DENIED_URL_MARKER in self._url

    def _visible(self, selector: str, index: int) -> bool:
        self._check_open()
        site = self.site
        if selector == LOGIN_LINK:
            return not site.logged_in and self._url != "about:blank"
        if selector == LOGOUT_CONTROL:
            return site.logged_in and self._url != "about:blank"
        if selector in (LOGIN_USERNAME, LOGIN_PASSWORD):
            return self.login_dialog_open
        if selector == CATALOGUING_MENU:
            return site.logged_in and site.menu_available and self.on_path(WELCOME_PATH)
        if selector == SMART_CATALOG_MENU_ITEM:
            # Copy 0 is the hidden duplicate.
            return index == 1 and self.menu_open
        if selector == PERMISSION_DENIED:
            return self._denied()
        if selector == SEARCH_INPUT:
            return site.logged_in and self.on_path(SMART_CATALOG_PATH) and not self._denied()
        if selector in (MODAL_POPUP, MODAL_OK_BUTTON):
            return self.modal_open
        if selector == SAVE_BUTTON:
            return self._count(SAVE_BUTTON) > 0
        if selector == STATUS_MESSAGE:
            return self._count(STATUS_MESSAGE) > 0
        return False

    def _count(self, selector: str) -> int:
        self._check_open()
        if selector == SMART_CATALOG_MENU_ITEM:
            return 2 if self.site.logged_in and self.on_path(WELCOME_PATH) else 0
        if selector in (MODAL_POPUP, MODAL_OK_BUTTON):
            return 1 if self.modal_open else 0
        if selector == STATUS_MESSAGE:
            return 1 if self.on_path(SMART_CATALOG_PATH) else 0
        if selector == SAVE_BUTTON:
            if self.status != FOUND_TEXT:
                return 0
            return 0 if self.site.outcome_for(self.current_isbn) == "no_save_button" else 1
        return 1 if self._visible(selector, 0) else 0

    def _click(self, selector: str, index: int) -> None:
        self._check_open()
        site = self.site

        if selector == LOGIN_LINK:
            if site.login_form_failures > 0:
                site.login_form_failures -= 1
            else:
                self.login_dialog_open = True
        elif selector == LOGIN_SUBMIT:
            submitted = (self.fields.get(LOGIN_USERNAME), self.fields.get(LOGIN_PASSWORD))
            if submitted == site.valid_credentials:
                site.logged_in = True
                site.login_count += 1
                self.login_dialog_open = False
        elif selector == CATALOGUING_MENU:
            if site.menu_click_blocked > 0:
                site.menu_click_blocked -= 1
                raise PlaywrightTimeout("locator.click: Timeout 5000ms exceeded.")
            self.menu_open = True
        elif selector == SMART_CATALOG_MENU_ITEM:
            if not self._visible(selector, index):
                site.hidden_clicks += 1
                raise PlaywrightTimeout("locator.click: element is not visible")
            target = f"{BASE_URL}{SMART_CATALOG_PATH}"
            if site.menu_opens_popup:
                self.menu_open = False
                self.context._open_page(target)
            else:
                # Menu navigation sets server state the direct URL lacks.
                self.menu_open = False
                self._url = target
        elif selector == SEARCH_BUTTON:
            self._search(self.fields.get(SEARCH_INPUT, ""))
        elif selector == SAVE_BUTTON:
            site.saved.append(self.current_isbn)
            site.catalogue[self.current_isbn] = "exists"
            if site.modal_after_save:
                self.modal_open = True
        elif selector == MODAL_OK_BUTTON:
            self.modal_open = False

    def _search(self, isbn: str) -> None:
        site = self.site
        site.searches.append(isbn)
        self.current_isbn = isbn
        if isbn in site.close_page_on:
            self.closed = True
            raise PlaywrightError("Target page, context or browser has been closed")
        if site.modal_after_search:
            self.modal_open = True
        if site.session_breaks > 0:
            site.session_breaks -= 1
            site.logged_in = False
            self.status = ""
            self._final_status = ""
            return

        outcome = site.outcome_for(isbn)
        if outcome in ("new", "exists", "no_save_button"):
            final = FOUND_TEXT
        elif outcome == "missing":
            final = NOT_FOUND_TEXT
        elif outcome == "garbled":
            final = "Server busy, try later"
        else:
            final = ""
        if site.slow_results:
            self._late_status = final
            return
        self.status = SEARCHING_TEXT
        self._final_status = final


class _PageExpectation:
    def __init__(self, context: "FakeContext", timeout: float):
        self._context = context
        self._timeout = timeout
        self._page: Optional[FakePage] = None

    @property
    def value(self) -> FakePage:
        return self._page

    def __enter__(self) -> "_PageExpectation":
        self._context._expectations.append(self)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._context._expectations.remove(self)
        if exc_type is None and self._page is None:
            raise PlaywrightTimeout(f'Timeout {self._timeout}ms exceeded while waiting for event "page"')
        return False


class FakeContext:
    def __init__(self, site: FakeOliver):
        self.site = site
        self.pages: List[FakePage] = []
        self.handlers: Dict[str, list] = {}
        self._expectations: List[_PageExpectation] = []
        self.storage_writes = 0

    def on(self, event: str, handler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def new_page(self) -> FakePage:
        return self._open_page("about:blank")

    def expect_page(self, timeout: float = None) -> _PageExpectation:
        return _PageExpectation(self, timeout)

    def storage_state(self, path: str = None) -> dict:
        state = {"cookies": [{"name": "JSESSIONID", "value": "x"}] if self.site.logged_in else [],
                 "origins": []}
        if path:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(state, f)
            self.storage_writes += 1
        return state

    def _open_page(self, url: str) -> FakePage:
        page = FakePage(self, url)
        self.pages.append(page)
        for expectation in self._expectations:
            if expectation._page is None:
                expectation._page = page
        for handler in self.handlers.get("page", []):
            handler(page)
        return page


# ── Fixtures ──────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def diagnostics_dirs(tmp_path, monkeypatch):
    """Keep screenshots and HTML dumps out of the project tree."""
    shots = tmp_path / "screenshots"
    dumps = tmp_path / "htmldumps"
    monkeypatch.setattr(utils, "SCREENSHOT_DIR", str(shots))
    monkeypatch.setattr(utils, "HTMLDUMP_DIR", str(dumps))
    return shots, dumps


@pytest.fixture()
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join([
            f'base_url: "{BASE_URL}/"',
            "slow_mo: 0",
            "item_delay_ms: 0",
            f'data_dir: "{tmp_path / "data"}"',
            f'session_file: "{tmp_path / "session.json"}"',
            f'report_file: "{tmp_path / "report.txt"}"',
        ]) + "\n",
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture()
def config(config_file, monkeypatch):
    monkeypatch.delenv("HEADLESS", raising=False)
    return utils.load_config(config_file)


@pytest.fixture()
def credentials() -> Credentials:
    return Credentials(username=USERNAME, password=PASSWORD)


@pytest.fixture()
def site() -> FakeOliver:
    return FakeOliver()


@pytest.fixture()
def context(site) -> FakeContext:
    return FakeContext(site)


@pytest.fixture()
def session(context, config) -> BrowserSession:
    return BrowserSession(context, config)


@pytest.fixture()
def auth(session, credentials, config) -> SessionManager:
    return SessionManager(session, credentials, config)


@pytest.fixture()
def resolver(session, auth, config) -> NavigationResolver:
    return NavigationResolver(session, auth, config)


@pytest.fixture()
def classifier(session, resolver, config) -> SearchClassifier:
    return SearchClassifier(session, resolver, config)


@pytest.fixture()
def ready(resolver, site):
    """A session already sitting on the Smart Cataloguing page."""
    assert resolver.reach_search_surface()
    return resolver


def read_lines(path) -> list:
    if not os.path.exists(path):
        return []
    with open(path, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip()]
