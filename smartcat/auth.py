"""
Authentication module: popup-dialog login and session persistence.

Oliver exposes no session-status endpoint.  The only positive proof of a
live session is the page itself: no "log in" link, and a visible logout
control.
"""

import logging
from dataclasses import dataclass

from smartcat.browser import BrowserSession
from smartcat.errors import AuthError
from smartcat.selectors import (
    HOME_PATH,
    LOGIN_LINK,
    LOGIN_PASSWORD,
    LOGIN_SUBMIT,
    LOGIN_USERNAME,
    LOGOUT_CONTROL,
)
from smartcat.utils import Credentials

logger = logging.getLogger("smartcat")

LOGIN_FORM_TIMEOUT = 8_000
LOGIN_SETTLE_TIMEOUT = 10_000
LOGOUT_CONFIRM_TIMEOUT = 10_000


@dataclass(frozen=True)
class AuthResult:
    authenticated: bool
    performed_login: bool = False
    reason: str = ""

    def __bool__(self) -> bool:
        return self.authenticated


class SessionManager:
    """Decides whether the active page is authenticated and logs in when it is not."""

    def __init__(self, session: BrowserSession, credentials: Credentials, config: dict):
        self.session = session
        self.credentials = credentials
        self.config = config
        self.session_file = config["session_file"]
        self.login_count = 0

    def is_authenticated(self) -> bool:
        """Login link absent AND logout control present."""
        if self.session.is_visible(LOGIN_LINK):
            return False
        return self.session.is_visible(LOGOUT_CONTROL)

    def ensure_authenticated(self) -> AuthResult:
        if self.is_authenticated():
            logger.debug("  Session active (logout control visible)")
            return AuthResult(authenticated=True, reason="session active")

        logger.info("  Not logged in, authenticating...")
        if self.login():
            return AuthResult(authenticated=True, performed_login=True, reason="logged in")
        return AuthResult(authenticated=False, performed_login=True, reason="login not confirmed")

    def require_authenticated(self) -> AuthResult:
        result = self.ensure_authenticated()
        if not result:
            raise AuthError(f"Authentication failed: {result.reason}")
        return result

    def login(self) -> bool:
        """
        Run the login dialog flow:
        1. Make sure the login link is on screen (landing page if needed)
        2. Open the dialog; if the form never renders, close it and retry
        3. Submit credentials
        4. Confirm by the logout control, then save the session snapshot
        """
        session = self.session
        session.ensure_page()

        if not session.is_visible(LOGIN_LINK):
            logger.info("  Login link not visible, navigating to home page...")
            session.goto_and_wait(session.url_for(HOME_PATH))
            if not session.is_visible(LOGIN_LINK):
                logger.warning("  Login link still unavailable after navigating home.")
                return False

        max_attempts = self.config["max_login_dialog_attempts"]
        submitted = False

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                logger.info(f"  Login dialog retry ({attempt}/{max_attempts})...")

            logger.info("  Opening login dialog...")
            session.ensure_page().locator(LOGIN_LINK).first.click()

            if not session.wait_for(LOGIN_USERNAME, LOGIN_FORM_TIMEOUT):
                logger.info("  Login form did not appear, closing dialog...")
                session.press_escape()
                session.pause(500)
                if not session.is_visible(LOGIN_LINK):
                    session.goto_and_wait(session.url_for(HOME_PATH))
                continue

            page = session.ensure_page()
            page.fill(LOGIN_USERNAME, self.credentials.username)
            page.fill(LOGIN_PASSWORD, self.credentials.password)
            logger.info("  Submitting login credentials...")
            page.click(LOGIN_SUBMIT)
            submitted = True
            break

        if not submitted:
            logger.warning("  Failed to submit credentials; login aborted.")
            return False

        logger.info("  Waiting for page to settle after login...")
        session.wait_for_load("load", LOGIN_SETTLE_TIMEOUT)
        session.pause(500)

        # Silent failures look exactly like success, so only the logout
        # control counts as confirmation.
        if not session.wait_for(LOGOUT_CONTROL, LOGOUT_CONFIRM_TIMEOUT):
            logger.warning("  Login dialog completed but logout control missing.")
            return False

        self.login_count += 1
        logger.info("  Login confirmed; saving session.")
        session.save_snapshot(self.session_file)
        return True
