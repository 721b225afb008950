"""
Error taxonomy for the Smart Cataloguing automation.

Only SetupError, and a NavigationError raised before the first identifier,
end a run.  Everything else is contained at the per-identifier boundary and
recorded in the ledger as an Error outcome.
"""


class SmartcatError(Exception):
    """Base class for every error raised by the automation."""


class SetupError(SmartcatError):
    """Missing credentials or input. Raised before any browser work."""


class AuthError(SmartcatError):
    """Login was attempted but the logout control never appeared."""


class NavigationError(SmartcatError):
    """The Smart Cataloguing search surface could not be reached."""


class SessionLossError(SmartcatError):
    """The session kept breaking after searches, past the retry ceiling."""


class ClassificationAmbiguity(SmartcatError):
    """The terminal page state matched none of the known result patterns."""


class TransportError(SmartcatError):
    """The browser-control surface itself is unusable (no context, dead page)."""


def first_line(error: Exception) -> str:
    """Playwright messages carry a multi-line call log; the first line is the error."""
    text = str(error).strip()
    return text.splitlines()[0] if text else type(error).__name__
