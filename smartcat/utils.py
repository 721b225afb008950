"""
Utility functions: config loading, credentials, logging setup, and helpers.

Principles implemented:
  P4: Adaptive Timeouts.      every explicit wait is scaled by timeout_multiplier
  P5: Diagnostic Completeness. capture_diagnostics() on every hard failure
"""

import os
import re
import logging
from dataclasses import dataclass, field
from datetime import datetime

import yaml
from dotenv import load_dotenv

from smartcat.errors import SetupError


ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOG_DIR = os.path.join(ROOT_DIR, "logs")
SCREENSHOT_DIR = os.path.join(LOG_DIR, "screenshots")
HTMLDUMP_DIR   = os.path.join(LOG_DIR, "htmldumps")

DEFAULT_BASE_URL = "https://oneschoolglobal.softlinkhosting.com.au"
KNOWN_STRATEGIES = ("menu", "direct")

# Identifier files may separate entries with newlines, commas or semicolons.
_IDENTIFIER_SPLIT = re.compile(r"[\r\n,;]+")


_CONSOLE_FORMAT = logging.Formatter("[%(asctime)s] %(levelname)-8s %(message)s", datefmt="%H:%M:%S")
_FILE_FORMAT    = logging.Formatter("[%(asctime)s] %(levelname)-8s %(name)s: %(message)s")


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def setup_logging(log_dir: str = None) -> logging.Logger:
    """
    Attach a console handler (INFO) and a per-run file handler (DEBUG) to the
    "smartcat" logger.  A second call returns the logger untouched.
    """
    logger = logging.getLogger("smartcat")
    logger.setLevel(logging.DEBUG)
    if logger.handlers:
        return logger

    log_dir = log_dir or LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f"smartcat_{_stamp()}.log")

    for handler, level, fmt in (
        (logging.StreamHandler(), logging.INFO, _CONSOLE_FORMAT),
        (logging.FileHandler(log_file, encoding="utf-8"), logging.DEBUG, _FILE_FORMAT),
    ):
        handler.setLevel(level)
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    logger.info(f"Log file: {log_file}")
    return logger


# ── Configuration ────────────────────────────────────────────────────────

def _check_int(config: dict, key: str, low: int, high: int) -> None:
    value = config[key]
    if not isinstance(value, int) or isinstance(value, bool) or not low <= value <= high:
        raise ValueError(f"{key} must be an int between {low} and {high}, got: {value!r}")


def load_config(config_path: str = None) -> dict:
    """Load and validate config.yaml, applying safe defaults for every key.

    With no explicit path the project's ``config.yaml`` is used when it
    exists; otherwise the built-in defaults apply.  An explicit path that
    does not exist is an error.
    """
    if config_path is None:
        default_path = os.path.join(ROOT_DIR, "config.yaml")
        config_path = default_path if os.path.exists(default_path) else None
    elif not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    config: dict = {}
    if config_path is not None:
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ValueError(f"Config file must contain a mapping: {config_path}")

    base_url = config.setdefault("base_url", DEFAULT_BASE_URL)
    if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
        raise ValueError(f"base_url must be an http(s) URL, got: {base_url!r}")
    config["base_url"] = base_url.rstrip("/")

    # Browser
    config.setdefault("headless", False)
    headless_env = os.environ.get("HEADLESS", "").strip().lower()
    if headless_env:
        config["headless"] = headless_env in ("true", "1")
    config.setdefault("slow_mo", 100)
    _check_int(config, "slow_mo", 0, 5_000)

    # Navigation strategy order: the direct URL is known to fail after a
    # fresh login on some deployments, so the menu goes first by default.
    order = config.setdefault("strategy_order", ["menu", "direct"])
    if (not isinstance(order, list) or not order
            or any(name not in KNOWN_STRATEGIES for name in order)
            or len(set(order)) != len(order)):
        raise ValueError(
            f"strategy_order must be a non-empty list drawn from {list(KNOWN_STRATEGIES)} "
            f"without duplicates, got: {order!r}"
        )

    # Retry ceilings
    config.setdefault("max_direct_attempts", 5)
    config.setdefault("max_menu_attempts", 3)
    config.setdefault("max_search_attempts", 3)
    config.setdefault("max_login_dialog_attempts", 3)
    for key in ("max_direct_attempts", "max_menu_attempts",
                "max_search_attempts", "max_login_dialog_attempts"):
        _check_int(config, key, 1, 10)

    # Timeout multiplier (P4)
    multiplier = config.setdefault("timeout_multiplier", 1.0)
    if not isinstance(multiplier, (int, float)) or multiplier < 0.1:
        raise ValueError(
            f"timeout_multiplier must be a number >= 0.1, got: {multiplier!r}"
        )

    config.setdefault("item_delay_ms", 500)
    _check_int(config, "item_delay_ms", 0, 60_000)

    # Files
    for key, default in (("data_dir", "data"),
                         ("session_file", "session.json"),
                         ("report_file", "report.txt")):
        value = config.setdefault(key, default)
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{key} must be a non-empty path, got: {value!r}")
        config[key] = resolve_path(value)

    return config


def resolve_path(path: str) -> str:
    """Resolve a config path relative to the project root."""
    if os.path.isabs(path):
        return path
    return os.path.join(ROOT_DIR, path)


# ── Credentials ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Credentials:
    """Opaque login pair. The password never appears in repr() or logs."""

    username: str
    password: str = field(repr=False)


def load_credentials() -> Credentials:
    """Read OLIVER_USERNAME / OLIVER_PASSWORD from the environment (.env aware)."""
    load_dotenv()
    username = os.environ.get("OLIVER_USERNAME", "").strip()
    password = os.environ.get("OLIVER_PASSWORD", "")
    if not username or not password:
        raise SetupError(
            "Missing OLIVER_USERNAME or OLIVER_PASSWORD. "
            "Create a .env file (see .env.example) or export them."
        )
    return Credentials(username=username, password=password)


# ── Identifier input ─────────────────────────────────────────────────────

def parse_identifiers(source: str) -> list:
    """
    Turn the CLI argument into an ordered list of identifiers.

    An existing file is split on newlines, commas and semicolons; blank
    entries and entries starting with '#' are dropped.  Anything else is
    taken as a single identifier.
    """
    logger = logging.getLogger("smartcat")
    if not source or not source.strip():
        raise SetupError("No ISBN or file path provided.")

    if os.path.isfile(source):
        logger.info(f"Reading ISBNs from file: {source}")
        with open(source, "r", encoding="utf-8") as f:
            content = f.read()
        identifiers = [
            entry.strip() for entry in _IDENTIFIER_SPLIT.split(content)
            if entry.strip() and not entry.strip().startswith("#")
        ]
        logger.info(f"Found {len(identifiers)} ISBNs in file")
    else:
        identifiers = [source.strip()]

    if not identifiers:
        raise SetupError(f"No ISBNs to process in {source}")
    return identifiers


# ── Principle 5: Diagnostic Completeness ─────────────────────────────────

def _page_field(page, read) -> str:
    try:
        return read(page)
    except Exception:
        return "<unavailable>"


def _diag_path(directory: str, label: str, suffix: str) -> str:
    os.makedirs(directory, exist_ok=True)
    safe_label = re.sub(r"[^\w\-]", "_", label)[:80]
    return os.path.join(directory, f"{_stamp()}_{safe_label}{suffix}")


def capture_diagnostics(page, label: str = "error") -> str | None:
    """
    Save what can still be saved about *page*: a screenshot, or failing that
    the page HTML.  Never raises; returns the written path or None.
    """
    logger = logging.getLogger("smartcat")
    if page is None:
        return None

    url = _page_field(page, lambda p: p.url)
    title = _page_field(page, lambda p: p.title())
    logger.debug(f"[diag] {label}: url={url} title={title}")

    try:
        path = _diag_path(SCREENSHOT_DIR, label, ".png")
        page.screenshot(path=path, full_page=False, timeout=5_000)
        logger.info(f"Screenshot saved: {path}")
        return path
    except Exception as e:
        logger.debug(f"Screenshot failed ({e}), dumping HTML instead")

    try:
        path = _diag_path(HTMLDUMP_DIR, label, ".html")
        html = page.content()
        with open(path, "w", encoding="utf-8") as f:
            f.write(f"<!-- {url} -->\n{html}")
        logger.info(f"HTML dump saved: {path}")
        return path
    except Exception as e:
        logger.warning(f"No diagnostics for {label}: {e}")
        return None


# ── Principle 4: Adaptive Timeouts ───────────────────────────────────────

def scaled_timeout(base_ms: int, config: dict) -> int:
    """
    Scale a wait by the configured timeout_multiplier.

    Rounded up to the nearest 100ms for cleaner log messages:
        scaled_timeout(8_000, cfg)                       → 8_000ms
        scaled_timeout(8_000, cfg with multiplier=1.5)   → 12_000ms
    """
    multiplier = config.get("timeout_multiplier", 1.0)
    scaled = int(base_ms * multiplier)
    return ((scaled + 99) // 100) * 100
