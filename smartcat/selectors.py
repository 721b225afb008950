"""
Oliver page paths and DOM selectors shared by the auth, navigator and
classifier modules.
"""

# ── Paths (joined onto config["base_url"]) ───────────────────────────────
HOME_PATH           = "/oliver/home/browse/list"
WELCOME_PATH        = "/oliver/welcome.do"
SMART_CATALOG_PATH  = "/oliver/cataloguing/smartCataloguing.do"
PERMISSION_DENIED_URL_MARKER = "permissionDenied"

# ── Authentication ───────────────────────────────────────────────────────
LOGIN_LINK     = "a.login.topLink[href='login']"
LOGOUT_CONTROL = "#window_logout"
LOGIN_USERNAME = "#loginForm_username"
LOGIN_PASSWORD = "#loginForm_password"
LOGIN_SUBMIT   = '#dialogContent button[type="submit"]'

# ── Menu ─────────────────────────────────────────────────────────────────
CATALOGUING_MENU = "#menu_cataloguing"
# Rendered twice with the same id, one copy hidden (see navigator).
SMART_CATALOG_MENU_ITEM = "#menuItem_smartCataloguing"
PERMISSION_DENIED = "div.permissionDenied\\?resource\\=%2Fcataloguing%2FsmartCataloguing"

# ── Smart Cataloguing surface ────────────────────────────────────────────
SEARCH_INPUT   = "#smartCatSearchTerm"
SEARCH_BUTTON  = "#smartCatSearchButton"
SAVE_BUTTON    = "#smartCatSaveResource"
STATUS_MESSAGE = "#smartCatFoundMsg, .smartCatFoundMsg"
SEARCHING_TEXT = "Search, please wait..."

# ── Transient modals ─────────────────────────────────────────────────────
MODAL_POPUP     = "[id^='modalPopupId_']"
MODAL_OK_BUTTON = "#dialogButton_OK"
