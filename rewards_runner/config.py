"""Configuration constants for the rewards runner"""

import os


def _env_number(key: str, default: float, minimum: float, maximum: float) -> float:
    """
    Read a numeric override from the environment.

    Falls back to ``default`` when the variable is unset, not a number,
    or outside ``[minimum, maximum]``.
    """
    raw = os.environ.get(key)
    if not raw:
        return default

    try:
        value = float(raw)
    except ValueError:
        return default

    if value != value or value < minimum or value > maximum:
        return default

    return value


# URLs
REWARDS_HOSTS = ("rewards.bing.com", "rewards.microsoft.com")
LOGIN_HOSTS = ("login.live.com", "login.microsoftonline.com", "account.live.com")

# Timeouts (seconds)
LOCATOR_TIMEOUT = 0.5
LOGIN_MAX_WAIT = _env_number("LOGIN_MAX_WAIT_SECONDS", 180.0, 30.0, 600.0)
STATE_POLL_INTERVAL = 1.0

# Retry configuration
RETRY_LIMITS = {
    "DASHBOARD_RELOAD": 2,
    "MOBILE_SEARCH": 3,
}
RELOAD_MAX_TOTAL_SECONDS = 30.0

# Embedded object extraction
MAX_SCAN_LENGTH = 2_000_000
DASHBOARD_SCRIPT_MARKERS = ("var dashboard", "dashboard=", "dashboard =", "dashboard :")
DASHBOARD_ANCHORS = (
    r"var\s+dashboard\s*=\s*",
    r"dashboard\s*=\s*",
    r"var\s+dashboard\s*:\s*",
)

# Earnable points
PROMOTION_TYPES_ALLOWED = ("quiz", "urlreward")
LOCKED_STATUS = "locked"
APP_ELIGIBLE_OFFERS = (
    "ENUS_readarticle3_30points",
    "Gamification_Sapphire_DailyCheckIn",
)
SEARCH_POINTS_PER_QUERY = 3

# Query diversity
DEFAULT_MAX_QUERIES_PER_SOURCE = 10
DEFAULT_CACHE_MINUTES = 30
QUERY_SOURCE_TIMEOUT = 10.0
DEFAULT_QUERY_SOURCES = ("google-trends", "reddit", "local-fallback")

# Scheduler
DEFAULT_MAX_RETRIES = 1
DEFAULT_BACKOFF_BASE = 2.0  # Seconds, multiplied by the attempt number

# Page selectors
SELECTORS = {
    "EMAIL_INPUT": "input[name='loginfmt'], input[type='email']",
    "PASSWORD_INPUT": "input[name='passwd'], input[type='password']",
    "OTC_INPUT": "input[name='otc'], input[autocomplete='one-time-code']",
    "TITLE": "[data-testid='title']",
    "HEADING": "h1",
    "SUSPENDED_ACCOUNT": "#suspendedAccountHeader",
    "REWARDS_PORTAL": "html[data-role-name='RewardsPortal'], #more-activities, mee-rewards-dashboard",
}
