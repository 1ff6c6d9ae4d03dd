"""Login/page state classification from a live page snapshot"""

import asyncio
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence, Tuple, Union
from urllib.parse import urlparse

from .config import (
    LOCATOR_TIMEOUT,
    LOGIN_HOSTS,
    REWARDS_HOSTS,
    SELECTORS,
    STATE_POLL_INTERVAL,
)
from .exceptions import PageReadError
from .logging_config import get_logger
from .models import Confidence, SessionState, StateDetection


class PageSnapshot(Protocol):
    """The slice of the UI driver the classifier needs"""

    def current_url(self) -> str: ...

    async def is_visible(self, locator: str, timeout: float) -> bool: ...

    async def text_content(self, locator: str, timeout: float) -> Optional[str]: ...


def _host_of(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def _normalize_text(text: str) -> str:
    # Curly apostrophes show up in localized titles
    return " ".join(text.replace("’", "'").lower().split())


@dataclass(frozen=True)
class UrlRule:
    """Matches on the URL host and, optionally, a path fragment"""

    state: SessionState
    confidence: Confidence
    hosts: Tuple[str, ...]
    path_contains: Optional[str] = None

    async def check(self, page: PageSnapshot, url: str, timeout: float) -> Optional[str]:
        host = _host_of(url)
        if host not in self.hosts:
            return None
        if self.path_contains and self.path_contains.lower() not in urlparse(url).path.lower():
            return None
        return f"url:{host}{urlparse(url).path if self.path_contains else ''}"


@dataclass(frozen=True)
class VisibleRule:
    """Matches when a locator is visible, optionally only on given hosts"""

    state: SessionState
    confidence: Confidence
    locator: str
    hosts: Tuple[str, ...] = ()

    async def check(self, page: PageSnapshot, url: str, timeout: float) -> Optional[str]:
        if self.hosts and _host_of(url) not in self.hosts:
            return None
        if await page.is_visible(self.locator, timeout):
            return f"visible:{self.locator}"
        return None


@dataclass(frozen=True)
class TextRule:
    """Matches when a region's text contains any of the phrases"""

    state: SessionState
    confidence: Confidence
    locator: str
    phrases: Tuple[str, ...]
    hosts: Tuple[str, ...] = ()

    async def check(self, page: PageSnapshot, url: str, timeout: float) -> Optional[str]:
        if self.hosts and _host_of(url) not in self.hosts:
            return None
        text = await page.text_content(self.locator, timeout)
        if not text:
            return None
        normalized = _normalize_text(text)
        for phrase in self.phrases:
            if _normalize_text(phrase) in normalized:
                return f"text:{phrase}"
        return None


Rule = Union[UrlRule, VisibleRule, TextRule]

BLOCKED_PHRASES = (
    "We can't sign you in",
    "Your account has been locked",
    "account has been suspended",
    "Your account has been temporarily blocked",
)
PASSKEY_PHRASES = (
    "Sign in faster with passkey",
    "Use your passkey",
    "Create a passkey",
)

# Most specific first; the first satisfied rule wins
DEFAULT_RULES: Tuple[Rule, ...] = (
    TextRule(SessionState.BLOCKED, Confidence.HIGH, SELECTORS["TITLE"], BLOCKED_PHRASES),
    TextRule(SessionState.BLOCKED, Confidence.HIGH, SELECTORS["HEADING"], BLOCKED_PHRASES),
    VisibleRule(SessionState.BLOCKED, Confidence.HIGH, SELECTORS["SUSPENDED_ACCOUNT"]),
    UrlRule(SessionState.BLOCKED, Confidence.HIGH, ("account.live.com",), path_contains="/abuse"),
    TextRule(SessionState.PASSKEY_PROMPT, Confidence.HIGH, SELECTORS["TITLE"], PASSKEY_PHRASES),
    VisibleRule(SessionState.TWO_FACTOR_REQUIRED, Confidence.HIGH, SELECTORS["OTC_INPUT"]),
    VisibleRule(SessionState.PASSWORD_ENTRY, Confidence.HIGH, SELECTORS["PASSWORD_INPUT"]),
    VisibleRule(SessionState.EMAIL_ENTRY, Confidence.HIGH, SELECTORS["EMAIL_INPUT"]),
    VisibleRule(SessionState.LOGGED_IN, Confidence.HIGH, SELECTORS["REWARDS_PORTAL"], hosts=REWARDS_HOSTS),
    UrlRule(SessionState.TWO_FACTOR_REQUIRED, Confidence.MEDIUM, LOGIN_HOSTS, path_contains="proofs"),
    UrlRule(SessionState.LOGGED_IN, Confidence.MEDIUM, REWARDS_HOSTS),
)


class StateClassifier:
    """
    Classify a page snapshot into a SessionState.

    Rules are evaluated in order and the first satisfied one wins, so a
    simultaneous match on several rules always resolves to the earliest.
    An unmatched page yields UNKNOWN with LOW confidence. Read failures
    are raised as PageReadError.
    """

    def __init__(
        self,
        rules: Sequence[Rule] = DEFAULT_RULES,
        locator_timeout: float = LOCATOR_TIMEOUT,
        log=None,
    ):
        self.rules = tuple(rules)
        self.locator_timeout = locator_timeout
        self.log = log or get_logger("classifier")

    async def classify(self, page: PageSnapshot) -> StateDetection:
        """Run the rule table against the page"""
        try:
            url = page.current_url()
        except Exception as e:
            raise PageReadError(f"Unable to read page URL: {e}") from e

        for rule in self.rules:
            try:
                indicator = await rule.check(page, url, self.locator_timeout)
            except Exception as e:
                raise PageReadError(
                    f"Page read failed while checking {rule.state.value}: {e}", url=url
                ) from e

            if indicator is not None:
                detection = StateDetection(
                    state=rule.state,
                    confidence=rule.confidence,
                    url=url,
                    indicators=(indicator,),
                )
                self.log.debug(
                    f"Detected {rule.state.value} ({rule.confidence.value}) via {indicator}"
                )
                return detection

        self.log.debug(f"No state rule matched for {url}")
        return StateDetection(state=SessionState.UNKNOWN, confidence=Confidence.LOW, url=url)


async def wait_for_any_state(
    classifier: StateClassifier,
    page: PageSnapshot,
    targets: Iterable[SessionState],
    timeout: float,
    poll_interval: float = STATE_POLL_INTERVAL,
) -> Optional[StateDetection]:
    """
    Poll the classifier until one of the target states shows up.

    A terminal state outside the targets (e.g. BLOCKED while waiting for a
    password page) ends the wait early and is returned as-is.

    Returns:
        The matching detection, or None if the timeout elapsed
    """
    wanted = set(targets)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        detection = await classifier.classify(page)
        if detection.state in wanted:
            return detection
        if detection.state.is_terminal:
            classifier.log.warning(
                f"Reached terminal state {detection.state.value} while waiting for "
                f"{sorted(s.value for s in wanted)}"
            )
            return detection

        if loop.time() >= deadline:
            classifier.log.warning(f"Timed out after {timeout:.0f}s waiting for page state")
            return None
        await asyncio.sleep(poll_interval)
