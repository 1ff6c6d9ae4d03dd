"""One rewards session: login gate, dashboard reconciliation, search passes"""

import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .config import LOGIN_MAX_WAIT, RETRY_LIMITS, SEARCH_POINTS_PER_QUERY
from .exceptions import DashboardNotFoundError, RewardsRunnerError, SessionBlockedError
from .extractor import find_dashboard_script, parse_dashboard
from .logging_config import get_logger
from .models import EarnablePoints, SessionReport, SessionState
from .points import EarnablePointsCalculator, available_points
from .query_engine import QueryDiversityEngine
from .retry import RetryTracker, reload_with_retry
from .state_classifier import PageSnapshot, StateClassifier, wait_for_any_state

DASHBOARD_SCRIPTS_JS = "() => Array.from(document.querySelectorAll('script')).map(s => s.innerText)"


class BrowserDriver(PageSnapshot, Protocol):
    """A logged-in (or logging-in) browser page owned by the driver layer"""

    async def evaluate_in_page(self, script: str) -> Any: ...

    async def reload(self) -> None: ...

    async def close(self) -> None: ...


# (email, mobile) -> driver
BrowserFactory = Callable[[str, bool], Awaitable[BrowserDriver]]
# (driver, queries) -> None, performs the searches
SearchWorker = Callable[[BrowserDriver, List[str]], Awaitable[None]]


@dataclass
class SessionSettings:
    run_on_zero_points: bool = False
    do_desktop_search: bool = True
    do_mobile_search: bool = True
    mobile_retry_limit: int = RETRY_LIMITS["MOBILE_SEARCH"]
    login_timeout: float = LOGIN_MAX_WAIT
    points_per_search: int = SEARCH_POINTS_PER_QUERY


class SessionRunner:
    """
    Drive one account through a desktop pass and a mobile pass.

    Navigation and clicking belong to the injected browser factory and
    search worker; this class only decides what to do next and
    reconciles the point counters.
    """

    def __init__(
        self,
        browser_factory: BrowserFactory,
        search_worker: SearchWorker,
        query_engine: Optional[QueryDiversityEngine] = None,
        settings: Optional[SessionSettings] = None,
        classifier: Optional[StateClassifier] = None,
        log=None,
    ):
        self.browser_factory = browser_factory
        self.search_worker = search_worker
        self.query_engine = query_engine or QueryDiversityEngine()
        self.settings = settings or SessionSettings()
        self.classifier = classifier or StateClassifier()
        self.log = log or get_logger("session")

    async def run(self, email: str) -> SessionReport:
        """
        Run the session and report the numbers.

        Blocked accounts and runner errors end up in the report; driver
        failures propagate so the scheduler can retry the run.
        """
        report = SessionReport(email=email)
        try:
            earnable = await self._desktop_pass(email, report)
            if earnable.total == 0 and not self.settings.run_on_zero_points:
                self.log.info(
                    'No points to earn and "run_on_zero_points" is false, stopping'
                )
                return report

            if self.settings.do_mobile_search:
                await self._mobile_pass(email, report)
        except SessionBlockedError as e:
            self.log.error(f"Account {email} is blocked: {e}")
            report.banned = True
            report.errors.append(str(e))
        except RewardsRunnerError as e:
            self.log.error(f"Session for {email} failed: {e}")
            report.errors.append(str(e))

        self.log.info(
            f"Session for {email} collected {report.points_earned} points "
            f"(desktop {report.desktop_points}, mobile {report.mobile_points})"
        )
        return report

    async def run_all(self, emails: List[str]) -> List[SessionReport]:
        """Sessions one after another, suitable as a scheduler callback body"""
        reports = []
        for email in emails:
            reports.append(await self.run(email))
        return reports

    async def fetch_dashboard(self, driver: BrowserDriver) -> Dict[str, Any]:
        """Reload the dashboard page and parse its embedded state"""
        await reload_with_retry(driver.reload)

        scripts = await driver.evaluate_in_page(DASHBOARD_SCRIPTS_JS)
        script = find_dashboard_script(scripts or [])
        if script is None:
            raise DashboardNotFoundError("Dashboard script not found on page")
        return parse_dashboard(script)

    async def _desktop_pass(self, email: str, report: SessionReport) -> EarnablePoints:
        driver = await self.browser_factory(email, False)
        try:
            await self._ensure_logged_in(driver)
            dashboard = await self.fetch_dashboard(driver)

            report.initial_points = available_points(dashboard)
            report.final_points = report.initial_points
            earnable = EarnablePointsCalculator.calculate(dashboard)
            self.log.info(
                f"You can earn {earnable.total} points today ({earnable.by_category()})"
            )

            if earnable.total == 0 and not self.settings.run_on_zero_points:
                return earnable

            if self.settings.do_desktop_search and earnable.desktop_search > 0:
                queries = await self.query_engine.fetch_queries(
                    self._searches_needed(earnable.desktop_search)
                )
                await self.search_worker(driver, queries)
                dashboard = await self.fetch_dashboard(driver)
                report.final_points = available_points(dashboard)
                report.desktop_points = max(0, report.final_points - report.initial_points)

            return earnable
        finally:
            await self._close(driver, email)

    async def _mobile_pass(self, email: str, report: SessionReport) -> None:
        """
        Mobile searches, recreating the whole browser session on each retry.

        A pass that leaves mobile search points on the table counts as a
        failure for the retry tracker.
        """
        tracker = RetryTracker(self.settings.mobile_retry_limit)

        while True:
            driver = await self.browser_factory(email, True)
            try:
                await self._ensure_logged_in(driver)
                dashboard = await self.fetch_dashboard(driver)

                counters = (dashboard.get("userStatus") or {}).get("counters") or {}
                if not counters.get("mobileSearch"):
                    self.log.warning(
                        "Unable to fetch mobile search points, the account is most likely too new"
                    )
                    return

                remaining = EarnablePointsCalculator.calculate(dashboard).mobile_search
                if remaining == 0:
                    self.log.info("Mobile searches already completed")
                    return

                before = available_points(dashboard)
                queries = await self.query_engine.fetch_queries(self._searches_needed(remaining))
                await self.search_worker(driver, queries)

                dashboard = await self.fetch_dashboard(driver)
                after = available_points(dashboard)
                report.mobile_points += max(0, after - before)
                report.final_points = max(report.final_points, after)

                if EarnablePointsCalculator.calculate(dashboard).mobile_search == 0:
                    return

                if not tracker.register_failure():
                    self.log.warning(
                        f"Max retry limit of {tracker.max_attempts} reached after "
                        f"{tracker.attempt_count} attempt(s). Exiting retry loop"
                    )
                    return

                self.log.warning(
                    f"Attempt {tracker.attempt_count}/{tracker.max_attempts}: unable to complete "
                    "mobile searches, retrying with a fresh session"
                )
            finally:
                await self._close(driver, email)

    async def _ensure_logged_in(self, driver: BrowserDriver) -> None:
        detection = await wait_for_any_state(
            self.classifier,
            driver,
            [SessionState.LOGGED_IN],
            timeout=self.settings.login_timeout,
        )
        if detection is None:
            raise RewardsRunnerError(
                f"Login did not complete within {self.settings.login_timeout:.0f}s"
            )
        if detection.state is SessionState.BLOCKED:
            raise SessionBlockedError(
                f"Sign-in blocked at {detection.url} ({', '.join(detection.indicators)})"
            )

    def _searches_needed(self, points: int) -> int:
        return math.ceil(points / max(1, self.settings.points_per_search))

    async def _close(self, driver: BrowserDriver, email: str) -> None:
        try:
            await driver.close()
        except Exception as e:
            self.log.warning(f"Failed to close browser for {email}: {e}")
