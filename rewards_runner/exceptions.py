"""Custom exception classes for the rewards runner"""

from typing import Optional


class RewardsRunnerError(Exception):
    """Base exception for runner errors"""

    pass


class PageReadError(RewardsRunnerError):
    """Raised when a page snapshot could not be read during classification

    Usually means the page closed or navigated away mid-check.
    """

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class DashboardNotFoundError(RewardsRunnerError):
    """Raised when no dashboard object could be extracted from a document"""

    pass


class InvalidScheduleError(RewardsRunnerError):
    """Raised when a schedule spec cannot be normalized"""

    pass


class SessionBlockedError(RewardsRunnerError):
    """Raised when the account is locked or suspended by the service"""

    pass
