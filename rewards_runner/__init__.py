"""Rewards Runner
Run orchestration and resilience core for automated rewards sessions
"""

__version__ = "0.1.0"

from .exceptions import (
    DashboardNotFoundError,
    InvalidScheduleError,
    PageReadError,
    RewardsRunnerError,
    SessionBlockedError,
)
from .extractor import extract_balanced_object, find_dashboard_script, parse_dashboard
from .models import (
    AppEarnablePoints,
    Confidence,
    EarnablePoints,
    RunRecord,
    SchedulerState,
    SessionReport,
    SessionState,
    StateDetection,
)
from .points import EarnablePointsCalculator
from .query_engine import QueryDiversityConfig, QueryDiversityEngine
from .retry import RetryTracker, TimeBoundedRetry, reload_with_retry
from .scheduler import RunScheduler, ScheduleSpec, SchedulerSettings, normalize_schedule
from .session import SessionRunner, SessionSettings
from .state_classifier import StateClassifier, wait_for_any_state

__all__ = [
    "__version__",
    "AppEarnablePoints",
    "Confidence",
    "DashboardNotFoundError",
    "EarnablePoints",
    "EarnablePointsCalculator",
    "InvalidScheduleError",
    "PageReadError",
    "QueryDiversityConfig",
    "QueryDiversityEngine",
    "RetryTracker",
    "RewardsRunnerError",
    "RunRecord",
    "RunScheduler",
    "ScheduleSpec",
    "SchedulerSettings",
    "SchedulerState",
    "SessionBlockedError",
    "SessionReport",
    "SessionRunner",
    "SessionSettings",
    "SessionState",
    "StateClassifier",
    "StateDetection",
    "TimeBoundedRetry",
    "extract_balanced_object",
    "find_dashboard_script",
    "normalize_schedule",
    "parse_dashboard",
    "reload_with_retry",
    "wait_for_any_state",
]
