"""Data models and enums for the rewards runner"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class SessionState(Enum):
    """What the browser is currently showing"""

    EMAIL_ENTRY = "email_entry"
    PASSWORD_ENTRY = "password_entry"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    PASSKEY_PROMPT = "passkey_prompt"
    LOGGED_IN = "logged_in"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.LOGGED_IN, SessionState.BLOCKED)


class Confidence(Enum):
    """Certainty attached to a state classification"""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SchedulerState(Enum):
    """Run scheduler lifecycle"""

    IDLE = "idle"  # No trigger installed
    ARMED = "armed"  # Trigger installed, nothing running
    RUNNING = "running"  # Callback executing


@dataclass(frozen=True)
class StateDetection:
    """Result of one classification call"""

    state: SessionState
    confidence: Confidence
    url: str
    indicators: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EarnablePoints:
    """Remaining obtainable points per category"""

    desktop_search: int = 0
    mobile_search: int = 0
    daily_set: int = 0
    more_promotions: int = 0

    @property
    def total(self) -> int:
        return self.desktop_search + self.mobile_search + self.daily_set + self.more_promotions

    def by_category(self) -> Dict[str, int]:
        return {
            "desktop_search": self.desktop_search,
            "mobile_search": self.mobile_search,
            "daily_set": self.daily_set,
            "more_promotions": self.more_promotions,
        }


@dataclass(frozen=True)
class AppEarnablePoints:
    """Remaining points on the mobile-app channel"""

    read_to_earn: int = 0
    check_in: int = 0

    @property
    def total(self) -> int:
        return self.read_to_earn + self.check_in


@dataclass
class RunRecord:
    """Scheduler bookkeeping exposed for monitoring"""

    state: SchedulerState = SchedulerState.IDLE
    is_running: bool = False
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None


@dataclass
class SessionReport:
    """Per-session numbers handed to the reporting layer"""

    email: str
    initial_points: int = 0
    final_points: int = 0
    desktop_points: int = 0
    mobile_points: int = 0
    errors: List[str] = field(default_factory=list)
    banned: bool = False

    @property
    def points_earned(self) -> int:
        return max(0, self.final_points - self.initial_points)

    def to_dict(self) -> Dict[str, Any]:
        """Payload shape expected by the webhook layer"""
        return {
            "email": self.email,
            "pointsEarned": self.points_earned,
            "initialPoints": self.initial_points,
            "finalPoints": self.final_points,
            "desktopPoints": self.desktop_points,
            "mobilePoints": self.mobile_points,
            "errors": list(self.errors),
            "banned": self.banned,
        }
