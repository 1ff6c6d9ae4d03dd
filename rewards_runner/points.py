"""Earnable points reconciliation from dashboard data"""

from datetime import date
from typing import Any, Dict, Iterable, Optional

from dateutil import parser as date_parser
from loguru import logger

from .config import APP_ELIGIBLE_OFFERS, LOCKED_STATUS, PROMOTION_TYPES_ALLOWED
from .models import AppEarnablePoints, EarnablePoints


class EarnablePointsCalculator:
    """Compute remaining obtainable points from a parsed dashboard"""

    @staticmethod
    def calculate(
        dashboard: Dict[str, Any],
        today: Optional[date] = None,
    ) -> EarnablePoints:
        """
        Remaining points per category.

        Args:
            dashboard: Parsed dashboard object
            today: Day used to pick the daily set (defaults to today)

        Returns:
            EarnablePoints with every category clamped at zero
        """
        counters = (dashboard.get("userStatus") or {}).get("counters") or {}
        daily_sets = dashboard.get("dailySetPromotions") or {}

        promotions = [
            item
            for item in dashboard.get("morePromotions") or []
            if item.get("promotionType") in PROMOTION_TYPES_ALLOWED
            and item.get("exclusiveLockedFeatureStatus") != LOCKED_STATUS
        ]

        return EarnablePoints(
            desktop_search=remaining_points(counters.get("pcSearch")),
            mobile_search=remaining_points(counters.get("mobileSearch")),
            daily_set=remaining_points(daily_sets.get(format_dashboard_date(today))),
            more_promotions=remaining_points(promotions),
        )

    @staticmethod
    def calculate_app(
        user_data: Dict[str, Any],
        today: Optional[date] = None,
    ) -> AppEarnablePoints:
        """
        Remaining points on the mobile-app channel (read to earn, check-in).

        Args:
            user_data: App user-data response, with or without the
                outer ``response`` wrapper
            today: Reference day for the check-in streak
        """
        today = today or date.today()
        payload = user_data.get("response", user_data) or {}
        read_to_earn = 0
        check_in = 0

        for promotion in payload.get("promotions") or []:
            attributes = promotion.get("attributes") or {}
            if attributes.get("offerid") not in APP_ELIGIBLE_OFFERS:
                continue

            offer_type = attributes.get("type")
            if offer_type == "msnreadearn":
                read_to_earn = max(
                    0, _to_int(attributes.get("pointmax")) - _to_int(attributes.get("pointprogress"))
                )
            elif offer_type == "checkin":
                streak_day = _to_int(attributes.get("progress")) % 7
                if streak_day < 6 and not _updated_on(attributes.get("last_updated"), today):
                    check_in = max(0, _to_int(attributes.get(f"day_{streak_day + 1}_points")))

        return AppEarnablePoints(read_to_earn=read_to_earn, check_in=check_in)


def remaining_points(entries: Optional[Iterable[Dict[str, Any]]]) -> int:
    """Sum of max - progress over entries, each entry clamped at zero"""
    total = 0
    for entry in entries or []:
        remaining = _to_int(entry.get("pointProgressMax")) - _to_int(entry.get("pointProgress"))
        if remaining < 0:
            logger.debug(f"Clamping inconsistent counter to 0 (remaining={remaining})")
            continue
        total += remaining
    return total


def available_points(dashboard: Dict[str, Any]) -> int:
    """Current point balance shown on the dashboard"""
    return _to_int((dashboard.get("userStatus") or {}).get("availablePoints"))


def format_dashboard_date(day: Optional[date] = None) -> str:
    """Dashboard keys daily sets by MM/DD/YYYY"""
    day = day or date.today()
    return day.strftime("%m/%d/%Y")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, str):
            return int(float(value.replace(",", "")))
    except (ValueError, OverflowError):
        return 0
    return 0


def _updated_on(raw: Any, day: date) -> bool:
    if not raw:
        return False
    try:
        return date_parser.parse(str(raw)).date() == day
    except (ValueError, OverflowError):
        return False
