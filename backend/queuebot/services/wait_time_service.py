# /queuebot/services/wait_time_service.py

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from queuebot.config.settings import settings

logger = logging.getLogger(__name__)

# Column names used by successive versions of the analytics job, newest first.
ANALYTICS_TIME_FIELDS = ("avg_wait_time", "average_wait_time", "average_service_time", "avg_service_time")

MIN_HOURLY_ADJUSTMENT = 0.5
MAX_HOURLY_ADJUSTMENT = 2.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_wait_time(minutes: float) -> str:
    """45 -> '45m', 60 -> '1h', 95 -> '1h 35m'. Anything below a minute shows as '1m'."""
    if minutes < 60:
        return f"{max(1, _round_half_up(minutes))}m"

    hours = int(minutes // 60)
    remaining_minutes = _round_half_up(minutes % 60)
    if remaining_minutes == 60:
        hours, remaining_minutes = hours + 1, 0

    if remaining_minutes == 0:
        return f"{hours}h"
    return f"{hours}h {remaining_minutes}m"


def _as_minutes(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def hourly_adjustment(records: List[Dict[str, Any]], hour: int) -> float:
    """
    How much longer (or shorter) waits usually are at `hour` compared with
    the day as a whole, clamped to [0.5, 2.0]. 1.0 when there is no data.
    """
    hourly_waits: List[float] = []
    for record in records:
        for bucket in record.get("hourly_wait_times") or []:
            if not isinstance(bucket, dict) or bucket.get("hour") != hour:
                continue
            value = _as_minutes(bucket.get("avg_wait_time"))
            if value:
                hourly_waits.append(value)

    if not hourly_waits or not records:
        return 1.0

    overall_average = sum(_as_minutes(r.get("avg_wait_time")) or 0.0 for r in records) / len(records)
    if overall_average == 0:
        return 1.0

    adjustment = (sum(hourly_waits) / len(hourly_waits)) / overall_average
    return max(MIN_HOURLY_ADJUSTMENT, min(MAX_HOURLY_ADJUSTMENT, adjustment))


class WaitTimeService:
    """Advisory wait estimates shown in menus, confirmations and status replies."""

    def __init__(self, db, window_days: int = settings.analytics_window_days):
        self.db = db
        self.window_days = window_days

    async def estimate_wait(
        self,
        service_id: str,
        department_id: Optional[str],
        fallback_minutes: float = settings.default_service_minutes,
    ) -> str:
        """
        Formatted wait for one service: the service's aggregated analytics
        figure when it is positive, otherwise its configured duration.
        """
        try:
            record = await self.db.get_service_analytics(service_id) or {}
            analytics_minutes = None
            for field in ANALYTICS_TIME_FIELDS:
                analytics_minutes = _as_minutes(record.get(field))
                if analytics_minutes:
                    break

            if analytics_minutes and analytics_minutes > 0:
                logger.debug(f"Using analytics average of {analytics_minutes}min for service {service_id}")
                minutes = analytics_minutes
            else:
                minutes = fallback_minutes
            return format_wait_time(_round_half_up(minutes))
        except Exception as e:
            logger.error(f"Error calculating wait time for service {service_id}: {e}")
            return format_wait_time(fallback_minutes)

    async def analytics_wait_minutes(
        self,
        service_id: str,
        department_id: Optional[str],
        queue_length: int,
        now: Optional[datetime] = None,
    ) -> float:
        """
        Queue-aware estimate from recent daily analytics, weighting recent days
        more heavily. Returns 0 when there is no usable history.
        """
        if not department_id:
            return 0.0
        now = now or datetime.now(timezone.utc)
        try:
            since = (now - timedelta(days=self.window_days)).date().isoformat()
            records = await self.db.get_daily_analytics(service_id, department_id, since)
            if not records:
                return 0.0

            total_weight = weighted_wait = weighted_service = 0.0
            for index, record in enumerate(records):
                weight = 1 / (index + 1)
                total_weight += weight
                weighted_wait += (_as_minutes(record.get("avg_wait_time")) or 0.0) * weight
                weighted_service += (_as_minutes(record.get("avg_service_time")) or 0.0) * weight

            average_wait = weighted_wait / total_weight
            average_service = weighted_service / total_weight
            estimate = queue_length * average_service + average_wait
            return estimate * hourly_adjustment(records, now.hour)
        except Exception as e:
            logger.error(f"Error reading daily analytics for service {service_id}: {e}")
            return 0.0
