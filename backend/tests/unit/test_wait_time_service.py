# backend/tests/unit/test_wait_time_service.py
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from queuebot.services.wait_time_service import WaitTimeService, format_wait_time, hourly_adjustment


@pytest.mark.parametrize("minutes, expected", [
    (0, "1m"),
    (0.4, "1m"),
    (12.5, "13m"),
    (45, "45m"),
    (59.4, "59m"),
    (60, "1h"),
    (95, "1h 35m"),
    (120, "2h"),
    (119.6, "2h"),
])
def test_format_wait_time(minutes, expected):
    assert format_wait_time(minutes) == expected


def test_hourly_adjustment_without_data_is_neutral():
    assert hourly_adjustment([], 9) == 1.0
    assert hourly_adjustment([{"avg_wait_time": 10}], 9) == 1.0


def test_hourly_adjustment_is_clamped():
    records = [{"avg_wait_time": 10, "hourly_wait_times": [{"hour": 9, "avg_wait_time": 50}]}]
    assert hourly_adjustment(records, 9) == 2.0

    records = [{"avg_wait_time": 10, "hourly_wait_times": [{"hour": 9, "avg_wait_time": 1}]}]
    assert hourly_adjustment(records, 9) == 0.5


def test_hourly_adjustment_ratio():
    records = [
        {"avg_wait_time": 10, "hourly_wait_times": [{"hour": 14, "avg_wait_time": 15}]},
        {"avg_wait_time": 10, "hourly_wait_times": [{"hour": 14, "avg_wait_time": 12}]},
    ]
    assert hourly_adjustment(records, 14) == pytest.approx(1.35)


@pytest.mark.asyncio
async def test_estimate_wait_prefers_analytics(fake_db):
    fake_db.service_analytics["s-car"] = {"average_service_time": 32.6}
    service = WaitTimeService(fake_db)

    assert await service.estimate_wait("s-car", "d-loans", 15) == "33m"


@pytest.mark.asyncio
async def test_estimate_wait_ignores_non_positive_analytics(fake_db):
    fake_db.service_analytics["s-car"] = {"avg_wait_time": 0, "avg_service_time": -4}
    service = WaitTimeService(fake_db)

    assert await service.estimate_wait("s-car", "d-loans", 25) == "25m"


@pytest.mark.asyncio
async def test_estimate_wait_falls_back_on_error(fake_db, mocker):
    mocker.patch.object(fake_db, "get_service_analytics", new_callable=AsyncMock, side_effect=RuntimeError("down"))
    service = WaitTimeService(fake_db)

    assert await service.estimate_wait("s-car", "d-loans", 90) == "1h 30m"


@pytest.mark.asyncio
async def test_analytics_wait_minutes_weights_recent_days(fake_db):
    fake_db.daily_analytics.extend([
        {"service_id": "s-car", "department_id": "d-loans", "date": "2026-03-10", "avg_wait_time": 10, "avg_service_time": 4},
        {"service_id": "s-car", "department_id": "d-loans", "date": "2026-03-09", "avg_wait_time": 16, "avg_service_time": 7},
    ])
    service = WaitTimeService(fake_db, window_days=30)
    now = datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)

    # weights 1 and 1/2: wait (10 + 8) / 1.5 = 12, service (4 + 3.5) / 1.5 = 5
    assert await service.analytics_wait_minutes("s-car", "d-loans", 2, now=now) == pytest.approx(22)


@pytest.mark.asyncio
async def test_analytics_wait_minutes_ignores_rows_outside_window(fake_db):
    fake_db.daily_analytics.append(
        {"service_id": "s-car", "department_id": "d-loans", "date": "2025-01-01", "avg_wait_time": 10, "avg_service_time": 4}
    )
    service = WaitTimeService(fake_db, window_days=30)
    now = datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)

    assert await service.analytics_wait_minutes("s-car", "d-loans", 2, now=now) == 0


@pytest.mark.asyncio
async def test_analytics_wait_minutes_without_department(fake_db):
    assert await WaitTimeService(fake_db).analytics_wait_minutes("s-car", None, 3) == 0
