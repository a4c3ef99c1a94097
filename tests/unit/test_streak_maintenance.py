from datetime import UTC, date, datetime, timedelta

import pytest

from tests.conftest import FakeAuditSink, InMemoryEnrollmentRepository, InMemoryNudgeTimeline
from wellness_os.features.streaks import StreakMaintenanceService, days_since_active, module_label

RUN_AT = datetime(2025, 3, 10, 2, 0, tzinfo=UTC)


def _enrollment(**overrides) -> dict:
    row = {
        "id": "enr-1",
        "user_id": "user-1",
        "module_id": "sleep_optimization",
        "current_streak": 5,
        "longest_streak": 9,
        "last_active_date": (RUN_AT - timedelta(days=3)).date(),
        "streak_freeze_available": True,
        "streak_freeze_used_date": None,
        "is_active": True,
    }
    row.update(overrides)
    return row


def _service(*rows):
    enrollments = InMemoryEnrollmentRepository(list(rows))
    nudges = InMemoryNudgeTimeline()
    audit = FakeAuditSink()
    return StreakMaintenanceService(enrollments, nudges, audit), enrollments, nudges, audit


@pytest.mark.asyncio
async def test_missed_days_with_freeze_preserve_streak():
    service, enrollments, nudges, audit = _service(_enrollment())

    result = await service.calculate_streaks(RUN_AT)

    row = enrollments.rows["enr-1"]
    assert row["streak_freeze_available"] is False
    assert row["streak_freeze_used_date"] == RUN_AT
    assert row["current_streak"] == 5
    assert result.preserved == 1

    [nudge] = nudges.for_user("user-1")
    assert nudge.nudge_type == "streak_preserved"
    assert "5" in nudge.nudge_text
    assert "Sleep Optimization" in nudge.nudge_text
    assert nudge.id == "enr-1-2025-03-10T02-00-00+00-00"
    assert audit.types == ["streak_preserved"]


@pytest.mark.asyncio
async def test_missed_days_without_freeze_reset_streak():
    service, enrollments, nudges, audit = _service(_enrollment(streak_freeze_available=False))

    result = await service.calculate_streaks(RUN_AT)

    assert enrollments.rows["enr-1"]["current_streak"] == 0
    assert result.reset == 1
    [nudge] = nudges.for_user("user-1")
    assert nudge.nudge_type == "lapse_recovery"
    assert audit.types == ["streak_reset"]


@pytest.mark.parametrize("days_ago", [0, 1])
@pytest.mark.asyncio
async def test_recent_activity_changes_nothing(days_ago):
    service, enrollments, nudges, audit = _service(
        _enrollment(last_active_date=(RUN_AT - timedelta(days=days_ago)).date())
    )

    result = await service.calculate_streaks(RUN_AT)

    row = enrollments.rows["enr-1"]
    assert row["streak_freeze_available"] is True
    assert row["current_streak"] == 5
    assert nudges.records == {}
    assert audit.records == []
    assert result.unchanged == 1


@pytest.mark.asyncio
async def test_rerun_with_same_timestamp_is_idempotent():
    service, enrollments, nudges, audit = _service(_enrollment())

    await service.calculate_streaks(RUN_AT)
    await service.calculate_streaks(RUN_AT)

    assert enrollments.rows["enr-1"]["current_streak"] == 5
    assert len(nudges.records) == 1
    assert audit.types == ["streak_preserved"]


@pytest.mark.asyncio
async def test_missing_last_active_date_counts_as_lapsed():
    service, enrollments, _, _ = _service(
        _enrollment(last_active_date="not-a-date", streak_freeze_available=False)
    )

    await service.calculate_streaks(RUN_AT)

    assert enrollments.rows["enr-1"]["current_streak"] == 0


@pytest.mark.asyncio
async def test_zero_streaks_are_not_evaluated():
    service, _, nudges, _ = _service(_enrollment(current_streak=0))

    result = await service.calculate_streaks(RUN_AT)

    assert result.evaluated == 0
    assert nudges.records == {}


@pytest.mark.asyncio
async def test_reset_freezes_restores_all_credits():
    service, enrollments, _, _ = _service(
        _enrollment(streak_freeze_available=False, streak_freeze_used_date=RUN_AT),
        _enrollment(id="enr-2", user_id="user-2"),
    )

    restored = await service.reset_freezes(RUN_AT)

    assert restored == 1
    assert all(row["streak_freeze_available"] for row in enrollments.rows.values())


def test_days_since_active_uses_utc_midnights():
    late_night = datetime(2025, 3, 10, 23, 59, tzinfo=UTC)

    assert days_since_active(date(2025, 3, 9), late_night) == 1
    assert days_since_active(date(2025, 3, 11), late_night) == 0
    assert days_since_active(None, late_night) == float("inf")


def test_module_label():
    assert module_label("sleep_optimization") == "Sleep Optimization"
    assert module_label("stress-management") == "Stress Management"
    assert module_label("") == "your module"
