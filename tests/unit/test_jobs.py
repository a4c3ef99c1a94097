from datetime import UTC, datetime, timedelta

import pytest

from tests.conftest import InMemoryEnrollmentRepository, InMemoryProtocolRepository, InMemoryScheduleRepository
from wellness_os.context import JobTrigger
from wellness_os.db.helpers import DatabaseError
from wellness_os.jobs.daily_schedule_job import DailyScheduleJobError, generate_daily_schedules
from wellness_os.jobs.streak_job import StreakJobError, calculate_streaks, reset_freezes

NIGHTLY = JobTrigger(timestamp=datetime(2025, 3, 10, 2, 0, tzinfo=UTC))


def _enrollment(eid: str, **overrides) -> dict:
    row = {
        "id": eid,
        "user_id": f"user-{eid}",
        "module_id": "sleep_optimization",
        "enrolled_at": datetime(2025, 1, 1, tzinfo=UTC),
        "current_streak": 4,
        "last_active_date": (NIGHTLY.timestamp - timedelta(days=2)).date(),
        "streak_freeze_available": True,
        "is_active": True,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_streak_job_reports_outcomes(make_context, audit):
    context = make_context(
        enrollments=InMemoryEnrollmentRepository(
            [
                _enrollment("a"),
                _enrollment("b", streak_freeze_available=False),
                _enrollment("c", last_active_date=NIGHTLY.timestamp.date()),
            ]
        )
    )

    metrics = await calculate_streaks(context, NIGHTLY)

    assert metrics["enrollments_evaluated"] == 3
    assert metrics["streaks_preserved"] == 1
    assert metrics["streaks_reset"] == 1
    assert metrics["unchanged"] == 1
    assert sorted(audit.types) == ["streak_preserved", "streak_reset"]


@pytest.mark.asyncio
async def test_streak_job_wraps_listing_failure(make_context):
    class BrokenEnrollments(InMemoryEnrollmentRepository):
        async def list_streak_candidates(self):
            raise DatabaseError("connection reset", operation="fetch_all")

    context = make_context(enrollments=BrokenEnrollments())

    with pytest.raises(StreakJobError):
        await calculate_streaks(context, NIGHTLY)


@pytest.mark.asyncio
async def test_reset_freezes_job(make_context):
    context = make_context(
        enrollments=InMemoryEnrollmentRepository([_enrollment("a", streak_freeze_available=False)])
    )

    metrics = await reset_freezes(context, NIGHTLY)

    assert metrics["freezes_restored"] == 1


@pytest.mark.asyncio
async def test_schedule_job_uses_trigger_date(make_context):
    schedules = InMemoryScheduleRepository()
    context = make_context(
        enrollments=InMemoryEnrollmentRepository([_enrollment("a")]),
        protocols=InMemoryProtocolRepository(
            [{"id": "proto_morning_light", "name": "Morning Light", "category": "Foundation"}],
            {"sleep_optimization": ["proto_morning_light"]},
        ),
        schedules=schedules,
    )

    metrics = await generate_daily_schedules(context, NIGHTLY)

    assert metrics["schedule_date"] == "2025-03-10"
    assert metrics["entries_written"] == 1
    assert await schedules.count_for_date(NIGHTLY.timestamp.date()) == 1


@pytest.mark.asyncio
async def test_schedule_job_raises_on_flush_failure(make_context):
    class FailingSchedules(InMemoryScheduleRepository):
        async def upsert_entries(self, entries):
            raise DatabaseError("batch rejected", operation="execute_many")

    context = make_context(
        enrollments=InMemoryEnrollmentRepository([_enrollment("a")]),
        protocols=InMemoryProtocolRepository(
            [{"id": "proto_morning_light", "name": "Morning Light", "category": "Foundation"}],
            {"sleep_optimization": ["proto_morning_light"]},
        ),
        schedules=FailingSchedules(),
    )

    with pytest.raises(DailyScheduleJobError):
        await generate_daily_schedules(context, NIGHTLY)
