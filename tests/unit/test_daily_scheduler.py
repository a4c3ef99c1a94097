from datetime import UTC, date, datetime

import pytest

from tests.conftest import (
    InMemoryEnrollmentRepository,
    InMemoryMVDStateRepository,
    InMemoryProtocolRepository,
    InMemoryScheduleRepository,
)
from wellness_os.db.helpers import DatabaseError
from wellness_os.errors import DataIntegrityError
from wellness_os.features.mvd.repository import _row_to_state
from wellness_os.features.mvd.types import MVDTrigger, MVDType
from wellness_os.features.scheduling import DailyScheduler
from wellness_os.models.domain.protocol_domain import TimeSlot

RUN_DATE = date(2025, 3, 10)

PROTOCOLS = [
    {"id": "proto_morning_light", "name": "Morning Light Exposure", "category": "Foundation"},
    {"id": "proto_sleep_optimization", "name": "Sleep Optimization", "category": "Recovery"},
    {"id": "proto_nsdr", "name": "NSDR Session", "category": "Recovery", "duration_minutes": 20},
    {"id": "proto_caffeine_timing", "name": "Caffeine Timing", "category": "Optimization"},
    {"id": "proto_evening_light", "name": "Evening Light Management", "category": "Optimization"},
]

MODULE_MAP = {
    "sleep_optimization": ["proto_morning_light", "proto_sleep_optimization", "proto_evening_light"],
    "recovery": ["proto_nsdr", "proto_sleep_optimization"],
    "energy_optimization": ["proto_morning_light", "proto_caffeine_timing"],
}


def _enrollment(eid: str, user_id: str, module_id: str) -> dict:
    return {
        "id": eid,
        "user_id": user_id,
        "module_id": module_id,
        "enrolled_at": datetime(2025, 1, 1, tzinfo=UTC),
        "current_streak": 0,
        "is_active": True,
    }


def _scheduler(enrollments, schedules=None, mvd_states=None, batch_size=400):
    return DailyScheduler(
        InMemoryEnrollmentRepository(enrollments),
        InMemoryProtocolRepository(PROTOCOLS, MODULE_MAP),
        mvd_states or InMemoryMVDStateRepository(),
        schedules or InMemoryScheduleRepository(max_batch=batch_size),
        batch_size=batch_size,
    )


@pytest.mark.asyncio
async def test_shared_protocols_are_scheduled_once():
    schedules = InMemoryScheduleRepository()
    scheduler = _scheduler(
        [_enrollment("e1", "user-1", "sleep_optimization"), _enrollment("e2", "user-1", "recovery")],
        schedules=schedules,
    )

    result = await scheduler.run(RUN_DATE)

    protocol_ids = sorted(key[2] for key in schedules.entries)
    assert protocol_ids == [
        "proto_evening_light",
        "proto_morning_light",
        "proto_nsdr",
        "proto_sleep_optimization",
    ]
    assert result.duplicates_skipped == 1
    assert result.entries_written == 4


@pytest.mark.asyncio
async def test_slots_follow_category_and_name():
    schedules = InMemoryScheduleRepository()
    scheduler = _scheduler(
        [_enrollment("e1", "user-1", "sleep_optimization"), _enrollment("e2", "user-1", "recovery")],
        schedules=schedules,
    )

    await scheduler.run(RUN_DATE)

    slots = {key[2]: entry.time_slot for key, entry in schedules.entries.items()}
    assert slots["proto_morning_light"] is TimeSlot.MORNING
    assert slots["proto_sleep_optimization"] is TimeSlot.EVENING
    assert slots["proto_evening_light"] is TimeSlot.EVENING
    assert slots["proto_nsdr"] is TimeSlot.MIDDAY
    assert schedules.entries[("user-1", RUN_DATE, "proto_nsdr")].duration_minutes == 20
    assert schedules.entries[("user-1", RUN_DATE, "proto_morning_light")].scheduled_time == "08:00"


@pytest.mark.asyncio
async def test_rerun_for_same_date_does_not_duplicate():
    schedules = InMemoryScheduleRepository()
    enrollments = [
        _enrollment("e1", "user-1", "sleep_optimization"),
        _enrollment("e2", "user-2", "energy_optimization"),
    ]

    await _scheduler(enrollments, schedules=schedules).run(RUN_DATE)
    first_count = await schedules.count_for_date(RUN_DATE)
    first_keys = set(schedules.entries)

    await _scheduler(enrollments, schedules=schedules).run(RUN_DATE)

    assert await schedules.count_for_date(RUN_DATE) == first_count == 5
    assert set(schedules.entries) == first_keys


@pytest.mark.asyncio
async def test_active_mvd_narrows_schedule_to_approved_set():
    mvd_states = InMemoryMVDStateRepository()
    await mvd_states.activate(
        "user-1", MVDType.FULL, MVDTrigger.LOW_RECOVERY, "Recovery > 50%", datetime(2025, 3, 10, tzinfo=UTC)
    )
    schedules = InMemoryScheduleRepository()
    scheduler = _scheduler(
        [_enrollment("e1", "user-1", "energy_optimization")],
        schedules=schedules,
        mvd_states=mvd_states,
    )

    result = await scheduler.run(RUN_DATE)

    assert [key[2] for key in schedules.entries] == ["proto_morning_light"]
    assert result.mvd_filtered == 1


@pytest.mark.asyncio
async def test_writes_are_chunked_to_batch_limit():
    enrollments = [_enrollment(f"e{i}", f"user-{i}", "sleep_optimization") for i in range(5)]
    schedules = InMemoryScheduleRepository(max_batch=4)

    result = await _scheduler(enrollments, schedules=schedules, batch_size=4).run(RUN_DATE)

    assert result.entries_written == 15
    assert schedules.batch_sizes == [4, 4, 4, 3]
    assert result.flush_count == 4


@pytest.mark.asyncio
async def test_malformed_enrollment_is_skipped():
    bad = {"id": "e-bad", "user_id": None, "module_id": "recovery", "is_active": True}
    schedules = InMemoryScheduleRepository()

    result = await _scheduler(
        [bad, _enrollment("e1", "user-1", "recovery")], schedules=schedules
    ).run(RUN_DATE)

    assert result.invalid_rows == 1
    assert result.users_scheduled == 1


@pytest.mark.asyncio
async def test_flush_failure_raises_to_invoker():
    class FailingSchedules(InMemoryScheduleRepository):
        async def upsert_entries(self, entries):
            raise DatabaseError("batch rejected", operation="execute_many", recoverable=False)

    with pytest.raises(DatabaseError):
        await _scheduler(
            [_enrollment("e1", "user-1", "recovery")], schedules=FailingSchedules()
        ).run(RUN_DATE)


@pytest.mark.asyncio
async def test_unreadable_user_state_skips_only_that_user():
    class FlakyStates(InMemoryMVDStateRepository):
        async def get_state(self, user_id):
            if user_id == "user-bad":
                raise DatabaseError("connection reset", operation="fetch_one")
            return await super().get_state(user_id)

    schedules = InMemoryScheduleRepository()
    enrollments = [
        _enrollment("e1", "user-1", "recovery"),
        _enrollment("e2", "user-bad", "recovery"),
        _enrollment("e3", "user-2", "energy_optimization"),
    ]

    result = await _scheduler(enrollments, schedules=schedules, mvd_states=FlakyStates()).run(
        RUN_DATE
    )

    assert result.users_failed == 1
    assert result.users_scheduled == 2
    assert {key[0] for key in schedules.entries} == {"user-1", "user-2"}


def test_unknown_mvd_type_in_row_is_a_data_integrity_error():
    row = {"user_id": "user-1", "mvd_active": True, "mvd_type": "half_day", "mvd_trigger": None}

    with pytest.raises(DataIntegrityError) as exc:
        _row_to_state(row)

    assert exc.value.record_id == "user-1"
