"""
Postgres repository for daily_schedules.

Entries are keyed (user_id, schedule_date, protocol_id); re-running the
scheduler for a date refreshes slot and timing but keeps whatever status the
client has already recorded.
"""

from datetime import date
from typing import Protocol

from wellness_os.db.helpers import execute_many, fetch_one, with_db_retry
from wellness_os.db.pool import DatabasePoolManager

from .types import DailyScheduleEntry


class ScheduleRepository(Protocol):
    async def upsert_entries(self, entries: list[DailyScheduleEntry]) -> int: ...

    async def count_for_date(self, schedule_date: date) -> int: ...


class PostgresScheduleRepository:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    @with_db_retry()
    async def upsert_entries(self, entries: list[DailyScheduleEntry]) -> int:
        """
        One batch in one transaction.
        Retried on dropped connections; the upsert makes a replay harmless.

        Raises:
            DatabaseError: the batch failed and nothing from it was written
        """
        if not entries:
            return 0
        return await execute_many(
            self.pool,
            """
            INSERT INTO daily_schedules (
                user_id, schedule_date, protocol_id, protocol_name, module_id, category,
                time_slot, scheduled_time, duration_minutes, status, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, NOW(), NOW())
            ON CONFLICT (user_id, schedule_date, protocol_id) DO UPDATE SET
                protocol_name = EXCLUDED.protocol_name,
                module_id = EXCLUDED.module_id,
                category = EXCLUDED.category,
                time_slot = EXCLUDED.time_slot,
                scheduled_time = EXCLUDED.scheduled_time,
                duration_minutes = EXCLUDED.duration_minutes,
                updated_at = NOW()
            """,
            [
                (
                    entry.user_id,
                    entry.schedule_date,
                    entry.protocol_id,
                    entry.protocol_name,
                    entry.module_id,
                    entry.category.value,
                    entry.time_slot.value,
                    entry.scheduled_time,
                    entry.duration_minutes,
                    entry.status,
                )
                for entry in entries
            ],
        )

    async def count_for_date(self, schedule_date: date) -> int:
        row = await fetch_one(
            self.pool,
            "SELECT COUNT(*) AS total FROM daily_schedules WHERE schedule_date = %s",
            (schedule_date,),
        )
        return int(row["total"]) if row else 0
