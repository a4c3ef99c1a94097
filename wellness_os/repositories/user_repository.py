from datetime import datetime, timedelta
from typing import Any, Protocol

from wellness_os.db.helpers import fetch_all, fetch_one
from wellness_os.db.pool import DatabasePoolManager


class UserRepository(Protocol):
    async def get_profile(self, user_id: str) -> dict[str, Any] | None: ...

    async def get_completion_history(
        self, user_id: str, days: int, now: datetime
    ) -> list[float]: ...


class PostgresUserRepository:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        """Profile, preferences and the latest daily wearable summary in one row."""
        query = """
            SELECT
                u.id AS user_id,
                u.display_name,
                u.primary_goal,
                u.timezone,
                pref.quiet_hours_start,
                pref.quiet_hours_end,
                pref.nudge_tone,
                pref.manual_mvd_requested,
                w.recovery_score,
                w.hrv_deviation,
                w.device_timezone,
                w.meeting_hours AS meeting_hours_today
            FROM users u
            LEFT JOIN user_preferences pref ON pref.user_id = u.id
            LEFT JOIN LATERAL (
                SELECT recovery_score, hrv_deviation, device_timezone, meeting_hours
                FROM daily_metrics
                WHERE user_id = u.id
                ORDER BY metric_date DESC
                LIMIT 1
            ) w ON true
            WHERE u.id = %s
        """
        return await fetch_one(self.pool, query, (user_id,))

    async def get_completion_history(self, user_id: str, days: int, now: datetime) -> list[float]:
        """Percent of scheduled protocols completed per day, most recent first, excluding today."""
        query = """
            SELECT schedule_date,
                   100.0 * COUNT(*) FILTER (WHERE status = 'completed') / COUNT(*) AS completion
            FROM daily_schedules
            WHERE user_id = %s AND schedule_date >= %s AND schedule_date < %s
            GROUP BY schedule_date
            ORDER BY schedule_date DESC
        """
        today = now.date()
        rows = await fetch_all(self.pool, query, (user_id, today - timedelta(days=days), today))
        return [float(row["completion"]) for row in rows]
