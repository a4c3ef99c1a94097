"""
Postgres repository for module_enrollment rows.

Reads return raw dict rows; callers validate them with parse_row so a single
malformed enrollment is skipped rather than failing the query.
"""

from datetime import datetime
from typing import Any, Protocol

from wellness_os.db.helpers import execute_query, fetch_all, with_db_retry
from wellness_os.db.pool import DatabasePoolManager
from wellness_os.errors import StateConflictError
from wellness_os.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_ENROLLMENT_COLUMNS = """
    id, user_id, module_id, enrolled_at, last_active_date, current_streak,
    longest_streak, streak_freeze_available, streak_freeze_used_date, is_active
"""


class EnrollmentRepository(Protocol):
    async def list_active_enrollments(self) -> list[dict[str, Any]]: ...

    async def list_streak_candidates(self) -> list[dict[str, Any]]: ...

    async def consume_freeze(self, enrollment_id: str, used_at: datetime) -> None: ...

    async def reset_streak(self, enrollment_id: str, now: datetime) -> None: ...

    async def reset_freezes(self) -> int: ...


class PostgresEnrollmentRepository:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    @with_db_retry()
    async def list_active_enrollments(self) -> list[dict[str, Any]]:
        query = f"""
            SELECT {_ENROLLMENT_COLUMNS}
            FROM module_enrollment
            WHERE is_active = true
            ORDER BY user_id, enrolled_at
        """
        return await fetch_all(self.pool, query)

    @with_db_retry()
    async def list_streak_candidates(self) -> list[dict[str, Any]]:
        query = f"""
            SELECT {_ENROLLMENT_COLUMNS}
            FROM module_enrollment
            WHERE current_streak > 0
            ORDER BY user_id, module_id
        """
        return await fetch_all(self.pool, query)

    async def consume_freeze(self, enrollment_id: str, used_at: datetime) -> None:
        """
        Spend the weekly freeze credit.

        Raises:
            StateConflictError: the credit was already spent by another run
        """
        updated = await execute_query(
            self.pool,
            """
            UPDATE module_enrollment
            SET streak_freeze_available = false,
                streak_freeze_used_date = %s,
                updated_at = NOW()
            WHERE id = %s AND streak_freeze_available = true
            """,
            (used_at, enrollment_id),
        )
        if updated == 0:
            raise StateConflictError(
                "Streak freeze already consumed", operation="consume_freeze"
            )

    async def reset_streak(self, enrollment_id: str, now: datetime) -> None:
        """
        Raises:
            StateConflictError: streak was already zero
        """
        updated = await execute_query(
            self.pool,
            """
            UPDATE module_enrollment
            SET current_streak = 0,
                updated_at = %s
            WHERE id = %s AND current_streak > 0
            """,
            (now, enrollment_id),
        )
        if updated == 0:
            raise StateConflictError("Streak already reset", operation="reset_streak")

    async def reset_freezes(self) -> int:
        reset = await execute_query(
            self.pool,
            """
            UPDATE module_enrollment
            SET streak_freeze_available = true,
                streak_freeze_used_date = NULL,
                updated_at = NOW()
            WHERE streak_freeze_available = false OR streak_freeze_used_date IS NOT NULL
            """,
        )
        logger.info("Streak freezes reset", enrollments_reset=reset)
        return reset
