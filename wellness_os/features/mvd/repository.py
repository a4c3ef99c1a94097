"""
Postgres repository for per-user MVD state (user_state table) and its history.

Activation and exit are single conditional statements, so a cancelled or
concurrent run can never leave a half-applied transition.
"""

from datetime import datetime
from typing import Any, Protocol

from wellness_os.db.helpers import execute_query, fetch_one
from wellness_os.db.pool import DatabasePoolManager
from wellness_os.errors import DataIntegrityError, StateConflictError
from wellness_os.infrastructure.observability.logging import get_logger

from .types import MVDState, MVDTrigger, MVDType

logger = get_logger(__name__)


class MVDStateRepository(Protocol):
    async def get_state(self, user_id: str) -> MVDState | None: ...

    async def activate(
        self,
        user_id: str,
        mvd_type: MVDType,
        trigger: MVDTrigger,
        exit_condition: str,
        now: datetime,
    ) -> MVDState: ...

    async def deactivate(self, user_id: str, reason: str, now: datetime) -> None: ...

    async def touch(self, user_id: str, now: datetime) -> None: ...


def _row_to_state(row: dict[str, Any]) -> MVDState:
    user_id = str(row["user_id"])
    try:
        mvd_type = MVDType(row["mvd_type"]) if row.get("mvd_type") else None
        trigger = MVDTrigger(row["mvd_trigger"]) if row.get("mvd_trigger") else None
    except ValueError as e:
        raise DataIntegrityError(f"Unreadable MVD state: {e}", record_id=user_id) from e
    return MVDState(
        user_id=user_id,
        mvd_active=bool(row.get("mvd_active")),
        mvd_type=mvd_type,
        trigger=trigger,
        activated_at=row.get("mvd_activated_at"),
        exit_condition=row.get("mvd_exit_condition"),
        last_checked_at=row.get("mvd_last_checked_at"),
    )


class PostgresMVDStateRepository:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def get_state(self, user_id: str) -> MVDState | None:
        row = await fetch_one(
            self.pool,
            """
            SELECT user_id, mvd_active, mvd_type, mvd_trigger, mvd_activated_at,
                   mvd_exit_condition, mvd_last_checked_at
            FROM user_state
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return _row_to_state(row) if row else None

    async def activate(
        self,
        user_id: str,
        mvd_type: MVDType,
        trigger: MVDTrigger,
        exit_condition: str,
        now: datetime,
    ) -> MVDState:
        """
        Activate MVD unless it is already active.

        Raises:
            StateConflictError: the row was already active (another run won)
        """
        updated = await execute_query(
            self.pool,
            """
            INSERT INTO user_state (
                user_id, mvd_active, mvd_type, mvd_trigger, mvd_activated_at,
                mvd_exit_condition, mvd_last_checked_at, updated_at
            )
            VALUES (%s, true, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (user_id)
            DO UPDATE SET
                mvd_active = true,
                mvd_type = EXCLUDED.mvd_type,
                mvd_trigger = EXCLUDED.mvd_trigger,
                mvd_activated_at = EXCLUDED.mvd_activated_at,
                mvd_exit_condition = EXCLUDED.mvd_exit_condition,
                mvd_last_checked_at = EXCLUDED.mvd_last_checked_at,
                updated_at = NOW()
            WHERE user_state.mvd_active = false
            """,
            (user_id, mvd_type.value, trigger.value, now, exit_condition, now),
        )
        if updated == 0:
            raise StateConflictError(
                "MVD already active", user_id=user_id, operation="mvd_activate"
            )

        await self._log_history(user_id, "activated", mvd_type.value, trigger.value, None, now)
        return MVDState(
            user_id=user_id,
            mvd_active=True,
            mvd_type=mvd_type,
            trigger=trigger,
            activated_at=now,
            exit_condition=exit_condition,
            last_checked_at=now,
        )

    async def deactivate(self, user_id: str, reason: str, now: datetime) -> None:
        """
        Clear MVD state.

        Raises:
            StateConflictError: MVD was not active (exit requires prior activation)
        """
        updated = await execute_query(
            self.pool,
            """
            UPDATE user_state
            SET mvd_active = false,
                mvd_type = NULL,
                mvd_trigger = NULL,
                mvd_activated_at = NULL,
                mvd_exit_condition = NULL,
                mvd_last_checked_at = %s,
                updated_at = NOW()
            WHERE user_id = %s AND mvd_active = true
            """,
            (now, user_id),
        )
        if updated == 0:
            raise StateConflictError("MVD not active", user_id=user_id, operation="mvd_deactivate")

        await self._log_history(user_id, "deactivated", None, None, reason, now)

    async def touch(self, user_id: str, now: datetime) -> None:
        await execute_query(
            self.pool,
            "UPDATE user_state SET mvd_last_checked_at = %s WHERE user_id = %s",
            (now, user_id),
        )

    async def _log_history(
        self,
        user_id: str,
        event: str,
        mvd_type: str | None,
        trigger: str | None,
        reason: str | None,
        now: datetime,
    ) -> None:
        # History is analytics only; the transition already committed
        try:
            await execute_query(
                self.pool,
                """
                INSERT INTO mvd_history (user_id, event, mvd_type, mvd_trigger, reason, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (user_id, event, mvd_type, trigger, reason, now),
            )
        except Exception as e:
            logger.warning("Failed to write MVD history", user_id=user_id, event=event, error=str(e))
