"""
Streak maintenance - daily adherence check over every enrollment with a live streak.

Gap of at most one day: nothing to do. Longer gap with the weekly freeze
credit available: spend it and keep the streak. Otherwise reset to zero.
Each outcome leaves a nudge on the user's timeline and an audit record.
Nudge ids derive from (enrollment, run timestamp) so re-runs are no-ops.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from wellness_os.db.helpers import DatabaseError
from wellness_os.errors import DataIntegrityError, StateConflictError
from wellness_os.features.nudges.repository import NudgeTimelineRepository
from wellness_os.features.nudges.types import NUDGE_SOURCE_STREAK, NudgeRecord, derive_nudge_id
from wellness_os.infrastructure.audit import AuditSink
from wellness_os.infrastructure.observability.logging import get_logger
from wellness_os.models.domain.enrollment_domain import ModuleEnrollment, parse_row, to_utc_date
from wellness_os.repositories.enrollment_repository import EnrollmentRepository

logger = get_logger(__name__)

STREAK_NUDGE_CONFIDENCE = 0.6


class StreakAction(str, Enum):
    NONE = "none"
    PRESERVED = "streak_preserved"
    RESET = "lapse_recovery"


@dataclass(slots=True)
class StreakRunResult:
    evaluated: int = 0
    preserved: int = 0
    reset: int = 0
    unchanged: int = 0
    conflicts: int = 0
    invalid_rows: int = 0
    errors: list[dict] = field(default_factory=list)


def days_since_active(last_active: date | None, now: datetime) -> float:
    """Whole UTC days between the last active date and the run date; inf when unknown."""
    if last_active is None:
        return math.inf
    diff = (to_utc_date(now) - last_active).days
    return max(diff, 0)


def module_label(module_id: str) -> str:
    segments = [s for s in re.split(r"[-_\s]+", module_id or "") if s]
    if not segments:
        return "your module"
    return " ".join(s[0].upper() + s[1:] for s in segments)


def preserved_text(module_id: str, streak: int) -> str:
    return (
        f"Freeze used—your {module_label(module_id)} streak stays at {streak} days. "
        "Log one action today to keep momentum."
    )


def lapse_text(module_id: str) -> str:
    return (
        f"Your {module_label(module_id)} streak reset. "
        "Start fresh with a quick protocol today to rebuild momentum."
    )


class StreakMaintenanceService:
    def __init__(
        self,
        enrollments: EnrollmentRepository,
        nudges: NudgeTimelineRepository,
        audit: AuditSink,
    ):
        self.enrollments = enrollments
        self.nudges = nudges
        self.audit = audit

    async def calculate_streaks(self, now: datetime) -> StreakRunResult:
        """
        Evaluate every enrollment with current_streak > 0.

        Raises:
            DatabaseError: the enrollment listing itself failed
        """
        result = StreakRunResult()
        rows = await self.enrollments.list_streak_candidates()

        for row in rows:
            try:
                enrollment = parse_row(ModuleEnrollment, row)
            except DataIntegrityError as e:
                result.invalid_rows += 1
                logger.warning("Skipping malformed enrollment", record_id=e.record_id)
                continue

            if enrollment.current_streak <= 0:
                continue
            result.evaluated += 1

            try:
                action = await self.process_enrollment(enrollment, now)
            except StateConflictError as e:
                result.conflicts += 1
                logger.info(
                    "Streak already updated by another run",
                    enrollment_id=enrollment.id,
                    operation=e.operation,
                )
                continue
            except DatabaseError as e:
                result.errors.append(
                    {"enrollment_id": enrollment.id, "error": str(e), "operation": e.operation}
                )
                logger.error(
                    "Streak update failed", enrollment_id=enrollment.id, error=str(e)
                )
                continue

            if action is StreakAction.PRESERVED:
                result.preserved += 1
            elif action is StreakAction.RESET:
                result.reset += 1
            else:
                result.unchanged += 1

        logger.info(
            "Streak maintenance completed",
            evaluated=result.evaluated,
            preserved=result.preserved,
            reset=result.reset,
            conflicts=result.conflicts,
            errors=len(result.errors),
        )
        return result

    async def process_enrollment(
        self, enrollment: ModuleEnrollment, now: datetime
    ) -> StreakAction:
        gap = days_since_active(enrollment.last_active_date, now)
        if gap <= 1:
            return StreakAction.NONE

        if enrollment.streak_freeze_available:
            await self.enrollments.consume_freeze(enrollment.id, now)
            await self._emit(enrollment, StreakAction.PRESERVED, gap, now)
            return StreakAction.PRESERVED

        if self._freeze_spent_this_run(enrollment, now):
            # Re-run of the same day: the freeze already covered this gap
            await self._emit(enrollment, StreakAction.PRESERVED, gap, now, audit=False)
            return StreakAction.PRESERVED

        await self.enrollments.reset_streak(enrollment.id, now)
        await self._emit(enrollment, StreakAction.RESET, gap, now)
        return StreakAction.RESET

    async def reset_freezes(self, now: datetime) -> int:
        restored = await self.enrollments.reset_freezes()
        logger.info("Weekly streak freezes restored", restored=restored, run_at=now.isoformat())
        return restored

    @staticmethod
    def _freeze_spent_this_run(enrollment: ModuleEnrollment, now: datetime) -> bool:
        used = enrollment.streak_freeze_used_date
        return used is not None and to_utc_date(used) == to_utc_date(now)

    async def _emit(
        self,
        enrollment: ModuleEnrollment,
        action: StreakAction,
        gap: float,
        now: datetime,
        audit: bool = True,
    ) -> None:
        if action is StreakAction.PRESERVED:
            text = preserved_text(enrollment.module_id, enrollment.current_streak)
            reasoning = (
                "A missed day was detected, so the weekly streak freeze preserved progress."
            )
        else:
            text = lapse_text(enrollment.module_id)
            reasoning = "No activity was logged for over a day, so the streak reset."

        record = NudgeRecord(
            id=derive_nudge_id(enrollment.id, now),
            user_id=enrollment.user_id,
            nudge_text=text,
            nudge_type=action.value,
            generated_at=now,
            module_id=enrollment.module_id,
            source=NUDGE_SOURCE_STREAK,
            confidence={"overall": STREAK_NUDGE_CONFIDENCE, "reasoning": reasoning},
        )
        created = await self.nudges.upsert_nudge(record)

        if not audit:
            return

        decision = "streak_preserved" if action is StreakAction.PRESERVED else "streak_reset"
        await self.audit.append(
            decision,
            {
                "enrollment_id": enrollment.id,
                "module_id": enrollment.module_id,
                "streak": enrollment.current_streak,
                "days_since_active": None if math.isinf(gap) else gap,
                "nudge_id": record.id,
                "created": created,
            },
            user_id=enrollment.user_id,
        )
        logger.info(
            "Streak updated",
            enrollment_id=enrollment.id,
            user_id=enrollment.user_id,
            action=action.value,
            streak=enrollment.current_streak,
        )
