"""
Streak jobs.
calculate_streaks runs daily; reset_freezes restores every weekly freeze credit.
"""

import uuid
from datetime import UTC, datetime

from wellness_os.context import JobContext, JobTrigger
from wellness_os.db.helpers import DatabaseError
from wellness_os.errors import WellnessJobError
from wellness_os.features.streaks.service import StreakMaintenanceService
from wellness_os.infrastructure.observability.logging import bind_job_run, get_logger, log_job_summary

logger = get_logger(__name__)


class StreakJobError(WellnessJobError):
    """Enrollment listing or the weekly reset failed."""


def _service(context: JobContext) -> StreakMaintenanceService:
    return StreakMaintenanceService(context.enrollments, context.nudges, context.audit)


def _duration(start: datetime) -> float:
    return round((datetime.now(UTC) - start).total_seconds(), 2)


async def calculate_streaks(context: JobContext, trigger: JobTrigger | None = None) -> dict:
    now = context.run_timestamp(trigger)
    start = datetime.now(UTC)
    bind_job_run("calculate_streaks", uuid.uuid4().hex[:12])
    logger.info("Starting streak maintenance", run_timestamp=now.isoformat())

    try:
        result = await _service(context).calculate_streaks(now)
    except DatabaseError as e:
        raise StreakJobError(f"Streak maintenance failed: {e}", operation=e.operation) from e

    metrics = {
        "job_run": "calculate_streaks",
        "start_time": start.isoformat(),
        "total_duration_seconds": _duration(start),
        "enrollments_evaluated": result.evaluated,
        "streaks_preserved": result.preserved,
        "streaks_reset": result.reset,
        "unchanged": result.unchanged,
        "conflicts": result.conflicts,
        "invalid_rows": result.invalid_rows,
        "processing_errors": len(result.errors),
    }
    log_job_summary("calculate_streaks", metrics)
    return metrics


async def reset_freezes(context: JobContext, trigger: JobTrigger | None = None) -> dict:
    now = context.run_timestamp(trigger)
    start = datetime.now(UTC)
    bind_job_run("reset_freezes", uuid.uuid4().hex[:12])

    try:
        restored = await _service(context).reset_freezes(now)
    except DatabaseError as e:
        raise StreakJobError(f"Freeze reset failed: {e}", operation=e.operation) from e

    metrics = {
        "job_run": "reset_freezes",
        "start_time": start.isoformat(),
        "total_duration_seconds": _duration(start),
        "freezes_restored": restored,
    }
    log_job_summary("reset_freezes", metrics)
    return metrics
