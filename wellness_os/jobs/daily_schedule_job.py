"""
Daily schedule job.
Writes every enrolled user's protocol timetable for the run date.
"""

import uuid
from datetime import UTC, datetime

from wellness_os.context import JobContext, JobTrigger
from wellness_os.db.helpers import DatabaseError
from wellness_os.errors import WellnessJobError
from wellness_os.features.scheduling.scheduler import DailyScheduler, ScheduleRunResult
from wellness_os.infrastructure.observability.logging import bind_job_run, get_logger, log_job_summary

logger = get_logger(__name__)

JOB_NAME = "daily_schedules"


class DailyScheduleJobError(WellnessJobError):
    """A chunk flush failed; re-running is safe because every write is an upsert."""


class DailyScheduleMetrics:
    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.result: ScheduleRunResult | None = None
        self.total_duration_seconds = 0.0

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        result = self.result
        return {
            "job_run": JOB_NAME,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "schedule_date": result.schedule_date.isoformat() if result else None,
            "users_processed": result.users_scheduled if result else 0,
            "entries_written": result.entries_written if result else 0,
            "duplicates_skipped": result.duplicates_skipped if result else 0,
            "mvd_filtered": result.mvd_filtered if result else 0,
            "invalid_rows": result.invalid_rows if result else 0,
            "users_failed": result.users_failed if result else 0,
            "flush_count": result.flush_count if result else 0,
        }


class DailyScheduleJob:
    def __init__(self, context: JobContext):
        settings = context.settings
        self.scheduler = DailyScheduler(
            context.enrollments,
            context.protocols,
            context.mvd_states,
            context.schedules,
            batch_size=settings.SCHEDULE_WRITE_BATCH_SIZE,
            default_duration_minutes=settings.SCHEDULE_DEFAULT_DURATION_MINUTES,
        )
        self.metrics = DailyScheduleMetrics()

    async def run_once(self, now: datetime) -> dict:
        """
        Raises:
            DailyScheduleJobError: a batch write failed (earlier chunks stay written)
        """
        self.metrics.reset()
        try:
            self.metrics.result = await self.scheduler.run(now.date())
        except DatabaseError as e:
            self.metrics.finalize()
            logger.error("Daily schedule write failed", error=str(e), operation=e.operation)
            raise DailyScheduleJobError(
                f"Daily schedule job failed: {e}", operation=e.operation, recoverable=True
            ) from e
        self.metrics.finalize()
        return self.metrics.to_dict()


async def generate_daily_schedules(context: JobContext, trigger: JobTrigger | None = None) -> dict:
    now = context.run_timestamp(trigger)
    bind_job_run(JOB_NAME, uuid.uuid4().hex[:12])
    logger.info("Starting daily schedule generation", schedule_date=now.date().isoformat())

    metrics = await DailyScheduleJob(context).run_once(now)
    log_job_summary(JOB_NAME, metrics)
    return metrics
