"""
Adaptive nudge generation job.
Nightly pass: memory maintenance first, then every enrolled user through the
nudge orchestrator with bounded concurrency. One user's failure never aborts the run.
"""

import asyncio
import uuid
from collections import defaultdict
from datetime import UTC, datetime

from wellness_os.context import JobContext, JobTrigger
from wellness_os.errors import DataIntegrityError, WellnessJobError
from wellness_os.features.nudges.orchestrator import NudgeOrchestrator, NudgeOutcome, UserNudgeResult
from wellness_os.infrastructure.observability.logging import bind_job_run, get_logger, log_job_summary
from wellness_os.jobs.memory_maintenance_job import MemoryMaintenanceJob
from wellness_os.models.domain.enrollment_domain import ModuleEnrollment, parse_row

logger = get_logger(__name__)

JOB_NAME = "adaptive_nudges"


class NudgeGenerationJobError(WellnessJobError):
    """Run-level failure (enrollment listing, maintenance)."""


class NudgeGenerationMetrics:
    """Metrics tracking for one nudge generation run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.users_processed = 0
        self.nudges_delivered = 0
        self.nudges_safety_flagged = 0
        self.nudges_suppressed = 0
        self.users_without_candidate = 0
        self.users_skipped = 0
        self.users_failed = 0
        self.processing_errors = 0
        self.suppressed_by_rule: dict[str, int] = defaultdict(int)
        self.memory_maintenance: dict = {}
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_result(self, result: UserNudgeResult):
        self.users_processed += 1
        if result.outcome is NudgeOutcome.DELIVERED:
            self.nudges_delivered += 1
        elif result.outcome is NudgeOutcome.SAFETY_FLAGGED:
            self.nudges_safety_flagged += 1
        elif result.outcome is NudgeOutcome.SUPPRESSED:
            self.nudges_suppressed += 1
            self.suppressed_by_rule[result.suppressed_by or "unknown"] += 1
        elif result.outcome is NudgeOutcome.NO_CANDIDATE:
            self.users_without_candidate += 1
        elif result.outcome is NudgeOutcome.FAILED:
            self.users_failed += 1
            self.errors.append(
                {
                    "user_id": result.user_id,
                    "error": result.reason,
                    "timestamp": datetime.now(UTC).isoformat(),
                }
            )
        else:
            self.users_skipped += 1

    def record_processing_error(self, user_id: str, error: str):
        """Unexpected (non-upstream) error for one user."""
        self.users_processed += 1
        self.processing_errors += 1
        self.errors.append(
            {
                "user_id": user_id,
                "error": error,
                "error_type": "processing",
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.error("Nudge processing error", user_id=user_id, error=error, job_run=JOB_NAME)

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": JOB_NAME,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "users_processed": self.users_processed,
            "nudges_delivered": self.nudges_delivered,
            "nudges_safety_flagged": self.nudges_safety_flagged,
            "nudges_suppressed": self.nudges_suppressed,
            "suppressed_by_rule": dict(self.suppressed_by_rule),
            "users_without_candidate": self.users_without_candidate,
            "users_skipped": self.users_skipped,
            "users_failed": self.users_failed,
            "processing_errors": self.processing_errors,
            "memory_maintenance": self.memory_maintenance,
            "errors_count": len(self.errors),
        }


class NudgeGenerationJob:
    """
    Nightly adaptive nudge run.

    Users are independent: each touches only its own keyed records, so they
    are fanned out under a semaphore with no cross-user coordination.
    """

    def __init__(self, context: JobContext):
        self.context = context
        self.settings = context.settings
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = NudgeGenerationMetrics()
        self.orchestrator = NudgeOrchestrator(context)

    async def run_once(self, now: datetime) -> dict:
        """
        Run one nudge generation pass.

        Returns:
            Dict: job execution metrics

        Raises:
            NudgeGenerationJobError: run-level failure before any per-user work
        """
        if self.is_running:
            logger.warning("Nudge generation job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        try:
            self.is_running = True
            self.job_metrics.reset()

            # Every user's retrieval in this run must see decayed and pruned memories
            self.job_metrics.memory_maintenance = await MemoryMaintenanceJob(
                self.context
            ).run_once(now)

            users = await self._load_enrolled_users()
            if not users:
                logger.info("No enrolled users for nudge generation")
                self.job_metrics.finalize()
                return self.job_metrics.to_dict()

            logger.info(
                "Generating nudges",
                user_count=len(users),
                max_concurrent=self.settings.NUDGE_MAX_CONCURRENT_USERS,
                run_timestamp=now.isoformat(),
            )
            await self._process_users(users, now)

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)
            return self.job_metrics.to_dict()

        except WellnessJobError:
            raise
        except Exception as e:
            logger.error("Nudge generation job failed", error=str(e), error_type=type(e).__name__)
            self.job_metrics.finalize()
            raise NudgeGenerationJobError(
                f"Nudge generation job failed: {e}", operation="run_once"
            ) from e
        finally:
            self.is_running = False

    async def _load_enrolled_users(self) -> dict[str, list[ModuleEnrollment]]:
        by_user: dict[str, list[ModuleEnrollment]] = defaultdict(list)
        for row in await self.context.enrollments.list_active_enrollments():
            try:
                enrollment = parse_row(ModuleEnrollment, row)
            except DataIntegrityError as e:
                logger.warning("Skipping malformed enrollment", record_id=e.record_id)
                continue
            by_user[enrollment.user_id].append(enrollment)

        limit = self.settings.NUDGE_MAX_USERS_PER_RUN
        if len(by_user) > limit:
            logger.warning("User count exceeds per-run cap", users=len(by_user), cap=limit)
        return dict(list(by_user.items())[:limit])

    async def _process_users(self, users: dict[str, list[ModuleEnrollment]], now: datetime):
        semaphore = asyncio.Semaphore(self.settings.NUDGE_MAX_CONCURRENT_USERS)
        tasks = [
            self._process_user_with_semaphore(semaphore, user_id, enrollments, now)
            for user_id, enrollments in users.items()
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for outcome in results:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome

    async def _process_user_with_semaphore(
        self,
        semaphore: asyncio.Semaphore,
        user_id: str,
        enrollments: list[ModuleEnrollment],
        now: datetime,
    ):
        async with semaphore:
            try:
                result = await self.orchestrator.run_for_user(user_id, enrollments, now)
            except Exception as e:
                self.job_metrics.record_processing_error(user_id, f"{type(e).__name__}: {e}")
                return
            self.job_metrics.record_result(result)


async def generate_adaptive_nudges(context: JobContext, trigger: JobTrigger | None = None) -> dict:
    """Entry point for the nightly adaptive nudge run."""
    now = context.run_timestamp(trigger)
    bind_job_run(JOB_NAME, uuid.uuid4().hex[:12])
    logger.info("Starting adaptive nudge generation", run_timestamp=now.isoformat())

    metrics = await NudgeGenerationJob(context).run_once(now)
    log_job_summary(JOB_NAME, metrics)
    return metrics
