"""
Memory maintenance job.
Global confidence decay followed by per-user pruning (expired, below floor, over cap).
Runs on its own and at the start of every adaptive nudge run.
"""

import uuid
from datetime import UTC, datetime

from wellness_os.context import JobContext, JobTrigger
from wellness_os.db.helpers import DatabaseError
from wellness_os.errors import WellnessJobError
from wellness_os.infrastructure.observability.logging import bind_job_run, get_logger, log_job_summary

logger = get_logger(__name__)

JOB_NAME = "memory_maintenance"


class MemoryMaintenanceJobError(WellnessJobError):
    """Decay or the user listing failed; nothing downstream should run on stale memories."""


class MemoryMaintenanceMetrics:
    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.memories_decayed = 0
        self.users_pruned = 0
        self.memories_pruned = 0
        self.processing_errors = 0
        self.total_duration_seconds = 0.0
        self.errors: list[dict] = []

    def record_prune(self, user_id: str, pruned: int):
        self.users_pruned += 1
        self.memories_pruned += pruned

    def record_processing_error(self, user_id: str, error: str):
        self.processing_errors += 1
        self.errors.append(
            {"user_id": user_id, "error": error, "timestamp": datetime.now(UTC).isoformat()}
        )
        logger.error("Memory prune failed", user_id=user_id, error=error)

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": JOB_NAME,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "memories_decayed": self.memories_decayed,
            "users_pruned": self.users_pruned,
            "memories_pruned": self.memories_pruned,
            "processing_errors": self.processing_errors,
            "errors_count": len(self.errors),
        }


class MemoryMaintenanceJob:
    def __init__(self, context: JobContext):
        self.context = context
        self.metrics = MemoryMaintenanceMetrics()

    async def run_once(self, now: datetime) -> dict:
        """
        Raises:
            MemoryMaintenanceJobError: the global decay pass or user listing failed
        """
        self.metrics.reset()
        store = self.context.memories

        try:
            self.metrics.memories_decayed = await store.apply_memory_decay(now)
            user_ids = await store.list_user_ids()
        except DatabaseError as e:
            self.metrics.finalize()
            raise MemoryMaintenanceJobError(
                f"Memory maintenance failed: {e}", operation="apply_memory_decay"
            ) from e

        for user_id in user_ids:
            try:
                pruned = await store.prune_memories(user_id, now)
            except DatabaseError as e:
                self.metrics.record_processing_error(user_id, str(e))
                continue
            self.metrics.record_prune(user_id, pruned)

        self.metrics.finalize()
        return self.metrics.to_dict()


async def run_memory_maintenance(context: JobContext, trigger: JobTrigger | None = None) -> dict:
    now = context.run_timestamp(trigger)
    bind_job_run(JOB_NAME, uuid.uuid4().hex[:12])
    logger.info("Starting memory maintenance", run_timestamp=now.isoformat())

    metrics = await MemoryMaintenanceJob(context).run_once(now)
    log_job_summary(JOB_NAME, metrics)
    return metrics
