"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, wires a job context and delegates to the job. An optional run
timestamp (second CLI arg or RUN_TIMESTAMP) pins the run clock.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime

from wellness_os.config import Settings, load_settings
from wellness_os.context import JobContext, JobTrigger, build_job_context
from wellness_os.infrastructure.observability.logging import clear_job_run, get_logger, setup_logging
from wellness_os.jobs.daily_schedule_job import generate_daily_schedules
from wellness_os.jobs.memory_maintenance_job import run_memory_maintenance
from wellness_os.jobs.nudge_generation_job import generate_adaptive_nudges
from wellness_os.jobs.streak_job import calculate_streaks, reset_freezes

logger = get_logger(__name__)

JobCoroutine = Callable[[JobContext, JobTrigger], Awaitable[dict]]

JOB_REGISTRY: dict[str, JobCoroutine] = {
    "adaptive_nudges": generate_adaptive_nudges,
    "daily_schedules": generate_daily_schedules,
    "calculate_streaks": calculate_streaks,
    "reset_freezes": reset_freezes,
    "memory_maintenance": run_memory_maintenance,
}

# Jobs that call the text-generation and vector search providers
GENERATION_JOBS = frozenset({"adaptive_nudges"})


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "adaptive_nudges").strip().lower()


def _resolve_trigger() -> JobTrigger:
    raw = sys.argv[2] if len(sys.argv) > 2 else os.getenv("RUN_TIMESTAMP")
    if not raw:
        return JobTrigger()
    try:
        return JobTrigger(timestamp=datetime.fromisoformat(raw.strip().replace("Z", "+00:00")))
    except ValueError as e:
        raise ValueError(f"Invalid run timestamp '{raw}', expected ISO 8601") from e


async def run_worker(
    job_name: str | None = None,
    trigger: JobTrigger | None = None,
    settings: Settings | None = None,
) -> dict:
    """Run the requested background job and return its metrics."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    settings = settings or load_settings()
    context = await build_job_context(settings, with_generation=name in GENERATION_JOBS)

    logger.info("Starting background worker", job=name)
    try:
        return await JOB_REGISTRY[name](context, trigger or JobTrigger())
    finally:
        await context.aclose()
        clear_job_run()


def main() -> None:
    """CLI entrypoint."""
    settings = load_settings()
    setup_logging(settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name, _resolve_trigger(), settings))


if __name__ == "__main__":
    main()
