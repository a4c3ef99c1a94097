"""
Job context - every collaborator a job needs, passed explicitly.

Jobs and components never reach for module-level singletons; production
wiring happens once in build_job_context() and tests construct JobContext
directly with in-memory fakes.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from wellness_os.config import Settings
from wellness_os.db.helpers import DatabaseError
from wellness_os.db.pool import DatabasePoolManager
from wellness_os.errors import UpstreamServiceError
from wellness_os.features.memory.store import MemoryStore, PostgresMemoryStore
from wellness_os.features.mvd.detector import MVDDetector, ThresholdMVDDetector
from wellness_os.features.mvd.repository import MVDStateRepository, PostgresMVDStateRepository
from wellness_os.features.mvd.state_machine import MVDStateMachine
from wellness_os.features.nudges.repository import (
    NudgeTimelineRepository,
    PostgresNudgeTimelineRepository,
)
from wellness_os.features.reasoning.confidence_scorer import ConfidenceScorer
from wellness_os.features.scheduling.repository import (
    PostgresScheduleRepository,
    ScheduleRepository,
)
from wellness_os.features.suppression.engine import SuppressionEvaluator
from wellness_os.infrastructure.audit import AuditSink, PostgresAuditSink
from wellness_os.infrastructure.observability.logging import get_logger
from wellness_os.repositories.enrollment_repository import (
    EnrollmentRepository,
    PostgresEnrollmentRepository,
)
from wellness_os.repositories.protocol_repository import (
    PostgresProtocolRepository,
    ProtocolRepository,
)
from wellness_os.repositories.user_repository import PostgresUserRepository, UserRepository
from wellness_os.services.infrastructure.redis_client import RedisClient
from wellness_os.services.infrastructure.user_lock import (
    LocalUserLock,
    RedisUserLock,
    UserLockManager,
)
from wellness_os.services.openai_service import OpenAIService
from wellness_os.services.safety_scanner import SafetyScanner
from wellness_os.services.vector_search import VectorSearchClient

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class JobTrigger:
    """Invocation payload; timestamp overrides the run clock for deterministic runs."""

    timestamp: datetime | None = None


@dataclass
class JobContext:
    settings: Settings
    audit: AuditSink
    enrollments: EnrollmentRepository
    protocols: ProtocolRepository
    users: UserRepository
    mvd_states: MVDStateRepository
    memories: MemoryStore
    nudges: NudgeTimelineRepository
    schedules: ScheduleRepository
    user_locks: UserLockManager = field(default_factory=LocalUserLock)

    # Only the nudge job needs generation and retrieval
    openai: OpenAIService | None = None
    vector_search: VectorSearchClient | None = None
    safety_scanner: SafetyScanner = field(default_factory=SafetyScanner)

    scorer: ConfidenceScorer = field(default_factory=ConfidenceScorer)
    suppression: SuppressionEvaluator = field(default_factory=SuppressionEvaluator)
    mvd_detector: MVDDetector = field(default_factory=ThresholdMVDDetector)
    clock: Callable[[], datetime] = utc_now

    _closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list, repr=False)

    @property
    def mvd_machine(self) -> MVDStateMachine:
        return MVDStateMachine(self.mvd_states, self.audit, self.mvd_detector)

    def run_timestamp(self, trigger: JobTrigger | None) -> datetime:
        """Trigger override or the clock, always timezone-aware UTC."""
        timestamp = trigger.timestamp if trigger and trigger.timestamp else self.clock()
        if timestamp.tzinfo is None:
            return timestamp.replace(tzinfo=UTC)
        return timestamp.astimezone(UTC)

    def add_closer(self, closer: Callable[[], Awaitable[None]]) -> None:
        self._closers.append(closer)

    async def aclose(self) -> None:
        # Reverse order: clients before the pool they may still use
        while self._closers:
            closer = self._closers.pop()
            try:
                await closer()
            except Exception as e:
                logger.warning("Error closing job resource", error=str(e))


async def build_job_context(settings: Settings, with_generation: bool = False) -> JobContext:
    """
    Wire production collaborators.

    Raises:
        ConfigurationError: a required credential is missing (fatal, before any work)
        DatabaseError: the database did not answer its health check
        UpstreamServiceError: Redis is configured but did not answer PING
    """
    settings.require("DATABASE_URL")
    if with_generation:
        settings.require("OPENAI_API_KEY", "VECTOR_INDEX_HOST", "VECTOR_INDEX_API_KEY")

    pool = DatabasePoolManager(settings)
    await pool.initialize()

    context = JobContext(
        settings=settings,
        audit=PostgresAuditSink(pool),
        enrollments=PostgresEnrollmentRepository(pool),
        protocols=PostgresProtocolRepository(pool),
        users=PostgresUserRepository(pool),
        mvd_states=PostgresMVDStateRepository(pool),
        memories=PostgresMemoryStore(pool),
        nudges=PostgresNudgeTimelineRepository(pool),
        schedules=PostgresScheduleRepository(pool),
    )
    context.add_closer(pool.close)

    try:
        health = await pool.health_check()
        if not health["healthy"]:
            raise DatabaseError(
                f"Database health check failed: {health.get('error')}",
                operation="health_check",
                recoverable=False,
            )

        if settings.REDIS_URL:
            redis_client = RedisClient(settings)
            await redis_client.initialize()
            context.add_closer(redis_client.close)
            if not await redis_client.ping():
                raise UpstreamServiceError(
                    "Redis did not answer PING", service="redis", operation="ping"
                )
            context.user_locks = RedisUserLock(
                redis_client,
                ttl_s=settings.USER_LOCK_TTL_SECONDS,
                wait_s=settings.USER_LOCK_WAIT_SECONDS,
            )
        else:
            logger.warning("REDIS_URL not set, using in-process user locks")

        if with_generation:
            context.openai = OpenAIService(settings)
            context.add_closer(context.openai.client.close)
            context.vector_search = VectorSearchClient(settings)
            context.add_closer(context.vector_search.close)
            context.safety_scanner = SafetyScanner(
                context.openai if settings.SAFETY_USE_MODERATION else None
            )
    except Exception:
        await context.aclose()
        raise

    logger.info(
        "Job context ready",
        environment=settings.environment,
        with_generation=with_generation,
        distributed_locks=bool(settings.REDIS_URL),
    )
    return context
