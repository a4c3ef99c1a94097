"""
Daily scheduler - builds each user's protocol timetable for one date.

Per user: active enrollments -> module protocols -> de-duplicate protocols
shared across modules -> slot by category/name -> filter to the MVD-approved
set when MVD is active. Entries are written through a ChunkedWriter so no
single write exceeds the store's batch limit; every write is an upsert on
(user_id, schedule_date, protocol_id), so a crashed run is safe to repeat.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from wellness_os.db.chunked_writer import ChunkedWriter
from wellness_os.db.helpers import DatabaseError
from wellness_os.errors import DataIntegrityError
from wellness_os.features.mvd.protocols import is_protocol_approved
from wellness_os.features.mvd.repository import MVDStateRepository
from wellness_os.infrastructure.observability.logging import get_logger
from wellness_os.models.domain.enrollment_domain import ModuleEnrollment, parse_row
from wellness_os.models.domain.protocol_domain import Protocol
from wellness_os.repositories.enrollment_repository import EnrollmentRepository
from wellness_os.repositories.protocol_repository import ProtocolRepository

from .repository import ScheduleRepository
from .types import DailyScheduleEntry

logger = get_logger(__name__)


@dataclass(slots=True)
class ScheduleRunResult:
    schedule_date: date
    users_scheduled: int = 0
    entries_written: int = 0
    duplicates_skipped: int = 0
    mvd_filtered: int = 0
    invalid_rows: int = 0
    users_failed: int = 0
    flush_count: int = 0


class DailyScheduler:
    def __init__(
        self,
        enrollments: EnrollmentRepository,
        protocols: ProtocolRepository,
        mvd_states: MVDStateRepository,
        schedules: ScheduleRepository,
        batch_size: int = 400,
        default_duration_minutes: int = 10,
    ):
        self.enrollments = enrollments
        self.protocols = protocols
        self.mvd_states = mvd_states
        self.schedules = schedules
        self.batch_size = batch_size
        self.default_duration_minutes = default_duration_minutes

    async def run(self, schedule_date: date) -> ScheduleRunResult:
        """
        Schedule every user with an active enrollment.

        A user whose state cannot be read is logged, counted and skipped; only
        a failed chunk flush reaches the caller.

        Raises:
            DatabaseError: a chunk flush failed; already-flushed chunks stay written
        """
        result = ScheduleRunResult(schedule_date=schedule_date)

        by_user = await self._enrollments_by_user(result)
        if not by_user:
            logger.info("No active enrollments to schedule", schedule_date=str(schedule_date))
            return result

        module_ids = sorted({e.module_id for rows in by_user.values() for e in rows})
        module_protocols = await self._load_module_protocols(module_ids, result)

        writer: ChunkedWriter[DailyScheduleEntry] = ChunkedWriter(
            self.schedules.upsert_entries, batch_size=self.batch_size, name="daily_schedules"
        )
        async with writer:
            for user_id, enrollments in by_user.items():
                try:
                    entries = await self.build_user_entries(
                        user_id, enrollments, module_protocols, schedule_date, result
                    )
                except (DataIntegrityError, DatabaseError) as e:
                    result.users_failed += 1
                    logger.warning(
                        "Skipping user schedule",
                        user_id=user_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    continue
                await writer.extend(entries)
                if entries:
                    result.users_scheduled += 1

        result.entries_written = writer.written
        result.flush_count = writer.flush_count
        logger.info(
            "Daily schedules written",
            schedule_date=str(schedule_date),
            users=result.users_scheduled,
            entries=result.entries_written,
            flushes=result.flush_count,
            mvd_filtered=result.mvd_filtered,
            users_failed=result.users_failed,
        )
        return result

    async def build_user_entries(
        self,
        user_id: str,
        enrollments: list[ModuleEnrollment],
        module_protocols: dict[str, list[Protocol]],
        schedule_date: date,
        result: ScheduleRunResult,
    ) -> list[DailyScheduleEntry]:
        state = await self.mvd_states.get_state(user_id)
        mvd_type = state.mvd_type if state and state.mvd_active else None

        entries: dict[str, DailyScheduleEntry] = {}
        for enrollment in enrollments:
            for protocol in module_protocols.get(enrollment.module_id, []):
                if protocol.id in entries:
                    result.duplicates_skipped += 1
                    continue
                if not is_protocol_approved(protocol.id, mvd_type):
                    result.mvd_filtered += 1
                    continue

                slot = protocol.time_slot()
                entries[protocol.id] = DailyScheduleEntry(
                    user_id=user_id,
                    schedule_date=schedule_date,
                    protocol_id=protocol.id,
                    protocol_name=protocol.name,
                    module_id=enrollment.module_id,
                    category=protocol.category,
                    time_slot=slot,
                    scheduled_time=slot.utc_time,
                    duration_minutes=protocol.duration_minutes or self.default_duration_minutes,
                )

        if mvd_type is not None:
            logger.debug(
                "Schedule narrowed by MVD",
                user_id=user_id,
                mvd_type=mvd_type.value,
                kept=len(entries),
            )
        return list(entries.values())

    async def _enrollments_by_user(
        self, result: ScheduleRunResult
    ) -> dict[str, list[ModuleEnrollment]]:
        by_user: dict[str, list[ModuleEnrollment]] = defaultdict(list)
        for row in await self.enrollments.list_active_enrollments():
            try:
                enrollment = parse_row(ModuleEnrollment, row)
            except DataIntegrityError as e:
                result.invalid_rows += 1
                logger.warning("Skipping malformed enrollment", record_id=e.record_id)
                continue
            by_user[enrollment.user_id].append(enrollment)
        return dict(by_user)

    async def _load_module_protocols(
        self, module_ids: list[str], result: ScheduleRunResult
    ) -> dict[str, list[Protocol]]:
        raw = await self.protocols.get_protocols_for_modules(module_ids)
        mapping: dict[str, list[Protocol]] = {}
        for module_id, rows in raw.items():
            protocols = []
            for row in rows:
                try:
                    protocols.append(parse_row(Protocol, row))
                except DataIntegrityError as e:
                    result.invalid_rows += 1
                    logger.warning(
                        "Skipping malformed protocol", module_id=module_id, record_id=e.record_id
                    )
            mapping[module_id] = protocols
        return mapping
