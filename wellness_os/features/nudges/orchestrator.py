"""
Adaptive nudge orchestrator - one user's pass through the nightly pipeline.

Per user:
 1. resolve the primary module and local time
 2. retrieve relevant memories
 3. retrieve candidate protocols (embedding + vector search on the module topic)
 4. score candidates, drop should_suppress, keep the best (none -> skip)
 5. re-evaluate MVD (exit, then activation)
 6. today's delivery stats from the nudge timeline
 7. suppression chain (suppressed -> audit and stop)
 8. generate text and the structured "why"
 9. safety scan (violation -> fallback text, safety-flag audit)
10. persist the pending nudge and audit the generation

Steps 5-10 run under the user's lock, so a second run for the same user sees
the first run's pending nudge when it checks cooldown and the daily cap.
Upstream, storage and unexpected failures are audited and the user is
skipped; only cancellation escapes run_for_user.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from wellness_os.context import JobContext
from wellness_os.db.helpers import DatabaseError
from wellness_os.errors import DataIntegrityError, StateConflictError, UpstreamServiceError
from wellness_os.features.memory.types import MemoryFilter, ScoredMemory
from wellness_os.features.mvd.protocols import is_protocol_approved
from wellness_os.features.mvd.types import CONSISTENCY_DAYS, MVDSignals, MVDState
from wellness_os.features.reasoning.confidence_scorer import time_of_day
from wellness_os.features.reasoning.types import NudgeCandidate, ScoringContext
from wellness_os.features.reasoning.why_engine import build_why
from wellness_os.features.suppression.rules import parse_quiet_hour
from wellness_os.features.suppression.types import (
    DEFAULT_QUIET_END,
    DEFAULT_QUIET_START,
    NudgePriority,
    SuppressionContext,
    SuppressionResult,
)
from wellness_os.infrastructure.observability.logging import get_logger
from wellness_os.models.domain.enrollment_domain import ModuleEnrollment, parse_row
from wellness_os.models.domain.protocol_domain import Protocol
from wellness_os.models.domain.user_domain import UserProfile

from .prompts import SYSTEM_PROMPT, build_user_prompt, retrieval_query
from .types import NUDGE_SOURCE_ADAPTIVE, DeliveryStats, NudgeRecord, derive_nudge_id

logger = get_logger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=UTC)


class NudgeOutcome(str, Enum):
    DELIVERED = "delivered"
    SAFETY_FLAGGED = "safety_flagged"
    SUPPRESSED = "suppressed"
    NO_CANDIDATE = "no_candidate"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class UserNudgeResult:
    user_id: str
    outcome: NudgeOutcome
    nudge_id: str | None = None
    protocol_id: str | None = None
    suppressed_by: str | None = None
    reason: str | None = None


@dataclass(slots=True)
class _UserState:
    """Everything resolved for one user before gating."""

    profile: UserProfile
    module_id: str
    local_hour: int
    time_of_day: str
    memories: list[ScoredMemory] = field(default_factory=list)


def primary_enrollment(enrollments: list[ModuleEnrollment]) -> ModuleEnrollment:
    """Earliest enrollment is the user's primary module."""
    return min(enrollments, key=lambda e: (e.enrolled_at or _FAR_FUTURE, e.module_id))


def local_hour(now: datetime, timezone_name: str | None) -> int:
    try:
        tz = ZoneInfo(timezone_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown user timezone, using UTC", timezone=timezone_name)
        tz = UTC
    return now.astimezone(tz).hour


class NudgeOrchestrator:
    def __init__(self, context: JobContext):
        self.context = context
        self.settings = context.settings
        self.mvd_machine = context.mvd_machine

    async def run_for_user(
        self, user_id: str, enrollments: list[ModuleEnrollment], now: datetime
    ) -> UserNudgeResult:
        """
        Run the pipeline for one user inside the per-user timeout.

        Cancellation propagates; every other per-user fault ends in a result.
        """
        timeout = self.settings.NUDGE_USER_TIMEOUT_SECONDS
        try:
            return await asyncio.wait_for(
                self._process_user(user_id, enrollments, now), timeout=timeout
            )
        except TimeoutError:
            reason = f"Nudge generation timed out after {timeout:g}s"
            await self._record_failure(user_id, reason, "timeout", now)
            return UserNudgeResult(user_id, NudgeOutcome.FAILED, reason=reason)
        except UpstreamServiceError as e:
            await self._record_failure(user_id, str(e), e.service or "upstream", now)
            return UserNudgeResult(user_id, NudgeOutcome.FAILED, reason=str(e))
        except DataIntegrityError as e:
            logger.warning(
                "Skipping user with invalid data",
                user_id=user_id,
                record_id=e.record_id,
                error=str(e),
            )
            return UserNudgeResult(user_id, NudgeOutcome.SKIPPED, reason=str(e))
        except StateConflictError as e:
            logger.info("User busy in another run, skipping", user_id=user_id, error=str(e))
            return UserNudgeResult(user_id, NudgeOutcome.SKIPPED, reason="user_locked")
        except DatabaseError as e:
            await self._record_failure(user_id, str(e), "storage", now)
            return UserNudgeResult(user_id, NudgeOutcome.FAILED, reason=str(e))
        except Exception as e:
            logger.exception("Unexpected error generating nudge", user_id=user_id)
            error = f"{type(e).__name__}: {e}"
            await self._record_failure(user_id, error, "internal", now)
            return UserNudgeResult(user_id, NudgeOutcome.FAILED, reason=error)

    async def _process_user(
        self, user_id: str, enrollments: list[ModuleEnrollment], now: datetime
    ) -> UserNudgeResult:
        state = await self._resolve_user(user_id, enrollments, now)

        candidates = await self._retrieve_candidates(state)
        best = self._select_candidate(user_id, state, candidates)
        if best is None:
            logger.info(
                "No eligible nudge candidate",
                user_id=user_id,
                module_id=state.module_id,
                candidates=len(candidates),
            )
            return UserNudgeResult(user_id, NudgeOutcome.NO_CANDIDATE)

        async with self.context.user_locks.hold(user_id):
            mvd_state = await self._evaluate_mvd(state, now)
            stats = await self._delivery_stats(user_id, now)
            suppression = self._check_suppression(state, best, mvd_state, stats, now)

            if not suppression.should_deliver:
                await self._record_suppression(user_id, state, best, mvd_state, suppression)
                return UserNudgeResult(
                    user_id,
                    NudgeOutcome.SUPPRESSED,
                    protocol_id=best.protocol.id,
                    suppressed_by=suppression.suppressed_by.value,
                    reason=suppression.reason,
                )

            return await self._generate_and_persist(state, best, mvd_state, suppression, now)

    # =================================================================
    # STEPS 1-4: CONTEXT, MEMORIES, CANDIDATES
    # =================================================================

    async def _resolve_user(
        self, user_id: str, enrollments: list[ModuleEnrollment], now: datetime
    ) -> _UserState:
        row = await self.context.users.get_profile(user_id)
        if row is None:
            raise DataIntegrityError(f"No profile for enrolled user {user_id}", record_id=user_id)
        profile = parse_row(UserProfile, row, record_id=user_id)

        module_id = primary_enrollment(enrollments).module_id
        hour = local_hour(now, profile.timezone)
        tod = time_of_day(hour)

        memories = await self.context.memories.get_relevant_memories(
            user_id,
            MemoryFilter(module_id=module_id, time_of_day=tod),
            self.settings.NUDGE_MEMORY_LIMIT,
            now,
        )
        return _UserState(
            profile=profile,
            module_id=module_id,
            local_hour=hour,
            time_of_day=tod,
            memories=memories,
        )

    async def _retrieve_candidates(self, state: _UserState) -> list[Protocol]:
        embedding = await self.context.openai.embed(retrieval_query(state.module_id))
        matches = await self.context.vector_search.query(
            embedding, self.settings.NUDGE_CANDIDATE_TOP_K
        )
        if not matches:
            return []

        rows = await self.context.protocols.get_protocols_by_ids([m.id for m in matches])
        protocols = []
        for row in rows:
            try:
                protocols.append(parse_row(Protocol, row))
            except DataIntegrityError as e:
                logger.warning("Skipping malformed protocol", protocol_id=e.record_id)
        return protocols

    def _select_candidate(
        self, user_id: str, state: _UserState, protocols: list[Protocol]
    ) -> NudgeCandidate | None:
        candidates = []
        for protocol in protocols:
            siblings = [p for p in protocols if p.id != protocol.id]
            score = self.context.scorer.score(
                ScoringContext(
                    user_id=user_id,
                    primary_goal=state.profile.primary_goal,
                    module_id=state.module_id,
                    time_of_day=state.time_of_day,
                    protocol=protocol,
                    memories=state.memories,
                    sibling_protocols=siblings,
                    recovery_score=state.profile.recovery_score,
                    hrv_deviation=state.profile.hrv_deviation,
                )
            )
            candidates.append(NudgeCandidate(protocol=protocol, score=score))
        return self.context.scorer.select_best(candidates)

    # =================================================================
    # STEPS 5-7: MVD, DELIVERY STATS, SUPPRESSION
    # =================================================================

    async def _evaluate_mvd(self, state: _UserState, now: datetime) -> MVDState:
        profile = state.profile
        history = await self.context.users.get_completion_history(
            profile.user_id, CONSISTENCY_DAYS, now
        )
        signals = MVDSignals(
            recovery_score=profile.recovery_score,
            home_timezone=profile.timezone,
            device_timezone=profile.device_timezone,
            is_manual_activation=profile.manual_mvd_requested,
            meeting_hours_today=profile.meeting_hours_today,
            completion_history=history,
        )
        evaluation = await self.mvd_machine.evaluate(profile.user_id, signals, now)
        return evaluation.state

    async def _delivery_stats(self, user_id: str, now: datetime) -> DeliveryStats:
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        records = await self.context.nudges.get_nudges_between(
            user_id, day_start, day_start + timedelta(days=1)
        )
        return DeliveryStats.from_records(records)

    def _check_suppression(
        self,
        state: _UserState,
        candidate: NudgeCandidate,
        mvd_state: MVDState,
        stats: DeliveryStats,
        now: datetime,
    ) -> SuppressionResult:
        profile = state.profile
        approved = mvd_state.mvd_active and is_protocol_approved(
            candidate.protocol.id, mvd_state.mvd_type
        )
        recovery = profile.recovery_score if profile.recovery_score is not None else 100.0
        return self.context.suppression.evaluate(
            SuppressionContext(
                local_hour=state.local_hour,
                now=now,
                confidence=candidate.score.overall,
                nudges_delivered_today=stats.delivered_today,
                last_delivered_at=stats.last_delivered_at,
                dismissals_today=stats.dismissals_today,
                quiet_hours_start=parse_quiet_hour(profile.quiet_hours_start, DEFAULT_QUIET_START),
                quiet_hours_end=parse_quiet_hour(profile.quiet_hours_end, DEFAULT_QUIET_END),
                meeting_hours_today=profile.meeting_hours_today,
                nudge_priority=NudgePriority.STANDARD,
                recovery_score=recovery,
                is_morning_anchor=candidate.protocol.is_morning_anchor,
                mvd_active=mvd_state.mvd_active,
                mvd_type=mvd_state.mvd_type,
                is_mvd_approved=approved,
            )
        )

    # =================================================================
    # STEPS 8-10: GENERATION, SAFETY, PERSISTENCE
    # =================================================================

    async def _generate_and_persist(
        self,
        state: _UserState,
        candidate: NudgeCandidate,
        mvd_state: MVDState,
        suppression: SuppressionResult,
        now: datetime,
    ) -> UserNudgeResult:
        user_id = state.profile.user_id
        protocol = candidate.protocol

        user_prompt = build_user_prompt(
            state.profile, state.module_id, protocol, state.memories, mvd_state, state.time_of_day
        )
        response = (await self.context.openai.generate_text(SYSTEM_PROMPT, user_prompt)).strip()
        why = build_why(protocol, candidate.score, state.memories)

        scan = await self.context.safety_scanner.scan(response, "nudge")
        nudge_text = response if scan.safe else self.context.safety_scanner.fallback_text("nudge")

        record = NudgeRecord(
            id=derive_nudge_id(f"{user_id}-adaptive", now),
            user_id=user_id,
            nudge_text=nudge_text,
            nudge_type="adaptive",
            generated_at=now,
            module_id=state.module_id,
            protocol_id=protocol.id,
            source=NUDGE_SOURCE_ADAPTIVE,
            confidence=candidate.score.to_dict(),
            why=why,
        )
        created = await self.context.nudges.upsert_nudge(record)

        payload: dict[str, Any] = {
            "nudge_id": record.id,
            "module_id": state.module_id,
            "protocol_id": protocol.id,
            "model": getattr(self.context.openai, "completion_model", None),
            "system_prompt": SYSTEM_PROMPT,
            "user_prompt": user_prompt,
            "response": response,
            "confidence": candidate.score.to_dict(),
            "memory_ids": [m.id for m in state.memories],
            "suppression": suppression.to_dict(),
            "mvd_type": mvd_state.mvd_type.value if mvd_state.mvd_type else None,
            "created": created,
        }

        if not scan.safe:
            payload.update(
                {
                    "fallback_text": nudge_text,
                    "safety_reason": scan.reason,
                    "flagged_keywords": scan.flagged_keywords,
                    "severity": scan.severity,
                }
            )
            await self.context.audit.append("nudge_safety_flagged", payload, user_id=user_id)
            logger.warning(
                "Generated nudge failed safety scan, fallback used",
                user_id=user_id,
                protocol_id=protocol.id,
                severity=scan.severity,
            )
            return UserNudgeResult(
                user_id,
                NudgeOutcome.SAFETY_FLAGGED,
                nudge_id=record.id,
                protocol_id=protocol.id,
                reason=scan.reason,
            )

        payload["why"] = why
        await self.context.audit.append("nudge_generated", payload, user_id=user_id)
        logger.info(
            "Nudge generated",
            user_id=user_id,
            protocol_id=protocol.id,
            confidence=candidate.score.overall,
            created=created,
        )
        return UserNudgeResult(
            user_id, NudgeOutcome.DELIVERED, nudge_id=record.id, protocol_id=protocol.id
        )

    # =================================================================
    # AUDIT HELPERS
    # =================================================================

    async def _record_suppression(
        self,
        user_id: str,
        state: _UserState,
        candidate: NudgeCandidate,
        mvd_state: MVDState,
        suppression: SuppressionResult,
    ) -> None:
        await self.context.audit.append(
            "nudge_suppressed",
            {
                "module_id": state.module_id,
                "protocol_id": candidate.protocol.id,
                "rule": suppression.suppressed_by.value,
                "reason": suppression.reason,
                "confidence": candidate.score.overall,
                "suppression": suppression.to_dict(),
                "mvd_active": mvd_state.mvd_active,
                "mvd_type": mvd_state.mvd_type.value if mvd_state.mvd_type else None,
                "local_hour": state.local_hour,
            },
            user_id=user_id,
        )
        logger.info(
            "Nudge suppressed",
            user_id=user_id,
            protocol_id=candidate.protocol.id,
            rule=suppression.suppressed_by.value,
            reason=suppression.reason,
        )

    async def _record_failure(self, user_id: str, error: str, stage: str, now: datetime) -> None:
        logger.warning("Nudge generation failed for user", user_id=user_id, error=error, stage=stage)
        await self.context.audit.append(
            "nudge_generation_failed",
            {"error": error, "stage": stage, "run_timestamp": now.isoformat()},
            user_id=user_id,
        )
