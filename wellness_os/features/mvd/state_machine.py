"""
MVD state machine: Normal <-> MVDActive{type}.

Per cycle the exit check runs first, judged by the trigger that started the
MVD; activation is only considered when the user is not active afterwards.
Re-entrant activation is a no-op: no write, no audit event, activated_at
unchanged.
"""

from datetime import datetime

from wellness_os.errors import StateConflictError
from wellness_os.infrastructure.audit import AuditSink
from wellness_os.infrastructure.observability.logging import get_logger

from .detector import MVDDetector, ThresholdMVDDetector
from .protocols import MVD_DESCRIPTIONS
from .repository import MVDStateRepository
from .types import MVDEvaluation, MVDSignals, MVDState

logger = get_logger(__name__)


class MVDStateMachine:
    def __init__(
        self,
        repository: MVDStateRepository,
        audit: AuditSink,
        detector: MVDDetector | None = None,
    ):
        self.repository = repository
        self.audit = audit
        self.detector = detector or ThresholdMVDDetector()

    async def evaluate(self, user_id: str, signals: MVDSignals, now: datetime) -> MVDEvaluation:
        """Exit check, then activation check. Callers hold the user's lock."""
        state = await self.repository.get_state(user_id) or MVDState.inactive(user_id)
        exited = False

        if state.mvd_active:
            exit_reason = self.detector.exit_reason(state, signals, now)
            if exit_reason is None:
                await self.repository.touch(user_id, now)
                return MVDEvaluation(state=state, reason="MVD already active")

            state, exited = await self._exit(state, signals, exit_reason, now)
            if state.mvd_active:
                return MVDEvaluation(state=state, reason="MVD already active")

        return await self._maybe_activate(user_id, signals, now, exited)

    async def _exit(
        self, state: MVDState, signals: MVDSignals, reason: str, now: datetime
    ) -> tuple[MVDState, bool]:
        try:
            await self.repository.deactivate(state.user_id, reason, now)
        except StateConflictError:
            # Another run already exited; re-read to decide activation on fresh state
            logger.info("MVD exit lost race, treating as no-op", user_id=state.user_id)
            fresh = await self.repository.get_state(state.user_id)
            return fresh or MVDState.inactive(state.user_id), False

        await self.audit.append(
            "mvd_deactivated",
            {
                "previous_type": state.mvd_type.value if state.mvd_type else None,
                "previous_trigger": state.trigger.value if state.trigger else None,
                "activated_at": state.activated_at.isoformat() if state.activated_at else None,
                "recovery_score": signals.recovery_score,
                "reason": reason,
            },
            user_id=state.user_id,
        )
        logger.info("MVD deactivated", user_id=state.user_id, reason=reason)
        return MVDState(user_id=state.user_id, last_checked_at=now), True

    async def _maybe_activate(
        self, user_id: str, signals: MVDSignals, now: datetime, exited: bool
    ) -> MVDEvaluation:
        detection = self.detector.detect(signals, now)
        if not detection.should_activate:
            return MVDEvaluation(
                state=MVDState(user_id=user_id, last_checked_at=now),
                exited=exited,
                reason=detection.reason,
            )

        try:
            state = await self.repository.activate(
                user_id,
                detection.mvd_type,
                detection.trigger,
                detection.exit_condition or "",
                now,
            )
        except StateConflictError:
            logger.info("MVD activation lost race, treating as no-op", user_id=user_id)
            state = await self.repository.get_state(user_id) or MVDState.inactive(user_id)
            return MVDEvaluation(state=state, exited=exited, reason="MVD already active")

        await self.audit.append(
            "mvd_activated",
            {
                "mvd_type": detection.mvd_type.value,
                "trigger": detection.trigger.value,
                "reason": detection.reason,
                "exit_condition": detection.exit_condition,
                "description": MVD_DESCRIPTIONS[detection.mvd_type],
                "recovery_score": signals.recovery_score,
            },
            user_id=user_id,
        )
        logger.info(
            "MVD activated",
            user_id=user_id,
            mvd_type=detection.mvd_type.value,
            trigger=detection.trigger.value,
        )
        return MVDEvaluation(state=state, activated=True, exited=exited, reason=detection.reason)
