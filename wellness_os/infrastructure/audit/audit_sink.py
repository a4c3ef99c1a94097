"""
AuditSink - single append-only entry point for decision audit records.

Every component that makes a user-affecting decision (nudge generated,
suppressed, safety-flagged, failed; MVD activated/deactivated; streak
preserved/reset) reports it through `append(decision_type, payload)`.

Usage:
    await context.audit.append(
        "nudge_suppressed",
        {"rule": "quiet_hours", "reason": "Local hour 23 is in quiet hours"},
        user_id=user_id,
    )

Design Principles:
- Write to both structured logs (searchable) and the ai_audit_log table (immutable)
- Never fail the job if audit logging fails
- Carry enough context to reconstruct why a decision was made
"""

import json
from datetime import UTC, datetime
from typing import Any, Protocol

from wellness_os.db.pool import DatabasePoolManager
from wellness_os.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DECISION_TYPES = frozenset(
    {
        "nudge_generated",
        "nudge_suppressed",
        "nudge_safety_flagged",
        "nudge_generation_failed",
        "mvd_activated",
        "mvd_deactivated",
        "streak_preserved",
        "streak_reset",
    }
)


class AuditSink(Protocol):
    async def append(
        self, decision_type: str, payload: dict[str, Any], user_id: str | None = None
    ) -> bool: ...


class PostgresAuditSink:
    """
    Audit sink backed by the append-only ai_audit_log table.

    Logs to stdout first, then inserts. Returns False instead of raising so a
    broken audit path never aborts a user's pipeline.
    """

    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def append(
        self, decision_type: str, payload: dict[str, Any], user_id: str | None = None
    ) -> bool:
        """
        Record one decision.

        Args:
            decision_type: One of DECISION_TYPES
            payload: JSON-serializable decision context
            user_id: User the decision applies to, if any

        Returns:
            True if persisted, False if the database write failed (never raises)
        """
        if decision_type not in DECISION_TYPES:
            logger.warning("Unknown audit decision type", decision_type=decision_type)

        logger.info(
            "Audit event",
            decision_type=decision_type,
            user_id=user_id,
            payload_keys=sorted(payload.keys()),
        )

        created_at = datetime.now(UTC)
        try:
            async with self.pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO ai_audit_log (user_id, decision_type, payload, created_at)
                    VALUES (%s, %s, %s::jsonb, %s)
                    """,
                    (user_id, decision_type, json.dumps(payload, default=str), created_at),
                )
            return True

        except Exception as e:
            # Never fail the run due to audit logging, but log enough to recreate the row
            logger.error(
                "CRITICAL: Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                decision_type=decision_type,
                user_id=user_id,
                fallback_data={
                    "user_id": user_id,
                    "decision_type": decision_type,
                    "payload": json.dumps(payload, default=str),
                    "timestamp": created_at.isoformat(),
                },
            )
            return False
