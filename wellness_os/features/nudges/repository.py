"""
Postgres repository for the per-user nudge timeline (live_nudges).

Rows are inserted once under a derived id; later status changes come from
the client and are never overwritten or deleted here.
"""

import json
from datetime import datetime
from typing import Any, Protocol

from wellness_os.db.helpers import execute_query, fetch_all
from wellness_os.db.pool import DatabasePoolManager

from .types import NudgeRecord


class NudgeTimelineRepository(Protocol):
    async def get_nudges_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[NudgeRecord]: ...

    async def upsert_nudge(self, record: NudgeRecord) -> bool: ...


def _row_to_record(row: dict[str, Any]) -> NudgeRecord:
    return NudgeRecord(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        nudge_text=row.get("nudge_text") or "",
        nudge_type=row.get("nudge_type") or "adaptive",
        generated_at=row["generated_at"],
        module_id=row.get("module_id"),
        protocol_id=row.get("protocol_id"),
        status=row.get("status") or "pending",
        source=row.get("source") or "",
        confidence=row.get("confidence") or {},
        why=row.get("why") or {},
        delivered_at=row.get("delivered_at"),
        dismissed_at=row.get("dismissed_at"),
    )


class PostgresNudgeTimelineRepository:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def get_nudges_between(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[NudgeRecord]:
        rows = await fetch_all(
            self.pool,
            """
            SELECT id, user_id, nudge_text, nudge_type, generated_at, module_id, protocol_id,
                   status, source, confidence, why, delivered_at, dismissed_at
            FROM live_nudges
            WHERE user_id = %s AND generated_at >= %s AND generated_at < %s
            ORDER BY generated_at
            """,
            (user_id, start, end),
        )
        return [_row_to_record(row) for row in rows]

    async def upsert_nudge(self, record: NudgeRecord) -> bool:
        """Insert under the derived id; an existing row is left untouched. Returns True if new."""
        inserted = await execute_query(
            self.pool,
            """
            INSERT INTO live_nudges (
                id, user_id, nudge_text, nudge_type, generated_at, module_id, protocol_id,
                status, source, confidence, why
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb)
            ON CONFLICT (id) DO NOTHING
            """,
            (
                record.id,
                record.user_id,
                record.nudge_text,
                record.nudge_type,
                record.generated_at,
                record.module_id,
                record.protocol_id,
                record.status,
                record.source,
                json.dumps(record.confidence, default=str),
                json.dumps(record.why, default=str),
            ),
        )
        return inserted > 0
