"""
Postgres-backed memory store.

Reads candidate rows with SQL filters, ranks them in Python, and runs the
nightly decay/prune maintenance as set-based statements.
"""

from datetime import datetime
from typing import Any, Protocol

from wellness_os.db.helpers import execute_query, fetch_all
from wellness_os.db.pool import DatabasePoolManager
from wellness_os.infrastructure.observability.logging import get_logger

from .ranking import rank_memories
from .types import (
    DEFAULT_CONFIDENCE,
    DEFAULT_DECAY_RATE,
    HIGH_EVIDENCE_COUNT,
    MAX_DECAY_RATE,
    MAX_MEMORIES_PER_USER,
    MIN_CONFIDENCE_THRESHOLD,
    MIN_DECAY_RATE,
    Memory,
    MemoryFilter,
    MemoryType,
    ScoredMemory,
)

logger = get_logger(__name__)

# Rows read per user before ranking; the cap keeps this bounded
CANDIDATE_FETCH_LIMIT = MAX_MEMORIES_PER_USER


class MemoryStore(Protocol):
    async def get_relevant_memories(
        self, user_id: str, memory_filter: MemoryFilter, limit: int, now: datetime
    ) -> list[ScoredMemory]: ...

    async def apply_memory_decay(self, now: datetime) -> int: ...

    async def prune_memories(self, user_id: str, now: datetime) -> int: ...

    async def list_user_ids(self) -> list[str]: ...


def _row_to_memory(row: dict[str, Any]) -> Memory:
    return Memory(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        type=MemoryType(row["type"]),
        content=row.get("content") or "",
        confidence=float(row.get("confidence") or DEFAULT_CONFIDENCE),
        evidence_count=int(row.get("evidence_count") or 1),
        decay_rate=float(row.get("decay_rate") or DEFAULT_DECAY_RATE),
        created_at=row.get("created_at"),
        last_used_at=row.get("last_used_at"),
        last_decayed_at=row.get("last_decayed_at"),
        expires_at=row.get("expires_at"),
        source_protocol_id=row.get("source_protocol_id"),
    )


class PostgresMemoryStore:
    def __init__(self, pool: DatabasePoolManager):
        self.pool = pool

    async def get_relevant_memories(
        self, user_id: str, memory_filter: MemoryFilter, limit: int, now: datetime
    ) -> list[ScoredMemory]:
        """
        Ranked memories for one user.

        Returned memories get last_used_at stamped so recency boosts reflect
        what the coach actually looked at.
        """
        clauses = ["user_id = %s", "confidence >= %s", "(expires_at IS NULL OR expires_at > %s)"]
        params: list[Any] = [user_id, memory_filter.min_confidence, now]

        if memory_filter.memory_types:
            clauses.append("type = ANY(%s)")
            params.append([t.value for t in memory_filter.memory_types])

        if memory_filter.module_id:
            clauses.append("(module_id IS NULL OR module_id = %s)")
            params.append(memory_filter.module_id)

        query = f"""
            SELECT id, user_id, type, content, confidence, evidence_count, decay_rate,
                   created_at, last_used_at, last_decayed_at, expires_at, source_protocol_id
            FROM user_memories
            WHERE {" AND ".join(clauses)}
            ORDER BY confidence DESC
            LIMIT {CANDIDATE_FETCH_LIMIT}
        """
        rows = await fetch_all(self.pool, query, tuple(params))

        memories = []
        for row in rows:
            try:
                memories.append(_row_to_memory(row))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed memory row", user_id=user_id, error=str(e))

        ranked = rank_memories(memories, memory_filter, now, limit)

        if ranked:
            await execute_query(
                self.pool,
                "UPDATE user_memories SET last_used_at = %s WHERE id = ANY(%s)",
                (now, [s.id for s in ranked]),
            )

        return ranked

    async def apply_memory_decay(self, now: datetime) -> int:
        """
        Global decay pass over memories idle for at least a week.

        Mirrors ranking.decay_confidence: whole weeks only, decay rate clamped,
        halved for well-evidenced memories. The anchor moves forward by the
        weeks applied, so a partial week counts toward the next pass.
        """
        query = """
            WITH decayable AS (
                SELECT id,
                       FLOOR(EXTRACT(EPOCH FROM (%(now)s - COALESCE(last_decayed_at, created_at)))
                             / 604800.0) AS weeks,
                       LEAST(GREATEST(decay_rate, %(min_rate)s), %(max_rate)s)
                           / CASE WHEN evidence_count >= %(high_evidence)s THEN 2 ELSE 1 END
                           AS rate
                FROM user_memories
                WHERE COALESCE(last_decayed_at, created_at) <= %(now)s - INTERVAL '7 days'
            )
            UPDATE user_memories m
            SET confidence = ROUND((m.confidence * POWER(1 - d.rate, d.weeks))::numeric, 4),
                last_decayed_at = COALESCE(m.last_decayed_at, m.created_at)
                                  + d.weeks * INTERVAL '7 days'
            FROM decayable d
            WHERE m.id = d.id AND d.weeks >= 1
        """
        params = {
            "now": now,
            "min_rate": MIN_DECAY_RATE,
            "max_rate": MAX_DECAY_RATE,
            "high_evidence": HIGH_EVIDENCE_COUNT,
        }
        decayed = await execute_query(self.pool, query, params)
        logger.info("Memory decay applied", memories_decayed=decayed)
        return decayed

    async def prune_memories(self, user_id: str, now: datetime) -> int:
        expired = await execute_query(
            self.pool,
            """
            DELETE FROM user_memories
            WHERE user_id = %s
              AND (confidence < %s OR (expires_at IS NOT NULL AND expires_at <= %s))
            """,
            (user_id, MIN_CONFIDENCE_THRESHOLD, now),
        )
        over_cap = await execute_query(
            self.pool,
            """
            DELETE FROM user_memories
            WHERE id IN (
                SELECT id FROM user_memories
                WHERE user_id = %s
                ORDER BY CASE type
                    WHEN 'stated_preference' THEN 1
                    WHEN 'preference_constraint' THEN 2
                    WHEN 'protocol_effectiveness' THEN 3
                    WHEN 'nudge_feedback' THEN 4
                    WHEN 'preferred_time' THEN 5
                    ELSE 6 END,
                    confidence DESC
                OFFSET %s
            )
            """,
            (user_id, MAX_MEMORIES_PER_USER),
        )
        pruned = expired + over_cap
        if pruned:
            logger.debug("Memories pruned", user_id=user_id, expired=expired, over_cap=over_cap)
        return pruned

    async def list_user_ids(self) -> list[str]:
        rows = await fetch_all(self.pool, "SELECT DISTINCT user_id FROM user_memories")
        return [str(row["user_id"]) for row in rows]
