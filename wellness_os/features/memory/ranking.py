"""
Pure relevance, decay and pruning rules for user memories.

The Postgres store and the in-memory test store share these so ranking is
identical regardless of backend.
"""

from datetime import datetime, timedelta

from .types import (
    HIGH_EVIDENCE_COUNT,
    MAX_DECAY_RATE,
    MAX_MEMORIES_PER_USER,
    MIN_CONFIDENCE_THRESHOLD,
    MIN_DECAY_RATE,
    TYPE_PRIORITY,
    Memory,
    MemoryFilter,
    ScoredMemory,
)

RECENT_USE_WINDOW = timedelta(days=7)
STALE_USE_WINDOW = timedelta(days=30)


def relevance_score(memory: Memory, memory_filter: MemoryFilter, now: datetime) -> float:
    score = memory.confidence
    content = memory.content.lower()

    if memory_filter.protocol_id and (
        memory.source_protocol_id == memory_filter.protocol_id
        or memory_filter.protocol_id.lower() in content
    ):
        score *= 1.5

    if memory_filter.time_of_day and memory_filter.time_of_day in content:
        score *= 1.3

    if memory.last_used_at is not None:
        since_use = now - memory.last_used_at
        if since_use <= RECENT_USE_WINDOW:
            score *= 1.2
        elif since_use > STALE_USE_WINDOW:
            score *= 0.8

    if memory.evidence_count >= HIGH_EVIDENCE_COUNT:
        score *= 1.1

    return min(score, 1.0)


def matches_filter(memory: Memory, memory_filter: MemoryFilter, now: datetime) -> bool:
    if memory.confidence < memory_filter.min_confidence:
        return False
    if memory.expires_at is not None and memory.expires_at <= now:
        return False
    if memory_filter.memory_types and memory.type not in memory_filter.memory_types:
        return False
    return True


def rank_memories(
    memories: list[Memory], memory_filter: MemoryFilter, now: datetime, limit: int
) -> list[ScoredMemory]:
    """Filter, then sort by relevance, type priority and confidence."""
    scored = [
        ScoredMemory(memory=m, relevance_score=round(relevance_score(m, memory_filter, now), 4))
        for m in memories
        if matches_filter(m, memory_filter, now)
    ]
    scored.sort(
        key=lambda s: (-s.relevance_score, TYPE_PRIORITY.get(s.type, 99), -s.confidence)
    )
    return scored[:limit]


def effective_decay_rate(decay_rate: float, evidence_count: int) -> float:
    rate = max(MIN_DECAY_RATE, min(MAX_DECAY_RATE, decay_rate))
    if evidence_count >= HIGH_EVIDENCE_COUNT:
        rate /= 2
    return rate


def _whole_weeks(memory: Memory, now: datetime) -> int:
    anchor = memory.last_decayed_at or memory.created_at
    if anchor is None:
        return 0
    return (now - anchor).days // 7


def decay_confidence(memory: Memory, now: datetime) -> float | None:
    """
    New confidence after whole elapsed weeks, or None when less than a week passed.

    confidence * (1 - decay_rate) ** weeks
    """
    weeks = _whole_weeks(memory, now)
    if weeks < 1:
        return None
    rate = effective_decay_rate(memory.decay_rate, memory.evidence_count)
    return round(memory.confidence * (1 - rate) ** weeks, 4)


def decayed_through(memory: Memory, now: datetime) -> datetime | None:
    """Advance the decay anchor by the weeks just applied; the partial week carries over."""
    weeks = _whole_weeks(memory, now)
    if weeks < 1:
        return None
    return (memory.last_decayed_at or memory.created_at) + timedelta(weeks=weeks)


def select_for_pruning(memories: list[Memory], now: datetime) -> list[str]:
    """Ids to delete: expired, below the confidence floor, or beyond the per-user cap."""
    doomed = [
        m.id
        for m in memories
        if m.confidence < MIN_CONFIDENCE_THRESHOLD
        or (m.expires_at is not None and m.expires_at <= now)
    ]
    doomed_ids = set(doomed)
    survivors = [m for m in memories if m.id not in doomed_ids]
    if len(survivors) > MAX_MEMORIES_PER_USER:
        survivors.sort(key=lambda m: (TYPE_PRIORITY.get(m.type, 99), -m.confidence))
        doomed.extend(m.id for m in survivors[MAX_MEMORIES_PER_USER:])
    return doomed
