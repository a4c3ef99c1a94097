from datetime import UTC, datetime, timedelta

import pytest

from tests.conftest import InMemoryMemoryStore
from wellness_os.features.memory.ranking import (
    decay_confidence,
    decayed_through,
    effective_decay_rate,
    rank_memories,
    relevance_score,
    select_for_pruning,
)
from wellness_os.features.memory.types import (
    MAX_MEMORIES_PER_USER,
    Memory,
    MemoryFilter,
    MemoryType,
)

NOW = datetime(2025, 3, 10, 14, 0, tzinfo=UTC)


def _memory(mid: str, mtype: MemoryType = MemoryType.PATTERN_DETECTED, **overrides) -> Memory:
    values = {
        "id": mid,
        "user_id": "user-1",
        "type": mtype,
        "content": "walks after lunch",
        "confidence": 0.5,
        "created_at": NOW - timedelta(days=3),
    }
    values.update(overrides)
    return Memory(**values)


def test_protocol_and_time_matches_boost_relevance():
    memory = _memory("m1", content="NSDR in the afternoon helps", source_protocol_id="proto_nsdr")
    memory_filter = MemoryFilter(protocol_id="proto_nsdr", time_of_day="afternoon")

    assert relevance_score(memory, memory_filter, NOW) == pytest.approx(0.5 * 1.5 * 1.3)


def test_relevance_is_capped_at_one():
    memory = _memory("m1", confidence=0.9, source_protocol_id="p1", evidence_count=8)

    assert relevance_score(memory, MemoryFilter(protocol_id="p1"), NOW) == 1.0


def test_recent_use_boosts_and_stale_use_penalizes():
    fresh = _memory("m1", last_used_at=NOW - timedelta(days=2))
    stale = _memory("m2", last_used_at=NOW - timedelta(days=45))

    assert relevance_score(fresh, MemoryFilter(), NOW) == pytest.approx(0.6)
    assert relevance_score(stale, MemoryFilter(), NOW) == pytest.approx(0.4)


def test_rank_drops_expired_and_low_confidence_and_breaks_ties_by_type():
    memories = [
        _memory("pattern", MemoryType.PATTERN_DETECTED),
        _memory("stated", MemoryType.STATED_PREFERENCE),
        _memory("weak", confidence=0.05),
        _memory("expired", expires_at=NOW - timedelta(minutes=1)),
    ]

    ranked = rank_memories(memories, MemoryFilter(), NOW, limit=10)

    assert [m.id for m in ranked] == ["stated", "pattern"]


def test_rank_respects_type_filter_and_limit():
    memories = [_memory(f"m{i}", MemoryType.NUDGE_FEEDBACK) for i in range(4)]
    memories.append(_memory("other", MemoryType.PREFERRED_TIME))

    ranked = rank_memories(
        memories, MemoryFilter(memory_types=[MemoryType.NUDGE_FEEDBACK]), NOW, limit=2
    )

    assert len(ranked) == 2
    assert all(m.type is MemoryType.NUDGE_FEEDBACK for m in ranked)


def test_decay_applies_whole_weeks_only():
    memory = _memory("m1", confidence=0.8, decay_rate=0.1, created_at=NOW - timedelta(days=15))

    assert decay_confidence(memory, NOW) == pytest.approx(0.8 * 0.9**2, abs=1e-4)
    assert decay_confidence(_memory("m2", created_at=NOW - timedelta(days=6)), NOW) is None


def test_decay_anchor_keeps_the_partial_week():
    created = NOW - timedelta(days=15)
    memory = _memory("m1", created_at=created)

    assert decayed_through(memory, NOW) == created + timedelta(days=14)
    assert decayed_through(_memory("m2", created_at=NOW - timedelta(days=6)), NOW) is None


@pytest.mark.asyncio
async def test_repeated_decay_passes_add_up_to_elapsed_weeks():
    memory = _memory("m1", confidence=0.8, decay_rate=0.1, created_at=NOW - timedelta(days=15))
    store = InMemoryMemoryStore([memory])

    assert await store.apply_memory_decay(NOW) == 1
    assert await store.apply_memory_decay(NOW + timedelta(days=6)) == 1

    assert memory.confidence == pytest.approx(0.8 * 0.9**3, abs=1e-3)
    assert memory.last_decayed_at == NOW - timedelta(days=15) + timedelta(days=21)


def test_well_evidenced_memories_decay_slower():
    assert effective_decay_rate(0.5, evidence_count=1) == 0.1
    assert effective_decay_rate(0.001, evidence_count=1) == 0.01
    assert effective_decay_rate(0.1, evidence_count=5) == pytest.approx(0.05)


def test_pruning_removes_weak_expired_and_overflow():
    memories = [
        _memory("weak", confidence=0.05),
        _memory("expired", expires_at=NOW - timedelta(days=1)),
    ]
    memories += [
        _memory(f"keep-{i}", MemoryType.STATED_PREFERENCE, confidence=0.9)
        for i in range(MAX_MEMORIES_PER_USER)
    ]
    memories.append(_memory("overflow", MemoryType.PATTERN_DETECTED, confidence=0.9))

    doomed = select_for_pruning(memories, NOW)

    assert sorted(doomed) == ["expired", "overflow", "weak"]
