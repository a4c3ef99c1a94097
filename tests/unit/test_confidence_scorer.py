from datetime import UTC, datetime

import pytest

from wellness_os.features.memory.types import Memory, MemoryType, ScoredMemory
from wellness_os.features.reasoning import (
    ConfidenceScore,
    ConfidenceScorer,
    NudgeCandidate,
    ScoringContext,
    time_of_day,
)
from wellness_os.models.domain.protocol_domain import Protocol


def _protocol(pid: str, name: str, category: str = "Optimization", **extra) -> Protocol:
    return Protocol(id=pid, name=name, category=category, **extra)


def _memory(mtype: MemoryType, content: str, protocol_id: str | None = None) -> ScoredMemory:
    memory = Memory(
        id=f"mem-{abs(hash(content)) % 1000}",
        user_id="user-1",
        type=mtype,
        content=content,
        confidence=0.8,
        created_at=datetime(2025, 3, 1, tzinfo=UTC),
        source_protocol_id=protocol_id,
    )
    return ScoredMemory(memory=memory, relevance_score=0.8)


def _context(protocol: Protocol, **overrides) -> ScoringContext:
    values = {
        "user_id": "user-1",
        "primary_goal": "more_energy",
        "module_id": "energy_optimization",
        "time_of_day": "morning",
        "protocol": protocol,
    }
    values.update(overrides)
    return ScoringContext(**values)


@pytest.mark.parametrize(
    "protocol, overrides",
    [
        (_protocol("p1", "Morning Light Exposure", "Foundation"), {}),
        (_protocol("p2", "HIIT Workout", "Performance"), {"recovery_score": 5.0}),
        (
            _protocol("p3", "Cold Plunge", "Recovery"),
            {
                "memories": [
                    _memory(MemoryType.PREFERENCE_CONSTRAINT, "can't do cold exposure", "p3"),
                    _memory(MemoryType.NUDGE_FEEDBACK, "dismissed cold plunge nudge", "p3"),
                ]
            },
        ),
        (
            _protocol("p4", "Caffeine Timing", evidence_level="Very High"),
            {
                "memories": [
                    _memory(MemoryType.PROTOCOL_EFFECTIVENESS, "high effectiveness", "p4"),
                    _memory(MemoryType.STATED_PREFERENCE, "I love caffeine timing", "p4"),
                ],
                "recovery_score": 95.0,
            },
        ),
    ],
)
def test_overall_is_bounded(protocol, overrides):
    score = ConfidenceScorer().score(_context(protocol, **overrides))

    assert 0.0 <= score.overall <= 1.0
    assert all(0.0 <= value <= 1.0 for value in score.factors.values())


def test_goal_aligned_module_scores_full_protocol_fit():
    score = ConfidenceScorer().score(_context(_protocol("p1", "Morning Light", "Foundation")))

    assert score.factors["protocol_fit"] == 1.0
    assert score.should_suppress is False


def test_prior_rejection_sets_should_suppress():
    protocol = _protocol("proto_nsdr", "NSDR Session", "Recovery")
    memories = [_memory(MemoryType.NUDGE_FEEDBACK, "User dismissed NSDR Session twice", "proto_nsdr")]

    score = ConfidenceScorer().score(_context(protocol, memories=memories))

    assert score.should_suppress is True
    assert score.suppress_reason == "prior_rejection"


def test_high_exertion_contraindicated_on_very_low_recovery():
    score = ConfidenceScorer().score(
        _context(_protocol("p-gym", "Gym Training", "Performance"), recovery_score=15.0)
    )

    assert score.should_suppress is True
    assert score.suppress_reason == "contraindicated_low_recovery"


def test_repeated_category_siblings_lower_conflict_score():
    protocol = _protocol("p1", "Box Breathing")
    siblings = [_protocol("p2", "Cold Shower"), _protocol("p3", "Gratitude Journal")]

    alone = ConfidenceScorer().score(_context(protocol))
    crowded = ConfidenceScorer().score(_context(protocol, sibling_protocols=siblings))

    assert crowded.factors["conflict_risk"] < alone.factors["conflict_risk"]


def test_scoring_failure_yields_suppressed_zero_score(monkeypatch):
    scorer = ConfidenceScorer()

    def boom(context):
        raise RuntimeError("bad data")

    monkeypatch.setattr(scorer, "_protocol_fit", boom)

    score = scorer.score(_context(_protocol("p1", "Box Breathing")))

    assert score.overall == 0.0
    assert score.should_suppress is True
    assert score.suppress_reason == "scoring_error"


def _candidate(pid: str, overall: float, suppress: bool) -> NudgeCandidate:
    return NudgeCandidate(
        protocol=_protocol(pid, pid),
        score=ConfidenceScore(
            overall=overall, factors={}, should_suppress=suppress, reasoning=""
        ),
    )


def test_select_best_excludes_suppressed_regardless_of_score():
    best = ConfidenceScorer().select_best(
        [_candidate("a", 0.99, True), _candidate("b", 0.55, False), _candidate("c", 0.6, False)]
    )

    assert best.protocol.id == "c"


def test_select_best_returns_none_when_everything_is_suppressed():
    assert ConfidenceScorer().select_best([_candidate("a", 0.9, True)]) is None
    assert ConfidenceScorer().select_best([]) is None


@pytest.mark.parametrize(
    "hour, bucket",
    [(5, "morning"), (11, "morning"), (12, "afternoon"), (17, "evening"), (21, "night"), (3, "night")],
)
def test_time_of_day_buckets(hour, bucket):
    assert time_of_day(hour) == bucket
