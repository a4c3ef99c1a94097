from datetime import UTC, datetime

from wellness_os.features.memory.types import Memory, MemoryType, ScoredMemory
from wellness_os.features.reasoning.types import ConfidenceScore
from wellness_os.features.reasoning.why_engine import (
    build_why,
    confidence_level,
    extract_mechanism,
    parse_doi,
)
from wellness_os.models.domain.protocol_domain import Protocol

SCORE = ConfidenceScore(
    overall=0.82,
    factors={"protocol_fit": 1.0, "memory_support": 0.5, "timing_fit": 0.9},
    should_suppress=False,
    reasoning="",
)


def _scored(content: str, mtype: MemoryType, protocol_id: str | None = None) -> ScoredMemory:
    memory = Memory(
        id="mem-1",
        user_id="user-1",
        type=mtype,
        content=content,
        confidence=0.7,
        created_at=datetime(2025, 3, 1, tzinfo=UTC),
        source_protocol_id=protocol_id,
    )
    return ScoredMemory(memory=memory, relevance_score=0.7)


def test_mechanism_keeps_two_sentences_and_caps_length():
    assert extract_mechanism("One. Two! Three?") == "One. Two!"
    assert extract_mechanism("") == "Supports your daily routine."

    long = extract_mechanism("x" * 400)
    assert len(long) == 250
    assert long.endswith("...")


def test_parse_doi():
    assert parse_doi("Huberman 2021. doi: 10.1038/s41586-021-03283-z") == "10.1038/s41586-021-03283-z"
    assert parse_doi("Expert consensus, no DOI") is None


def test_confidence_levels():
    assert confidence_level(0.71) == "High"
    assert confidence_level(0.7) == "Medium"
    assert confidence_level(0.4) == "Medium"
    assert confidence_level(0.39) == "Low"


def test_why_cites_related_history_and_evidence():
    protocol = Protocol(
        id="proto_morning_light",
        name="Morning Light",
        category="Foundation",
        description="Light anchors the circadian clock. It raises morning cortisol. Extra detail.",
        citations=["Blume 2019, doi:10.1007/s13295-019-00024-1"],
    )
    memories = [_scored("Morning light raised your energy 3 days running.", MemoryType.PROTOCOL_EFFECTIVENESS, protocol.id)]

    why = build_why(protocol, SCORE, memories)

    assert why["mechanism"] == "Light anchors the circadian clock. It raises morning cortisol."
    assert why["evidence"]["doi"] == "10.1007/s13295-019-00024-1"
    assert why["evidence"]["strength"] == "High"
    assert why["your_data"] == "From your history: Morning light raised your energy 3 days running."
    assert why["confidence"]["level"] == "High"
    assert "protocol fit" in why["confidence"]["explanation"]


def test_why_without_personal_data():
    protocol = Protocol(id="p1", name="Box Breathing", category="Recovery")
    memories = [_scored("Prefers short sessions", MemoryType.STATED_PREFERENCE)]

    why = build_why(protocol, SCORE, memories)

    assert why["evidence"] == {"citation": None, "doi": None, "strength": "High"}
    assert why["your_data"] == "We'll personalize this as you log more days."
