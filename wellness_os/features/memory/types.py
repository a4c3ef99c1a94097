"""
Memory types and tuning constants.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class MemoryType(str, Enum):
    NUDGE_FEEDBACK = "nudge_feedback"
    PROTOCOL_EFFECTIVENESS = "protocol_effectiveness"
    PREFERRED_TIME = "preferred_time"
    STATED_PREFERENCE = "stated_preference"
    PATTERN_DETECTED = "pattern_detected"
    PREFERENCE_CONSTRAINT = "preference_constraint"


MAX_MEMORIES_PER_USER = 150
MIN_CONFIDENCE_THRESHOLD = 0.1
DEFAULT_CONFIDENCE = 0.5
DEFAULT_DECAY_RATE = 0.05  # per week
MIN_DECAY_RATE = 0.01
MAX_DECAY_RATE = 0.1
HIGH_EVIDENCE_COUNT = 5

# Lower number wins ties after relevance
TYPE_PRIORITY: dict[MemoryType, int] = {
    MemoryType.STATED_PREFERENCE: 1,
    MemoryType.PREFERENCE_CONSTRAINT: 2,
    MemoryType.PROTOCOL_EFFECTIVENESS: 3,
    MemoryType.NUDGE_FEEDBACK: 4,
    MemoryType.PREFERRED_TIME: 5,
    MemoryType.PATTERN_DETECTED: 6,
}


@dataclass(slots=True)
class Memory:
    id: str
    user_id: str
    type: MemoryType
    content: str
    confidence: float = DEFAULT_CONFIDENCE
    evidence_count: int = 1
    decay_rate: float = DEFAULT_DECAY_RATE
    created_at: datetime | None = None
    last_used_at: datetime | None = None
    last_decayed_at: datetime | None = None
    expires_at: datetime | None = None
    source_protocol_id: str | None = None


@dataclass(slots=True)
class ScoredMemory:
    memory: Memory
    relevance_score: float

    @property
    def id(self) -> str:
        return self.memory.id

    @property
    def type(self) -> MemoryType:
        return self.memory.type

    @property
    def content(self) -> str:
        return self.memory.content

    @property
    def confidence(self) -> float:
        return self.memory.confidence

    @property
    def source_protocol_id(self) -> str | None:
        return self.memory.source_protocol_id


@dataclass(slots=True)
class MemoryFilter:
    module_id: str | None = None
    protocol_id: str | None = None
    memory_types: list[MemoryType] = field(default_factory=list)
    min_confidence: float = MIN_CONFIDENCE_THRESHOLD
    time_of_day: str | None = None
