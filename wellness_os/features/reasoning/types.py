from dataclasses import dataclass, field

from wellness_os.features.memory.types import ScoredMemory
from wellness_os.models.domain.protocol_domain import Protocol, ProtocolCategory

CONFIDENCE_WEIGHTS: dict[str, float] = {
    "protocol_fit": 0.25,
    "memory_support": 0.25,
    "timing_fit": 0.2,
    "conflict_risk": 0.15,
    "evidence_strength": 0.15,
}

EVIDENCE_SCORES: dict[str, float] = {
    "Very High": 1.0,
    "High": 0.8,
    "Moderate": 0.6,
    "Emerging": 0.4,
}

# Reference point for the reasoning text; delivery gating lives in suppression
LOW_CONFIDENCE_THRESHOLD = 0.4

GOAL_MODULE_MAPPING: dict[str, list[str]] = {
    "better_sleep": ["sleep_optimization", "recovery", "stress_management"],
    "more_energy": ["energy_optimization", "morning_routine", "performance"],
    "sharper_focus": ["cognitive_performance", "focus_optimization", "performance"],
    "faster_recovery": ["recovery", "stress_management", "sleep_optimization"],
}

GOAL_KEYWORDS: dict[str, list[str]] = {
    "better_sleep": ["sleep", "evening", "recovery", "melatonin", "light", "nsdr"],
    "more_energy": ["morning", "energy", "caffeine", "light", "exercise", "hydration"],
    "sharper_focus": ["focus", "cognitive", "attention", "caffeine", "nsdr"],
    "faster_recovery": ["recovery", "nsdr", "breathing", "cold", "hrv", "sleep"],
}

CATEGORY_TIME_MAPPING: dict[ProtocolCategory, tuple[str, ...]] = {
    ProtocolCategory.FOUNDATION: ("morning", "evening"),
    ProtocolCategory.PERFORMANCE: ("morning", "afternoon"),
    ProtocolCategory.RECOVERY: ("afternoon", "evening", "night"),
    ProtocolCategory.OPTIMIZATION: ("morning", "afternoon", "evening"),
    ProtocolCategory.META: ("morning", "evening"),
}

HIGH_EXERTION_KEYWORDS = ("fitness", "workout", "hiit", "gym", "sprint", "training", "cold plunge")

# Below this readiness a high-exertion protocol is contraindicated outright
CONTRAINDICATED_RECOVERY = 20.0

LOW_READINESS_RECOVERY = 40.0
HIGH_READINESS_RECOVERY = 70.0
LOW_READINESS_HRV_DEVIATION = -15.0


@dataclass(slots=True)
class ScoringContext:
    user_id: str
    primary_goal: str
    module_id: str
    time_of_day: str
    protocol: Protocol
    memories: list[ScoredMemory] = field(default_factory=list)
    sibling_protocols: list[Protocol] = field(default_factory=list)
    recovery_score: float | None = None
    hrv_deviation: float | None = None


@dataclass(frozen=True, slots=True)
class ConfidenceScore:
    overall: float
    factors: dict[str, float]
    should_suppress: bool
    reasoning: str
    suppress_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "factors": dict(self.factors),
            "should_suppress": self.should_suppress,
            "suppress_reason": self.suppress_reason,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True, slots=True)
class NudgeCandidate:
    protocol: Protocol
    score: ConfidenceScore
