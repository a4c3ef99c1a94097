"""
Confidence scorer - weighs one candidate protocol against a user's context.

Each factor is scored in [0, 1] and combined with fixed weights. Hard
incompatibilities set should_suppress independently of the numeric score;
selection treats that flag as an exclusion filter.
"""

from wellness_os.features.memory.types import MemoryType, ScoredMemory
from wellness_os.infrastructure.observability.logging import get_logger
from wellness_os.models.domain.protocol_domain import Protocol, ProtocolCategory

from .types import (
    CATEGORY_TIME_MAPPING,
    CONFIDENCE_WEIGHTS,
    CONTRAINDICATED_RECOVERY,
    EVIDENCE_SCORES,
    GOAL_KEYWORDS,
    GOAL_MODULE_MAPPING,
    HIGH_EXERTION_KEYWORDS,
    HIGH_READINESS_RECOVERY,
    LOW_CONFIDENCE_THRESHOLD,
    LOW_READINESS_HRV_DEVIATION,
    LOW_READINESS_RECOVERY,
    ConfidenceScore,
    NudgeCandidate,
    ScoringContext,
)

logger = get_logger(__name__)

REJECTION_FEEDBACK = ("dismissed",)
REJECTION_PREFERENCE = ("hate", "dislike", "avoid")

CONSTRAINT_PENALTIES = (
    # (constraint phrase(s), protocol name keyword, penalty)
    (("no gym",), "gym", 0.4),
    (("cold", "can't"), "cold", 0.4),
    (("no caffeine",), "caffeine", 0.4),
    (("no supplement",), "supplement", 0.3),
)


def time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def is_high_exertion(protocol: Protocol) -> bool:
    name = protocol.name.lower()
    return any(keyword in name for keyword in HIGH_EXERTION_KEYWORDS)


def _mentions_protocol(memory: ScoredMemory, protocol: Protocol) -> bool:
    content = memory.content.lower()
    return (
        memory.source_protocol_id == protocol.id
        or protocol.id.lower() in content
        or (bool(protocol.name) and protocol.name.lower() in content)
    )


class ConfidenceScorer:
    """Pure scorer; holds no state between calls."""

    def __init__(self, weights: dict[str, float] | None = None):
        self.weights = weights or CONFIDENCE_WEIGHTS

    def score(self, context: ScoringContext) -> ConfidenceScore:
        """
        Score one candidate. Never raises.

        An internal failure yields a zero score flagged for suppression so the
        candidate is excluded rather than the user's run aborted.
        """
        try:
            return self._score(context)
        except Exception as e:
            logger.error(
                "Confidence scoring failed",
                user_id=context.user_id,
                protocol_id=getattr(context.protocol, "id", None),
                error=str(e),
                error_type=type(e).__name__,
            )
            return ConfidenceScore(
                overall=0.0,
                factors={name: 0.0 for name in self.weights},
                should_suppress=True,
                reasoning=f"Scoring failed: {type(e).__name__}",
                suppress_reason="scoring_error",
            )

    def select_best(self, candidates: list[NudgeCandidate]) -> NudgeCandidate | None:
        """Highest overall among candidates not flagged should_suppress."""
        eligible = [c for c in candidates if not c.score.should_suppress]
        if not eligible:
            return None
        return max(eligible, key=lambda c: c.score.overall)

    def _score(self, context: ScoringContext) -> ConfidenceScore:
        factors = {
            "protocol_fit": self._protocol_fit(context),
            "memory_support": self._memory_support(context),
            "timing_fit": self._timing_fit(context),
            "conflict_risk": self._conflict_risk(context),
            "evidence_strength": self._evidence_strength(context),
        }

        overall = sum(factors[name] * weight for name, weight in self.weights.items())
        overall = round(max(0.0, min(1.0, overall)), 2)

        suppress_reason = self._hard_exclusion(context)

        return ConfidenceScore(
            overall=overall,
            factors={name: round(value, 3) for name, value in factors.items()},
            should_suppress=suppress_reason is not None,
            reasoning=self._reasoning(factors, overall, context, suppress_reason),
            suppress_reason=suppress_reason,
        )

    # =================================================================
    # FACTORS
    # =================================================================

    def _protocol_fit(self, context: ScoringContext) -> float:
        if context.module_id in GOAL_MODULE_MAPPING.get(context.primary_goal, []):
            return 1.0

        protocol = context.protocol
        haystack = f"{protocol.name} {protocol.benefits} {protocol.description}".lower()
        if any(kw in haystack for kw in GOAL_KEYWORDS.get(context.primary_goal, [])):
            return 0.7

        return 0.3

    def _memory_support(self, context: ScoringContext) -> float:
        if not context.memories:
            return 0.5

        positive = 0.0
        negative = 0.0
        total_weight = 0.0

        for memory in context.memories:
            weight = memory.confidence * memory.relevance_score
            total_weight += weight
            content = memory.content.lower()
            related = _mentions_protocol(memory, context.protocol)
            multiplier = 2.0 if related else 1.0

            if memory.type is MemoryType.PROTOCOL_EFFECTIVENESS:
                if "high effectiveness" in content or "works well" in content:
                    positive += weight * multiplier * 1.5
                elif "low effectiveness" in content or "not effective" in content:
                    negative += weight * multiplier * 1.5
                else:
                    positive += weight * multiplier * 0.5
            elif memory.type is MemoryType.NUDGE_FEEDBACK:
                if "completed" in content:
                    positive += weight * multiplier
                elif "dismissed" in content:
                    negative += weight * multiplier * 1.2
                elif "snoozed" in content:
                    negative += weight * multiplier * 0.3
            elif memory.type is MemoryType.STATED_PREFERENCE:
                if any(word in content for word in REJECTION_PREFERENCE):
                    negative += weight * multiplier * 2.0
                elif any(word in content for word in ("like", "prefer", "love")):
                    positive += weight * multiplier * 1.5
            elif memory.type is MemoryType.PREFERENCE_CONSTRAINT:
                if related:
                    negative += weight * 3.0
            elif memory.type is MemoryType.PREFERRED_TIME:
                positive += weight * 0.3
            elif memory.type is MemoryType.PATTERN_DETECTED:
                positive += weight * 0.2

        if total_weight == 0:
            return 0.5

        net = (positive - negative) / (total_weight + 1)
        return max(0.1, min(0.9, 0.5 + net * 0.4))

    def _timing_fit(self, context: ScoringContext) -> float:
        protocol = context.protocol
        tod = context.time_of_day
        name = protocol.name.lower()
        score = 0.5

        if tod in CATEGORY_TIME_MAPPING.get(protocol.category, ("morning", "afternoon", "evening")):
            score += 0.25
        else:
            score -= 0.15

        if tod == "morning":
            if any(cue in name for cue in ("morning", "light", "caffeine")):
                score += 0.2
            if "evening" in name or "sleep" in name:
                score -= 0.2
        elif tod in ("evening", "night"):
            if any(cue in name for cue in ("evening", "sleep", "nsdr")):
                score += 0.2
            if "morning" in name or "caffeine" in name:
                score -= 0.3

        if self._low_readiness(context):
            is_recovery = protocol.category is ProtocolCategory.RECOVERY or any(
                cue in name for cue in ("nsdr", "breathing", "recovery")
            )
            if is_recovery:
                score += 0.15
            if is_high_exertion(protocol):
                score -= 0.2
        elif (
            context.recovery_score is not None
            and context.recovery_score > HIGH_READINESS_RECOVERY
            and protocol.category is ProtocolCategory.PERFORMANCE
        ):
            score += 0.1

        return max(0.0, min(1.0, score))

    def _conflict_risk(self, context: ScoringContext) -> float:
        protocol = context.protocol
        name = protocol.name.lower()
        penalty = 0.0

        for memory in context.memories:
            if memory.type is not MemoryType.PREFERENCE_CONSTRAINT:
                continue
            content = memory.content.lower()
            for phrases, keyword, amount in CONSTRAINT_PENALTIES:
                if all(p in content for p in phrases) and keyword in name:
                    penalty += amount

        # Novelty: repeats of the same category and known pairings are penalized
        for other in context.sibling_protocols:
            if other.id == protocol.id:
                continue
            other_name = other.name.lower()
            if other.category is protocol.category:
                penalty += 0.1
            if ("caffeine" in name and "sleep" in other_name) or (
                "sleep" in name and "caffeine" in other_name
            ):
                penalty += 0.3
            if ("cold" in name and "fitness" in other_name) or (
                "fitness" in name and "cold" in other_name
            ):
                penalty += 0.15

        return max(0.1, 1.0 - penalty)

    def _evidence_strength(self, context: ScoringContext) -> float:
        level = context.protocol.evidence_level
        return EVIDENCE_SCORES.get(level or "High", EVIDENCE_SCORES["High"])

    # =================================================================
    # HARD EXCLUSIONS
    # =================================================================

    def _hard_exclusion(self, context: ScoringContext) -> str | None:
        protocol = context.protocol

        for memory in context.memories:
            if not _mentions_protocol(memory, protocol):
                continue
            content = memory.content.lower()
            if memory.type is MemoryType.PREFERENCE_CONSTRAINT:
                return "user_constraint"
            if memory.type is MemoryType.NUDGE_FEEDBACK and any(
                word in content for word in REJECTION_FEEDBACK
            ):
                return "prior_rejection"
            if memory.type is MemoryType.STATED_PREFERENCE and any(
                word in content for word in REJECTION_PREFERENCE
            ):
                return "prior_rejection"

        if (
            context.recovery_score is not None
            and context.recovery_score < CONTRAINDICATED_RECOVERY
            and is_high_exertion(protocol)
        ):
            return "contraindicated_low_recovery"

        return None

    def _low_readiness(self, context: ScoringContext) -> bool:
        if context.recovery_score is not None and context.recovery_score < LOW_READINESS_RECOVERY:
            return True
        return (
            context.hrv_deviation is not None
            and context.hrv_deviation <= LOW_READINESS_HRV_DEVIATION
        )

    def _reasoning(
        self,
        factors: dict[str, float],
        overall: float,
        context: ScoringContext,
        suppress_reason: str | None,
    ) -> str:
        pct = f"{overall * 100:.0f}%"
        if overall >= 0.7:
            parts = [f"High confidence ({pct})."]
        elif overall >= 0.5:
            parts = [f"Moderate confidence ({pct})."]
        elif overall >= LOW_CONFIDENCE_THRESHOLD:
            parts = [f"Low confidence ({pct})."]
        else:
            parts = [f"Below confidence floor ({pct})."]

        notes = []
        if factors["protocol_fit"] >= 0.8:
            notes.append("strong goal alignment")
        elif factors["protocol_fit"] < 0.4:
            notes.append("weak goal alignment")
        if factors["memory_support"] >= 0.7:
            notes.append("positive past feedback")
        elif factors["memory_support"] < 0.4:
            notes.append("negative past feedback")
        if factors["timing_fit"] >= 0.7:
            notes.append("optimal timing")
        elif factors["timing_fit"] < 0.4:
            notes.append("suboptimal timing")
        if factors["conflict_risk"] < 0.5:
            notes.append("potential conflicts")
        if factors["evidence_strength"] >= 0.9:
            notes.append("very high evidence")
        if notes:
            parts.append(f"Factors: {', '.join(notes)}.")

        parts.append(f"Protocol: {context.protocol.name}.")
        if context.memories:
            parts.append(f"Based on {len(context.memories)} relevant memories.")
        if suppress_reason:
            parts.append(f"Excluded: {suppress_reason}.")

        return " ".join(parts)
