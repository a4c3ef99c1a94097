from .confidence_scorer import ConfidenceScorer, time_of_day
from .types import ConfidenceScore, NudgeCandidate, ScoringContext
from .why_engine import build_why

__all__ = [
    "ConfidenceScore",
    "ConfidenceScorer",
    "NudgeCandidate",
    "ScoringContext",
    "build_why",
    "time_of_day",
]
