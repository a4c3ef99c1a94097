from .engine import SuppressionEvaluator
from .rules import SUPPRESSION_RULES, parse_quiet_hour
from .types import NudgePriority, RuleId, SuppressionContext, SuppressionResult

__all__ = [
    "NudgePriority",
    "RuleId",
    "SUPPRESSION_RULES",
    "SuppressionContext",
    "SuppressionEvaluator",
    "SuppressionResult",
    "parse_quiet_hour",
]
