"""
Suppression evaluator - ordered, short-circuiting rule chain.

The first matching rule decides and is the one reported. A rule the nudge's
priority may override is recorded as overridden and evaluation continues.
"""

from .rules import SUPPRESSION_RULES, SuppressionRule
from .types import SuppressionContext, SuppressionResult


class SuppressionEvaluator:
    def __init__(self, rules: tuple[SuppressionRule, ...] = SUPPRESSION_RULES):
        self.rules = rules

    def evaluate(self, context: SuppressionContext) -> SuppressionResult:
        checked: list[str] = []
        overridden = None

        for rule in self.rules:
            checked.append(rule.id.value)
            reason = rule.check(context)
            if reason is None:
                continue

            if context.nudge_priority in rule.overridable_by:
                if overridden is None:
                    overridden = rule.id
                continue

            return SuppressionResult(
                should_deliver=False,
                suppressed_by=rule.id,
                reason=reason,
                rules_checked=tuple(checked),
                was_overridden=overridden is not None,
                overridden_rule=overridden,
            )

        if overridden is not None:
            reason = f"Delivered with {context.nudge_priority.value} override of {overridden.value}"
        else:
            reason = "All suppression rules passed"

        return SuppressionResult(
            should_deliver=True,
            suppressed_by=None,
            reason=reason,
            rules_checked=tuple(checked),
            was_overridden=overridden is not None,
            overridden_rule=overridden,
        )
