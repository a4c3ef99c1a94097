"""
Suppression rules in fixed precedence order.

Each check returns a reason string when the rule matches, None otherwise.
"""

from collections.abc import Callable
from dataclasses import dataclass

from .types import (
    CONFIDENCE_FLOOR,
    COOLDOWN_MINUTES,
    DAILY_CAP,
    FATIGUE_DISMISSALS,
    LOW_RECOVERY_THRESHOLD,
    MEETING_HOURS_THRESHOLD,
    NudgePriority,
    RuleId,
    SuppressionContext,
)


@dataclass(frozen=True, slots=True)
class SuppressionRule:
    id: RuleId
    description: str
    check: Callable[[SuppressionContext], str | None]
    overridable_by: frozenset[NudgePriority] = frozenset()


def parse_quiet_hour(value: str | None, default: int) -> int:
    """'HH:MM' -> hour; anything unparseable falls back to the default."""
    if not value:
        return default
    try:
        hour = int(str(value).split(":")[0])
    except ValueError:
        return default
    return hour if 0 <= hour <= 23 else default


def in_quiet_hours(hour: int, start: int, end: int) -> bool:
    if start == end:
        return False
    if start > end:
        # Wraps midnight, e.g. 22 -> 6
        return hour >= start or hour < end
    return start <= hour < end


def _quiet_hours(ctx: SuppressionContext) -> str | None:
    if ctx.is_morning_anchor:
        return None
    if in_quiet_hours(ctx.local_hour, ctx.quiet_hours_start, ctx.quiet_hours_end):
        return f"Quiet hours ({ctx.quiet_hours_start}:00-{ctx.quiet_hours_end}:00)"
    return None


def _daily_cap(ctx: SuppressionContext) -> str | None:
    if ctx.is_morning_anchor:
        return None
    if ctx.nudges_delivered_today >= DAILY_CAP:
        return f"Daily cap ({DAILY_CAP}) reached"
    return None


def _cooldown(ctx: SuppressionContext) -> str | None:
    if ctx.last_delivered_at is None:
        return None
    elapsed = (ctx.now - ctx.last_delivered_at).total_seconds() / 60
    if elapsed < COOLDOWN_MINUTES:
        remaining = int(COOLDOWN_MINUTES - elapsed)
        return f"{COOLDOWN_MINUTES // 60}-hour cooldown not elapsed ({remaining} min remaining)"
    return None


def _fatigue(ctx: SuppressionContext) -> str | None:
    if ctx.nudge_priority is NudgePriority.CRITICAL:
        return None
    if ctx.dismissals_today >= FATIGUE_DISMISSALS:
        return f"{ctx.dismissals_today} dismissals today - pausing until tomorrow"
    return None


def _meeting_awareness(ctx: SuppressionContext) -> str | None:
    if ctx.meeting_hours_today >= MEETING_HOURS_THRESHOLD:
        return f"{ctx.meeting_hours_today:g} meeting hours today"
    return None


def _low_recovery(ctx: SuppressionContext) -> str | None:
    if ctx.recovery_score > LOW_RECOVERY_THRESHOLD:
        return None
    if ctx.is_morning_anchor or ctx.is_mvd_approved:
        return None
    return f"Recovery {ctx.recovery_score:g}% (<={LOW_RECOVERY_THRESHOLD:g}%) - essentials only"


def _mvd_gate(ctx: SuppressionContext) -> str | None:
    if not ctx.mvd_active or ctx.is_mvd_approved:
        return None
    mvd_type = ctx.mvd_type.value if ctx.mvd_type else "unknown"
    return f"MVD ({mvd_type}) active - protocol not in approved set"


def _confidence_floor(ctx: SuppressionContext) -> str | None:
    if ctx.confidence < CONFIDENCE_FLOOR:
        return f"Confidence {ctx.confidence * 100:.0f}% (<{CONFIDENCE_FLOOR * 100:.0f}%)"
    return None


SUPPRESSION_RULES: tuple[SuppressionRule, ...] = (
    SuppressionRule(RuleId.QUIET_HOURS, "No nudges during quiet hours", _quiet_hours),
    SuppressionRule(RuleId.DAILY_CAP, "At most 5 nudges per day", _daily_cap),
    SuppressionRule(
        RuleId.COOLDOWN,
        "Two hours between nudges",
        _cooldown,
        overridable_by=frozenset({NudgePriority.CRITICAL}),
    ),
    SuppressionRule(RuleId.FATIGUE_DETECTION, "Pause after repeated dismissals", _fatigue),
    SuppressionRule(
        RuleId.MEETING_AWARENESS,
        "Hold standard nudges on heavy meeting days",
        _meeting_awareness,
        overridable_by=frozenset({NudgePriority.CRITICAL, NudgePriority.ADAPTIVE}),
    ),
    SuppressionRule(RuleId.LOW_RECOVERY_GUARD, "Essentials only on low recovery", _low_recovery),
    SuppressionRule(RuleId.MVD_GATE, "Only MVD-approved protocols while MVD is active", _mvd_gate),
    SuppressionRule(RuleId.CONFIDENCE_FLOOR, "Minimum confidence", _confidence_floor),
)
