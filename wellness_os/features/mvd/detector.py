"""
MVD activation heuristics.

Detection is pluggable: the state machine accepts anything with
`detect(signals, now)` and `exit_reason(state, signals, now)` methods.
ThresholdMVDDetector checks triggers in priority order: manual, travel, low
recovery, heavy calendar, consistency drop. Each trigger exits on its own
condition, so a travel or calendar MVD is not dropped just because recovery
is fine.
"""

from datetime import datetime, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .types import (
    CONSISTENCY_DAYS,
    CONSISTENCY_RECOVERY_DAYS,
    CONSISTENCY_THRESHOLD,
    HEAVY_CALENDAR_MEETING_HOURS,
    LOW_RECOVERY_THRESHOLD,
    RECOVERY_EXIT_THRESHOLD,
    TRAVEL_MAX_DAYS,
    TRAVEL_TIMEZONE_THRESHOLD_HOURS,
    TRIGGER_TYPES,
    MVDDetection,
    MVDSignals,
    MVDState,
    MVDTrigger,
)

RECOVERY_EXIT_CONDITION = f"Recovery >{RECOVERY_EXIT_THRESHOLD:g}%"


class MVDDetector(Protocol):
    def detect(self, signals: MVDSignals, now: datetime) -> MVDDetection: ...

    def exit_reason(self, state: MVDState, signals: MVDSignals, now: datetime) -> str | None: ...


def timezone_offset_hours(home_tz: str | None, device_tz: str | None, now: datetime) -> float | None:
    """Absolute UTC-offset difference between two IANA zones, or None if either is unknown."""
    if not home_tz or not device_tz:
        return None
    if home_tz == device_tz:
        return 0.0
    try:
        home = now.astimezone(ZoneInfo(home_tz)).utcoffset()
        device = now.astimezone(ZoneInfo(device_tz)).utcoffset()
    except (ZoneInfoNotFoundError, ValueError):
        return None
    if home is None or device is None:
        return None
    return abs((home - device).total_seconds()) / 3600


class ThresholdMVDDetector:
    def __init__(
        self,
        low_recovery_threshold: float = LOW_RECOVERY_THRESHOLD,
        exit_threshold: float = RECOVERY_EXIT_THRESHOLD,
        travel_threshold_hours: float = TRAVEL_TIMEZONE_THRESHOLD_HOURS,
        heavy_calendar_hours: float = HEAVY_CALENDAR_MEETING_HOURS,
        consistency_days: int = CONSISTENCY_DAYS,
        consistency_threshold: float = CONSISTENCY_THRESHOLD,
    ):
        self.low_recovery_threshold = low_recovery_threshold
        self.exit_threshold = exit_threshold
        self.travel_threshold_hours = travel_threshold_hours
        self.heavy_calendar_hours = heavy_calendar_hours
        self.consistency_days = consistency_days
        self.consistency_threshold = consistency_threshold

    def exit_reason(self, state: MVDState, signals: MVDSignals, now: datetime) -> str | None:
        """Why an active MVD should end this cycle, or None to keep it."""
        if state.trigger is MVDTrigger.TRAVEL_DETECTED:
            return self._travel_over(state, signals, now)
        if state.trigger is MVDTrigger.HEAVY_CALENDAR:
            if signals.meeting_hours_today < self.heavy_calendar_hours:
                return f"Meeting load down to {signals.meeting_hours_today:g}h"
            return None
        if state.trigger is MVDTrigger.CONSISTENCY_DROP:
            recent = signals.completion_history[:CONSISTENCY_RECOVERY_DAYS]
            if len(recent) == CONSISTENCY_RECOVERY_DAYS and all(
                rate > self.consistency_threshold for rate in recent
            ):
                return f"Completion above {self.consistency_threshold:g}% for {len(recent)} days"
            return None
        if state.trigger is MVDTrigger.MANUAL_ACTIVATION and signals.is_manual_activation:
            return None
        return self._recovery_improved(signals.recovery_score)

    def _recovery_improved(self, recovery_score: float | None) -> str | None:
        # No recovery data keeps MVD on
        if recovery_score is None or recovery_score <= self.exit_threshold:
            return None
        return f"Recovery improved to {recovery_score:g}%"

    def _travel_over(self, state: MVDState, signals: MVDSignals, now: datetime) -> str | None:
        if state.activated_at and now - state.activated_at >= timedelta(days=TRAVEL_MAX_DAYS):
            return f"Travel MVD ended after {TRAVEL_MAX_DAYS} days"
        offset = timezone_offset_hours(signals.home_timezone, signals.device_timezone, now)
        if offset is not None and offset < self.travel_threshold_hours:
            return "Back in home timezone"
        return None

    def detect(self, signals: MVDSignals, now: datetime) -> MVDDetection:
        for check in (
            self._manual,
            self._travel,
            self._low_recovery,
            self._heavy_calendar,
            self._consistency_drop,
        ):
            result = check(signals, now)
            if result is not None:
                return result
        return MVDDetection.none()

    def _activate(self, trigger: MVDTrigger, reason: str, exit_condition: str) -> MVDDetection:
        return MVDDetection(
            should_activate=True,
            reason=reason,
            trigger=trigger,
            mvd_type=TRIGGER_TYPES[trigger],
            exit_condition=exit_condition,
        )

    def _manual(self, signals: MVDSignals, now: datetime) -> MVDDetection | None:
        if signals.is_manual_activation:
            return self._activate(
                MVDTrigger.MANUAL_ACTIVATION,
                'User activated "Tough Day" mode',
                RECOVERY_EXIT_CONDITION,
            )
        return None

    def _travel(self, signals: MVDSignals, now: datetime) -> MVDDetection | None:
        offset = timezone_offset_hours(signals.home_timezone, signals.device_timezone, now)
        if offset is not None and offset >= self.travel_threshold_hours:
            return self._activate(
                MVDTrigger.TRAVEL_DETECTED,
                f"Timezone shift detected: {offset:g}h offset "
                f"(threshold: {self.travel_threshold_hours:g}h)",
                "Return to home timezone or 3 days elapsed",
            )
        return None

    def _low_recovery(self, signals: MVDSignals, now: datetime) -> MVDDetection | None:
        score = signals.recovery_score
        if score is not None and score < self.low_recovery_threshold:
            return self._activate(
                MVDTrigger.LOW_RECOVERY,
                f"Low recovery detected: {score:g}% (threshold: {self.low_recovery_threshold:g}%)",
                RECOVERY_EXIT_CONDITION,
            )
        return None

    def _heavy_calendar(self, signals: MVDSignals, now: datetime) -> MVDDetection | None:
        if signals.meeting_hours_today >= self.heavy_calendar_hours:
            return self._activate(
                MVDTrigger.HEAVY_CALENDAR,
                f"Heavy calendar: {signals.meeting_hours_today:g} meeting hours "
                f"(threshold: {self.heavy_calendar_hours:g}h)",
                "Meeting load below threshold tomorrow",
            )
        return None

    def _consistency_drop(self, signals: MVDSignals, now: datetime) -> MVDDetection | None:
        window = signals.completion_history[: self.consistency_days]
        if len(window) < self.consistency_days:
            return None
        if all(rate < self.consistency_threshold for rate in window):
            average = sum(window) / len(window)
            return self._activate(
                MVDTrigger.CONSISTENCY_DROP,
                f"Consistency drop: avg {average:.0f}% over {self.consistency_days} days "
                f"(threshold: {self.consistency_threshold:g}%)",
                f"Complete >{self.consistency_threshold:g}% of protocols for 2 consecutive days",
            )
        return None
