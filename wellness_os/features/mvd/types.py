from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class MVDType(str, Enum):
    FULL = "full"
    SEMI_ACTIVE = "semi_active"
    TRAVEL = "travel"


class MVDTrigger(str, Enum):
    MANUAL_ACTIVATION = "manual_activation"
    TRAVEL_DETECTED = "travel_detected"
    LOW_RECOVERY = "low_recovery"
    HEAVY_CALENDAR = "heavy_calendar"
    CONSISTENCY_DROP = "consistency_drop"


TRIGGER_TYPES: dict[MVDTrigger, MVDType] = {
    MVDTrigger.MANUAL_ACTIVATION: MVDType.FULL,
    MVDTrigger.TRAVEL_DETECTED: MVDType.TRAVEL,
    MVDTrigger.LOW_RECOVERY: MVDType.FULL,
    MVDTrigger.HEAVY_CALENDAR: MVDType.SEMI_ACTIVE,
    MVDTrigger.CONSISTENCY_DROP: MVDType.SEMI_ACTIVE,
}

LOW_RECOVERY_THRESHOLD = 35.0
RECOVERY_EXIT_THRESHOLD = 50.0
TRAVEL_TIMEZONE_THRESHOLD_HOURS = 2.0
TRAVEL_MAX_DAYS = 3
CONSISTENCY_RECOVERY_DAYS = 2
HEAVY_CALENDAR_MEETING_HOURS = 6.0
CONSISTENCY_DAYS = 3
CONSISTENCY_THRESHOLD = 50.0  # percent of scheduled protocols completed


@dataclass(slots=True)
class MVDState:
    user_id: str
    mvd_active: bool = False
    mvd_type: MVDType | None = None
    trigger: MVDTrigger | None = None
    activated_at: datetime | None = None
    exit_condition: str | None = None
    last_checked_at: datetime | None = None

    @classmethod
    def inactive(cls, user_id: str) -> "MVDState":
        return cls(user_id=user_id)


@dataclass(slots=True)
class MVDSignals:
    recovery_score: float | None = None
    home_timezone: str | None = None
    device_timezone: str | None = None
    is_manual_activation: bool = False
    meeting_hours_today: float = 0.0
    # Most recent day first, percent completed
    completion_history: list[float] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class MVDDetection:
    should_activate: bool
    reason: str
    trigger: MVDTrigger | None = None
    mvd_type: MVDType | None = None
    exit_condition: str | None = None

    @classmethod
    def none(cls, reason: str = "No MVD triggers detected") -> "MVDDetection":
        return cls(should_activate=False, reason=reason)


@dataclass(frozen=True, slots=True)
class MVDEvaluation:
    state: MVDState
    activated: bool = False
    exited: bool = False
    reason: str | None = None
