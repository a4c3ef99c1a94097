from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from wellness_os.features.mvd.types import MVDType


class NudgePriority(str, Enum):
    CRITICAL = "CRITICAL"
    ADAPTIVE = "ADAPTIVE"
    STANDARD = "STANDARD"


class RuleId(str, Enum):
    QUIET_HOURS = "quiet_hours"
    DAILY_CAP = "daily_cap"
    COOLDOWN = "cooldown"
    FATIGUE_DETECTION = "fatigue_detection"
    MEETING_AWARENESS = "meeting_awareness"
    LOW_RECOVERY_GUARD = "low_recovery_guard"
    MVD_GATE = "mvd_gate"
    CONFIDENCE_FLOOR = "confidence_floor"


DAILY_CAP = 5
COOLDOWN_MINUTES = 120
FATIGUE_DISMISSALS = 3
MEETING_HOURS_THRESHOLD = 2.0
LOW_RECOVERY_THRESHOLD = 30.0  # inclusive: a score of exactly 30 is guarded
CONFIDENCE_FLOOR = 0.4
DEFAULT_QUIET_START = 22
DEFAULT_QUIET_END = 6


@dataclass(frozen=True, slots=True)
class SuppressionContext:
    local_hour: int
    now: datetime
    confidence: float
    nudges_delivered_today: int = 0
    last_delivered_at: datetime | None = None
    dismissals_today: int = 0
    quiet_hours_start: int = DEFAULT_QUIET_START
    quiet_hours_end: int = DEFAULT_QUIET_END
    meeting_hours_today: float = 0.0
    nudge_priority: NudgePriority = NudgePriority.STANDARD
    recovery_score: float = 100.0
    is_morning_anchor: bool = False
    mvd_active: bool = False
    mvd_type: MVDType | None = None
    is_mvd_approved: bool = False


@dataclass(frozen=True, slots=True)
class SuppressionResult:
    should_deliver: bool
    suppressed_by: RuleId | None
    reason: str
    rules_checked: tuple[str, ...]
    was_overridden: bool = False
    overridden_rule: RuleId | None = None

    def to_dict(self) -> dict:
        return {
            "should_deliver": self.should_deliver,
            "suppressed_by": self.suppressed_by.value if self.suppressed_by else None,
            "reason": self.reason,
            "rules_checked": list(self.rules_checked),
            "was_overridden": self.was_overridden,
            "overridden_rule": self.overridden_rule.value if self.overridden_rule else None,
        }
