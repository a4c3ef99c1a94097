from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

NUDGE_SOURCE_ADAPTIVE = "adaptive_nudge_engine"
NUDGE_SOURCE_STREAK = "streak_maintenance"


@dataclass(slots=True)
class NudgeRecord:
    id: str
    user_id: str
    nudge_text: str
    nudge_type: str
    generated_at: datetime
    module_id: str | None = None
    protocol_id: str | None = None
    status: str = "pending"
    source: str = NUDGE_SOURCE_ADAPTIVE
    confidence: dict[str, Any] = field(default_factory=dict)
    why: dict[str, Any] = field(default_factory=dict)
    delivered_at: datetime | None = None
    dismissed_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class DeliveryStats:
    delivered_today: int
    last_delivered_at: datetime | None
    dismissals_today: int

    @classmethod
    def from_records(cls, records: list[NudgeRecord]) -> "DeliveryStats":
        delivered = [r for r in records if r.status != "suppressed"]
        times = [r.delivered_at or r.generated_at for r in delivered]
        return cls(
            delivered_today=len(delivered),
            last_delivered_at=max(times) if times else None,
            dismissals_today=sum(1 for r in records if r.status == "dismissed"),
        )


def derive_nudge_id(prefix: str, timestamp: datetime) -> str:
    """Deterministic id: a re-run with the same run timestamp hits the same row."""
    stamp = timestamp.isoformat().replace(":", "-").replace(".", "-")
    return f"{prefix}-{stamp}"
