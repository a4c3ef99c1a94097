from .repository import NudgeTimelineRepository, PostgresNudgeTimelineRepository
from .types import DeliveryStats, NudgeRecord, derive_nudge_id

__all__ = [
    "DeliveryStats",
    "NudgeRecord",
    "NudgeTimelineRepository",
    "PostgresNudgeTimelineRepository",
    "derive_nudge_id",
]
