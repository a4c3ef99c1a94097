from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wellness_os.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ProtocolCategory(str, Enum):
    FOUNDATION = "Foundation"
    PERFORMANCE = "Performance"
    RECOVERY = "Recovery"
    OPTIMIZATION = "Optimization"
    META = "Meta"


# Stored strings are free text; every spelling we have seen maps to one member
_CATEGORY_LOOKUP: dict[str, ProtocolCategory] = {
    "foundation": ProtocolCategory.FOUNDATION,
    "foundational": ProtocolCategory.FOUNDATION,
    "performance": ProtocolCategory.PERFORMANCE,
    "recovery": ProtocolCategory.RECOVERY,
    "optimization": ProtocolCategory.OPTIMIZATION,
    "optimisation": ProtocolCategory.OPTIMIZATION,
    "meta": ProtocolCategory.META,
}


def parse_category(value: Any) -> ProtocolCategory:
    """Map a stored category string to the closed enum; unknown values become OPTIMIZATION."""
    if isinstance(value, ProtocolCategory):
        return value
    key = str(value or "").strip().lower()
    category = _CATEGORY_LOOKUP.get(key)
    if category is None:
        logger.warning("Unknown protocol category, defaulting", category=value)
        return ProtocolCategory.OPTIMIZATION
    return category


class TimeSlot(str, Enum):
    MORNING = "morning"
    MIDDAY = "midday"
    EVENING = "evening"

    @property
    def utc_time(self) -> str:
        return SLOT_TIMES[self]


SLOT_TIMES: dict[TimeSlot, str] = {
    TimeSlot.MORNING: "08:00",
    TimeSlot.MIDDAY: "12:00",
    TimeSlot.EVENING: "20:00",
}

# Category decides the slot unless the protocol name says otherwise
CATEGORY_SLOTS: dict[ProtocolCategory, TimeSlot] = {
    ProtocolCategory.FOUNDATION: TimeSlot.MORNING,
    ProtocolCategory.PERFORMANCE: TimeSlot.MIDDAY,
    ProtocolCategory.RECOVERY: TimeSlot.MIDDAY,
    ProtocolCategory.OPTIMIZATION: TimeSlot.MIDDAY,
    ProtocolCategory.META: TimeSlot.MIDDAY,
}

EVIDENCE_LEVELS = ("Very High", "High", "Moderate", "Emerging")


class Protocol(BaseModel):
    """Reference protocol row (immutable)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    name: str
    category: ProtocolCategory = ProtocolCategory.OPTIMIZATION
    duration_minutes: int | None = None
    description: str = ""
    benefits: str = ""
    citations: list[str] = Field(default_factory=list)
    evidence_level: str | None = None
    is_morning_anchor: bool = False

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> ProtocolCategory:
        return parse_category(value)

    @field_validator("description", "benefits", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        return value or ""

    @field_validator("citations", mode="before")
    @classmethod
    def _coerce_citations(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    def time_slot(self) -> TimeSlot:
        """Foundation or morning-named -> morning; evening/sleep-named -> evening; else midday."""
        name = self.name.lower()
        if self.category is ProtocolCategory.FOUNDATION or "morning" in name:
            return TimeSlot.MORNING
        if "evening" in name or "sleep" in name:
            return TimeSlot.EVENING
        return CATEGORY_SLOTS[self.category]
