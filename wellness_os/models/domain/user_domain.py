from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

PrimaryGoal = Literal["better_sleep", "more_energy", "sharper_focus", "faster_recovery"]


class UserProfile(BaseModel):
    """Merged user profile (users + preferences + today's wearable summary)."""

    model_config = ConfigDict(extra="allow")

    user_id: str
    display_name: str | None = None
    primary_goal: PrimaryGoal = "more_energy"
    timezone: str = "UTC"

    # Preferences
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "06:00"
    nudge_tone: str = "supportive"

    # Today's signals (None when the wearable has not synced)
    recovery_score: float | None = None
    hrv_deviation: float | None = None
    device_timezone: str | None = None
    meeting_hours_today: float = 0.0
    manual_mvd_requested: bool = False

    @field_validator("primary_goal", mode="before")
    @classmethod
    def _default_goal(cls, value):
        return value or "more_energy"

    @field_validator("timezone", mode="before")
    @classmethod
    def _default_timezone(cls, value):
        return value or "UTC"

    @field_validator("meeting_hours_today", mode="before")
    @classmethod
    def _default_meeting_hours(cls, value):
        return value or 0.0

    @field_validator("manual_mvd_requested", mode="before")
    @classmethod
    def _default_manual_flag(cls, value):
        return bool(value)

    @field_validator("quiet_hours_start", mode="before")
    @classmethod
    def _default_quiet_start(cls, value):
        return value or "22:00"

    @field_validator("quiet_hours_end", mode="before")
    @classmethod
    def _default_quiet_end(cls, value):
        return value or "06:00"
