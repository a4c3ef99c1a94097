from datetime import UTC, date, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from wellness_os.errors import DataIntegrityError

ModelT = TypeVar("ModelT", bound=BaseModel)


def to_utc_date(value: Any) -> date | None:
    """UTC calendar date of a date, datetime or ISO string; None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            return to_utc_date(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


class ModuleEnrollment(BaseModel):
    """A user's enrollment in one module, with streak and freeze state."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    module_id: str
    enrolled_at: datetime | None = None
    last_active_date: date | None = None
    current_streak: int = 0
    longest_streak: int = 0
    streak_freeze_available: bool = True
    streak_freeze_used_date: datetime | None = None
    is_active: bool = True

    @field_validator("last_active_date", mode="before")
    @classmethod
    def _lenient_active_date(cls, value: Any) -> date | None:
        # Unparseable activity dates count as "never active"
        return to_utc_date(value)

    @field_validator("current_streak", "longest_streak", mode="before")
    @classmethod
    def _default_streak(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("streak_freeze_available", mode="before")
    @classmethod
    def _default_freeze(cls, value: Any) -> Any:
        return True if value is None else value


def parse_row(model: type[ModelT], row: dict[str, Any], record_id: str | None = None) -> ModelT:
    """
    Validate a database row into a domain model.

    Raises:
        DataIntegrityError: row is missing or has malformed required fields
    """
    try:
        return model.model_validate(row)
    except ValidationError as e:
        ref = record_id or str(row.get("id") or row.get("user_id") or "unknown")
        raise DataIntegrityError(
            f"Invalid {model.__name__} row {ref}: {e.error_count()} field error(s)",
            record_id=ref,
        ) from e
