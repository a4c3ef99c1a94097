from dataclasses import dataclass
from datetime import date

from wellness_os.models.domain.protocol_domain import ProtocolCategory, TimeSlot


@dataclass(frozen=True, slots=True)
class DailyScheduleEntry:
    """One scheduled protocol, keyed (user_id, schedule_date, protocol_id)."""

    user_id: str
    schedule_date: date
    protocol_id: str
    protocol_name: str
    module_id: str
    category: ProtocolCategory
    time_slot: TimeSlot
    scheduled_time: str
    duration_minutes: int
    status: str = "pending"

    @property
    def key(self) -> tuple[str, date, str]:
        return (self.user_id, self.schedule_date, self.protocol_id)
