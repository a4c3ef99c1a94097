from .repository import PostgresScheduleRepository, ScheduleRepository
from .scheduler import DailyScheduler, ScheduleRunResult
from .types import DailyScheduleEntry

__all__ = [
    "DailyScheduleEntry",
    "DailyScheduler",
    "PostgresScheduleRepository",
    "ScheduleRepository",
    "ScheduleRunResult",
]
