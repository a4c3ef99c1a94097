from .service import (
    StreakAction,
    StreakMaintenanceService,
    StreakRunResult,
    days_since_active,
    module_label,
)

__all__ = [
    "StreakAction",
    "StreakMaintenanceService",
    "StreakRunResult",
    "days_since_active",
    "module_label",
]
