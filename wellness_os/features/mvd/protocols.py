"""
Approved protocol sets per MVD type.

Shared by the daily scheduler (what may be scheduled) and the suppression
evaluator (what may be delivered while MVD is active).
"""

from .types import MVDType

_FULL = (
    "proto_morning_light",
    "morning_light_exposure",
    "proto_hydration_electrolytes",
    "hydration_electrolytes",
    "proto_sleep_optimization",
    "sleep_optimization",
)

MVD_PROTOCOL_SETS: dict[MVDType, tuple[str, ...]] = {
    MVDType.FULL: _FULL,
    MVDType.SEMI_ACTIVE: _FULL
    + (
        "proto_walking_breaks",
        "walking_breaks",
        "proto_evening_light",
        "evening_light_management",
    ),
    MVDType.TRAVEL: (
        "proto_morning_light",
        "morning_light_exposure",
        "proto_hydration_electrolytes",
        "hydration_electrolytes",
        "proto_caffeine_timing",
        "caffeine_timing",
        "proto_evening_light",
        "evening_light_management",
    ),
}

MVD_DESCRIPTIONS: dict[MVDType, str] = {
    MVDType.FULL: "Bare essentials: morning light, hydration, and sleep optimization only",
    MVDType.SEMI_ACTIVE: "Core protocols plus gentle walking and evening light management",
    MVDType.TRAVEL: "Circadian reset focus: extended light exposure and adjusted caffeine timing",
}


def is_protocol_approved(protocol_id: str, mvd_type: MVDType | None) -> bool:
    """
    True when the protocol may run under the given MVD type.

    No active type means everything is allowed. Matching is a case-insensitive
    substring test either way so 'proto_' prefixed ids match their base names.
    """
    if mvd_type is None:
        return True
    candidate = protocol_id.lower()
    return any(
        candidate in allowed.lower() or allowed.lower() in candidate
        for allowed in MVD_PROTOCOL_SETS[mvd_type]
    )

