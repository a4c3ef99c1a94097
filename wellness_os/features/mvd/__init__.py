from .detector import MVDDetector, ThresholdMVDDetector
from .protocols import MVD_PROTOCOL_SETS, is_protocol_approved
from .repository import MVDStateRepository, PostgresMVDStateRepository
from .state_machine import MVDStateMachine
from .types import MVDEvaluation, MVDSignals, MVDState, MVDTrigger, MVDType

__all__ = [
    "MVDDetector",
    "MVDEvaluation",
    "MVDSignals",
    "MVDState",
    "MVDStateMachine",
    "MVDStateRepository",
    "MVDTrigger",
    "MVDType",
    "MVD_PROTOCOL_SETS",
    "PostgresMVDStateRepository",
    "ThresholdMVDDetector",
    "is_protocol_approved",
]
