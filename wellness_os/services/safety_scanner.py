"""
Safety/compliance scan for generated coaching text.
"""

import re
from dataclasses import dataclass, field

from wellness_os.infrastructure.observability.logging import get_logger
from wellness_os.services.openai_service import OpenAIService

logger = get_logger(__name__)

BLOCKED_PHRASES = (
    "kill yourself",
    "end your life",
    "hurt yourself",
    "self-harm",
    "suicide",
    "skip meals",
    "stop eating",
    "purge after",
    "starve yourself",
)

# Medical directives a coach must not give
MEDICAL_PHRASES = (
    "stop taking your medication",
    "stop your medication",
    "diagnose",
    "prescription",
    "increase your dose",
)

FALLBACK_TEXT = {
    "nudge": "Take a moment to check in with yourself today. How are you feeling?",
    "streak": "Small steps count. Log one action today to keep your momentum going.",
}


@dataclass(frozen=True, slots=True)
class SafetyScanResult:
    safe: bool
    reason: str | None = None
    flagged_keywords: list[str] = field(default_factory=list)
    severity: str | None = None


def _find(text: str, phrases: tuple[str, ...]) -> list[str]:
    lowered = text.lower()
    return [p for p in phrases if re.search(rf"\b{re.escape(p)}\b", lowered)]


class SafetyScanner:
    """
    Phrase scan, optionally backed by the provider's moderation endpoint.

    Moderation failures raise UpstreamServiceError; the orchestrator treats
    that like any other upstream fault for the user.
    """

    def __init__(self, openai_service: OpenAIService | None = None):
        self.openai_service = openai_service

    async def scan(self, text: str, context: str = "nudge") -> SafetyScanResult:
        blocked = _find(text, BLOCKED_PHRASES)
        if blocked:
            return SafetyScanResult(
                safe=False,
                reason="Blocked phrase in generated text",
                flagged_keywords=blocked,
                severity="high",
            )

        medical = _find(text, MEDICAL_PHRASES)
        if medical:
            return SafetyScanResult(
                safe=False,
                reason="Medical advice in generated text",
                flagged_keywords=medical,
                severity="medium",
            )

        if self.openai_service is not None:
            flagged, categories = await self.openai_service.moderate(text)
            if flagged:
                logger.warning("Moderation flagged generated text", context=context, categories=categories)
                return SafetyScanResult(
                    safe=False,
                    reason="Flagged by moderation",
                    flagged_keywords=categories,
                    severity="high",
                )

        return SafetyScanResult(safe=True)

    def fallback_text(self, context: str = "nudge") -> str:
        return FALLBACK_TEXT.get(context, FALLBACK_TEXT["nudge"])
