"""
Structured "why" explanation attached to every generated nudge.
"""

import re
from typing import Any

from wellness_os.features.memory.types import MemoryType, ScoredMemory
from wellness_os.models.domain.protocol_domain import Protocol

from .types import ConfidenceScore

MAX_MECHANISM_LENGTH = 250
DOI_PATTERN = re.compile(r"\b10\.\d{4,}/[^\s]+\b")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

DATA_MEMORY_TYPES = (
    MemoryType.PROTOCOL_EFFECTIVENESS,
    MemoryType.NUDGE_FEEDBACK,
    MemoryType.PATTERN_DETECTED,
    MemoryType.PREFERRED_TIME,
)


def extract_mechanism(description: str) -> str:
    """First two sentences of the protocol description, capped at 250 characters."""
    text = (description or "").strip()
    if not text:
        return "Supports your daily routine."
    mechanism = " ".join(_SENTENCE_SPLIT.split(text)[:2])
    if len(mechanism) > MAX_MECHANISM_LENGTH:
        mechanism = mechanism[: MAX_MECHANISM_LENGTH - 3].rstrip() + "..."
    return mechanism


def parse_doi(citation: str) -> str | None:
    match = DOI_PATTERN.search(citation or "")
    return match.group(0) if match else None


def confidence_level(overall: float) -> str:
    if overall > 0.7:
        return "High"
    if overall >= 0.4:
        return "Medium"
    return "Low"


def _confidence_explanation(score: ConfidenceScore) -> str:
    strongest = max(score.factors.items(), key=lambda item: item[1])[0]
    weakest = min(score.factors.items(), key=lambda item: item[1])[0]
    return (
        f"Strongest signal: {strongest.replace('_', ' ')}; "
        f"weakest: {weakest.replace('_', ' ')}."
    )


def _your_data(protocol: Protocol, memories: list[ScoredMemory]) -> str:
    personal = [m for m in memories if m.type in DATA_MEMORY_TYPES]
    related = [
        m
        for m in personal
        if m.source_protocol_id == protocol.id or protocol.name.lower() in m.content.lower()
    ]
    if related:
        return f"From your history: {related[0].content.rstrip('.')}."
    if personal:
        return f"Based on {len(personal)} patterns we've learned about your routine."
    return "We'll personalize this as you log more days."


def build_why(
    protocol: Protocol, score: ConfidenceScore, memories: list[ScoredMemory]
) -> dict[str, Any]:
    citation = protocol.citations[0] if protocol.citations else None
    return {
        "mechanism": extract_mechanism(protocol.description),
        "evidence": {
            "citation": citation,
            "doi": parse_doi(citation) if citation else None,
            "strength": protocol.evidence_level or "High",
        },
        "your_data": _your_data(protocol, memories),
        "confidence": {
            "level": confidence_level(score.overall),
            "score": score.overall,
            "explanation": _confidence_explanation(score),
        },
    }
