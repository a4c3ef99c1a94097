import pytest

from wellness_os.services.safety_scanner import FALLBACK_TEXT, SafetyScanner


class FakeModeration:
    def __init__(self, flagged: bool):
        self.flagged = flagged
        self.calls = 0

    async def moderate(self, text: str):
        self.calls += 1
        return self.flagged, ["harassment"] if self.flagged else []


@pytest.mark.asyncio
async def test_clean_text_passes():
    result = await SafetyScanner().scan("Step outside for ten minutes of morning light.")

    assert result.safe is True
    assert result.flagged_keywords == []


@pytest.mark.asyncio
async def test_blocked_phrase_is_high_severity():
    result = await SafetyScanner().scan("You could Skip Meals to feel lighter.")

    assert result.safe is False
    assert result.severity == "high"
    assert result.flagged_keywords == ["skip meals"]


@pytest.mark.asyncio
async def test_medical_directive_is_medium_severity():
    result = await SafetyScanner().scan("Stop taking your medication before bed.")

    assert result.safe is False
    assert result.severity == "medium"


@pytest.mark.asyncio
async def test_phrases_match_whole_words_only():
    result = await SafetyScanner().scan("A prescriptions-free routine: undiagnosed? Just breathe.")

    assert result.safe is True


@pytest.mark.asyncio
async def test_moderation_runs_only_after_phrase_scan_passes():
    moderation = FakeModeration(flagged=True)
    scanner = SafetyScanner(moderation)

    blocked = await scanner.scan("skip meals")
    flagged = await scanner.scan("Take a walk.")

    assert blocked.flagged_keywords == ["skip meals"]
    assert moderation.calls == 1
    assert flagged.safe is False
    assert flagged.flagged_keywords == ["harassment"]


def test_fallback_text_by_context():
    scanner = SafetyScanner()

    assert scanner.fallback_text("streak") == FALLBACK_TEXT["streak"]
    assert scanner.fallback_text("unknown") == FALLBACK_TEXT["nudge"]
