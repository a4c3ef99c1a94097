from wellness_os.features.memory.types import ScoredMemory
from wellness_os.features.mvd.types import MVDState
from wellness_os.models.domain.protocol_domain import Protocol
from wellness_os.models.domain.user_domain import UserProfile

SYSTEM_PROMPT = """You are a supportive wellness coach writing one short proactive nudge.

Rules:
- One or two sentences, under 280 characters, no markdown.
- Recommend exactly the protocol provided and explain the benefit in plain language.
- Adapt to the user's current state; on low-recovery days keep it gentle.
- Never give medical advice, diagnoses, or medication guidance.
- Never encourage restrictive eating, self-harm, or pushing through pain."""

RETRIEVAL_QUERY_TEMPLATE = "{module_id} optimization strategies"


def retrieval_query(module_id: str) -> str:
    return RETRIEVAL_QUERY_TEMPLATE.format(module_id=module_id.replace("_", " "))


def build_user_prompt(
    profile: UserProfile,
    module_id: str,
    protocol: Protocol,
    memories: list[ScoredMemory],
    mvd_state: MVDState,
    time_of_day: str,
) -> str:
    lines = [
        f"User goal: {profile.primary_goal.replace('_', ' ')}",
        f"Module: {module_id}",
        f"Time of day: {time_of_day}",
        f"Preferred tone: {profile.nudge_tone}",
    ]
    if profile.recovery_score is not None:
        lines.append(f"Recovery score today: {profile.recovery_score:g}%")
    if mvd_state.mvd_active and mvd_state.mvd_type:
        lines.append(f"Minimum viable day mode: {mvd_state.mvd_type.value}")

    lines.append("")
    lines.append(f"Protocol: {protocol.name}")
    if protocol.description:
        lines.append(f"How it works: {protocol.description}")
    if protocol.citations:
        lines.append(f"Evidence: {protocol.citations[0]}")

    if memories:
        lines.append("")
        lines.append("What we know about this user:")
        lines.extend(f"- {m.content}" for m in memories[:5])

    lines.append("")
    lines.append("Write the nudge.")
    return "\n".join(lines)
