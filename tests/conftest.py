import copy
from datetime import UTC, datetime

import pytest

from wellness_os.config import Settings
from wellness_os.context import JobContext
from wellness_os.errors import StateConflictError, UpstreamServiceError
from wellness_os.features.memory.ranking import (
    decay_confidence,
    decayed_through,
    rank_memories,
    select_for_pruning,
)
from wellness_os.features.mvd.types import MVDState
from wellness_os.features.scheduling.types import DailyScheduleEntry
from wellness_os.services.infrastructure.user_lock import LocalUserLock
from wellness_os.services.safety_scanner import SafetyScanner
from wellness_os.services.vector_search import VectorMatch

RUN_AT = datetime(2025, 3, 10, 14, 0, tzinfo=UTC)


class FakeAuditSink:
    def __init__(self):
        self.records: list[tuple[str, dict, str | None]] = []

    async def append(self, decision_type: str, payload: dict, user_id: str | None = None) -> bool:
        self.records.append((decision_type, payload, user_id))
        return True

    def of_type(self, decision_type: str) -> list[dict]:
        return [payload for kind, payload, _ in self.records if kind == decision_type]

    @property
    def types(self) -> list[str]:
        return [kind for kind, _, _ in self.records]


class InMemoryEnrollmentRepository:
    def __init__(self, rows: list[dict] | None = None):
        self.rows = {row["id"]: dict(row) for row in rows or []}

    async def list_active_enrollments(self) -> list[dict]:
        return [copy.copy(r) for r in self.rows.values() if r.get("is_active", True)]

    async def list_streak_candidates(self) -> list[dict]:
        return [copy.copy(r) for r in self.rows.values() if (r.get("current_streak") or 0) > 0]

    async def consume_freeze(self, enrollment_id: str, used_at: datetime) -> None:
        row = self.rows[enrollment_id]
        if row.get("streak_freeze_available") is False:
            raise StateConflictError("Streak freeze already consumed", operation="consume_freeze")
        row["streak_freeze_available"] = False
        row["streak_freeze_used_date"] = used_at

    async def reset_streak(self, enrollment_id: str, now: datetime) -> None:
        row = self.rows[enrollment_id]
        if not row.get("current_streak"):
            raise StateConflictError("Streak already reset", operation="reset_streak")
        row["current_streak"] = 0

    async def reset_freezes(self) -> int:
        restored = 0
        for row in self.rows.values():
            if row.get("streak_freeze_available") is False or row.get("streak_freeze_used_date"):
                restored += 1
            row["streak_freeze_available"] = True
            row["streak_freeze_used_date"] = None
        return restored


class InMemoryProtocolRepository:
    def __init__(self, protocols: list[dict] | None = None, module_map: dict | None = None):
        self.protocols = {p["id"]: p for p in protocols or []}
        self.module_map = module_map or {}

    async def get_protocols_by_ids(self, protocol_ids: list[str]) -> list[dict]:
        return [dict(self.protocols[pid]) for pid in protocol_ids if pid in self.protocols]

    async def get_protocols_for_modules(self, module_ids: list[str]) -> dict[str, list[dict]]:
        return {
            module_id: [dict(self.protocols[pid]) for pid in self.module_map.get(module_id, [])]
            for module_id in module_ids
        }


class InMemoryUserRepository:
    def __init__(self, profiles: dict | None = None, completion: dict | None = None):
        self.profiles = profiles or {}
        self.completion = completion or {}

    async def get_profile(self, user_id: str) -> dict | None:
        profile = self.profiles.get(user_id)
        return dict(profile) if profile is not None else None

    async def get_completion_history(self, user_id: str, days: int, now: datetime) -> list[float]:
        return list(self.completion.get(user_id, []))[:days]


class InMemoryMVDStateRepository:
    def __init__(self):
        self.states: dict[str, MVDState] = {}
        self.history: list[tuple[str, str]] = []

    async def get_state(self, user_id: str) -> MVDState | None:
        state = self.states.get(user_id)
        return copy.copy(state) if state else None

    async def activate(self, user_id, mvd_type, trigger, exit_condition, now) -> MVDState:
        current = self.states.get(user_id)
        if current and current.mvd_active:
            raise StateConflictError("MVD already active", user_id=user_id, operation="activate")
        state = MVDState(
            user_id=user_id,
            mvd_active=True,
            mvd_type=mvd_type,
            trigger=trigger,
            activated_at=now,
            exit_condition=exit_condition,
            last_checked_at=now,
        )
        self.states[user_id] = state
        self.history.append((user_id, "activated"))
        return copy.copy(state)

    async def deactivate(self, user_id: str, reason: str, now: datetime) -> None:
        current = self.states.get(user_id)
        if not current or not current.mvd_active:
            raise StateConflictError("MVD not active", user_id=user_id, operation="deactivate")
        self.states[user_id] = MVDState(user_id=user_id, last_checked_at=now)
        self.history.append((user_id, "deactivated"))

    async def touch(self, user_id: str, now: datetime) -> None:
        if user_id in self.states:
            self.states[user_id].last_checked_at = now


class InMemoryMemoryStore:
    def __init__(self, memories: list | None = None):
        self.memories = list(memories or [])

    async def get_relevant_memories(self, user_id, memory_filter, limit, now):
        mine = [m for m in self.memories if m.user_id == user_id]
        return rank_memories(mine, memory_filter, now, limit)

    async def apply_memory_decay(self, now: datetime) -> int:
        decayed = 0
        for memory in self.memories:
            new_confidence = decay_confidence(memory, now)
            if new_confidence is None:
                continue
            memory.confidence = new_confidence
            memory.last_decayed_at = decayed_through(memory, now)
            decayed += 1
        return decayed

    async def prune_memories(self, user_id: str, now: datetime) -> int:
        doomed = set(select_for_pruning([m for m in self.memories if m.user_id == user_id], now))
        self.memories = [m for m in self.memories if m.id not in doomed]
        return len(doomed)

    async def list_user_ids(self) -> list[str]:
        return sorted({m.user_id for m in self.memories})


class InMemoryNudgeTimeline:
    def __init__(self, records: list | None = None):
        self.records = {r.id: r for r in records or []}

    async def get_nudges_between(self, user_id: str, start: datetime, end: datetime) -> list:
        return [
            r
            for r in self.records.values()
            if r.user_id == user_id and start <= r.generated_at < end
        ]

    async def upsert_nudge(self, record) -> bool:
        if record.id in self.records:
            return False
        self.records[record.id] = record
        return True

    def for_user(self, user_id: str) -> list:
        return [r for r in self.records.values() if r.user_id == user_id]


class InMemoryScheduleRepository:
    def __init__(self, max_batch: int = 400):
        self.max_batch = max_batch
        self.entries: dict[tuple, DailyScheduleEntry] = {}
        self.statuses: dict[tuple, str] = {}
        self.batch_sizes: list[int] = []

    async def upsert_entries(self, entries: list[DailyScheduleEntry]) -> int:
        assert len(entries) <= self.max_batch, "batch exceeds store limit"
        self.batch_sizes.append(len(entries))
        for entry in entries:
            self.entries[entry.key] = entry
            self.statuses.setdefault(entry.key, entry.status)
        return len(entries)

    async def count_for_date(self, schedule_date) -> int:
        return sum(1 for key in self.entries if key[1] == schedule_date)


class FakeOpenAI:
    completion_model = "test-model"

    def __init__(self, text: str = "Try a short breathing session this afternoon.", fail: bool = False):
        self.text = text
        self.fail = fail
        self.prompts: list[tuple[str, str]] = []
        self.embedded: list[str] = []

    async def generate_text(self, system_prompt: str, user_prompt: str) -> str:
        if self.fail:
            raise UpstreamServiceError("provider down", service="openai", operation="generate_text")
        self.prompts.append((system_prompt, user_prompt))
        return self.text

    async def embed(self, text: str) -> list[float]:
        if self.fail:
            raise UpstreamServiceError("provider down", service="openai", operation="embed")
        self.embedded.append(text)
        return [0.1, 0.2, 0.3]


class FakeVectorSearch:
    def __init__(self, ids: list[str] | None = None):
        self.ids = ids or []

    async def query(self, embedding: list[float], top_k: int) -> list[VectorMatch]:
        return [
            VectorMatch(id=pid, score=1.0 - i * 0.1, metadata={})
            for i, pid in enumerate(self.ids[:top_k])
        ]


class FakeLockRedis:
    """SET NX / compare-and-delete over a dict, with an optional foreign holder."""

    def __init__(self, held: bool = False):
        self.locks: dict[str, str] = {}
        self.held = held
        self.acquired: list[tuple[str, str, int]] = []
        self.released: list[tuple[str, str]] = []

    async def acquire_lock(self, key: str, token: str, ttl_s: int) -> bool:
        if self.held or key in self.locks:
            return False
        self.locks[key] = token
        self.acquired.append((key, token, ttl_s))
        return True

    async def release_lock(self, key: str, token: str) -> bool:
        self.released.append((key, token))
        if self.locks.get(key) != token:
            return False
        del self.locks[key]
        return True


@pytest.fixture
def settings():
    return Settings(_env_file=None, NUDGE_USER_TIMEOUT_SECONDS=5.0, SCHEDULE_WRITE_BATCH_SIZE=400)


@pytest.fixture
def audit():
    return FakeAuditSink()


@pytest.fixture
def make_context(settings, audit):
    def _make(**overrides) -> JobContext:
        fields = {
            "settings": settings,
            "audit": audit,
            "enrollments": InMemoryEnrollmentRepository(),
            "protocols": InMemoryProtocolRepository(),
            "users": InMemoryUserRepository(),
            "mvd_states": InMemoryMVDStateRepository(),
            "memories": InMemoryMemoryStore(),
            "nudges": InMemoryNudgeTimeline(),
            "schedules": InMemoryScheduleRepository(),
            "user_locks": LocalUserLock(),
            "openai": FakeOpenAI(),
            "vector_search": FakeVectorSearch(),
            "safety_scanner": SafetyScanner(),
            "clock": lambda: RUN_AT,
        }
        fields.update(overrides)
        return JobContext(**fields)

    return _make
