import pytest

from wellness_os import context as context_module
from wellness_os.config import Settings
from wellness_os.context import build_job_context
from wellness_os.db.helpers import DatabaseError
from wellness_os.errors import UpstreamServiceError
from wellness_os.services.infrastructure.user_lock import LocalUserLock, RedisUserLock


class FakePool:
    instances: list["FakePool"] = []

    def __init__(self, settings, healthy=True):
        self.healthy = healthy
        self.closed = False
        FakePool.instances.append(self)

    async def initialize(self):
        pass

    async def health_check(self):
        if self.healthy:
            return {"healthy": True, "service": "database_pool"}
        return {"healthy": False, "service": "database_pool", "error": "connection refused"}

    async def close(self):
        self.closed = True


class FakeRedis:
    instances: list["FakeRedis"] = []
    answers_ping = True

    def __init__(self, settings):
        self.closed = False
        FakeRedis.instances.append(self)

    async def initialize(self):
        pass

    async def ping(self):
        return self.answers_ping

    async def close(self):
        self.closed = True


@pytest.fixture
def wiring(monkeypatch):
    FakePool.instances = []
    FakeRedis.instances = []
    FakeRedis.answers_ping = True
    monkeypatch.setattr(context_module, "DatabasePoolManager", FakePool)
    monkeypatch.setattr(context_module, "RedisClient", FakeRedis)
    return monkeypatch


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, DATABASE_URL="postgresql://localhost/wellness", **overrides)


@pytest.mark.asyncio
async def test_healthy_wiring_uses_redis_locks(wiring):
    context = await build_job_context(_settings(REDIS_URL="redis://localhost:6379/0"))

    assert isinstance(context.user_locks, RedisUserLock)

    await context.aclose()
    assert FakePool.instances[0].closed
    assert FakeRedis.instances[0].closed


@pytest.mark.asyncio
async def test_without_redis_url_locks_stay_local(wiring):
    context = await build_job_context(_settings())

    assert isinstance(context.user_locks, LocalUserLock)
    assert FakeRedis.instances == []


@pytest.mark.asyncio
async def test_unhealthy_database_aborts_before_any_work(wiring):
    wiring.setattr(
        context_module, "DatabasePoolManager", lambda settings: FakePool(settings, healthy=False)
    )

    with pytest.raises(DatabaseError) as exc:
        await build_job_context(_settings())

    assert exc.value.operation == "health_check"
    assert "connection refused" in str(exc.value)
    assert FakePool.instances[0].closed


@pytest.mark.asyncio
async def test_redis_without_ping_reply_aborts_and_closes(wiring):
    FakeRedis.answers_ping = False

    with pytest.raises(UpstreamServiceError) as exc:
        await build_job_context(_settings(REDIS_URL="redis://localhost:6379/0"))

    assert exc.value.service == "redis"
    assert FakePool.instances[0].closed
    assert FakeRedis.instances[0].closed
