"""
Session store tests with a controllable clock.
"""

import json
from unittest.mock import AsyncMock

import pytest

from wren.auth.sessions import (
    KEY_PREFIX,
    MemorySessionBackend,
    RedisSessionBackend,
    SessionBackend,
    SessionStore,
)
from wren.config import Settings


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FailingBackend(SessionBackend):
    async def get(self, key):
        return None

    async def set(self, key, value, ttl):
        raise ConnectionError("store down")

    async def delete(self, key):
        return None


class DictBackend(SessionBackend):
    """Backend that never expires anything on its own."""

    def __init__(self):
        self.data = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ttl):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(MemorySessionBackend(clock=clock), ttl_seconds=3600, clock=clock)


@pytest.mark.asyncio
async def test_create_then_get_returns_payload(store):
    session_id = await store.create({"identity": {"identity_id": 1}})

    assert len(session_id) >= 32
    assert await store.get(session_id) == {"identity": {"identity_id": 1}}


@pytest.mark.asyncio
async def test_tokens_are_unique(store):
    first = await store.create({})
    second = await store.create({})

    assert first != second


@pytest.mark.asyncio
async def test_get_after_ttl_returns_none(store, clock):
    session_id = await store.create({"user": "a"})

    clock.now += 3599
    assert await store.get(session_id) == {"user": "a"}

    clock.now += 1
    assert await store.get(session_id) is None


@pytest.mark.asyncio
async def test_expiry_checked_even_when_backend_still_holds_entry(clock):
    backend = DictBackend()
    store = SessionStore(backend, ttl_seconds=10, clock=clock)
    session_id = await store.create({"user": "a"})

    clock.now += 11

    assert backend.data  # still physically present
    assert await store.get(session_id) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("session_id", [None, "", "unknown"])
async def test_missing_sessions_are_indistinguishable(store, session_id):
    assert await store.get(session_id) is None


@pytest.mark.asyncio
async def test_unreadable_entry_is_treated_as_absent(clock):
    backend = DictBackend()
    backend.data["session:abc"] = "not json"
    store = SessionStore(backend, clock=clock)

    assert await store.get("abc") is None


@pytest.mark.asyncio
async def test_merge_refreshes_ttl_and_keeps_keys(store, clock):
    session_id = await store.create({"identity": {"identity_id": 1}, "wallet": None})

    clock.now += 3000
    await store.merge(session_id, {"wallet": {"wallet_id": "w1"}})
    clock.now += 3000

    assert await store.get(session_id) == {
        "identity": {"identity_id": 1},
        "wallet": {"wallet_id": "w1"},
    }


@pytest.mark.asyncio
async def test_merge_into_expired_session_is_noop(clock):
    backend = DictBackend()
    store = SessionStore(backend, ttl_seconds=10, clock=clock)
    session_id = await store.create({"user": "a"})
    clock.now += 20

    await store.merge(session_id, {"user": "b"})

    assert await store.get(session_id) is None
    entry = json.loads(backend.data[f"session:{session_id}"])
    assert entry["data"] == {"user": "a"}


@pytest.mark.asyncio
async def test_delete_is_idempotent(store):
    session_id = await store.create({"user": "a"})

    await store.delete(session_id)
    await store.delete(session_id)
    await store.delete(None)

    assert await store.get(session_id) is None


@pytest.mark.asyncio
async def test_create_logs_write_failures_and_still_returns_token(clock):
    store = SessionStore(FailingBackend(), clock=clock)

    session_id = await store.create({"user": "a"})

    assert session_id
    assert await store.get(session_id) is None


# =============================================================================
# Redis backend
# =============================================================================

@pytest.mark.asyncio
async def test_redis_backend_writes_with_expiry(clock):
    client = AsyncMock()
    store = SessionStore(RedisSessionBackend(client), ttl_seconds=600, clock=clock)

    session_id = await store.create({"identity": {"email": "a@example.com"}})

    client.set.assert_awaited_once()
    args, kwargs = client.set.await_args
    assert args[0] == f"{KEY_PREFIX}{session_id}"
    assert kwargs == {"ex": 600}
    assert json.loads(args[1])["expiresAt"] == clock.now + 600


@pytest.mark.asyncio
async def test_redis_backend_reads_and_closes(clock):
    client = AsyncMock()
    client.get.return_value = json.dumps({"data": {"k": "v"}, "expiresAt": clock.now + 10})
    store = SessionStore(RedisSessionBackend(client), clock=clock)

    assert await store.get("token") == {"k": "v"}
    await store.delete("token")
    await store.close()

    client.get.assert_awaited_once_with(f"{KEY_PREFIX}token")
    client.delete.assert_awaited_once_with(f"{KEY_PREFIX}token")
    client.aclose.assert_awaited_once()


def test_from_settings_picks_backend():
    memory = SessionStore.from_settings(Settings(_env_file=None, redis_url=""))
    redis_backed = SessionStore.from_settings(Settings(_env_file=None, redis_url="redis://localhost:6379/0"))

    assert isinstance(memory._backend, MemorySessionBackend)
    assert isinstance(redis_backed._backend, RedisSessionBackend)
