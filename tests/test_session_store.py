"""Tests for SessionStore persistence and the key-value backends."""

import asyncio
import base64
import gc
import json
import zlib

import pytest

from fuelintel.model.session import WizardState, utcnow
from fuelintel.stores.kv import InMemoryKeyValueStore, KeyValueStore
from fuelintel.stores.session import SessionStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FailingStore(KeyValueStore):
    """Backend that is always down."""

    async def get(self, key: str) -> bytes | None:
        raise ConnectionError("store down")

    async def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        raise ConnectionError("store down")

    async def delete(self, key: str) -> bool:
        raise ConnectionError("store down")


class TestInMemoryKeyValueStore:
    """Dictionary backend with lazy expiry."""

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self):
        clock = FakeClock()
        kv = InMemoryKeyValueStore(clock=clock)
        await kv.set_with_ttl("k", b"v", 10)

        clock.now += 9
        assert await kv.get("k") == b"v"
        clock.now += 1
        assert await kv.get("k") is None

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        clock = FakeClock()
        kv = InMemoryKeyValueStore(clock=clock)
        await kv.set_with_ttl("a", b"1", 5)
        await kv.set_with_ttl("b", b"2", 50)

        clock.now += 10
        assert kv.purge_expired() == 1
        assert len(kv) == 1

    @pytest.mark.asyncio
    async def test_rejects_non_positive_ttl(self):
        kv = InMemoryKeyValueStore()
        with pytest.raises(ValueError):
            await kv.set_with_ttl("k", b"v", 0)

    @pytest.mark.asyncio
    async def test_delete(self):
        kv = InMemoryKeyValueStore()
        await kv.set_with_ttl("k", b"v", 10)
        assert await kv.delete("k") is True
        assert await kv.delete("k") is False


class TestSessionStore:
    """Load/save semantics."""

    @pytest.mark.asyncio
    async def test_missing_session_is_fresh(self):
        store = SessionStore(InMemoryKeyValueStore())
        session = await store.load("telegram:1")

        assert session.user_key == "telegram:1"
        assert session.active_wizard is None
        assert session.history == []

    @pytest.mark.asyncio
    async def test_save_and_load(self):
        store = SessionStore(InMemoryKeyValueStore())
        session = await store.load("telegram:1")
        session.active_wizard = WizardState(wizard_id="configurar", started_at=utcnow(), current_step=2)
        session.merge_context("price_query", {"fuel_type": "premium"})
        session.add_to_history("premium?", "Precio premium")

        assert await store.save("telegram:1", session) is True
        loaded = await store.load("telegram:1")

        assert loaded == session

    @pytest.mark.asyncio
    async def test_compressed_payload_is_base64_zlib(self):
        kv = InMemoryKeyValueStore()
        store = SessionStore(kv, key_prefix="test")
        await store.save("telegram:1", store.new_session("telegram:1"))

        raw = await kv.get("test:telegram:1")
        decoded = json.loads(zlib.decompress(base64.b64decode(raw)))
        assert decoded["user_key"] == "telegram:1"

    @pytest.mark.asyncio
    async def test_reads_uncompressed_payloads(self):
        kv = InMemoryKeyValueStore()
        plain = SessionStore(kv, compression=False)
        session = plain.new_session("telegram:1")
        session.add_to_history("hola", "¡Hola!")
        await plain.save("telegram:1", session)

        compressed = SessionStore(kv, compression=True)
        loaded = await compressed.load("telegram:1")
        assert loaded.history[0].response == "¡Hola!"

    @pytest.mark.asyncio
    async def test_corrupted_payload_yields_fresh_session(self):
        kv = InMemoryKeyValueStore()
        store = SessionStore(kv)
        await kv.set_with_ttl(store._key("telegram:1"), b"not a session", 60)

        session = await store.load("telegram:1")
        assert session.user_key == "telegram:1"
        assert session.context is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"user_key": "telegram:9", "context": [1, 2], "history": []},
            {"user_key": "telegram:9", "history": ["q", "r"]},
            {"user_key": "telegram:9", "active_wizard": "configurar"},
        ],
    )
    async def test_wrongly_shaped_payload_yields_fresh_session(self, payload):
        kv = InMemoryKeyValueStore()
        store = SessionStore(kv, compression=False)
        await kv.set_with_ttl(store._key("telegram:9"), json.dumps(payload).encode(), 60)

        with pytest.raises(ValueError):
            store.decode("telegram:9", await kv.get(store._key("telegram:9")))
        session = await store.load("telegram:9")
        assert session.user_key == "telegram:9"
        assert session.context is None
        assert session.history == []

    @pytest.mark.asyncio
    async def test_foreign_payload_is_rejected(self):
        kv = InMemoryKeyValueStore()
        store = SessionStore(kv)
        await store.save("telegram:2", store.new_session("telegram:2"))
        await kv.set_with_ttl(store._key("telegram:1"), await kv.get(store._key("telegram:2")), 60)

        with pytest.raises(ValueError):
            store.decode("telegram:1", await kv.get(store._key("telegram:1")))
        session = await store.load("telegram:1")
        assert session.user_key == "telegram:1"

    @pytest.mark.asyncio
    async def test_backend_failure_degrades(self):
        store = SessionStore(FailingStore())

        session = await store.load("telegram:1")
        assert session.user_key == "telegram:1"
        assert await store.save("telegram:1", session) is False

    @pytest.mark.asyncio
    async def test_sliding_expiry(self):
        clock = FakeClock()
        store = SessionStore(InMemoryKeyValueStore(clock=clock), ttl_seconds=100)
        session = store.new_session("telegram:1")
        session.add_to_history("q", "r")
        await store.save("telegram:1", session)

        clock.now += 90
        await store.save("telegram:1", await store.load("telegram:1"))
        clock.now += 90
        assert (await store.load("telegram:1")).history

        clock.now += 101
        assert (await store.load("telegram:1")).history == []

    @pytest.mark.asyncio
    async def test_lock_serializes_turns(self):
        store = SessionStore(InMemoryKeyValueStore())
        assert store.lock("telegram:1") is store.lock("telegram:1")
        assert store.lock("telegram:1") is not store.lock("telegram:2")

        async def turn(text: str) -> None:
            async with store.lock("telegram:1"):
                session = await store.load("telegram:1")
                await asyncio.sleep(0.01)
                session.add_to_history(text, "ok")
                await store.save("telegram:1", session)

        await asyncio.gather(*(turn(f"q{i}") for i in range(4)))
        session = await store.load("telegram:1")
        assert len(session.history) == 4

    @pytest.mark.asyncio
    async def test_idle_locks_are_released(self):
        store = SessionStore(InMemoryKeyValueStore())
        for i in range(50):
            async with store.lock(f"telegram:{i}"):
                pass

        gc.collect()
        assert len(store._locks) == 0

        held = store.lock("telegram:1")
        async with held:
            assert store.lock("telegram:1") is held
            assert len(store._locks) == 1
