import asyncio
import json
import string

import pytest

from dojoqr.tokens import (
    TOKEN_BYTES,
    JsonTokenStore,
    MemoryTokenStore,
    TokenLifecycle,
    TokenPersistenceError,
    UnknownLocationError,
    new_token,
)

LOCATION = "loc-central"
URLSAFE = set(string.ascii_letters + string.digits + "-_")


class FailingStore(MemoryTokenStore):
    async def _persist(self, by_location):
        raise TokenPersistenceError("database unavailable")


def test_new_token_shape():
    token = new_token()
    assert len(token) == 4 * TOKEN_BYTES // 3
    assert set(token) <= URLSAFE


def test_regenerate_never_repeats():
    async def scenario():
        store = MemoryTokenStore({LOCATION: "initial"})
        lifecycle = TokenLifecycle(store)
        previous = "initial"
        seen = {previous}
        for _ in range(1000):
            token = await lifecycle.regenerate(LOCATION)
            assert token != previous
            previous = token
            seen.add(token)
        return seen

    assert len(asyncio.run(scenario())) == 1001


def test_rotated_out_token_no_longer_resolves():
    async def scenario():
        store = MemoryTokenStore({LOCATION: "abc-123"})
        token = await TokenLifecycle(store).regenerate(LOCATION)
        return store, token, await store.resolve("abc-123"), await store.resolve(token), await store.get(LOCATION)

    _store, token, old, new, current = asyncio.run(scenario())
    assert old is None
    assert new == LOCATION
    assert current == token


def test_unknown_location():
    lifecycle = TokenLifecycle(MemoryTokenStore())
    with pytest.raises(UnknownLocationError):
        asyncio.run(lifecycle.regenerate("loc-missing"))


def test_persistence_failure_keeps_previous_token():
    calls = []

    async def scenario():
        store = FailingStore({LOCATION: "abc-123"})
        lifecycle = TokenLifecycle(store)
        lifecycle.subscribe(lambda loc, token: calls.append(token))
        with pytest.raises(TokenPersistenceError):
            await lifecycle.regenerate(LOCATION)
        return await store.get(LOCATION), await store.resolve("abc-123")

    current, resolved = asyncio.run(scenario())
    assert current == "abc-123"
    assert resolved == LOCATION
    assert calls == []


def test_concurrent_regenerations_leave_exactly_one_valid_token():
    async def scenario():
        store = MemoryTokenStore({LOCATION: "abc-123"})
        lifecycle = TokenLifecycle(store)
        tokens = await asyncio.gather(*(lifecycle.regenerate(LOCATION) for _ in range(20)))
        resolved = [await store.resolve(t) for t in [*tokens, "abc-123"]]
        return await store.get(LOCATION), tokens, resolved

    current, tokens, resolved = asyncio.run(scenario())
    assert current in tokens
    assert resolved.count(LOCATION) == 1


def test_async_listener_is_awaited():
    seen = []

    async def listener(location_id, token):
        await asyncio.sleep(0)
        seen.append((location_id, token))

    async def scenario():
        lifecycle = TokenLifecycle(MemoryTokenStore({LOCATION: "abc-123"}))
        lifecycle.subscribe(listener)
        return await lifecycle.regenerate(LOCATION)

    token = asyncio.run(scenario())
    assert seen == [(LOCATION, token)]


def test_failing_listener_does_not_undo_rotation(caplog):
    seen = []

    def broken(location_id, token):
        raise RuntimeError("view went away")

    async def scenario():
        store = MemoryTokenStore({LOCATION: "abc-123"})
        lifecycle = TokenLifecycle(store)
        lifecycle.subscribe(broken)
        lifecycle.subscribe(lambda location_id, token: seen.append(token))
        token = await lifecycle.regenerate(LOCATION)
        return store, token

    store, token = asyncio.run(scenario())
    assert seen == [token]
    assert asyncio.run(store.get(LOCATION)) == token
    assert any(r.levelname == "ERROR" and "listener" in r.getMessage() for r in caplog.records)


def test_create_location_rejects_duplicates():
    async def scenario():
        store = MemoryTokenStore()
        token = await store.create_location(LOCATION)
        with pytest.raises(ValueError):
            await store.create_location(LOCATION)
        return store, token

    store, token = asyncio.run(scenario())
    assert asyncio.run(store.resolve(token)) == LOCATION


def test_json_store_persists_rotation(tmp_path):
    path = tmp_path / "tokens.json"

    async def scenario():
        store = JsonTokenStore(str(path))
        await store.create_location(LOCATION, "abc-123")
        return await TokenLifecycle(store).regenerate(LOCATION)

    token = asyncio.run(scenario())
    assert json.loads(path.read_text()) == {"tokens": {LOCATION: token}}

    reloaded = JsonTokenStore(str(path))
    assert asyncio.run(reloaded.get(LOCATION)) == token
    assert asyncio.run(reloaded.resolve("abc-123")) is None


def test_json_store_write_failure_is_not_applied(tmp_path):
    path = tmp_path / "tokens.json"

    async def scenario():
        store = JsonTokenStore(str(path))
        await store.create_location(LOCATION, "abc-123")
        path.unlink()
        path.mkdir()  # os.replace onto a directory fails
        with pytest.raises(TokenPersistenceError):
            await TokenLifecycle(store).regenerate(LOCATION)
        return await store.get(LOCATION), await store.resolve("abc-123")

    current, resolved = asyncio.run(scenario())
    assert current == "abc-123"
    assert resolved == LOCATION
    assert [p.name for p in tmp_path.iterdir()] == ["tokens.json"]
