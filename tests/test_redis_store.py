from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from relay.services.errors import StoreUnavailable
from relay.services.redis_store import RedisStateStore


class FakePipeline:
    def __init__(self, results: list):
        self.results = results
        self.commands: list[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __getattr__(self, name):
        def record(*args, **kwargs):
            self.commands.append((name, args, kwargs))

        return record

    async def execute(self):
        return self.results


@pytest.fixture
def redis_client():
    return MagicMock()


async def test_set_uses_millisecond_expiry(redis_client, clock):
    redis_client.set = AsyncMock()
    store = RedisStateStore(redis_client, clock=clock)

    await store.set("cache:k", b"v", ttl_ms=1500)
    redis_client.set.assert_awaited_once_with("cache:k", b"v", px=1500)


async def test_incr_sets_expiry_only_once(redis_client, clock):
    pipeline = FakePipeline([3, False, 45_000])
    redis_client.pipeline.return_value = pipeline
    store = RedisStateStore(redis_client, clock=clock)

    state = await store.incr("ratelimit:upstream:u1", ttl_ms=60_000)
    assert state.count == 3
    assert state.expires_at == clock() + 45_000
    assert ("pexpire", ("ratelimit:upstream:u1", 60_000), {"nx": True}) in pipeline.commands


async def test_decr_runs_as_one_script(redis_client, clock):
    redis_client.eval = AsyncMock(return_value=[4, 30_000])
    store = RedisStateStore(redis_client, clock=clock)

    state = await store.decr("ratelimit:auth:ip:1")
    assert state.count == 4
    assert state.expires_at == clock() + 30_000
    redis_client.eval.assert_awaited_once()
    assert redis_client.eval.await_args.args[1:] == (1, "ratelimit:auth:ip:1")


async def test_decr_missing_counter(redis_client):
    redis_client.eval = AsyncMock(return_value=[-1, -2])
    store = RedisStateStore(redis_client)
    assert await store.decr("ratelimit:auth:ip:1") is None


async def test_get_counter_missing(redis_client, clock):
    redis_client.pipeline.return_value = FakePipeline([None, -2])
    store = RedisStateStore(redis_client, clock=clock)
    assert await store.get_counter("ratelimit:auth:ip:1") is None


async def test_keys_decodes_scan_results(redis_client):
    async def scan_iter(match=None, count=None):
        for key in (b"cache:weather:mumbai", b"cache:weather:delhi"):
            yield key

    redis_client.scan_iter = scan_iter
    store = RedisStateStore(redis_client)
    assert await store.keys("cache:weather:*") == ["cache:weather:mumbai", "cache:weather:delhi"]


async def test_connection_errors_become_store_unavailable(redis_client):
    redis_client.get = AsyncMock(side_effect=RedisConnectionError("refused"))
    redis_client.delete = AsyncMock(side_effect=OSError("network unreachable"))
    store = RedisStateStore(redis_client)

    with pytest.raises(StoreUnavailable):
        await store.get("k")
    with pytest.raises(StoreUnavailable):
        await store.delete("k")
    assert await store.ping() is False
