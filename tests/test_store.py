import asyncio

from relay.services.store import SQLStateStore


async def test_set_get_and_expiry(store: SQLStateStore, clock):
    await store.set("a", b"1", ttl_ms=1000)
    assert await store.get("a") == b"1"

    clock.advance(1000)
    assert await store.get("a") is None


async def test_set_overwrites(store):
    await store.set("a", b"1")
    await store.set("a", b"2")
    assert await store.get("a") == b"2"


async def test_keys_glob(store):
    for key in ("weather:mumbai", "weather:delhi", "news:us:tech", "weather_x"):
        await store.set(key, b"v", ttl_ms=60_000)

    assert sorted(await store.keys("weather:*")) == ["weather:delhi", "weather:mumbai"]
    assert await store.keys("news:??:tech") == ["news:us:tech"]
    assert sorted(await store.keys("weather[:_]*")) == [
        "weather:delhi",
        "weather:mumbai",
        "weather_x",
    ]


async def test_keys_glob_is_case_sensitive(store):
    for key in ("weather:mumbai", "WEATHER:Delhi", "github:Octocat", "github:octocat"):
        await store.set(key, b"v", ttl_ms=60_000)

    assert await store.keys("weather:*") == ["weather:mumbai"]
    assert await store.keys("github:Octo*") == ["github:Octocat"]
    assert await store.keys("WEATHER:?elhi") == ["WEATHER:Delhi"]


async def test_keys_skips_expired(store, clock):
    await store.set("short", b"v", ttl_ms=10)
    await store.set("long", b"v", ttl_ms=10_000)
    clock.advance(10)
    assert await store.keys("*") == ["long"]


async def test_incr_anchors_window_at_first_hit(store, clock):
    first = await store.incr("ctr", ttl_ms=60_000)
    assert first.count == 1
    assert first.expires_at == clock() + 60_000

    clock.advance(30_000)
    second = await store.incr("ctr", ttl_ms=60_000)
    assert second.count == 2
    assert second.expires_at == first.expires_at

    clock.advance(30_000)
    fresh = await store.incr("ctr", ttl_ms=60_000)
    assert fresh.count == 1
    assert fresh.expires_at == clock() + 60_000


async def test_concurrent_incr_is_atomic(store):
    results = await asyncio.gather(*(store.incr("hot", ttl_ms=60_000) for _ in range(20)))
    assert sorted(r.count for r in results) == list(range(1, 21))


async def test_get_counter_does_not_modify(store, clock):
    assert await store.get_counter("ctr") is None
    await store.incr("ctr", ttl_ms=1000)

    state = await store.get_counter("ctr")
    assert state.count == 1
    assert (await store.get_counter("ctr")).count == 1

    clock.advance(1000)
    assert await store.get_counter("ctr") is None


async def test_decr_keeps_expiry_and_floor(store, clock):
    assert await store.decr("ctr") is None

    first = await store.incr("ctr", ttl_ms=1000)
    await store.incr("ctr", ttl_ms=1000)
    state = await store.decr("ctr")
    assert state.count == 1
    assert state.expires_at == first.expires_at

    assert (await store.decr("ctr")).count == 0
    assert await store.decr("ctr") is None
    assert (await store.get_counter("ctr")).count == 0

    clock.advance(1000)
    assert await store.decr("ctr") is None


async def test_delete_and_purge(store, clock):
    await store.set("a", b"1")
    await store.incr("c", ttl_ms=1000)
    assert await store.delete("a", "c", "missing") == 2

    await store.set("old", b"1", ttl_ms=10)
    await store.incr("old-ctr", ttl_ms=10)
    await store.set("keep", b"1")
    clock.advance(10)
    assert await store.purge_expired() == 2
    assert await store.get("keep") == b"1"


async def test_ping(store, broken_store):
    assert await store.ping() is True
    assert await broken_store.ping() is False
