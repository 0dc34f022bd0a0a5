from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from relay.api import create_app
from relay.container import Container, build_container
from relay.jobs.handlers import EMAIL_QUEUE, SEND_EMAIL, StaticUserSource, UserRecord

from tests.test_handlers import FakeMailer
from tests.test_providers import WEATHER_BODY, Upstream

ADMIN = {"X-User-Id": "root", "X-User-Role": "admin"}


@pytest.fixture
def upstream() -> Upstream:
    return Upstream({"/data/2.5/weather": httpx.Response(200, json=WEATHER_BODY)})


@pytest_asyncio.fixture
async def container(settings, clock, upstream) -> AsyncIterator[Container]:
    container = build_container(
        settings,
        clock=clock,
        transport=httpx.MockTransport(upstream),
        mailer=FakeMailer(),
        user_source=StaticUserSource([UserRecord(id="1", country="India", age=30)]),
    )
    await container.start(run_background=False)
    yield container
    await container.stop()


@pytest_asyncio.fixture
async def client(container) -> AsyncIterator[AsyncClient]:
    app = create_app(container, manage_lifecycle=False)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["store"] is True


async def test_weather_cached_flag(client, upstream):
    first = await client.get("/api/weather/Mumbai")
    assert first.status_code == 200
    assert first.json()["city"] == "Mumbai"
    assert first.json()["cached"] is False

    second = await client.get("/api/weather/Mumbai")
    assert second.json()["cached"] is True
    assert upstream.hits("/data/2.5/weather") == 1


async def test_upstream_failure_is_503(client, upstream):
    upstream.routes["/data/2.5/weather"] = httpx.Response(502, text="bad gateway")

    response = await client.get("/api/weather/Pune")
    assert response.status_code == 503
    assert response.json()["success"] is False


async def test_upstream_limit_returns_429_with_retry_hint(client, clock):
    for _ in range(10):
        assert (await client.get("/api/weather/Mumbai")).status_code == 200

    response = await client.get("/api/weather/Mumbai")
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    body = response.json()
    assert body["allowed"] is False
    assert body["message"] == "Too many API requests, please slow down."
    assert body["retryAfter"] == clock() + 60_000

    # a different caller is unaffected
    other = await client.get("/api/weather/Mumbai", headers={"X-User-Id": "u2"})
    assert other.status_code == 200


async def test_login_attempts_only_failures_count(client):
    for _ in range(3):
        ok = await client.post("/api/auth/attempt", json={"username": "admin", "password": "s3cret"})
        assert ok.status_code == 200

    for _ in range(5):
        bad = await client.post("/api/auth/attempt", json={"username": "admin", "password": "nope"})
        assert bad.status_code == 401

    blocked = await client.post("/api/auth/attempt", json={"username": "admin", "password": "s3cret"})
    assert blocked.status_code == 429
    assert "login attempts" in blocked.json()["message"]


async def test_invalidate_requires_admin(client):
    response = await client.post("/api/cache/invalidate", json={"pattern": "weather:*"})
    assert response.status_code == 403


async def test_invalidate_pattern(client, container):
    await client.get("/api/weather/Mumbai")
    await container.cache.set("news:us:technology", {"articles": []})

    response = await client.post("/api/cache/invalidate", json={"pattern": "weather:*"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json() == {"count": 1}
    assert await container.cache.get("news:us:technology") is not None

    again = await client.get("/api/weather/Mumbai")
    assert again.json()["cached"] is False


async def test_stats_are_response_cached(client, container):
    first = await client.get("/api/stats")
    assert first.json()["data"]["totalUsers"] == 1
    assert first.json()["cached"] is False

    second = await client.get("/api/stats")
    assert second.json()["cached"] is True
    assert await container.cache.get("GET:/api/stats") is not None


async def test_submit_and_inspect_job(client, container):
    response = await client.post(
        "/api/jobs",
        json={
            "queueName": EMAIL_QUEUE,
            "type": SEND_EMAIL,
            "data": {"to": "ada@example.com", "subject": "Hi"},
            "maxAttempts": 3,
            "backoff": {"kind": "exponential", "baseDelayMs": 2000},
        },
    )
    assert response.status_code == 202
    job_id = response.json()["id"]

    status = await client.get(f"/api/jobs/{job_id}")
    assert status.status_code == 200
    assert status.json()["state"] == "waiting"
    assert status.json()["maxAttempts"] == 3
    assert status.json()["backoff"] == {"kind": "exponential", "baseDelayMs": 2000}

    await container.queue.process_next(EMAIL_QUEUE)
    status = await client.get(f"/api/jobs/{job_id}")
    assert status.json()["state"] == "completed"

    counts = await client.get(f"/api/queues/{EMAIL_QUEUE}")
    assert counts.json()["counts"]["completed"] == 1


async def test_submit_job_validation(client):
    unknown = await client.post("/api/jobs", json={"queueName": "nope", "type": "nothing"})
    assert unknown.status_code == 422

    invalid = await client.post(
        "/api/jobs", json={"queueName": EMAIL_QUEUE, "type": SEND_EMAIL, "maxAttempts": 0}
    )
    assert invalid.status_code == 422


async def test_unknown_job_and_queue_are_404(client):
    assert (await client.get("/api/jobs/does-not-exist")).status_code == 404
    assert (await client.get("/api/queues/does-not-exist")).status_code == 404


async def test_retry_failed_job(client, container):
    job_id = await container.queue.enqueue(EMAIL_QUEUE, SEND_EMAIL, {"subject": "no recipient"})
    await container.queue.process_next(EMAIL_QUEUE)

    assert (await client.post(f"/api/jobs/{job_id}/retry")).status_code == 403
    response = await client.post(f"/api/jobs/{job_id}/retry", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["state"] == "waiting"

    assert (await client.post(f"/api/jobs/{job_id}/retry", headers=ADMIN)).status_code == 404
