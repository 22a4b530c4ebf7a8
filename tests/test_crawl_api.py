from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.api.rate_limit import SlidingWindowLimiter, status_limiter
from src.db.database import Base, get_db
from src.main import app
from src.scheduler.queue import SchedulerResult

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_db():
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    status_limiter.reset()
    yield
    app.dependency_overrides.clear()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


def _client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health():
    async with _client() as ac:
        resp = await ac.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_crawl_status_empty(test_db):
    async with _client() as ac:
        resp = await ac.get("/api/crawl/status")
    assert resp.status_code == 200
    data = resp.json()
    for key in ("queue", "email_queue", "competitors_due", "recent_crawls", "recent_alerts", "timestamp"):
        assert key in data
    assert data["queue"]["pending"] == 0
    assert data["recent_alerts"] == []


@pytest.mark.asyncio
async def test_crawl_status_rate_limited(test_db):
    with patch("src.api.rate_limit.status_limiter", SlidingWindowLimiter(1, 60)):
        async with _client() as ac:
            first = await ac.get("/api/crawl/status")
            second = await ac.get("/api/crawl/status")
    assert first.status_code == 200
    assert second.status_code == 429
    assert int(second.headers["Retry-After"]) >= 1


@pytest.mark.asyncio
async def test_cron_requires_bearer():
    with patch("src.api.cron.get_settings", return_value=MagicMock(cron_secret="s3cret")):
        async with _client() as ac:
            missing = await ac.get("/api/cron/scheduler")
            wrong = await ac.get("/api/cron/scheduler", headers={"Authorization": "Bearer nope"})
    assert missing.status_code == 401
    assert wrong.status_code == 401


@pytest.mark.asyncio
async def test_cron_secret_not_configured():
    with patch("src.api.cron.get_settings", return_value=MagicMock(cron_secret="")):
        async with _client() as ac:
            resp = await ac.get("/api/cron/scheduler", headers={"Authorization": "Bearer "})
    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_cron_scheduler_runs_enqueue():
    result = SchedulerResult(enqueued=2, skipped=1, errors=0, message="Enqueued 2 jobs, skipped 1, errors 0")
    with patch("src.api.cron.get_settings", return_value=MagicMock(cron_secret="s3cret")), patch(
        "src.api.cron.run_enqueue_jobs", return_value=result
    ) as mock_run:
        async with _client() as ac:
            resp = await ac.get("/api/cron/scheduler", headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert (data["enqueued"], data["skipped"]) == (2, 1)
    assert data["timestamp"].endswith("Z")
    mock_run.assert_called_once()


@pytest.mark.asyncio
async def test_cron_worker_failure_returns_500():
    with patch("src.api.cron.get_settings", return_value=MagicMock(cron_secret="s3cret")), patch(
        "src.api.cron.run_crawl_worker", side_effect=RuntimeError("db down")
    ):
        async with _client() as ac:
            resp = await ac.get("/api/cron/worker", headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 500
    assert "db down" in resp.json()["detail"]
