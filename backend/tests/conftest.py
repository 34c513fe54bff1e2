import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from wordparty.domain.games import repository as game_repository
from wordparty.domain.rooms import service as room_service
from wordparty.domain.stories import service as story_service
from wordparty.infra import postgres
from wordparty.infra.changefeed import change_feed
from wordparty.main import app
from wordparty.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    from wordparty.infra.redis import redis_client, set_redis_client

    original = redis_client._client
    client = FakeRedis(decode_responses=True)
    set_redis_client(client)
    try:
        yield client
    finally:
        set_redis_client(original)
        await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
    async def _noop():
        return None

    monkeypatch.setattr(postgres, "init_pool", _noop)
    monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings(tmp_path):
    """Dev mode (header auth), custom words on, and a throwaway storage root."""
    original = (
        settings.environment,
        settings.enable_custom_words,
        settings.storage_root,
        settings.client_state_path,
    )
    settings.environment = "dev"
    settings.enable_custom_words = True
    settings.storage_root = str(tmp_path / "storage")
    settings.client_state_path = str(tmp_path / "client-state.json")
    try:
        yield
    finally:
        (
            settings.environment,
            settings.enable_custom_words,
            settings.storage_root,
            settings.client_state_path,
        ) = original


@pytest_asyncio.fixture(autouse=True)
async def reset_state():
    room_service.reset_memory_state()
    game_repository.reset_memory_state()
    story_service.reset_memory_state()
    yield
    await change_feed.reset()


@pytest_asyncio.fixture
async def api_client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
