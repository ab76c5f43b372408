import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from marketchat.domain.chat import delivery
from marketchat.domain.chat.directory import MEMORY_CATALOG, MEMORY_DIRECTORY
from marketchat.domain.chat.models import Side
from marketchat.domain.chat.repo import MEMORY_STORE
from marketchat.infra import postgres
from marketchat.main import app
from marketchat.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


BUYER_ID = 1
OTHER_BUYER_ID = 2
VENDOR_ID = 10
OTHER_VENDOR_ID = 11
LAMP_ID = 42
HELMET_ID = 7


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from marketchat.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		await delivery.drain()
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Keep the chat knobs at their defaults regardless of the local .env."""
	original = (
		settings.environment,
		settings.chat_broadcast_scope,
		settings.chat_summary_cache_enabled,
		settings.chat_history_max_limit,
		settings.chat_max_body_length,
	)
	settings.environment = "dev"
	settings.chat_broadcast_scope = "global"
	settings.chat_summary_cache_enabled = False
	settings.chat_history_max_limit = 100
	settings.chat_max_body_length = 4000
	try:
		yield
	finally:
		(
			settings.environment,
			settings.chat_broadcast_scope,
			settings.chat_summary_cache_enabled,
			settings.chat_history_max_limit,
			settings.chat_max_body_length,
		) = original


@pytest.fixture(autouse=True)
def seeded_marketplace():
	"""Fresh in-memory store with two buyers, two vendors and two products."""
	MEMORY_STORE.clear()
	MEMORY_DIRECTORY.clear()
	MEMORY_CATALOG.clear()
	MEMORY_DIRECTORY.register(Side.REQUESTER, BUYER_ID, "Una Buyer", "https://cdn.example/una.png")
	MEMORY_DIRECTORY.register(Side.REQUESTER, OTHER_BUYER_ID, "Bea Buyer")
	MEMORY_DIRECTORY.register(Side.COUNTERPARTY, VENDOR_ID, "Vic's Vintage", "https://cdn.example/vic.png")
	MEMORY_DIRECTORY.register(Side.COUNTERPARTY, OTHER_VENDOR_ID, "Vera Shop")
	MEMORY_CATALOG.register(LAMP_ID, "Desk lamp")
	MEMORY_CATALOG.register(HELMET_ID, "Bike helmet")
	yield
	MEMORY_STORE.clear()
	MEMORY_DIRECTORY.clear()
	MEMORY_CATALOG.clear()


@pytest.fixture
def broadcasts(monkeypatch):
	"""Capture live-channel emits instead of sending them."""
	sent: list = []

	async def fake_topic(payload):
		sent.append(("topic", payload))
		return True

	async def fake_pair(key, payload):
		sent.append(("pair", key, payload))
		return True

	monkeypatch.setattr("marketchat.domain.chat.sockets.emit_to_topic", fake_topic)
	monkeypatch.setattr("marketchat.domain.chat.sockets.emit_to_pair", fake_pair)
	return sent


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
