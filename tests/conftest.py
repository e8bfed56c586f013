"""Shared pytest fixtures for service, registry, API and realtime tests."""

import asyncio
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from shortener.cache import URLCaches
from shortener.config import Settings
from shortener.database import StorageSupervisor
from shortener.dependencies import ServiceManager, _service_manager
from shortener.enums import CacheBackend, RegistryBackend
from shortener.events import DomainEvent
from shortener.issuer import CodeIssuer
from shortener.main import app
from shortener.registry import InMemoryURLRegistry, SQLURLRegistry
from shortener.url_service import URLShorteningService

BASE_URL = "http://sho.rt"


class RecordingSink:
    """EventSink double that keeps every published event."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


class GatedRegistry(InMemoryURLRegistry):
    """Registry that pauses one kind of lookup after reading its result.

    The test waits on `reached`, mutates the registry, then sets `release` so
    the paused caller continues with the now stale result.
    """

    def __init__(self, gated: str) -> None:
        super().__init__()
        self.gated = gated
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def _pause(self, lookup: str) -> None:
        if lookup == self.gated and not self.reached.is_set():
            self.reached.set()
            await self.release.wait()

    async def get_by_short_code(self, short_code: str):
        record = await super().get_by_short_code(short_code)
        await self._pause("get_by_short_code")
        return record

    async def get_by_original_url(self, original_url: str):
        record = await super().get_by_original_url(original_url)
        await self._pause("get_by_original_url")
        return record


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        REGISTRY_BACKEND=RegistryBackend.MEMORY,
        CACHE_BACKEND=CacheBackend.MEMORY,
        BASE_URL=BASE_URL,
    )


@pytest.fixture
def sql_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        REGISTRY_BACKEND=RegistryBackend.SQL,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'urls.db'}",
        CACHE_BACKEND=CacheBackend.MEMORY,
        BASE_URL=BASE_URL,
        STORAGE_RETRY_INTERVAL_SECONDS=0.5,
    )


@pytest.fixture
def registry() -> InMemoryURLRegistry:
    return InMemoryURLRegistry()


@pytest.fixture
def caches() -> URLCaches:
    return URLCaches.in_memory()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def service(registry, caches, sink, settings) -> URLShorteningService:
    return URLShorteningService(registry, caches, CodeIssuer(registry), settings, events=sink)


@pytest_asyncio.fixture
async def sql_registry(sql_settings: Settings) -> AsyncGenerator[SQLURLRegistry, None]:
    supervisor = StorageSupervisor.from_settings(sql_settings)
    await supervisor.start()
    yield SQLURLRegistry(supervisor, sql_settings)
    await supervisor.stop()


@pytest_asyncio.fixture
async def manager(settings: Settings) -> AsyncGenerator[ServiceManager, None]:
    await _service_manager.initialize(settings)
    yield _service_manager
    await _service_manager.cleanup()


@pytest_asyncio.fixture
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def ws_client(settings: Settings, monkeypatch) -> Generator[TestClient, None, None]:
    """Sync client whose lifespan initializes the app with test settings."""
    monkeypatch.setattr("shortener.dependencies.get_settings", lambda: settings)
    with TestClient(app) as test_client:
        yield test_client
