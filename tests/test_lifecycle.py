"""Storage supervision, background tasks and service manager lifecycle."""

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from shortener.config import Settings
from shortener.database import StorageSupervisor
from shortener.dependencies import _service_manager
from shortener.enums import ConnectivityState
from shortener.main import app
from shortener.registry import SQLURLRegistry
from shortener.tasks import TaskSupervisor


@pytest.mark.asyncio
async def test_supervisor_without_engine_connects_immediately(settings: Settings) -> None:
    supervisor = StorageSupervisor.from_settings(settings)
    states: list[ConnectivityState] = []

    async def listener(state: ConnectivityState) -> None:
        states.append(state)

    supervisor.add_listener(listener)
    await supervisor.start()

    assert supervisor.is_connected
    assert supervisor.engine is None
    await supervisor.mark_disconnected("lost")
    assert states == [ConnectivityState.CONNECTED, ConnectivityState.DISCONNECTED]
    await supervisor.stop()


@pytest.mark.asyncio
async def test_supervisor_creates_tables_and_runs_connect_hooks(sql_settings: Settings) -> None:
    supervisor = StorageSupervisor.from_settings(sql_settings)
    hook_calls = 0

    async def hook() -> None:
        nonlocal hook_calls
        hook_calls += 1

    supervisor.add_connect_hook(hook)
    await supervisor.start()
    try:
        assert supervisor.is_connected
        assert hook_calls == 1
        assert await SQLURLRegistry(supervisor, sql_settings).list_all() == []
    finally:
        await supervisor.stop()
    assert supervisor.state is ConnectivityState.DISCONNECTED


@pytest.mark.asyncio
async def test_supervisor_reconnects_after_failure(sql_settings: Settings) -> None:
    supervisor = StorageSupervisor.from_settings(sql_settings)
    await supervisor.start()
    try:
        await supervisor.mark_disconnected("simulated outage")
        assert not supervisor.is_connected

        for _ in range(50):
            if supervisor.is_connected:
                break
            await asyncio.sleep(0.05)
        assert supervisor.is_connected
    finally:
        await supervisor.stop()


@pytest.mark.asyncio
async def test_task_supervisor_reports_failures() -> None:
    failures: list[tuple[str, BaseException]] = []
    tasks = TaskSupervisor(on_error=lambda name, exc: failures.append((name, exc)))

    async def boom() -> None:
        raise ValueError("boom")

    async def fine() -> None:
        await asyncio.sleep(0)

    tasks.spawn(boom(), name="click:abc")
    tasks.spawn(fine(), name="click:def")
    await tasks.drain()

    assert len(tasks) == 0
    assert [(name, str(exc)) for name, exc in failures] == [("click:abc", "boom")]


@pytest.mark.asyncio
async def test_task_supervisor_cancel_all() -> None:
    tasks = TaskSupervisor()
    task = tasks.spawn(asyncio.sleep(10), name="slow")

    await tasks.cancel_all()

    assert task.cancelled()
    assert len(tasks) == 0


@pytest.mark.asyncio
async def test_manager_seeds_demo_url_on_sql_backend(sql_settings: Settings) -> None:
    settings = sql_settings.model_copy(update={"SEED_DEMO_URL": True})
    await _service_manager.initialize(settings)
    try:
        assert _service_manager.supervisor.is_connected
        record = await _service_manager.registry.get_by_short_code("test123")
        assert record is not None
        assert record.original_url == "https://example.com"

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/test123")
        assert response.status_code == 307
        assert response.headers["location"] == "https://example.com"
    finally:
        await _service_manager.cleanup()
    assert not _service_manager._initialized
