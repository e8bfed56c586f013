"""SQL registry tests against a throwaway SQLite database."""

import asyncio
import datetime

import pytest

from shortener.config import Settings
from shortener.database import StorageSupervisor
from shortener.enums import ConnectivityState
from shortener.exceptions import DuplicateOriginalUrl, DuplicateShortCode, StorageUnavailable
from shortener.registry import InMemoryURLRegistry, SQLURLRegistry


@pytest.mark.asyncio
async def test_insert_and_lookup(sql_registry: SQLURLRegistry) -> None:
    record = await sql_registry.insert("https://github.com", "abc1234", "http://sho.rt/abc1234")

    assert record.clicks == 0
    assert (await sql_registry.get_by_id(record.id)).short_code == "abc1234"
    assert (await sql_registry.get_by_short_code("abc1234")).id == record.id
    assert (await sql_registry.get_by_original_url("https://github.com")).id == record.id
    assert await sql_registry.get_by_short_code("missing") is None


@pytest.mark.asyncio
async def test_insert_classifies_unique_violations(sql_registry: SQLURLRegistry) -> None:
    await sql_registry.insert("https://github.com", "abc1234", "http://sho.rt/abc1234")

    with pytest.raises(DuplicateOriginalUrl):
        await sql_registry.insert("https://github.com", "zzz9999", "http://sho.rt/zzz9999")
    with pytest.raises(DuplicateShortCode):
        await sql_registry.insert("https://python.org", "abc1234", "http://sho.rt/abc1234")


@pytest.mark.asyncio
async def test_increment_clicks_is_atomic(sql_registry: SQLURLRegistry) -> None:
    record = await sql_registry.insert("https://github.com", "abc1234", "http://sho.rt/abc1234")

    counts = await asyncio.gather(*(sql_registry.increment_clicks(record.id) for _ in range(5)))

    assert sorted(counts) == [1, 2, 3, 4, 5]
    assert (await sql_registry.get_by_id(record.id)).clicks == 5


@pytest.mark.asyncio
async def test_increment_clicks_unknown_id(sql_registry: SQLURLRegistry) -> None:
    assert await sql_registry.increment_clicks("missing") is None


@pytest.mark.asyncio
async def test_delete_retires_short_code(sql_registry: SQLURLRegistry) -> None:
    record = await sql_registry.insert("https://github.com", "abc1234", "http://sho.rt/abc1234")

    deleted = await sql_registry.delete(record.id)

    assert deleted.id == record.id
    assert await sql_registry.get_by_id(record.id) is None
    assert await sql_registry.short_code_exists("abc1234") is True
    assert await sql_registry.delete(record.id) is None


@pytest.mark.asyncio
async def test_list_all_newest_first(sql_registry: SQLURLRegistry) -> None:
    first = await sql_registry.insert("https://github.com", "aaaaaaa", "http://sho.rt/aaaaaaa")
    await asyncio.sleep(0.001)
    second = await sql_registry.insert("https://python.org", "bbbbbbb", "http://sho.rt/bbbbbbb")

    assert [r.id for r in await sql_registry.list_all()] == [second.id, first.id]


@pytest.mark.asyncio
async def test_operations_fail_fast_while_disconnected(sql_settings: Settings) -> None:
    supervisor = StorageSupervisor.from_settings(sql_settings)
    registry = SQLURLRegistry(supervisor, sql_settings)

    assert supervisor.state is ConnectivityState.DISCONNECTED
    with pytest.raises(StorageUnavailable, match="Database not connected"):
        await registry.list_all()
    await supervisor.stop()


class StallingSQLRegistry(SQLURLRegistry):
    async def list_all(self):
        async def _stall(session):
            await asyncio.sleep(1)

        return await self._run("list_all", _stall)


@pytest.mark.asyncio
async def test_timeout_marks_storage_disconnected(sql_settings: Settings) -> None:
    supervisor = StorageSupervisor.from_settings(sql_settings)
    await supervisor.start()
    try:
        assert supervisor.is_connected
        settings = sql_settings.model_copy(update={"STORAGE_TIMEOUT_SECONDS": 0.05})
        registry = StallingSQLRegistry(supervisor, settings)

        with pytest.raises(StorageUnavailable):
            await registry.list_all()
        assert supervisor.state is ConnectivityState.DISCONNECTED
        with pytest.raises(StorageUnavailable, match="Database not connected"):
            await registry.get_by_id("anything")
    finally:
        await supervisor.stop()


@pytest.mark.asyncio
async def test_in_memory_list_all_breaks_timestamp_ties_by_insertion(monkeypatch) -> None:
    fixed = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
    monkeypatch.setattr("shortener.registry.utcnow", lambda: fixed)
    registry = InMemoryURLRegistry()

    first = await registry.insert("https://github.com", "aaaaaaa", "http://sho.rt/aaaaaaa")
    second = await registry.insert("https://python.org", "bbbbbbb", "http://sho.rt/bbbbbbb")
    await registry.increment_clicks(first.id)

    assert [r.id for r in await registry.list_all()] == [second.id, first.id]
