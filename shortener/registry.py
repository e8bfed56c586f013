"""Code Registry: the durable, uniqueness-enforcing store of URL records.

This module establishes one contract for every registry backend and ships two
implementations: a SQLAlchemy registry (PostgreSQL in production, SQLite in
tests) and an in-process registry for local development.

Responsibilities:
    - Own record identity (ids are assigned here).
    - Enforce uniqueness of short_code and of normalized original_url,
      reporting which one an insert violated.
    - Bound every operation by STORAGE_TIMEOUT_SECONDS and translate driver
      failures into StorageUnavailable.
    - Fail fast while the storage supervisor reports DISCONNECTED.

Flow Diagram — SQLURLRegistry operation
=======================================
::
    ┌─────────────┐
    │  call op     │
    └──────┬──────┘
           ▼
    ┌─────────────┐  NO   ┌──────────────────┐
    │ connected?   │──────►│StorageUnavailable │
    └──────┬──────┘       └──────────────────┘
           ▼ YES
    ┌─────────────┐
    │ asyncio.     │
    │ timeout()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐ driver error / timeout
    │ session op   │──────────────────────► mark_disconnected
    └──────┬──────┘                         + StorageUnavailable
           ▼
        result

Example:
        >>> registry = SQLURLRegistry(supervisor, settings)
        >>> record = await registry.insert("https://example.com", "a1b2c3d", "http://sho.rt/a1b2c3d")
        >>> (await registry.get_by_short_code("a1b2c3d")).original_url
        'https://example.com'
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shortener.config import Settings
from shortener.database import StorageSupervisor
from shortener.exceptions import DuplicateOriginalUrl, DuplicateShortCode, StorageUnavailable
from shortener.models import URL, RetiredCode, new_record_id, utcnow
from shortener.schemas import URLRecord

__all__ = ["URLRegistry", "SQLURLRegistry", "InMemoryURLRegistry"]

logger = logging.getLogger("urlshortener.registry")

T = TypeVar("T")


class URLRegistry(ABC):
    """Interface for URL record storage.

    Methods:
        insert(original_url, short_code, short_url) -> URLRecord:
            Persist a new record with clicks=0.
            Raises DuplicateOriginalUrl or DuplicateShortCode on a unique violation.

        get_by_id / get_by_short_code / get_by_original_url -> URLRecord | None

        short_code_exists(short_code) -> bool

        delete(record_id) -> URLRecord | None:
            Remove and return the record, None if the id is unknown.

        increment_clicks(record_id) -> int | None:
            Atomically add one click, returning the new count.

        list_all() -> list[URLRecord]:
            Every record, newest first.

        ping() -> None

    All methods raise StorageUnavailable when the store cannot be reached.
    """

    @abstractmethod
    async def insert(self, original_url: str, short_code: str, short_url: str) -> URLRecord: ...

    @abstractmethod
    async def get_by_id(self, record_id: str) -> URLRecord | None: ...

    @abstractmethod
    async def get_by_short_code(self, short_code: str) -> URLRecord | None: ...

    @abstractmethod
    async def get_by_original_url(self, original_url: str) -> URLRecord | None: ...

    async def short_code_exists(self, short_code: str) -> bool:
        return await self.get_by_short_code(short_code) is not None

    @abstractmethod
    async def delete(self, record_id: str) -> URLRecord | None: ...

    @abstractmethod
    async def increment_clicks(self, record_id: str) -> int | None: ...

    @abstractmethod
    async def list_all(self) -> list[URLRecord]: ...

    @abstractmethod
    async def ping(self) -> None: ...


class SQLURLRegistry(URLRegistry):
    def __init__(self, supervisor: StorageSupervisor, settings: Settings):
        self._supervisor = supervisor
        self._timeout = settings.STORAGE_TIMEOUT_SECONDS

    async def _run(self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        if not self._supervisor.is_connected:
            raise StorageUnavailable("Database not connected")
        try:
            async with asyncio.timeout(self._timeout):
                async with self._supervisor.session() as session:
                    return await fn(session)
        except TimeoutError as exc:
            logger.error(f"Registry {operation} timed out after {self._timeout:g}s")
            await self._supervisor.mark_disconnected(f"{operation} timed out")
            raise StorageUnavailable() from exc
        except IntegrityError as exc:
            # Unclassified constraint failure leaves connectivity untouched
            logger.error(f"Registry {operation} violated an unexpected constraint: {exc}")
            raise StorageUnavailable() from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error(f"Registry {operation} failed: {exc}")
            await self._supervisor.mark_disconnected(str(exc))
            raise StorageUnavailable() from exc

    async def ping(self) -> None:
        await self._run("ping", lambda session: session.execute(select(1)))

    async def insert(self, original_url: str, short_code: str, short_url: str) -> URLRecord:
        async def _insert(session: AsyncSession) -> URLRecord:
            row = URL(
                id=new_record_id(),
                original_url=original_url,
                short_code=short_code,
                short_url=short_url,
                clicks=0,
                created_at=utcnow(),
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                await self._classify_conflict(session, original_url, short_code)
                raise
            return URLRecord.model_validate(row)

        return await self._run("insert", _insert)

    async def _classify_conflict(self, session: AsyncSession, original_url: str, short_code: str) -> None:
        existing = await session.execute(select(URL.id).where(URL.original_url == original_url))
        if existing.scalar_one_or_none() is not None:
            raise DuplicateOriginalUrl()
        existing = await session.execute(select(URL.id).where(URL.short_code == short_code))
        if existing.scalar_one_or_none() is not None:
            raise DuplicateShortCode()

    async def _get_one(self, operation: str, *criteria) -> URLRecord | None:
        async def _get(session: AsyncSession) -> URLRecord | None:
            result = await session.execute(select(URL).where(*criteria))
            row = result.scalar_one_or_none()
            return URLRecord.model_validate(row) if row is not None else None

        return await self._run(operation, _get)

    async def get_by_id(self, record_id: str) -> URLRecord | None:
        return await self._get_one("get_by_id", URL.id == record_id)

    async def get_by_short_code(self, short_code: str) -> URLRecord | None:
        return await self._get_one("get_by_short_code", URL.short_code == short_code)

    async def get_by_original_url(self, original_url: str) -> URLRecord | None:
        return await self._get_one("get_by_original_url", URL.original_url == original_url)

    async def short_code_exists(self, short_code: str) -> bool:
        async def _exists(session: AsyncSession) -> bool:
            result = await session.execute(select(URL.id).where(URL.short_code == short_code))
            if result.scalar_one_or_none() is not None:
                return True
            return await session.get(RetiredCode, short_code) is not None

        return await self._run("short_code_exists", _exists)

    async def delete(self, record_id: str) -> URLRecord | None:
        async def _delete(session: AsyncSession) -> URLRecord | None:
            result = await session.execute(select(URL).where(URL.id == record_id))
            row = result.scalar_one_or_none()
            if row is None:
                return None
            record = URLRecord.model_validate(row)
            await session.execute(delete(URL).where(URL.id == record_id))
            session.add(RetiredCode(short_code=record.short_code, retired_at=utcnow()))
            await session.commit()
            return record

        return await self._run("delete", _delete)

    async def increment_clicks(self, record_id: str) -> int | None:
        async def _increment(session: AsyncSession) -> int | None:
            result = await session.execute(
                update(URL).where(URL.id == record_id).values(clicks=URL.clicks + 1)
            )
            if result.rowcount == 0:
                await session.rollback()
                return None
            # Row stays locked until commit, so this reads our own increment
            clicks = (await session.execute(select(URL.clicks).where(URL.id == record_id))).scalar_one()
            await session.commit()
            return clicks

        return await self._run("increment_clicks", _increment)

    async def list_all(self) -> list[URLRecord]:
        async def _list(session: AsyncSession) -> list[URLRecord]:
            result = await session.execute(select(URL).order_by(URL.created_at.desc()))
            return [URLRecord.model_validate(row) for row in result.scalars().all()]

        return await self._run("list_all", _list)


class InMemoryURLRegistry(URLRegistry):
    """Process-local registry for development and tests.

    Check-and-insert runs without a suspension point in between, which gives
    the same guarantee as a pair of unique indexes. Every operation yields to
    the event loop first so concurrent callers interleave as they would
    against a real database.
    """

    def __init__(self, supervisor: StorageSupervisor | None = None):
        self._supervisor = supervisor
        self._by_id: dict[str, URLRecord] = {}
        self._id_by_code: dict[str, str] = {}
        self._id_by_url: dict[str, str] = {}
        self._retired_codes: set[str] = set()

    async def _enter(self) -> None:
        if self._supervisor is not None and not self._supervisor.is_connected:
            raise StorageUnavailable("Database not connected")
        await asyncio.sleep(0)

    async def ping(self) -> None:
        await self._enter()

    async def insert(self, original_url: str, short_code: str, short_url: str) -> URLRecord:
        await self._enter()
        if original_url in self._id_by_url:
            raise DuplicateOriginalUrl()
        if short_code in self._id_by_code or short_code in self._retired_codes:
            raise DuplicateShortCode()
        record = URLRecord(
            id=new_record_id(),
            original_url=original_url,
            short_code=short_code,
            short_url=short_url,
            clicks=0,
            created_at=utcnow(),
        )
        self._by_id[record.id] = record
        self._id_by_code[short_code] = record.id
        self._id_by_url[original_url] = record.id
        return record

    async def get_by_id(self, record_id: str) -> URLRecord | None:
        await self._enter()
        return self._by_id.get(record_id)

    async def get_by_short_code(self, short_code: str) -> URLRecord | None:
        await self._enter()
        record_id = self._id_by_code.get(short_code)
        return self._by_id.get(record_id) if record_id else None

    async def get_by_original_url(self, original_url: str) -> URLRecord | None:
        await self._enter()
        record_id = self._id_by_url.get(original_url)
        return self._by_id.get(record_id) if record_id else None

    async def short_code_exists(self, short_code: str) -> bool:
        await self._enter()
        return short_code in self._id_by_code or short_code in self._retired_codes

    async def delete(self, record_id: str) -> URLRecord | None:
        await self._enter()
        record = self._by_id.pop(record_id, None)
        if record is None:
            return None
        self._id_by_code.pop(record.short_code, None)
        self._retired_codes.add(record.short_code)
        self._id_by_url.pop(record.original_url, None)
        return record

    async def increment_clicks(self, record_id: str) -> int | None:
        await self._enter()
        record = self._by_id.get(record_id)
        if record is None:
            return None
        record = record.with_clicks(record.clicks + 1)
        self._by_id[record_id] = record
        return record.clicks

    async def list_all(self) -> list[URLRecord]:
        await self._enter()
        # Insertion order breaks created_at ties, later inserts first
        ordered = list(enumerate(self._by_id.values()))
        ordered.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [record for _, record in ordered]
