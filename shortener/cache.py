"""Lookup caches in front of the registry.

Two independent tables are kept: one keyed by normalized original URL (dedup
on create) and one keyed by short code (redirect hot path). Both are filled
lazily, never expired and purged explicitly when a record is deleted.

Flow Diagram — purge(record)
============================
::
    ┌─────────────┐
    │ delete(id)   │
    │ succeeded    │
    └──────┬──────┘
           ▼
    ┌─────────────────────┐
    │ scan by_original_url │
    │ for value.id == id   │
    └──────┬──────────────┘
           ▼
    ┌─────────────────────┐
    │ drop by_short_code   │
    │ [record.short_code]  │
    └─────────────────────┘

How to Use
===========
**Step 1 — Build from settings**::
    caches = URLCaches.from_settings(settings, redis_client)

**Step 2 — Read through**::
    record = await caches.by_short_code.get("abc123")

**Step 3 — Purge on delete**::
    await caches.purge(record)

Key Behaviours
===============
- Values are URLRecord snapshots; clicks may be stale for other readers.
- The memory backend is a plain process-wide dict with no bound.
- The Redis backend stores JSON without TTL and downgrades Redis errors to
  cache misses, since the registry stays the source of truth.

Classes:
    LookupCache:  Interface for one lookup table.
    MemoryLookupCache:  dict-backed table.
    RedisLookupCache:  Redis-backed table sharing one client.
    URLCaches:  The pair of tables plus the purge contract.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from shortener.config import Settings
from shortener.enums import CacheBackend
from shortener.schemas import URLRecord

__all__ = ["LookupCache", "MemoryLookupCache", "RedisLookupCache", "URLCaches"]

logger = logging.getLogger("urlshortener.cache")


class LookupCache(ABC):
    name: str

    @abstractmethod
    async def get(self, key: str) -> URLRecord | None: ...

    @abstractmethod
    async def set(self, key: str, record: URLRecord) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    def items(self) -> AsyncIterator[tuple[str, URLRecord]]: ...

    async def delete_by_record_id(self, record_id: str) -> int:
        """Drop every entry whose value belongs to record_id."""
        stale = [key async for key, record in self.items() if record.id == record_id]
        for key in stale:
            await self.delete(key)
        return len(stale)

    async def ping(self) -> None:
        return None


class MemoryLookupCache(LookupCache):
    def __init__(self, name: str):
        self.name = name
        self._entries: dict[str, URLRecord] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get(self, key: str) -> URLRecord | None:
        return self._entries.get(key)

    async def set(self, key: str, record: URLRecord) -> None:
        self._entries[key] = record

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def items(self) -> AsyncIterator[tuple[str, URLRecord]]:
        for key, record in list(self._entries.items()):
            yield key, record


class RedisLookupCache(LookupCache):
    def __init__(self, name: str, client: redis.Redis, prefix: str):
        self.name = name
        self._client = client
        self._prefix = f"{prefix}:{name}:"

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> URLRecord | None:
        try:
            cached = await self._client.get(self._key(key))
        except RedisError as exc:
            logger.error(f"Cache read error on {self.name} for {key}: {exc}")
            return None
        if not cached:
            return None
        try:
            return URLRecord.model_validate_json(cached)
        except ValidationError as exc:
            logger.error(f"Cache deserialization error on {self.name} for {key}: {exc}")
            return None

    async def set(self, key: str, record: URLRecord) -> None:
        try:
            await self._client.set(self._key(key), record.model_dump_json())
        except RedisError as exc:
            logger.error(f"Cache write error on {self.name} for {key}: {exc}")

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            logger.error(f"Cache delete error on {self.name} for {key}: {exc}")

    async def items(self) -> AsyncIterator[tuple[str, URLRecord]]:
        async for redis_key in self._client.scan_iter(match=f"{self._prefix}*"):
            record = await self.get(redis_key[len(self._prefix):])
            if record is not None:
                yield redis_key[len(self._prefix):], record

    async def ping(self) -> None:
        await self._client.ping()


class URLCaches:
    def __init__(self, by_original_url: LookupCache, by_short_code: LookupCache):
        self.by_original_url = by_original_url
        self.by_short_code = by_short_code

    @classmethod
    def in_memory(cls) -> "URLCaches":
        return cls(MemoryLookupCache("original_url"), MemoryLookupCache("short_code"))

    @classmethod
    def from_settings(cls, settings: Settings, client: redis.Redis | None = None) -> "URLCaches":
        if settings.CACHE_BACKEND is CacheBackend.REDIS:
            if client is None:
                raise ValueError("CACHE_BACKEND=redis requires a Redis client")
            return cls(
                RedisLookupCache("original_url", client, settings.CACHE_KEY_PREFIX),
                RedisLookupCache("short_code", client, settings.CACHE_KEY_PREFIX),
            )
        return cls.in_memory()

    async def purge(self, record: URLRecord) -> None:
        removed = await self.by_original_url.delete_by_record_id(record.id)
        await self.by_short_code.delete(record.short_code)
        logger.debug(f"Purged {record.short_code} from caches ({removed} origin entries)")

    async def ping(self) -> None:
        await self.by_original_url.ping()
        await self.by_short_code.ping()
