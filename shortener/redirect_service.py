"""Redirect Service

Resolves a short code to its record for the redirect hot path and records the
click without holding up the response.

Flow Diagram — resolve()
========================
::
    ┌─────────────┐
    │  GET /:code  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ code cache   │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            │
┌─────────┐      │
│ registry │     │
│ lookup   │──miss──► NotFound
└────┬────┘      │
     ▼           ▼
    ┌─────────────┐
    │ cache with   │
    │ clicks + 1   │ (optimistic)
    └──────┬──────┘
           ├───────────────────────────┐
           ▼                           ▼
    ┌─────────────┐           ┌─────────────────┐
    │ return, route│           │ detached task:   │
    │ sends 307    │           │ atomic increment │
    └─────────────┘           │ → cache, clicked │
                               │ failure → logged │
                               └─────────────────┘

Key Behaviours
===============
- The response never waits on the click write.
- The count published in the clicked event comes from the registry's atomic
  increment, not from the cached copy.
- Clicks on a record deleted before the write lands are dropped with a warning.
"""

import logging
import time

from prometheus_client import Counter, Histogram

from shortener.cache import URLCaches
from shortener.enums import CacheStatus, RequestStatus
from shortener.events import EventSink, NullEventSink, URLClicked, publish_quietly
from shortener.exceptions import NotFound, StorageUnavailable
from shortener.registry import URLRegistry
from shortener.schemas import URLRecord
from shortener.tasks import TaskSupervisor

__all__ = ["RedirectService"]

URL_LOOKUP_REQUESTS_TOTAL = Counter(
    "url_shortener_lookup_requests_total",
    "Total URL lookup requests",
    ["status", "cache_hit"],
)
URL_LOOKUP_DURATION = Histogram(
    "url_shortener_lookup_duration_seconds",
    "Time taken to lookup URLs",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)
URL_REDIRECT_REQUESTS_TOTAL = Counter(
    "url_shortener_redirect_requests_total",
    "Total URL redirect requests",
)
CLICK_PERSIST_FAILURES_TOTAL = Counter(
    "url_shortener_click_persist_failures_total",
    "Click increments that could not be written after a redirect",
)


class RedirectService:
    def __init__(
        self,
        registry: URLRegistry,
        caches: URLCaches,
        tasks: TaskSupervisor,
        events: EventSink | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._registry = registry
        self._caches = caches
        self._tasks = tasks
        self._events = events if events is not None else NullEventSink()
        self._logger = logger or logging.getLogger("urlshortener.redirect")

    @classmethod
    def from_context(cls, ctx) -> "RedirectService":
        manager = ctx.service_manager
        return cls(
            registry=manager.registry,
            caches=manager.caches,
            tasks=manager.tasks,
            events=manager.hub,
            logger=ctx.logger,
        )

    async def resolve(self, short_code: str) -> URLRecord:
        """Return the record for short_code and schedule its click increment.

        Raises:
            NotFound: unknown short code
            StorageUnavailable: cache miss while the registry is unreachable
        """
        start_time = time.perf_counter()
        cache_status = CacheStatus.HIT
        try:
            record = await self._caches.by_short_code.get(short_code)
            if record is None:
                cache_status = CacheStatus.MISS
                record = await self._registry.get_by_short_code(short_code)
        except StorageUnavailable:
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.UNAVAILABLE, cache_hit=cache_status).inc()
            raise
        finally:
            URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)

        if record is None:
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=cache_status).inc()
            raise NotFound("URL not found")

        URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=cache_status).inc()
        URL_REDIRECT_REQUESTS_TOTAL.inc()

        await self._caches.by_short_code.set(short_code, record.with_clicks(record.clicks + 1))
        self._tasks.spawn(self._record_click(record), name=f"click:{short_code}")
        return record

    async def drain(self) -> None:
        """Wait for outstanding click writes."""
        await self._tasks.drain()

    async def _record_click(self, record: URLRecord) -> None:
        try:
            clicks = await self._registry.increment_clicks(record.id)
        except StorageUnavailable as exc:
            CLICK_PERSIST_FAILURES_TOTAL.inc()
            self._logger.error(f"Click for {record.short_code} not persisted: {exc}")
            return

        if clicks is None:
            self._logger.warning(f"Click for deleted record {record.short_code} dropped")
            # resolve may have re-cached the record after the delete purged it
            await self._caches.by_short_code.delete(record.short_code)
            return

        # Refresh only a surviving entry, and never lower its count
        cached = await self._caches.by_short_code.get(record.short_code)
        if cached is not None and cached.clicks < clicks:
            await self._caches.by_short_code.set(record.short_code, cached.with_clicks(clicks))
        await publish_quietly(self._events, URLClicked(record_id=record.id, clicks=clicks), self._logger)
