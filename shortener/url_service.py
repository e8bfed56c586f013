"""URL Shortener Service Layer - Core Business Logic

This module owns creation, listing, lookup and deletion of short URLs. It is
transport-agnostic: results are returned to the caller and domain events are
handed to an EventSink that decides delivery.

Architecture Overview
==================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                    Service Layer                            │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │   URL Service   │  │   Code Issuer   │  │  URLCaches   │ │
    │  │                 │  │                 │  │              │ │
    │  │ • Shorten       │  │ • nanoid        │  │ • by URL     │ │
    │  │ • List / Get    │  │ • bounded retry │  │ • by code    │ │
    │  │ • Delete        │  │                 │  │ • purge      │ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                                         │
                ▼                                         ▼
    ┌─────────────────┐                        ┌─────────────────┐
    │   URLRegistry   │                        │    EventSink    │
    │ (unique indexes)│                        │ (realtime hub)  │
    └─────────────────┘                        └─────────────────┘

URL Creation Flow
-----------------
::
    ┌─────────────┐
    │ normalize    │──invalid──► InvalidUrl
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ origin cache │──hit──► (record, existing)
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ registry by  │──hit──► cache + (record, existing)
    │ original_url │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ issue code + │──DuplicateOriginalUrl──► re-query, (winner, existing)
    │ insert       │──DuplicateShortCode────► retry once with a new code
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache, emit  │
    │ (record, new)│
    └─────────────┘

Key Behaviours
===============
- Concurrent identical submissions converge on one stored record and only
  one caller sees is_existing=False.
- Uniqueness races are resolved here and never reach the client.
- Deletion purges both caches before the deletion event is published.
"""

import logging
import time

from prometheus_client import Counter, Histogram

from shortener.cache import URLCaches
from shortener.config import Settings
from shortener.enums import RequestStatus
from shortener.events import EventSink, NullEventSink, URLCreated, URLDeleted, publish_quietly
from shortener.exceptions import (
    CodeSpaceExhausted,
    DuplicateOriginalUrl,
    DuplicateShortCode,
    InvalidUrl,
    NotFound,
    StorageUnavailable,
)
from shortener.issuer import CodeIssuer
from shortener.normalize import normalize_url
from shortener.registry import URLRegistry
from shortener.schemas import ShortenResult, URLRecord

__all__ = ["URLShorteningService", "SHORT_CODE_RETRIES"]

# Extra whole-issue attempts after a short code collision on insert
SHORT_CODE_RETRIES = 1

URL_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_creation_requests_total",
    "Total URL creation requests",
    ["status"],
)
URL_CREATION_DURATION = Histogram(
    "url_shortener_creation_duration_seconds",
    "Time taken to create short URLs",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
URL_DELETIONS_TOTAL = Counter(
    "url_shortener_deletions_total",
    "Total URL deletion requests",
    ["status"],
)
CREATION_RACES_TOTAL = Counter(
    "url_shortener_creation_races_total",
    "Unique constraint races resolved during creation",
    ["constraint"],
)


class URLShorteningService:
    """Core service class for URL shortening operations.

    Example:
        >>> service = URLShorteningService(registry, caches, issuer, settings)
        >>> result = await service.shorten("github.com")
        >>> result.record.original_url, result.is_existing
        ('https://github.com', False)
    """

    def __init__(
        self,
        registry: URLRegistry,
        caches: URLCaches,
        issuer: CodeIssuer,
        settings: Settings,
        events: EventSink | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._registry = registry
        self._caches = caches
        self._issuer = issuer
        self._settings = settings
        self._events = events if events is not None else NullEventSink()
        self._logger = logger or logging.getLogger("urlshortener.service")

    @classmethod
    def from_context(cls, ctx) -> "URLShorteningService":
        """Build a service bound to a request's logger and the shared components."""
        manager = ctx.service_manager
        return cls(
            registry=manager.registry,
            caches=manager.caches,
            issuer=manager.issuer,
            settings=manager.settings,
            events=manager.hub,
            logger=ctx.logger,
        )

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def shorten(self, original_url: str | None, origin: str | None = None) -> ShortenResult:
        """Return the record for original_url, creating it on first submission.

        Args:
            original_url: URL as submitted, with or without a scheme
            origin: Opaque id of the requesting subscriber, if any

        Returns:
            ShortenResult: the record and whether it already existed

        Raises:
            InvalidUrl: missing or malformed URL
            StorageUnavailable: registry unreachable or timed out
            CodeSpaceExhausted: no free short code could be issued
        """
        start_time = time.perf_counter()
        try:
            normalized = normalize_url(original_url)
            result = await self._shorten_normalized(normalized)
        except InvalidUrl as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR).inc()
            self._logger.warning(f"URL shortening rejected: {exc}")
            raise
        except StorageUnavailable:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.UNAVAILABLE).inc()
            raise
        except Exception as exc:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            self._logger.error(f"URL creation error: {exc}")
            raise
        finally:
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)

        status = RequestStatus.EXISTING if result.is_existing else RequestStatus.SUCCESS
        URL_CREATION_REQUESTS_TOTAL.labels(status=status).inc()
        await publish_quietly(
            self._events,
            URLCreated(record=result.record, is_existing=result.is_existing, origin=origin),
            self._logger,
        )
        return result

    async def list_urls(self) -> list[URLRecord]:
        return await self._registry.list_all()

    async def get_url(self, short_code: str) -> URLRecord:
        record = await self._registry.get_by_short_code(short_code)
        if record is None:
            raise NotFound("Short URL not found")
        return record

    async def delete_url(self, record_id: str, origin: str | None = None) -> URLRecord:
        """Delete a record, purge both caches and announce the deletion.

        Raises:
            NotFound: record_id is unknown
            StorageUnavailable: registry unreachable or timed out
        """
        try:
            record = await self._registry.delete(record_id)
        except StorageUnavailable:
            URL_DELETIONS_TOTAL.labels(status=RequestStatus.UNAVAILABLE).inc()
            raise
        if record is None:
            URL_DELETIONS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            self._logger.warning(f"Delete requested for unknown id: {record_id}")
            raise NotFound("URL not found")

        await self._caches.purge(record)
        URL_DELETIONS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Deleted {record.short_code} ({record.id})")
        await publish_quietly(self._events, URLDeleted(record_id=record.id, origin=origin), self._logger)
        return record

    async def seed_demo_url(self) -> None:
        """Ensure the configured demo mapping exists."""
        code = self._settings.SEED_DEMO_CODE
        target = normalize_url(self._settings.SEED_DEMO_TARGET)
        if await self._registry.short_code_exists(code):
            self._logger.info("Demo URL already exists")
            return
        if await self._registry.get_by_original_url(target) is not None:
            self._logger.info(f"Demo target already shortened under another code: {target}")
            return
        try:
            await self._registry.insert(target, code, self._short_url_for(code))
        except (DuplicateOriginalUrl, DuplicateShortCode):
            return
        self._logger.info(f"Demo URL created: {code} -> {target}")

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _shorten_normalized(self, normalized: str) -> ShortenResult:
        cached = await self._caches.by_original_url.get(normalized)
        if cached is not None:
            self._logger.debug(f"URL found in cache: {normalized}")
            return ShortenResult(record=cached, is_existing=True)

        existing = await self._registry.get_by_original_url(normalized)
        if existing is not None:
            self._logger.debug(f"URL found in registry: {existing.id}")
            if await self._remember_origin(normalized, existing):
                return ShortenResult(record=existing, is_existing=True)
            self._logger.info(f"Record {existing.id} deleted while resolving {normalized}, creating anew")

        for attempt in range(SHORT_CODE_RETRIES + 1):
            short_code = await self._issuer.issue()
            try:
                record = await self._registry.insert(normalized, short_code, self._short_url_for(short_code))
            except DuplicateOriginalUrl:
                CREATION_RACES_TOTAL.labels(constraint="original_url").inc()
                return await self._reconcile_with_winner(normalized)
            except DuplicateShortCode:
                CREATION_RACES_TOTAL.labels(constraint="short_code").inc()
                self._logger.warning(f"Short code {short_code} taken during insert (attempt {attempt + 1})")
                continue

            await self._remember_origin(normalized, record)
            self._logger.info(f"Generated new short URL: {record.short_url} for {normalized}")
            return ShortenResult(record=record, is_existing=False)

        raise CodeSpaceExhausted(f"Short code collided on insert {SHORT_CODE_RETRIES + 1} times")

    async def _reconcile_with_winner(self, normalized: str) -> ShortenResult:
        winner = await self._registry.get_by_original_url(normalized)
        if winner is None or not await self._remember_origin(normalized, winner):
            # Winner was deleted between its insert and our re-query
            raise StorageUnavailable("URL changed concurrently, please retry")
        self._logger.info(f"Concurrent creation resolved to {winner.short_code}")
        return ShortenResult(record=winner, is_existing=True)

    async def _remember_origin(self, normalized: str, record: URLRecord) -> bool:
        """Cache record under normalized, unless it was deleted meanwhile.

        A delete may purge between our registry read and this write, so the
        record is re-read after caching and the entry dropped if it is gone.
        """
        await self._caches.by_original_url.set(normalized, record)
        if await self._registry.get_by_id(record.id) is not None:
            return True
        await self._caches.by_original_url.delete(normalized)
        return False

    def _short_url_for(self, short_code: str) -> str:
        return f"{self._settings.public_base}/{short_code}"
