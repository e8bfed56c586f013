"""Dependency injection with a singleton service manager.

Shared resources (storage supervisor, registry, caches, code issuer, realtime
hub, background tasks) are created once at startup and handed to each request
through a lightweight RequestContext. Services are built per request from that
context so log lines carry the request's identifiers.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from starlette.requests import HTTPConnection

from shortener.cache import URLCaches
from shortener.config import Settings, get_settings
from shortener.database import StorageSupervisor
from shortener.enums import CacheBackend, RegistryBackend
from shortener.issuer import CodeIssuer
from shortener.realtime import ConnectionHub
from shortener.redirect_service import RedirectService
from shortener.registry import InMemoryURLRegistry, SQLURLRegistry, URLRegistry
from shortener.tasks import TaskSupervisor
from shortener.url_service import URLShorteningService

# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    ``initialize`` accepts explicit settings so tests can run the whole
    application against the memory registry or a throwaway SQLite file.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self, settings: Settings | None = None) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return
        self.settings = settings or get_settings()
        self.logger = self._setup_logger()
        self.supervisor = StorageSupervisor.from_settings(self.settings)
        self.registry = self._setup_registry()
        self.cache_client = await self._setup_redis()
        self.caches = URLCaches.from_settings(self.settings, self.cache_client)
        self.issuer = CodeIssuer(
            self.registry,
            length=self.settings.SHORT_CODE_LENGTH,
            max_attempts=self.settings.CODE_ISSUE_MAX_ATTEMPTS,
        )
        self.tasks = TaskSupervisor()
        self.hub = ConnectionHub()

        self.supervisor.add_listener(self.hub.connectivity_changed)
        if self.settings.SEED_DEMO_URL:
            self.supervisor.add_connect_hook(self._seed_demo_url)

        self._initialized = True
        await self.supervisor.start()
        self.logger.info(
            f"{self.settings.APP_NAME} started "
            f"(registry={self.settings.REGISTRY_BACKEND}, cache={self.settings.CACHE_BACKEND}, "
            f"storage={self.supervisor.state})"
        )

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    def _setup_registry(self) -> URLRegistry:
        if self.settings.REGISTRY_BACKEND is RegistryBackend.SQL:
            return SQLURLRegistry(self.supervisor, self.settings)
        return InMemoryURLRegistry(self.supervisor)

    async def _setup_redis(self) -> redis.Redis | None:
        if self.settings.CACHE_BACKEND is not CacheBackend.REDIS:
            return None
        return redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)

    async def _seed_demo_url(self) -> None:
        service = URLShorteningService(
            registry=self.registry,
            caches=self.caches,
            issuer=self.issuer,
            settings=self.settings,
            logger=self.logger,
        )
        await service.seed_demo_url()

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        await self.tasks.drain()
        await self.hub.close_all()
        await self.supervisor.stop()
        if self.cache_client is not None:
            await self.cache_client.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking plus access to the shared resources.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID taken from the x-trace-id header
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())

    @classmethod
    def from_connection(cls, connection: HTTPConnection, manager: ServiceManager) -> "RequestContext":
        """Build a context from an HTTP request or a WebSocket handshake."""
        return cls(
            service_manager=manager,
            trace_id=connection.headers.get("x-trace-id"),
            user_agent=connection.headers.get("user-agent"),
            client_ip=connection.client.host if connection.client else None,
        )

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with the request identifiers attached."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext.from_connection(request, manager)


def get_url_service(ctx: RequestContext = Depends(get_request_context)) -> URLShorteningService:
    return URLShorteningService.from_context(ctx)


def get_redirect_service(ctx: RequestContext = Depends(get_request_context)) -> RedirectService:
    return RedirectService.from_context(ctx)
