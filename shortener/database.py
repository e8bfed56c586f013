"""Database configuration and connection supervision for the URL shortener.

This module provides SQLAlchemy async engine setup, session management and a
supervised background task that keeps the registry connection alive.

Flow Diagram — StorageSupervisor
================================
::
    ┌─────────────┐
    │  start()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ SELECT 1 +   │◄───────────────┐
    │ create_all   │                │
    └──────┬──────┘                │
    OK?    │                        │
    ┌──────┴──────┐                 │
    │ NO           │ YES            │
    ▼              ▼                │
┌──────────┐  ┌────────────┐       │
│DISCONNECT│  │ CONNECTED  │       │
│ED        │  │ on_connect │       │
└────┬─────┘  └─────┬──────┘       │
     │              │               │
     ▼              ▼               │
    ┌───────────────────┐          │
    │ sleep retry        │──────────┘
    │ interval (5s)      │
    └───────────────────┘

How to Use
===========
**Step 1 — Build on startup**::
    supervisor = StorageSupervisor.from_settings(settings)
    await supervisor.start()

**Step 2 — Use sessions in the registry**::
    async with supervisor.session() as session:
        await session.execute(select(URL))

**Step 3 — Cleanup on shutdown**::
    await supervisor.stop()

Key Behaviours
===============
- Tables are created on the first successful connection.
- The supervisor pings on a fixed interval and flips the observable
  connectivity state on failure; it never gives up reconnecting.
- Registry calls made while disconnected fail fast with StorageUnavailable.
- SQLite URLs get a pool without pool sizing arguments.

Classes:
    Base:  SQLAlchemy declarative base for all models.
    StorageSupervisor:  Engine owner, connectivity state and reconnect loop.

Functions:
    create_engine_for():  Engine factory honouring backend-specific pool args.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import Settings
from shortener.enums import ConnectivityState, RegistryBackend

__all__ = ["Base", "StorageSupervisor", "create_engine_for", "StateListener"]

logger = logging.getLogger("urlshortener.database")

StateListener = Callable[[ConnectivityState], Awaitable[None]]


class Base(DeclarativeBase):
    pass


def create_engine_for(settings: Settings) -> AsyncEngine:
    if settings.DATABASE_URL.startswith("sqlite"):
        return create_async_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DATABASE_ECHO,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


class StorageSupervisor:
    """Owns the registry connection and reports whether it is usable.

    The memory registry uses a supervisor without an engine; it reports
    CONNECTED as soon as it is started.
    """

    def __init__(self, settings: Settings, engine: AsyncEngine | None = None):
        self._settings = settings
        self._engine = engine
        self._sessionmaker = (
            async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
            if self._engine is not None
            else None
        )
        self._state = ConnectivityState.DISCONNECTED
        self._listeners: list[StateListener] = []
        self._on_connect: list[Callable[[], Awaitable[None]]] = []
        self._task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageSupervisor":
        if settings.REGISTRY_BACKEND is RegistryBackend.SQL:
            return cls(settings, create_engine_for(settings))
        return cls(settings)

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectivityState.CONNECTED

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    def session(self) -> AsyncSession:
        if self._sessionmaker is None:
            raise RuntimeError("Supervisor has no database engine")
        return self._sessionmaker()

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def add_connect_hook(self, hook: Callable[[], Awaitable[None]]) -> None:
        """Register a coroutine run after every transition to CONNECTED."""
        self._on_connect.append(hook)

    async def start(self) -> None:
        if self._engine is None:
            await self._set_state(ConnectivityState.CONNECTED)
            return
        # First attempt inline so a healthy database is usable immediately
        await self._probe()
        self._task = asyncio.create_task(self._supervise(), name="storage-supervisor")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._engine is not None:
            await self._engine.dispose()
        self._state = ConnectivityState.DISCONNECTED

    async def mark_disconnected(self, reason: str) -> None:
        """Called by the registry when an operation hits a connection failure."""
        if self._state is ConnectivityState.CONNECTED:
            logger.warning(f"Registry connection lost: {reason}")
            await self._set_state(ConnectivityState.DISCONNECTED)
            self._wakeup.set()

    async def _supervise(self) -> None:
        interval = self._settings.STORAGE_RETRY_INTERVAL_SECONDS
        while True:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()
            if not self.is_connected:
                logger.info("Attempting to connect to the registry...")
            await self._probe()

    async def _probe(self) -> None:
        try:
            async with asyncio.timeout(self._settings.STORAGE_TIMEOUT_SECONDS):
                async with self._engine.begin() as conn:
                    await conn.execute(text("SELECT 1"))
                    if not self.is_connected:
                        await conn.run_sync(Base.metadata.create_all)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self.is_connected:
                logger.error(f"Registry health probe failed: {exc}")
            else:
                logger.error(
                    f"Registry connection error: {exc}. "
                    f"Retrying in {self._settings.STORAGE_RETRY_INTERVAL_SECONDS:g} seconds..."
                )
            await self._set_state(ConnectivityState.DISCONNECTED)
            return

        if not self.is_connected:
            logger.info("Connected to the registry")
            await self._set_state(ConnectivityState.CONNECTED)

    async def _set_state(self, state: ConnectivityState) -> None:
        if state is self._state:
            return
        self._state = state
        if state is ConnectivityState.CONNECTED:
            for hook in self._on_connect:
                try:
                    await hook()
                except Exception as exc:
                    logger.error(f"Connect hook failed: {exc}")
        for listener in self._listeners:
            try:
                await listener(state)
            except Exception as exc:
                logger.error(f"Connectivity listener failed: {exc}")
