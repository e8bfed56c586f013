"""Domain events emitted by the services.

Services only describe what happened; an EventSink at the boundary decides
who receives it. ``origin`` is an opaque subscriber id the boundary passed in
with the request, or None for requests that did not come from a subscriber.
"""

from dataclasses import dataclass
from typing import Protocol

from shortener.schemas import URLRecord

__all__ = [
    "DomainEvent",
    "URLCreated",
    "URLDeleted",
    "URLClicked",
    "EventSink",
    "NullEventSink",
    "publish_quietly",
]


@dataclass(frozen=True)
class DomainEvent:
    pass


@dataclass(frozen=True)
class URLCreated(DomainEvent):
    record: URLRecord
    is_existing: bool
    origin: str | None = None


@dataclass(frozen=True)
class URLDeleted(DomainEvent):
    record_id: str
    origin: str | None = None


@dataclass(frozen=True)
class URLClicked(DomainEvent):
    record_id: str
    clicks: int


class EventSink(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...


class NullEventSink:
    async def publish(self, event: DomainEvent) -> None:
        return None


async def publish_quietly(sink: EventSink, event: DomainEvent, logger) -> None:
    """Deliver event, logging a failing sink instead of failing the operation."""
    try:
        await sink.publish(event)
    except Exception as exc:
        logger.error(f"Publishing {type(event).__name__} failed: {exc!r}")
