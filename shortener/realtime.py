"""Realtime fan-out over WebSockets.

The hub is the EventSink the services publish to. It turns domain events into
``{"event": ..., "data": ...}`` messages and applies the delivery policy:

==============  ================================  =========================================
Event           Payload                           Delivery
==============  ================================  =========================================
created         URL record                        requester always; others only if new
deleted         {id}                              everyone, requester included
clicked         {id, clicks}                      everyone
listSnapshot    records, newest first             requester, on subscribe and on request
error           {message}                         requester of the failed operation
processing      {originalUrl}                     requester, before shortening starts
status          {storage}                         on subscribe; everyone on state change
==============  ================================  =========================================

Delivery is best effort: a subscriber whose send fails is dropped and
reconciles through its next snapshot request. Nothing is replayed.

Subscribers send ``requestSnapshot``, ``submitUrl {originalUrl}`` and
``requestDelete {id}``.
"""

import asyncio
import json
import logging
import uuid

from fastapi import WebSocket, WebSocketDisconnect
from prometheus_client import Counter, Gauge
from pydantic import ValidationError

from shortener.enums import ClientEvent, ConnectivityState, ServerEvent
from shortener.events import DomainEvent, URLClicked, URLCreated, URLDeleted
from shortener.exceptions import ShortenerError
from shortener.schemas import (
    ClickPayload,
    ClientMessage,
    DeletedPayload,
    ErrorPayload,
    ProcessingPayload,
    ServerMessage,
    StatusPayload,
)
from shortener.url_service import URLShorteningService

__all__ = ["Subscriber", "ConnectionHub", "RealtimeSession"]

logger = logging.getLogger("urlshortener.realtime")

REALTIME_SUBSCRIBERS = Gauge(
    "url_shortener_realtime_subscribers",
    "Currently connected realtime subscribers",
)
REALTIME_MESSAGES_TOTAL = Counter(
    "url_shortener_realtime_messages_total",
    "Realtime messages delivered to subscribers",
    ["event"],
)
REALTIME_SEND_FAILURES_TOTAL = Counter(
    "url_shortener_realtime_send_failures_total",
    "Realtime sends that failed and dropped the subscriber",
)


class Subscriber:
    def __init__(self, websocket: WebSocket):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self._send_lock = asyncio.Lock()

    async def send(self, message: ServerMessage) -> None:
        async with self._send_lock:
            await self.websocket.send_json(message.to_wire())

    def __repr__(self) -> str:
        return f"<Subscriber(id={self.id})>"


class ConnectionHub:
    """Registry of connected subscribers and the event delivery policy."""

    def __init__(self) -> None:
        self._subscribers: dict[str, Subscriber] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber_id: str) -> bool:
        return subscriber_id in self._subscribers

    async def connect(self, websocket: WebSocket) -> Subscriber:
        await websocket.accept()
        subscriber = Subscriber(websocket)
        self._subscribers[subscriber.id] = subscriber
        REALTIME_SUBSCRIBERS.set(len(self._subscribers))
        logger.info(f"New client connected with ID: {subscriber.id}")
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        if self._subscribers.pop(subscriber.id, None) is not None:
            REALTIME_SUBSCRIBERS.set(len(self._subscribers))
            logger.info(f"Client disconnected: {subscriber.id}")

    async def unicast(self, subscriber_id: str, message: ServerMessage) -> bool:
        subscriber = self._subscribers.get(subscriber_id)
        if subscriber is None:
            return False
        return await self._deliver(subscriber, message)

    async def broadcast(self, message: ServerMessage, exclude: str | None = None) -> int:
        targets = [s for s in self._subscribers.values() if s.id != exclude]
        results = await asyncio.gather(*(self._deliver(s, message) for s in targets))
        return sum(results)

    async def publish(self, event: DomainEvent) -> None:
        if isinstance(event, URLCreated):
            message = ServerMessage(event=ServerEvent.CREATED, data=event.record)
            if event.origin is not None:
                await self.unicast(event.origin, message)
            if not event.is_existing:
                await self.broadcast(message, exclude=event.origin)
        elif isinstance(event, URLDeleted):
            await self.broadcast(ServerMessage(event=ServerEvent.DELETED, data=DeletedPayload(id=event.record_id)))
        elif isinstance(event, URLClicked):
            await self.broadcast(
                ServerMessage(event=ServerEvent.CLICKED, data=ClickPayload(id=event.record_id, clicks=event.clicks))
            )
        else:
            logger.warning(f"No delivery policy for {type(event).__name__}")

    async def connectivity_changed(self, state: ConnectivityState) -> None:
        await self.broadcast(ServerMessage(event=ServerEvent.STATUS, data=StatusPayload(storage=state)))

    async def close_all(self) -> None:
        for subscriber in list(self._subscribers.values()):
            try:
                await subscriber.websocket.close()
            except RuntimeError:
                pass
            self.disconnect(subscriber)

    async def _deliver(self, subscriber: Subscriber, message: ServerMessage) -> bool:
        try:
            await subscriber.send(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            REALTIME_SEND_FAILURES_TOTAL.inc()
            logger.warning(f"Dropping subscriber {subscriber.id} after failed send: {exc!r}")
            self.disconnect(subscriber)
            return False
        REALTIME_MESSAGES_TOTAL.labels(event=message.event).inc()
        return True


class RealtimeSession:
    """Serves one subscriber until it disconnects."""

    def __init__(
        self,
        hub: ConnectionHub,
        service: URLShorteningService,
        storage_state: ConnectivityState,
    ):
        self._hub = hub
        self._service = service
        self._storage_state = storage_state

    async def run(self, websocket: WebSocket) -> None:
        subscriber = await self._hub.connect(websocket)
        try:
            await self._reply(subscriber, ServerEvent.STATUS, StatusPayload(storage=self._storage_state))
            await self._send_snapshot(subscriber)
            while True:
                raw = await websocket.receive_text()
                await self._handle(subscriber, raw)
        except WebSocketDisconnect:
            pass
        finally:
            self._hub.disconnect(subscriber)

    async def _handle(self, subscriber: Subscriber, raw: str) -> None:
        try:
            message = ClientMessage.model_validate_json(raw)
        except (ValidationError, json.JSONDecodeError):
            await self._error(subscriber, "Malformed message")
            return

        event = ClientEvent.from_str(message.event)
        if event is ClientEvent.REQUEST_SNAPSHOT:
            logger.debug(f"Client {subscriber.id} requested all URLs")
            await self._send_snapshot(subscriber)
        elif event is ClientEvent.SUBMIT_URL:
            await self._submit(subscriber, message.data.get("originalUrl"))
        elif event is ClientEvent.REQUEST_DELETE:
            await self._delete(subscriber, message.data.get("id"))
        else:
            await self._error(subscriber, f"Unknown event: {message.event}")

    async def _send_snapshot(self, subscriber: Subscriber) -> None:
        try:
            records = await self._service.list_urls()
        except ShortenerError as exc:
            await self._error(subscriber, exc.message)
            return
        await self._reply(subscriber, ServerEvent.LIST_SNAPSHOT, records)

    async def _submit(self, subscriber: Subscriber, original_url) -> None:
        if not isinstance(original_url, str) or not original_url.strip():
            await self._error(subscriber, "URL is required")
            return
        await self._reply(subscriber, ServerEvent.PROCESSING, ProcessingPayload(original_url=original_url))
        try:
            # created is delivered by the hub once the service publishes it
            await self._service.shorten(original_url, origin=subscriber.id)
        except ShortenerError as exc:
            await self._error(subscriber, exc.message)
        except Exception as exc:
            logger.exception(f"Error in submitUrl from {subscriber.id}: {exc}")
            await self._error(subscriber, "Failed to create short URL")

    async def _delete(self, subscriber: Subscriber, record_id) -> None:
        if not isinstance(record_id, str) or not record_id:
            await self._error(subscriber, "URL ID is required")
            return
        try:
            await self._service.delete_url(record_id, origin=subscriber.id)
        except ShortenerError as exc:
            await self._error(subscriber, exc.message)
        except Exception as exc:
            logger.exception(f"Error deleting URL for {subscriber.id}: {exc}")
            await self._error(subscriber, "Failed to delete URL")

    async def _reply(self, subscriber: Subscriber, event: ServerEvent, data) -> None:
        await self._hub.unicast(subscriber.id, ServerMessage(event=event, data=data))

    async def _error(self, subscriber: Subscriber, message: str) -> None:
        await self._reply(subscriber, ServerEvent.ERROR, ErrorPayload(message=message))
