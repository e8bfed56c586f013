"""Pydantic schemas for request/response validation in the URL shortener.

This module defines Pydantic models for API input validation, output
serialization and the realtime message envelope.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    └─ originalUrl: str | None   (alias "url" accepted)

    URLRecord (Output, also the cached value)
    ├─ id: str
    ├─ originalUrl: str
    ├─ shortCode: str
    ├─ shortUrl: str
    ├─ clicks: int
    └─ createdAt: datetime

    HealthResponse (Output)
    ├─ status: HealthStatus
    ├─ database: HealthStatus
    └─ cache: HealthStatus

    ServerMessage / ClientMessage (WebSocket)
    ├─ event: str
    └─ data: payload

How to Use
===========
**Step 1 — Convert an ORM row**::
    record = URLRecord.model_validate(url_row)

**Step 2 — Serialize for the wire**::
    record.model_dump(mode="json", by_alias=True)

Key Behaviours
===============
- Wire field names are camelCase; Python attributes stay snake_case.
- ShortenRequest leaves URL checking to the service so a missing or
  malformed URL is answered with 400 instead of a schema error.
- All datetime fields are timezone-aware.

Classes:
    URLRecord:  A stored short URL mapping.
    ShortenResult:  URLRecord plus the is_existing flag, never sent over HTTP.
    ShortenRequest:  Input schema for URL shortening requests.
    DeleteResponse:  Acknowledgment for deletions.
    HealthResponse:  Output schema for health checks.
    ServerMessage:  Realtime event envelope.
    ClientMessage:  Realtime request envelope.
"""

import datetime
from dataclasses import dataclass
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shortener.enums import ConnectivityState, HealthStatus, ServerEvent

__all__ = [
    "URLRecord",
    "ShortenResult",
    "ShortenRequest",
    "DeleteResponse",
    "HealthResponse",
    "ClickPayload",
    "DeletedPayload",
    "ErrorPayload",
    "ProcessingPayload",
    "StatusPayload",
    "ServerMessage",
    "ClientMessage",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class URLRecord(CamelModel):
    id: str
    original_url: str
    short_code: str
    short_url: str
    clicks: int = Field(0, ge=0)
    created_at: datetime.datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def with_clicks(self, clicks: int) -> "URLRecord":
        return self.model_copy(update={"clicks": clicks})


@dataclass(frozen=True)
class ShortenResult:
    record: URLRecord
    is_existing: bool


class ShortenRequest(BaseModel):
    original_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("originalUrl", "url", "original_url"),
    )


class DeleteResponse(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus


class ClickPayload(CamelModel):
    id: str
    clicks: int


class DeletedPayload(CamelModel):
    id: str


class ErrorPayload(CamelModel):
    message: str


class ProcessingPayload(CamelModel):
    original_url: str


class StatusPayload(CamelModel):
    storage: ConnectivityState


class ServerMessage(BaseModel):
    event: ServerEvent
    data: Any = None

    def to_wire(self) -> dict[str, Any]:
        data = self.data
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json", by_alias=True)
        elif isinstance(data, list):
            data = [
                item.model_dump(mode="json", by_alias=True) if isinstance(item, BaseModel) else item
                for item in data
            ]
        return {"event": self.event.value, "data": data}


class ClientMessage(BaseModel):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)
