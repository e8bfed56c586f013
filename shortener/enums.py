"""Shared enums for the URL shortener application.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "HealthStatus",
    "ConnectivityState",
    "RegistryBackend",
    "CacheBackend",
    "ServerEvent",
    "ClientEvent",
    "RequestStatus",
    "CacheStatus",
]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_str(cls, value: str) -> "HealthStatus":
        """Safely parse from string, falling back to UNHEALTHY for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNHEALTHY


class ConnectivityState(StrEnum):
    """Registry connection state as observed by the storage supervisor."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class RegistryBackend(StrEnum):
    SQL = "sql"
    MEMORY = "memory"


class CacheBackend(StrEnum):
    MEMORY = "memory"
    REDIS = "redis"


class ServerEvent(StrEnum):
    """Event names pushed to realtime subscribers."""

    CREATED = "created"
    DELETED = "deleted"
    CLICKED = "clicked"
    LIST_SNAPSHOT = "listSnapshot"
    ERROR = "error"
    PROCESSING = "processing"
    STATUS = "status"


class ClientEvent(StrEnum):
    """Requests a realtime subscriber may send."""

    REQUEST_SNAPSHOT = "requestSnapshot"
    SUBMIT_URL = "submitUrl"
    REQUEST_DELETE = "requestDelete"

    @classmethod
    def from_str(cls, value: str) -> "ClientEvent | None":
        """Parse from string, returning None for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return None


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    EXISTING = "existing"
    VALIDATION_ERROR = "validation_error"
    UNAVAILABLE = "unavailable"
    ERROR = "error"
    NOT_FOUND = "not_found"

    @classmethod
    def from_str(cls, value: str) -> "RequestStatus":
        """Safely parse from string, falling back to ERROR for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.ERROR


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"
