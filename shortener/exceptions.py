"""Domain exceptions for the URL shortener.

Every public error carries the HTTP status code it maps to at the boundary,
so routes and the realtime hub can translate them without a lookup table.

Classes:
    ShortenerError:
        Generic base class for domain exceptions.

    InvalidUrl:
        Submitted URL is missing or not an absolute URL after normalization.

    NotFound:
        Unknown record id or short code.

    StorageUnavailable:
        Registry unreachable, disconnected or timed out. Retryable by the caller.

    CodeSpaceExhausted:
        Short code issuance ran out of attempts.

    RegistryConflict:
        Base class for unique-constraint violations raised by a registry insert.
        Resolved inside the shortening service and never surfaced to clients.

Example:
    >>> from shortener.exceptions import NotFound
    >>> raise NotFound("Short URL not found")
    Traceback (most recent call last):
        ...
    shortener.exceptions.NotFound: Short URL not found
"""

__all__ = [
    "ShortenerError",
    "InvalidUrl",
    "NotFound",
    "StorageUnavailable",
    "CodeSpaceExhausted",
    "RegistryConflict",
    "DuplicateOriginalUrl",
    "DuplicateShortCode",
]


class ShortenerError(Exception):
    """Generic base class for domain exceptions."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidUrl(ShortenerError):
    status_code = 400
    default_message = "Invalid URL format"


class NotFound(ShortenerError):
    status_code = 404
    default_message = "URL not found"


class StorageUnavailable(ShortenerError):
    """Raised when the registry is disconnected, slow or failing.

    The message is safe to show to clients; driver detail is only logged.
    """

    status_code = 503
    default_message = "Storage unavailable"


class CodeSpaceExhausted(ShortenerError):
    status_code = 500
    default_message = "Could not generate unique URL code"


class RegistryConflict(ShortenerError):
    status_code = 409
    default_message = "Unique constraint violated"


class DuplicateOriginalUrl(RegistryConflict):
    default_message = "A record for this URL already exists"


class DuplicateShortCode(RegistryConflict):
    default_message = "Short code already taken"
