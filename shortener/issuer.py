"""Short code issuance with bounded collision retry."""

import logging
from collections.abc import Callable

from nanoid import generate
from prometheus_client import Counter

from shortener.exceptions import CodeSpaceExhausted
from shortener.registry import URLRegistry

__all__ = ["ALPHABET", "CodeIssuer", "generate_short_code"]

logger = logging.getLogger("urlshortener.issuer")

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
DEFAULT_MAX_ATTEMPTS = 10

CODE_COLLISIONS_TOTAL = Counter(
    "url_shortener_code_collisions_total",
    "Generated short code candidates that were already taken",
)


def generate_short_code(length: int = 7) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


class CodeIssuer:
    """Hands out short codes not present in the registry at lookup time.

    The lookup is read-only. Reservation happens when the caller inserts the
    record, which surfaces DuplicateShortCode if a concurrent issuer raced
    to the same code.
    """

    def __init__(
        self,
        registry: URLRegistry,
        length: int = 7,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        generator: Callable[[int], str] = generate_short_code,
    ):
        assert max_attempts > 0, f"max_attempts must be positive, got {max_attempts!r}"
        self._registry = registry
        self._length = length
        self._max_attempts = max_attempts
        self._generator = generator

    async def issue(self) -> str:
        for attempt in range(1, self._max_attempts + 1):
            candidate = self._generator(self._length)
            if not await self._registry.short_code_exists(candidate):
                return candidate
            CODE_COLLISIONS_TOTAL.inc()
            logger.warning(f"Short code collision on attempt {attempt}: {candidate}")
        raise CodeSpaceExhausted(f"Could not generate unique URL code after {self._max_attempts} attempts")
