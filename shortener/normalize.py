"""URL normalization applied before any comparison, storage or lookup."""

import re

import validators

from shortener.exceptions import InvalidUrl

__all__ = ["normalize_url"]

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_url(raw: str | None) -> str:
    """Default the scheme to https:// and check the result is an absolute URL.

    >>> normalize_url("github.com")
    'https://github.com'
    """
    if raw is None or not raw.strip():
        raise InvalidUrl("URL is required")

    url = raw.strip()
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"

    if not validators.url(url):
        raise InvalidUrl("Invalid URL format")
    return url
