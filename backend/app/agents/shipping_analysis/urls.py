"""URL helpers shared by discovery, verification and extraction."""

from __future__ import annotations

import re
from urllib.parse import urlparse

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def normalize_url(url: str) -> str:
    """Prepend ``https://`` when *url* carries no scheme.

    ``http://`` and ``https://`` inputs are returned untouched (stripped of
    surrounding whitespace only).
    """
    url = (url or "").strip()
    if not url:
        return url
    if _SCHEME_RE.match(url):
        return url
    return f"https://{url}"


def bare_domain(url: str) -> str:
    """Return the host of *url* without scheme, ``www.`` or path.

    >>> bare_domain("https://www.Example.com/shipping")
    'example.com'
    """
    url = (url or "").strip()
    if not url:
        return ""
    host = urlparse(normalize_url(url)).hostname or ""
    host = host.lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def strip_scheme(url: str) -> str:
    """Drop the scheme and any trailing slash, keeping host and path."""
    return _SCHEME_RE.sub("", (url or "").strip()).rstrip("/")


def www_variant(url: str) -> str:
    """Return *url* with ``www.`` prefixed to the host, if not already present."""
    full = normalize_url(url)
    parsed = urlparse(full)
    host = parsed.netloc
    if host.lower().startswith("www."):
        return full
    return parsed._replace(netloc=f"www.{host}").geturl()
