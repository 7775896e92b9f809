"""Blocklist origin URL helpers."""

from __future__ import annotations

from urllib.parse import urlparse

from ..constants import INTERNAL_MARKER

RAW_HOSTS = ("raw.githubusercontent.com",)
RAW_PATH_MARKER = "/raw/"


def is_valid_blocklist_url(url: object) -> bool:
    """
    Check whether ``url`` may be used as a blocklist origin.

    ``Internal`` marks the writable list. Anything else must be an absolute
    http(s) URL pointing at raw file content, so ordinary web pages (which
    would return HTML) are never fetched.
    """
    if url == INTERNAL_MARKER:
        return True
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    host = (parsed.hostname or "").lower()
    if not host:
        return False
    return any(raw in host for raw in RAW_HOSTS) or RAW_PATH_MARKER in (parsed.path or "")


def is_remote_url(url: object) -> bool:
    """True when ``url`` names a fetchable remote origin (not ``Internal``)."""
    return url != INTERNAL_MARKER and is_valid_blocklist_url(url)
