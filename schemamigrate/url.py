"""Extracting the scheme from a driver URL."""

from __future__ import annotations


class SchemeError(ValueError):
    """Raised when a URL has no usable scheme."""


def scheme_from_url(url: str) -> str:
    """Return the part of ``url`` before the first colon."""
    if not url:
        raise SchemeError("URL cannot be empty")
    index = url.find(":")
    if index < 1:
        raise SchemeError("no scheme")
    return url[:index]