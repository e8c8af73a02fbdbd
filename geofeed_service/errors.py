"""
Feed Error Taxonomy

Every failure a source poller can observe is one of these types. Pollers catch
FeedError at their boundary and record it; parsers raise DecodeError for a
payload of the wrong overall shape and ValidationError for data that parses
but is semantically unusable.
"""

from typing import Optional


class FeedError(Exception):
    """Base class for all feed failures."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class TransportError(FeedError):
    """Network failure or timeout before a response was received."""


class HttpStatusError(FeedError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, status_code: int, url: Optional[str] = None, message: Optional[str] = None):
        super().__init__(message or f"HTTP error: {status_code}", url)
        self.status_code = status_code


class DecodeError(FeedError):
    """Payload could not be decoded into the expected shape."""


class ValidationError(FeedError):
    """Payload decoded but is semantically invalid."""
