"""Client helpers for publishers sending events to the ingest API."""

from .client import PublisherClient, PublisherClientError
from .events import build_conversion, build_impression
from .signing import sign_body

__all__ = [
    "PublisherClient",
    "PublisherClientError",
    "build_conversion",
    "build_impression",
    "sign_body",
]
