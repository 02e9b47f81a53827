"""Typed event representations produced by validation and consumed by services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops offsets on round-trip)."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


class EventType(str, Enum):
    PAUSE_IMPRESSION = "pause_impression"
    QR_CONVERSION = "qr_conversion"


@dataclass(slots=True)
class PublisherIdentity:
    """The authenticated caller, detached from any database session."""

    publisher_id: str
    publisher_name: str
    auth_method: str


@dataclass(slots=True)
class ImpressionEvent:
    """A pause-moment ad shown to a viewer."""

    event_id: str
    event_version: str
    event_time: datetime
    opportunity_id: str
    publisher_id: str
    qr_appeared_at: datetime
    publisher_name: str | None = None
    app_id: str | None = None
    supply_type: str | None = None
    session_id: str | None = None
    content_session_id: str | None = None
    content_id: str | None = None
    content_title: str | None = None
    series: str | None = None
    season: str | None = None
    episode: str | None = None
    genre: list[str] = field(default_factory=list)
    rating: str | None = None
    pause_timestamp_ms: int | None = None
    is_live: bool = False
    ad_id: str | None = None
    campaign_id: str | None = None
    brand: str | None = None
    creative_id: str | None = None
    qr_enabled: bool = False
    device_type: str | None = None
    os: str | None = None
    country: str | None = None
    region: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def program_title(self) -> str | None:
        return self.content_title or self.series


@dataclass(slots=True)
class ConversionEvent:
    """A viewer scanning the QR code shown during a pause."""

    event_id: str
    event_version: str
    event_time: datetime
    opportunity_id: str
    publisher_id: str
    conversion_type: str | None = None
    result: str | None = None
    qr_destination_id: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return (self.result or "").lower() == "success"


ValidatedEvent = ImpressionEvent | ConversionEvent
