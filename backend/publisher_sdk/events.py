from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any


def _timestamp(value: datetime | None) -> str:
    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def build_impression(
    *,
    publisher_id: str,
    opportunity_id: str,
    campaign_id: str,
    content_title: str,
    publisher_name: str | None = None,
    event_time: datetime | None = None,
    qr_appeared_at: datetime | None = None,
    event_id: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Build a ``pause_impression`` envelope; ``extra`` merges top-level blocks."""

    event: dict[str, Any] = {
        "event_type": "pause_impression",
        "event_id": event_id or f"evt_{uuid.uuid4().hex}",
        "event_version": "1.0",
        "event_time_utc": _timestamp(event_time),
        "publisher": {"publisher_id": publisher_id, "publisher_name": publisher_name},
        "session": {"opportunity_id": opportunity_id},
        "content": {"title": content_title},
        "ad": {"campaign_id": campaign_id, "qr_enabled": True},
    }
    if qr_appeared_at is not None:
        event["qr_appeared_at"] = _timestamp(qr_appeared_at)
    event.update(extra)
    return event


def build_conversion(
    *,
    publisher_id: str,
    opportunity_id: str,
    result: str = "success",
    conversion_type: str = "qr_scan",
    event_time: datetime | None = None,
    event_id: str | None = None,
) -> dict[str, Any]:
    return {
        "event_type": "qr_conversion",
        "event_id": event_id or f"evt_{uuid.uuid4().hex}",
        "event_version": "1.0",
        "event_time_utc": _timestamp(event_time),
        "publisher": {"publisher_id": publisher_id},
        "session": {"opportunity_id": opportunity_id},
        "conversion": {"conversion_type": conversion_type, "result": result},
    }
