"""Structural validation of inbound publisher events."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from dateutil import parser as date_parser

from pauselink.domain.models import ConversionEvent, EventType, ImpressionEvent, ValidatedEvent
from pauselink.errors import ValidationError

REQUIRED_FIELDS: dict[EventType, tuple[str, ...]] = {
    EventType.PAUSE_IMPRESSION: (
        "event_id",
        "event_time_utc",
        "publisher",
        "session",
        "content",
        "ad",
    ),
    EventType.QR_CONVERSION: (
        "event_id",
        "event_time_utc",
        "publisher",
        "session",
        "conversion",
    ),
}

_BLOCK_FIELDS = {"publisher", "session", "content", "ad", "conversion"}


def _parse_timestamp(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = date_parser.isoparse(value.strip())
        except (ValueError, OverflowError) as exc:
            raise ValidationError(
                "invalid_timestamp",
                f"{field} must be an ISO-8601 timestamp",
                field=field,
            ) from exc
    else:
        raise ValidationError(
            "invalid_timestamp", f"{field} must be an ISO-8601 timestamp", field=field
        )
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _is_present(body: Mapping[str, Any], field: str) -> bool:
    value = body.get(field)
    if field in _BLOCK_FIELDS:
        return isinstance(value, Mapping)
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


def resolve_event_type(body: Mapping[str, Any]) -> EventType:
    raw = body.get("event_type")
    try:
        return EventType(raw)
    except ValueError:
        raise ValidationError(
            "invalid_event_type",
            'event_type must be "pause_impression" or "qr_conversion"',
        ) from None


def check_required_fields(event_type: EventType, body: Mapping[str, Any]) -> None:
    required = REQUIRED_FIELDS[event_type]
    missing = [field for field in required if not _is_present(body, field)]
    if missing:
        raise ValidationError(
            "missing_required_fields",
            "Missing required fields: " + ", ".join(missing),
            required=list(required),
            missing=missing,
        )
    if not _optional_str(body["session"].get("opportunity_id")):
        raise ValidationError(
            "missing_opportunity_id",
            "session.opportunity_id is required",
        )


def validate_event(body: Mapping[str, Any]) -> ValidatedEvent:
    """Check ``body`` and convert it into a typed impression or conversion."""

    if not isinstance(body, Mapping):
        raise ValidationError("invalid_body", "Request body must be a JSON object")

    event_type = resolve_event_type(body)
    check_required_fields(event_type, body)

    event_time = _parse_timestamp(body["event_time_utc"], "event_time_utc")
    publisher = body["publisher"]
    session = body["session"]
    common = {
        "event_id": str(body["event_id"]).strip(),
        "event_version": _optional_str(body.get("event_version")) or "1.0",
        "event_time": event_time,
        "opportunity_id": _optional_str(session.get("opportunity_id")),
        "publisher_id": _optional_str(publisher.get("publisher_id")) or "",
        "raw_payload": dict(body),
    }

    if event_type is EventType.QR_CONVERSION:
        conversion = body["conversion"]
        return ConversionEvent(
            **common,
            conversion_type=_optional_str(conversion.get("conversion_type")),
            result=_optional_str(conversion.get("result")),
            qr_destination_id=_optional_str(conversion.get("qr_destination_id")),
        )

    content = body["content"]
    ad = body["ad"]
    playback = body.get("playback") if isinstance(body.get("playback"), Mapping) else {}
    device = body.get("device") if isinstance(body.get("device"), Mapping) else {}
    geo = body.get("geo") if isinstance(body.get("geo"), Mapping) else {}

    qr_appeared_raw = body.get("qr_appeared_at")
    qr_appeared_at = (
        _parse_timestamp(qr_appeared_raw, "qr_appeared_at") if qr_appeared_raw else event_time
    )
    genre = content.get("genre") or []
    if isinstance(genre, str):
        genre = [genre]

    return ImpressionEvent(
        **common,
        qr_appeared_at=qr_appeared_at,
        publisher_name=_optional_str(publisher.get("publisher_name")),
        app_id=_optional_str(publisher.get("app_id")),
        supply_type=_optional_str(publisher.get("supply_type")),
        session_id=_optional_str(session.get("session_id")),
        content_session_id=_optional_str(session.get("content_session_id")),
        content_id=_optional_str(content.get("content_id")),
        content_title=_optional_str(content.get("title")),
        series=_optional_str(content.get("series")),
        season=_optional_str(content.get("season")),
        episode=_optional_str(content.get("episode")),
        genre=[str(item) for item in genre],
        rating=_optional_str(content.get("rating")),
        pause_timestamp_ms=_optional_int(playback.get("pause_timestamp_ms")),
        is_live=bool(playback.get("is_live", False)),
        ad_id=_optional_str(ad.get("ad_id")),
        campaign_id=_optional_str(ad.get("campaign_id")),
        brand=_optional_str(ad.get("brand")),
        creative_id=_optional_str(ad.get("creative_id")),
        qr_enabled=bool(ad.get("qr_enabled", False)),
        device_type=_optional_str(device.get("device_type")),
        os=_optional_str(device.get("os")),
        country=_optional_str(geo.get("country")),
        region=_optional_str(geo.get("region")),
    )


__all__ = ["REQUIRED_FIELDS", "check_required_fields", "resolve_event_type", "validate_event"]
