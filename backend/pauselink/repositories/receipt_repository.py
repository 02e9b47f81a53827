"""Event receipt persistence and opportunity correlation."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Sequence

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from pauselink.domain.billing import BillingStatus
from pauselink.domain.models import ConversionEvent, EventType, ImpressionEvent, as_utc
from pauselink.models import EventReceipt


def new_receipt_id() -> str:
    return f"rct_{uuid.uuid4().hex}"


class ReceiptRepository:
    """Store impression/conversion receipts and resolve correlation tokens.

    Several impressions may share one ``opportunity_id``; the most recently
    ingested one is treated as canonical when a conversion is matched.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def add(self, receipt: EventReceipt) -> EventReceipt:
        # A concurrent insert of the same event_id surfaces as IntegrityError
        # here; the caller rolls back and replays the request as a duplicate.
        self._session.add(receipt)
        self._session.flush()
        return receipt

    def build_impression(
        self,
        event: ImpressionEvent,
        *,
        publisher_id: str,
        idempotency_key: str | None,
    ) -> EventReceipt:
        return EventReceipt(
            receipt_id=new_receipt_id(),
            event_id=event.event_id,
            event_type=EventType.PAUSE_IMPRESSION.value,
            event_version=event.event_version,
            event_time_utc=event.event_time,
            opportunity_id=event.opportunity_id,
            publisher_id=publisher_id,
            publisher_name=event.publisher_name,
            app_id=event.app_id,
            supply_type=event.supply_type,
            session_id=event.session_id,
            content_session_id=event.content_session_id,
            content_id=event.content_id,
            content_title=event.content_title,
            series=event.series,
            season=event.season,
            episode=event.episode,
            genre=list(event.genre),
            rating=event.rating,
            pause_timestamp_ms=event.pause_timestamp_ms,
            is_live=event.is_live,
            ad_id=event.ad_id,
            campaign_id=event.campaign_id,
            brand=event.brand,
            creative_id=event.creative_id,
            qr_enabled=event.qr_enabled,
            device_type=event.device_type,
            os=event.os,
            country=event.country,
            region=event.region,
            qr_appeared_at=event.qr_appeared_at,
            raw_payload=event.raw_payload,
            idempotency_key=idempotency_key,
            billing_status=BillingStatus.PENDING.value,
        )

    def build_conversion(
        self,
        event: ConversionEvent,
        *,
        publisher_id: str,
        idempotency_key: str | None,
        matched_pause_id: str,
    ) -> EventReceipt:
        return EventReceipt(
            receipt_id=new_receipt_id(),
            event_id=event.event_id,
            event_type=EventType.QR_CONVERSION.value,
            event_version=event.event_version,
            event_time_utc=event.event_time,
            opportunity_id=event.opportunity_id,
            publisher_id=publisher_id,
            conversion_type=event.conversion_type,
            conversion_result=event.result,
            qr_destination_id=event.qr_destination_id,
            qr_scanned_at=event.event_time,
            matched_pause_id=matched_pause_id,
            raw_payload=event.raw_payload,
            idempotency_key=idempotency_key,
            billing_status=BillingStatus.PENDING.value,
        )

    def link(self, impression: EventReceipt, conversion: EventReceipt) -> None:
        impression.matched_conversion_id = conversion.receipt_id
        impression.qr_scanned_at = conversion.qr_scanned_at
        impression.asv_seconds = conversion.asv_seconds
        impression.asv_tier = conversion.asv_tier
        impression.asv_label = conversion.asv_label
        conversion.matched_pause_id = impression.receipt_id

    # ------------------------------------------------------------------
    # Queries

    def get(self, receipt_id: str) -> EventReceipt | None:
        query = select(EventReceipt).where(EventReceipt.receipt_id == receipt_id)
        return self._session.execute(query).scalar_one_or_none()

    def get_by_event_id(self, event_id: str) -> EventReceipt | None:
        query = select(EventReceipt).where(EventReceipt.event_id == event_id)
        return self._session.execute(query).scalar_one_or_none()

    def find_canonical_impression(self, opportunity_id: str) -> EventReceipt | None:
        query = (
            select(EventReceipt)
            .where(
                EventReceipt.opportunity_id == opportunity_id,
                EventReceipt.event_type == EventType.PAUSE_IMPRESSION.value,
            )
            .order_by(desc(EventReceipt.ingested_at), desc(EventReceipt.id))
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def list_for_publisher(
        self,
        publisher_id: str,
        *,
        event_type: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[Sequence[EventReceipt], int]:
        conditions = [EventReceipt.publisher_id == publisher_id]
        if event_type:
            conditions.append(EventReceipt.event_type == event_type)
        if start is not None:
            conditions.append(EventReceipt.event_time_utc >= as_utc(start))
        if end is not None:
            conditions.append(EventReceipt.event_time_utc <= as_utc(end))

        total = self._session.execute(
            select(func.count()).select_from(EventReceipt).where(*conditions)
        ).scalar_one()
        query = (
            select(EventReceipt)
            .where(*conditions)
            .order_by(desc(EventReceipt.event_time_utc), desc(EventReceipt.id))
            .offset(offset)
            .limit(limit)
        )
        rows = self._session.execute(query).scalars().all()
        return rows, int(total)


__all__ = ["ReceiptRepository", "new_receipt_id"]
