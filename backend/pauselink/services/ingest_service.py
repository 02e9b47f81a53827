"""Event ingestion: correlation, scoring, billing and rollups for one request."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from pauselink.db import session_scope
from pauselink.domain.metrics import scan_velocity
from pauselink.domain.models import (
    ConversionEvent,
    ImpressionEvent,
    PublisherIdentity,
    ValidatedEvent,
    isoformat_utc,
)
from pauselink.errors import ForbiddenError, IngestError, InternalError, NotFoundError
from pauselink.models import EventReceipt
from pauselink.repositories import ReceiptRepository

from .billing_service import BillingLedger
from .idempotency_service import IdempotencyGuard, Reservation
from .rollup_service import AttentionRollupService
from .validation import validate_event


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class IngestResult:
    receipt: EventReceipt
    payload: dict[str, Any]
    duplicate: bool = False


class EventIngestService:
    """Persist one validated event and run its side effects in ``session``."""

    def __init__(
        self,
        session: Session,
        *,
        default_fee: Decimal = Decimal("5.00"),
        default_ratio: Decimal = Decimal("0.6"),
        default_currency: str = "USD",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._receipts = ReceiptRepository(session)
        self._ledger = BillingLedger(
            session,
            default_fee=default_fee,
            default_ratio=default_ratio,
            default_currency=default_currency,
        )
        self._rollups = AttentionRollupService(session)
        self._clock = clock

    def ingest(
        self,
        event: ValidatedEvent,
        publisher: PublisherIdentity,
        idempotency_key: str | None,
    ) -> IngestResult:
        existing = self._receipts.get_by_event_id(event.event_id)
        if existing is not None:
            logger.info(
                "Event {} already stored as {}; returning duplicate",
                event.event_id,
                existing.receipt_id,
            )
            return IngestResult(
                receipt=existing,
                payload={
                    "status": "duplicate",
                    "receipt_id": existing.receipt_id,
                    "message": "Event already processed",
                },
                duplicate=True,
            )

        if isinstance(event, ConversionEvent):
            return self._ingest_conversion(event, publisher, idempotency_key)
        return self._ingest_impression(event, publisher, idempotency_key)

    def _ingest_impression(
        self,
        event: ImpressionEvent,
        publisher: PublisherIdentity,
        idempotency_key: str | None,
    ) -> IngestResult:
        receipt = self._receipts.build_impression(
            event, publisher_id=publisher.publisher_id, idempotency_key=idempotency_key
        )
        receipt.publisher_name = receipt.publisher_name or publisher.publisher_name
        receipt.ingested_at = self._clock()
        self._receipts.add(receipt)

        campaign = self._ledger.resolve_campaign(event.campaign_id)
        if campaign is not None:
            self._rollups.record_impression(receipt, campaign.advertiser_id)
        else:
            logger.debug("Impression {} has no active campaign; rollup skipped", receipt.receipt_id)

        logger.info(
            "Accepted pause impression {} (opportunity {}, publisher {})",
            receipt.receipt_id,
            receipt.opportunity_id,
            receipt.publisher_id,
        )
        return IngestResult(
            receipt=receipt,
            payload={
                "status": "accepted",
                "receipt_id": receipt.receipt_id,
                "ingested_at": isoformat_utc(receipt.ingested_at),
            },
        )

    def _ingest_conversion(
        self,
        event: ConversionEvent,
        publisher: PublisherIdentity,
        idempotency_key: str | None,
    ) -> IngestResult:
        impression = self._receipts.find_canonical_impression(event.opportunity_id)
        if impression is None:
            logger.warning(
                "No pause impression for opportunity {} (conversion {})",
                event.opportunity_id,
                event.event_id,
            )
            raise NotFoundError(
                "pause_not_found",
                "No pause impression matches this opportunity_id",
                opportunity_id=event.opportunity_id,
            )

        receipt = self._receipts.build_conversion(
            event,
            publisher_id=publisher.publisher_id,
            idempotency_key=idempotency_key,
            matched_pause_id=impression.receipt_id,
        )
        velocity = scan_velocity(
            impression.qr_appeared_at or impression.event_time_utc, receipt.qr_scanned_at
        )
        receipt.asv_seconds = velocity.seconds
        receipt.asv_tier = velocity.tier
        receipt.asv_label = velocity.label
        receipt.ingested_at = self._clock()
        self._receipts.add(receipt)
        self._receipts.link(impression, receipt)

        outcome = self._ledger.bill_conversion(receipt, impression, success=event.is_success)
        if outcome.advertiser_id is not None:
            self._rollups.record_conversion(
                impression,
                outcome.advertiser_id,
                verified=event.is_success,
                asv_seconds=velocity.seconds,
            )

        logger.info(
            "Accepted QR conversion {} matched to {} (ASV {}s, tier {}, billing {})",
            receipt.receipt_id,
            impression.receipt_id,
            velocity.seconds,
            velocity.tier,
            outcome.status.value,
        )
        return IngestResult(
            receipt=receipt,
            payload={
                "status": "accepted",
                "receipt_id": receipt.receipt_id,
                "ingested_at": isoformat_utc(receipt.ingested_at),
                "matched_pause_id": impression.receipt_id,
                "billing_status": outcome.status.value,
                "asv": velocity.as_payload(),
            },
        )


class IngestPipeline:
    """Run a request through validation, the idempotency guard and ingestion."""

    def __init__(
        self,
        factory: sessionmaker[Session],
        guard: IdempotencyGuard,
        *,
        default_fee: Decimal = Decimal("5.00"),
        default_ratio: Decimal = Decimal("0.6"),
        default_currency: str = "USD",
    ) -> None:
        self._factory = factory
        self._guard = guard
        self._service_options = {
            "default_fee": default_fee,
            "default_ratio": default_ratio,
            "default_currency": default_currency,
        }

    def submit(
        self,
        publisher: PublisherIdentity,
        body: Mapping[str, Any],
        idempotency_key: str,
    ) -> dict[str, Any]:
        event = validate_event(body)
        if event.publisher_id and event.publisher_id != publisher.publisher_id:
            logger.warning(
                "Publisher {} submitted an event on behalf of {}",
                publisher.publisher_id,
                event.publisher_id,
            )
            raise ForbiddenError(
                "publisher_mismatch",
                "publisher.publisher_id does not match the authenticated publisher",
            )

        reservation = self._guard.reserve(publisher.publisher_id, idempotency_key)
        if reservation.is_duplicate:
            return reservation.cached_response

        try:
            return self._process(event, publisher, reservation)
        except IngestError:
            self._guard.release(reservation)
            raise
        except Exception as exc:
            self._guard.release(reservation)
            logger.exception("Failed to process event {}", event.event_id)
            raise InternalError("processing_failed", str(exc)) from exc

    def _process(
        self,
        event: ValidatedEvent,
        publisher: PublisherIdentity,
        reservation: Reservation,
    ) -> dict[str, Any]:
        # A unique-constraint race (same event_id or a new rollup/wallet row
        # created concurrently) rolls the whole transaction back; the second
        # pass then sees the committed row.
        conflicts = 0
        while True:
            try:
                with session_scope(self._factory) as session:
                    service = EventIngestService(session, **self._service_options)
                    result = service.ingest(event, publisher, reservation.idempotency_key)
                    self._guard.complete(
                        session, reservation, result.payload, result.receipt.receipt_id
                    )
                return result.payload
            except IntegrityError:
                conflicts += 1
                if conflicts > 1:
                    raise
                logger.info("Write conflict while ingesting {}; retrying once", event.event_id)


__all__ = ["EventIngestService", "IngestPipeline", "IngestResult"]
