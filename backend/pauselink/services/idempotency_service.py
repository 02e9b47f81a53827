"""Idempotency guard backed by a unique ``(publisher_id, idempotency_key)`` row."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from pauselink.db import session_scope
from pauselink.errors import ConflictError
from pauselink.repositories import IdempotencyRepository


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Reservation:
    publisher_id: str
    idempotency_key: str
    record_id: int | None = None
    cached_response: dict[str, Any] | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.cached_response is not None


class IdempotencyGuard:
    """Gate requests so each key produces side effects at most once.

    ``reserve`` commits an empty row in its own short transaction. The unique
    constraint on the row is the only arbiter between concurrent retries: the
    loser sees either the stored response or an in-flight reservation.
    The response is written by ``complete`` inside the caller's transaction,
    so it becomes visible together with the event's side effects. An
    unanswered reservation older than the lease belongs to a worker that died
    and is taken over by the next retry.
    """

    def __init__(
        self,
        factory: sessionmaker[Session],
        *,
        ttl_hours: int = 24,
        lease_seconds: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._factory = factory
        self._ttl = timedelta(hours=ttl_hours)
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock

    def reserve(self, publisher_id: str, idempotency_key: str) -> Reservation:
        now = self._clock()
        try:
            with session_scope(self._factory) as session:
                repository = IdempotencyRepository(session)
                if repository.delete_reclaimable_key(
                    publisher_id, idempotency_key, now, now - self._lease
                ):
                    logger.info(
                        "Reclaimed idempotency key {} for publisher {}",
                        idempotency_key,
                        publisher_id,
                    )
                record = repository.insert(
                    publisher_id=publisher_id,
                    idempotency_key=idempotency_key,
                    created_at=now,
                    expires_at=now + self._ttl,
                )
                record_id = record.id
        except IntegrityError:
            return self._existing(publisher_id, idempotency_key)
        return Reservation(publisher_id, idempotency_key, record_id=record_id)

    def _existing(self, publisher_id: str, idempotency_key: str) -> Reservation:
        with session_scope(self._factory) as session:
            record = IdempotencyRepository(session).get(publisher_id, idempotency_key)
            cached = record.response_payload if record is not None else None
            record_id = record.id if record is not None else None

        if cached is None:
            logger.warning(
                "Idempotency key {} for publisher {} is still being processed",
                idempotency_key,
                publisher_id,
            )
            raise ConflictError(
                "request_in_progress",
                "A request with this idempotency key is already being processed",
            )
        logger.info("Replaying cached response for idempotency key {}", idempotency_key)
        return Reservation(
            publisher_id,
            idempotency_key,
            record_id=record_id,
            cached_response=cached,
        )

    def complete(
        self,
        session: Session,
        reservation: Reservation,
        response: dict[str, Any],
        receipt_id: str | None,
    ) -> None:
        if reservation.record_id is None:
            return
        IdempotencyRepository(session).store_response(
            reservation.record_id, receipt_id=receipt_id, payload=response
        )

    def release(self, reservation: Reservation) -> None:
        """Forget an unanswered reservation so the caller can retry the key."""

        if reservation.record_id is None or reservation.is_duplicate:
            return
        try:
            with session_scope(self._factory) as session:
                IdempotencyRepository(session).release(reservation.record_id)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to release idempotency key {}", reservation.idempotency_key
            )

    def purge_expired(self) -> int:
        with session_scope(self._factory) as session:
            removed = IdempotencyRepository(session).purge_expired(self._clock())
        if removed:
            logger.info("Purged {} expired idempotency entries", removed)
        return removed


__all__ = ["IdempotencyGuard", "Reservation"]
