"""Idempotency cache persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from pauselink.models import IdempotencyRecord


class IdempotencyRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def insert(
        self,
        *,
        publisher_id: str,
        idempotency_key: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> IdempotencyRecord:
        """Insert an empty reservation; raises IntegrityError if the key is taken."""

        record = IdempotencyRecord(
            publisher_id=publisher_id,
            idempotency_key=idempotency_key,
            created_at=created_at,
            expires_at=expires_at,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def get(self, publisher_id: str, idempotency_key: str) -> IdempotencyRecord | None:
        query = select(IdempotencyRecord).where(
            IdempotencyRecord.publisher_id == publisher_id,
            IdempotencyRecord.idempotency_key == idempotency_key,
        )
        return self._session.execute(query).scalar_one_or_none()

    def delete_reclaimable_key(
        self,
        publisher_id: str,
        idempotency_key: str,
        now: datetime,
        abandoned_before: datetime,
    ) -> int:
        """Drop the key's row if it expired or its unanswered lease lapsed."""

        result = self._session.execute(
            delete(IdempotencyRecord).where(
                IdempotencyRecord.publisher_id == publisher_id,
                IdempotencyRecord.idempotency_key == idempotency_key,
                or_(
                    IdempotencyRecord.expires_at <= now,
                    and_(
                        IdempotencyRecord.response_payload.is_(None),
                        IdempotencyRecord.created_at <= abandoned_before,
                    ),
                ),
            )
        )
        return result.rowcount or 0

    def store_response(
        self,
        record_id: int,
        *,
        receipt_id: str | None,
        payload: dict[str, Any],
    ) -> None:
        self._session.execute(
            update(IdempotencyRecord)
            .where(IdempotencyRecord.id == record_id)
            .values(receipt_id=receipt_id, response_payload=payload)
        )

    def release(self, record_id: int) -> int:
        """Drop a reservation that never received a response."""

        result = self._session.execute(
            delete(IdempotencyRecord).where(
                IdempotencyRecord.id == record_id,
                IdempotencyRecord.response_payload.is_(None),
            )
        )
        return result.rowcount or 0

    def purge_expired(self, now: datetime) -> int:
        result = self._session.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= now)
        )
        return result.rowcount or 0


__all__ = ["IdempotencyRepository"]
