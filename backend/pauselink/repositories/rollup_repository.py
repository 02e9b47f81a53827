"""Attention rollup rows keyed by day, advertiser, publisher and program."""

from __future__ import annotations

from datetime import date
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from pauselink.models import AttentionRollup

UNKNOWN_DIMENSION = "Unknown"


class RollupRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_or_create(
        self,
        *,
        rollup_date: date,
        advertiser_id: str,
        publisher_id: str | None,
        program_title: str | None,
    ) -> AttentionRollup:
        publisher_key = publisher_id or UNKNOWN_DIMENSION
        program_key = program_title or UNKNOWN_DIMENSION
        query = (
            select(AttentionRollup)
            .where(
                AttentionRollup.rollup_date == rollup_date,
                AttentionRollup.advertiser_id == advertiser_id,
                AttentionRollup.publisher_id == publisher_key,
                AttentionRollup.program_title == program_key,
            )
            .with_for_update()
        )
        rollup = self._session.execute(query).scalar_one_or_none()
        if rollup is not None:
            return rollup

        rollup = AttentionRollup(
            rollup_date=rollup_date,
            advertiser_id=advertiser_id,
            publisher_id=publisher_key,
            program_title=program_key,
            pause_opportunities=0,
            qr_scans=0,
            verified_conversions=0,
            asv_samples=0,
        )
        self._session.add(rollup)
        self._session.flush()
        return rollup

    def window_for_publisher(self, publisher_id: str, since: date) -> Sequence[AttentionRollup]:
        query = (
            select(AttentionRollup)
            .where(
                AttentionRollup.publisher_id == publisher_id,
                AttentionRollup.rollup_date >= since,
            )
            .order_by(AttentionRollup.rollup_date, AttentionRollup.program_title)
        )
        return self._session.execute(query).scalars().all()


__all__ = ["RollupRepository", "UNKNOWN_DIMENSION"]
