"""Incremental attention rollups and the windowed reports built from them."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.orm import Session

from pauselink.domain.metrics import (
    TIER_LABELS,
    AttentionRate,
    CompositeIndex,
    asv_tier,
    attention_rate,
    composite_index,
    running_average,
)
from pauselink.domain.models import as_utc
from pauselink.models import AttentionRollup, EventReceipt
from pauselink.repositories import RollupRepository


@dataclass(slots=True)
class AttentionReport:
    """Totals and derived tiers for one publisher over a window of days."""

    start_date: date
    end_date: date
    pause_opportunities: int
    qr_scans: int
    verified_conversions: int
    a2ar: AttentionRate
    average_asv_seconds: float | None
    asv_tier: int
    asv_label: str
    aci: CompositeIndex
    program_title: str | None = None


def _rollup_date(receipt: EventReceipt) -> date:
    return as_utc(receipt.event_time_utc).date()


def _program(receipt: EventReceipt) -> str | None:
    return receipt.content_title or receipt.series


def refresh_tiers(rollup: AttentionRollup) -> AttentionRollup:
    rate = attention_rate(rollup.pause_opportunities, rollup.verified_conversions)
    rollup.a2ar_percentage = rate.percentage
    rollup.a2ar_tier = rate.tier
    rollup.a2ar_label = rate.label

    tier = asv_tier(rollup.average_asv_seconds)
    rollup.asv_tier = tier
    rollup.asv_label = TIER_LABELS[tier]

    aci = composite_index(rate.tier, tier)
    rollup.aci_score = aci.score
    rollup.aci_level = aci.level
    rollup.aci_label = aci.label
    return rollup


class AttentionRollupService:
    def __init__(self, session: Session) -> None:
        self._rollups = RollupRepository(session)

    # ------------------------------------------------------------------
    # Writes

    def _scope(self, impression: EventReceipt, advertiser_id: str) -> AttentionRollup:
        return self._rollups.get_or_create(
            rollup_date=_rollup_date(impression),
            advertiser_id=advertiser_id,
            publisher_id=impression.publisher_id,
            program_title=_program(impression),
        )

    def record_impression(self, impression: EventReceipt, advertiser_id: str) -> AttentionRollup:
        rollup = self._scope(impression, advertiser_id)
        rollup.pause_opportunities = (rollup.pause_opportunities or 0) + 1
        return refresh_tiers(rollup)

    def record_conversion(
        self,
        impression: EventReceipt,
        advertiser_id: str,
        *,
        verified: bool,
        asv_seconds: float | None,
    ) -> AttentionRollup:
        """Count a scan against the row of the impression it matched."""

        rollup = self._scope(impression, advertiser_id)
        rollup.qr_scans = (rollup.qr_scans or 0) + 1
        if verified:
            rollup.verified_conversions = (rollup.verified_conversions or 0) + 1
        if asv_seconds is not None and asv_seconds > 0:
            samples = rollup.asv_samples or 0
            rollup.average_asv_seconds = running_average(
                rollup.average_asv_seconds, samples, asv_seconds
            )
            rollup.asv_samples = samples + 1
        return refresh_tiers(rollup)

    # ------------------------------------------------------------------
    # Reports

    def _window(self, days: int, today: date | None) -> tuple[date, date]:
        if days < 1:
            raise ValueError("days must be at least 1")
        end = today or datetime.now(timezone.utc).date()
        return end - timedelta(days=days - 1), end

    def summary(self, publisher_id: str, *, days: int = 30, today: date | None = None) -> AttentionReport:
        start, end = self._window(days, today)
        rows = self._rollups.window_for_publisher(publisher_id, start)
        return _aggregate(rows, start, end)

    def by_program(
        self, publisher_id: str, *, days: int = 30, today: date | None = None
    ) -> list[AttentionReport]:
        start, end = self._window(days, today)
        grouped: dict[str, list[AttentionRollup]] = {}
        for row in self._rollups.window_for_publisher(publisher_id, start):
            grouped.setdefault(row.program_title, []).append(row)

        reports = [
            _aggregate(rows, start, end, program_title=title) for title, rows in grouped.items()
        ]
        reports.sort(key=lambda report: (-report.aci.score, report.program_title or ""))
        return reports


def _aggregate(
    rows: Iterable[AttentionRollup],
    start: date,
    end: date,
    *,
    program_title: str | None = None,
) -> AttentionReport:
    opportunities = scans = conversions = samples = 0
    weighted_asv = 0.0
    for row in rows:
        if row.rollup_date > end:
            continue
        opportunities += row.pause_opportunities or 0
        scans += row.qr_scans or 0
        conversions += row.verified_conversions or 0
        if row.asv_samples and row.average_asv_seconds is not None:
            samples += row.asv_samples
            weighted_asv += row.average_asv_seconds * row.asv_samples

    average = round(weighted_asv / samples, 2) if samples else None
    rate = attention_rate(opportunities, conversions)
    tier = asv_tier(average)
    return AttentionReport(
        start_date=start,
        end_date=end,
        pause_opportunities=opportunities,
        qr_scans=scans,
        verified_conversions=conversions,
        a2ar=rate,
        average_asv_seconds=average,
        asv_tier=tier,
        asv_label=TIER_LABELS[tier],
        aci=composite_index(rate.tier, tier),
        program_title=program_title,
    )


__all__ = ["AttentionReport", "AttentionRollupService", "refresh_tiers"]
