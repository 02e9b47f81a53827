"""Attention quality metrics derived from correlated pause and scan events.

* ASV (attention scan velocity): seconds between the QR code appearing on
  screen and the viewer scanning it. Lower is better.
* A2AR (attention-to-action rate): verified conversions per hundred pause
  opportunities within an aggregation window.
* ACI (attention composite index): the sum of the A2AR tier and the ASV tier,
  bucketed into five levels.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .models import as_utc

NOT_AVAILABLE = "N/A"
TIER_LABELS = {
    0: NOT_AVAILABLE,
    1: "Low",
    2: "Fair",
    3: "Average",
    4: "Strong",
    5: "Exceptional",
}

# Upper bounds (inclusive) in seconds, fastest tier first.
ASV_BOUNDS: tuple[tuple[float, int], ...] = ((5.0, 5), (10.0, 4), (20.0, 3), (40.0, 2))

# Lower bounds (inclusive) in percent, best tier first.
A2AR_BOUNDS: tuple[tuple[float, int], ...] = ((2.6, 5), (1.6, 4), (0.8, 3), (0.5, 2))

ACI_LEVELS: dict[int, int] = {10: 5, 9: 5, 8: 4, 7: 3, 6: 3, 5: 2, 4: 2, 3: 1, 2: 1}


@dataclass(slots=True, frozen=True)
class ScanVelocity:
    seconds: float | None
    tier: int
    label: str

    def as_payload(self) -> dict[str, object]:
        return {"asv_seconds": self.seconds, "asv_tier": self.tier, "asv_label": self.label}


@dataclass(slots=True, frozen=True)
class AttentionRate:
    opportunities: int
    conversions: int
    percentage: float
    tier: int
    label: str


@dataclass(slots=True, frozen=True)
class CompositeIndex:
    score: int
    level: int
    label: str

    @property
    def raw(self) -> float:
        return self.score / 2


def asv_tier(seconds: float | None) -> int:
    if seconds is None or seconds <= 0:
        return 0
    for upper, tier in ASV_BOUNDS:
        if seconds <= upper:
            return tier
    return 1


def scan_velocity(qr_appeared_at: datetime | None, scanned_at: datetime | None) -> ScanVelocity:
    if qr_appeared_at is None or scanned_at is None:
        return ScanVelocity(seconds=None, tier=0, label=NOT_AVAILABLE)
    delta = (as_utc(scanned_at) - as_utc(qr_appeared_at)).total_seconds()
    tier = asv_tier(delta)
    return ScanVelocity(seconds=round(delta, 2), tier=tier, label=TIER_LABELS[tier])


def a2ar_tier(percentage: float) -> int:
    for lower, tier in A2AR_BOUNDS:
        if percentage >= lower:
            return tier
    return 1


def attention_rate(opportunities: int, conversions: int) -> AttentionRate:
    if opportunities <= 0:
        percentage = 0.0
    else:
        percentage = conversions / opportunities * 100
    tier = a2ar_tier(percentage)
    return AttentionRate(
        opportunities=opportunities,
        conversions=conversions,
        percentage=round(percentage, 2),
        tier=tier,
        label=TIER_LABELS[tier],
    )


def composite_index(a2ar: int, asv: int) -> CompositeIndex:
    if not a2ar or not asv:
        return CompositeIndex(score=0, level=0, label=NOT_AVAILABLE)
    score = int(a2ar) + int(asv)
    level = ACI_LEVELS.get(score, 0)
    return CompositeIndex(score=score, level=level, label=TIER_LABELS[level])


def running_average(current: float | None, samples: int, value: float) -> float:
    """Fold ``value`` into an average that already covers ``samples`` values."""

    if samples <= 0 or current is None:
        return round(value, 2)
    return round((current * samples + value) / (samples + 1), 2)


def tier_table() -> dict[str, list[dict[str, object]]]:
    return {
        "a2ar": [
            {"tier": 1, "label": "Low", "min": 0.0, "max": 0.5},
            {"tier": 2, "label": "Fair", "min": 0.5, "max": 0.8},
            {"tier": 3, "label": "Average", "min": 0.8, "max": 1.6},
            {"tier": 4, "label": "Strong", "min": 1.6, "max": 2.6},
            {"tier": 5, "label": "Exceptional", "min": 2.6, "max": None},
        ],
        "asv": [
            {"tier": 5, "label": "Exceptional", "min": 0, "max": 5},
            {"tier": 4, "label": "Strong", "min": 5, "max": 10},
            {"tier": 3, "label": "Average", "min": 10, "max": 20},
            {"tier": 2, "label": "Fair", "min": 20, "max": 40},
            {"tier": 1, "label": "Low", "min": 40, "max": None},
        ],
        "aci": [
            {"level": 1, "label": "Low", "min": 2, "max": 3},
            {"level": 2, "label": "Fair", "min": 4, "max": 5},
            {"level": 3, "label": "Average", "min": 6, "max": 7},
            {"level": 4, "label": "Strong", "min": 8, "max": 8},
            {"level": 5, "label": "Exceptional", "min": 9, "max": 10},
        ],
    }
