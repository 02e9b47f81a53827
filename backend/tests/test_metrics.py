from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pauselink.domain.metrics import (
    a2ar_tier,
    asv_tier,
    attention_rate,
    composite_index,
    running_average,
    scan_velocity,
    tier_table,
)

SHOWN = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("delta", "tier", "label"),
    [
        (3, 5, "Exceptional"),
        (7, 4, "Strong"),
        (15, 3, "Average"),
        (30, 2, "Fair"),
        (50, 1, "Low"),
    ],
)
def test_scan_velocity_tiers(delta, tier, label):
    velocity = scan_velocity(SHOWN, SHOWN + timedelta(seconds=delta))
    assert velocity.seconds == delta
    assert velocity.tier == tier
    assert velocity.label == label


@pytest.mark.parametrize(("seconds", "tier"), [(5, 5), (10, 4), (20, 3), (40, 2), (40.01, 1)])
def test_asv_boundaries_are_inclusive(seconds, tier):
    assert asv_tier(seconds) == tier


def test_non_positive_scan_velocity_is_not_available():
    assert scan_velocity(SHOWN, SHOWN).tier == 0
    late = scan_velocity(SHOWN, SHOWN - timedelta(seconds=4))
    assert late.tier == 0
    assert late.label == "N/A"
    assert scan_velocity(None, SHOWN).seconds is None


def test_scan_velocity_accepts_naive_datetimes():
    naive_shown = SHOWN.replace(tzinfo=None)
    velocity = scan_velocity(naive_shown, SHOWN + timedelta(seconds=2.5))
    assert velocity.seconds == 2.5
    assert velocity.tier == 5


def test_attention_rate_tiers():
    low = attention_rate(1000, 3)
    assert low.percentage == 0.3
    assert (low.tier, low.label) == (1, "Low")

    strong = attention_rate(1000, 20)
    assert strong.percentage == 2.0
    assert (strong.tier, strong.label) == (4, "Strong")


@pytest.mark.parametrize(("pct", "tier"), [(0.49, 1), (0.5, 2), (0.8, 3), (1.6, 4), (2.6, 5)])
def test_a2ar_lower_bounds_are_inclusive(pct, tier):
    assert a2ar_tier(pct) == tier


def test_attention_rate_with_no_opportunities():
    rate = attention_rate(0, 0)
    assert rate.percentage == 0.0
    assert rate.tier == 1


def test_composite_index_levels():
    strong = composite_index(4, 4)
    assert (strong.score, strong.level, strong.label) == (8, 4, "Strong")
    assert composite_index(5, 5).level == 5
    assert composite_index(1, 1).level == 1
    assert composite_index(3, 3).label == "Average"


def test_composite_index_requires_both_tiers():
    missing = composite_index(4, 0)
    assert (missing.score, missing.level, missing.label) == (0, 0, "N/A")


def test_running_average():
    assert running_average(None, 0, 7.0) == 7.0
    assert running_average(7.0, 1, 3.0) == 5.0
    assert running_average(5.0, 2, 11.0) == 7.0


def test_tier_table_lists_every_band():
    table = tier_table()
    assert [band["tier"] for band in table["a2ar"]] == [1, 2, 3, 4, 5]
    assert [band["tier"] for band in table["asv"]] == [5, 4, 3, 2, 1]
    assert [band["level"] for band in table["aci"]] == [1, 2, 3, 4, 5]
