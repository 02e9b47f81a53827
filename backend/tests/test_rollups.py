from __future__ import annotations

from datetime import date

from sqlalchemy import select

from pauselink.db import session_scope
from pauselink.domain.models import PublisherIdentity
from pauselink.models import AttentionRollup
from pauselink.services import AttentionRollupService, EventIngestService, validate_event

IDENTITY = PublisherIdentity("pub_stream_co", "Stream Co", "api_key")
DAY = date(2026, 3, 1)


def _ingest(session_factory, body):
    with session_scope(session_factory) as session:
        return EventIngestService(session).ingest(validate_event(body), IDENTITY, None).payload


def _rollups(session_factory):
    with session_scope(session_factory) as session:
        return session.execute(select(AttentionRollup)).scalars().all()


def test_impressions_increment_opportunities(session_factory, campaign, impression_body):
    for index in range(3):
        _ingest(session_factory, impression_body(f"opp_{index}"))

    (rollup,) = _rollups(session_factory)
    assert rollup.rollup_date == DAY
    assert rollup.advertiser_id == "adv_acme"
    assert rollup.publisher_id == "pub_stream_co"
    assert rollup.program_title == "Night Shift"
    assert rollup.pause_opportunities == 3
    assert rollup.qr_scans == 0
    assert rollup.aci_label == "N/A"


def test_conversions_update_scans_and_average_velocity(
    session_factory, funded_wallet, impression_body, conversion_body
):
    _ingest(session_factory, impression_body("opp_a"))
    _ingest(session_factory, impression_body("opp_b"))
    _ingest(session_factory, conversion_body("opp_a", delay=4))
    _ingest(session_factory, conversion_body("opp_b", delay=8))

    (rollup,) = _rollups(session_factory)
    assert rollup.qr_scans == 2
    assert rollup.verified_conversions == 2
    assert rollup.asv_samples == 2
    assert rollup.average_asv_seconds == 6.0
    assert rollup.asv_tier == 4
    assert rollup.a2ar_percentage == 100.0
    assert rollup.a2ar_tier == 5
    assert (rollup.aci_score, rollup.aci_level) == (9, 5)


def test_failed_scan_counts_as_scan_only(
    session_factory, funded_wallet, impression_body, conversion_body
):
    _ingest(session_factory, impression_body())
    _ingest(session_factory, conversion_body(result="failed"))

    (rollup,) = _rollups(session_factory)
    assert rollup.qr_scans == 1
    assert rollup.verified_conversions == 0


def test_unresolved_campaign_creates_no_rollup(session_factory, campaign, impression_body):
    _ingest(session_factory, impression_body(campaign_id="cmp_missing"))
    assert _rollups(session_factory) == []


def test_programs_get_separate_rows(session_factory, campaign, impression_body):
    _ingest(session_factory, impression_body("opp_1"))
    _ingest(session_factory, impression_body("opp_2", content_title="Morning Show"))

    titles = sorted(rollup.program_title for rollup in _rollups(session_factory))
    assert titles == ["Morning Show", "Night Shift"]


def test_summary_weights_velocity_by_samples(
    session_factory, funded_wallet, impression_body, conversion_body
):
    for index, delay in enumerate([4, 8, 30]):
        title = "Night Shift" if index < 2 else "Morning Show"
        _ingest(session_factory, impression_body(f"opp_{index}", content_title=title))
        _ingest(session_factory, conversion_body(f"opp_{index}", delay=delay))

    with session_scope(session_factory) as session:
        service = AttentionRollupService(session)
        summary = service.summary("pub_stream_co", days=7, today=DAY)
        programs = service.by_program("pub_stream_co", days=7, today=DAY)

    assert summary.pause_opportunities == 3
    assert summary.verified_conversions == 3
    assert summary.average_asv_seconds == 14.0
    assert summary.asv_tier == 3
    assert summary.a2ar.tier == 5

    assert [report.program_title for report in programs] == ["Night Shift", "Morning Show"]
    assert programs[0].aci.score == 9
    assert programs[1].aci.score == 7


def test_summary_window_excludes_older_days(session_factory, campaign, impression_body):
    _ingest(session_factory, impression_body())

    with session_scope(session_factory) as session:
        summary = AttentionRollupService(session).summary(
            "pub_stream_co", days=1, today=date(2026, 3, 5)
        )
    assert summary.pause_opportunities == 0
    assert summary.average_asv_seconds is None
    assert summary.aci.level == 0
