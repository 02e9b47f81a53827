from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient

from pauselink.core.config import Settings
from pauselink.db import (
    create_db_engine,
    create_session_factory,
    get_session_factory,
    init_db,
    session_scope,
)
from pauselink.main import app
from pauselink.repositories import CampaignRepository, CredentialRepository
from pauselink.services import BillingLedger
from publisher_sdk import build_conversion, build_impression

SHOWN_AT = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(database_url=f"sqlite:///{tmp_path/'pauselink.db'}")
    monkeypatch.setattr("pauselink.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("pauselink.core.config.settings", settings)
    return settings


@pytest.fixture
def engine(test_settings):
    engine = create_db_engine(test_settings.resolved_database_url)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def publisher(session_factory):
    """An active publisher with freshly issued credentials."""
    with session_scope(session_factory) as session:
        return CredentialRepository(session).create(
            publisher_name="Stream Co",
            publisher_id="pub_stream_co",
        )


@pytest.fixture
def other_publisher(session_factory):
    with session_scope(session_factory) as session:
        return CredentialRepository(session).create(
            publisher_name="Other TV",
            publisher_id="pub_other_tv",
        )


@pytest.fixture
def campaign(session_factory):
    with session_scope(session_factory) as session:
        CampaignRepository(session).create(
            campaign_id="cmp_spring",
            advertiser_id="adv_acme",
            destination_url="https://acme.example/spring",
            conversion_fee=Decimal("5.00"),
            publisher_share=Decimal("3.00"),
        )
    return "cmp_spring"


def _fund(session_factory, amount: str) -> None:
    with session_scope(session_factory) as session:
        BillingLedger(session).deposit("adv_acme", Decimal(amount), description="Initial funding")


@pytest.fixture
def funded_wallet(session_factory, campaign):
    _fund(session_factory, "100.00")
    return "adv_acme"


@pytest.fixture
def low_wallet(session_factory, campaign):
    _fund(session_factory, "2.00")
    return "adv_acme"


@pytest.fixture
def client(session_factory):
    """Test client bound to the per-test database; overrides are cleared afterwards."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def bearer(publisher):
    def _headers(key: str | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {publisher.api_key}"}
        if key:
            headers["Idempotency-Key"] = key
        return headers

    return _headers


@pytest.fixture
def impression_body(publisher, campaign):
    def _build(opportunity_id: str = "opp_1", **overrides):
        options = {
            "publisher_id": publisher.publisher_id,
            "opportunity_id": opportunity_id,
            "campaign_id": campaign,
            "content_title": "Night Shift",
            "publisher_name": "Stream Co",
            "event_time": SHOWN_AT,
            "qr_appeared_at": SHOWN_AT,
        }
        options.update(overrides)
        return build_impression(**options)

    return _build


@pytest.fixture
def conversion_body(publisher):
    def _build(opportunity_id: str = "opp_1", *, delay: float = 7, **overrides):
        options = {
            "publisher_id": publisher.publisher_id,
            "opportunity_id": opportunity_id,
            "event_time": SHOWN_AT + timedelta(seconds=delay),
        }
        options.update(overrides)
        return build_conversion(**options)

    return _build
