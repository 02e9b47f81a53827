from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from pauselink.db import session_scope
from pauselink.models import Campaign, PublisherCredential, Wallet
from pauselink.repositories.credential_repository import hash_api_key
from scripts import manage


@pytest.fixture
def cli_db(engine, session_factory, monkeypatch):
    monkeypatch.setattr("pauselink.db.engine", engine)
    monkeypatch.setattr("pauselink.db.SessionLocal", session_factory)
    monkeypatch.setattr(manage, "SessionLocal", session_factory)
    monkeypatch.setattr(manage, "configure_logging", lambda: None)
    return session_factory


def test_publisher_create_prints_credentials_once(cli_db, capsys):
    assert manage.main(["publisher", "create", "Night Owl TV", "--platform", "FAST"]) == 0
    output = capsys.readouterr().out
    api_key = next(line.split()[-1] for line in output.splitlines() if line.startswith("api_key"))

    with session_scope(cli_db) as session:
        credential = session.get(PublisherCredential, "pub_night_owl_tv")
        assert credential.platform_type == "FAST"
        assert credential.api_key_hash == hash_api_key(api_key)
        assert credential.api_key_prefix == api_key[:12]


def test_publisher_status_and_rotate(cli_db, publisher, capsys):
    assert manage.main(["publisher", "status", publisher.publisher_id, "suspended"]) == 0
    assert manage.main(["publisher", "rotate", publisher.publisher_id]) == 0
    assert manage.main(["publisher", "rotate", "pub_missing"]) == 1

    with session_scope(cli_db) as session:
        credential = session.get(PublisherCredential, publisher.publisher_id)
        assert credential.status == "suspended"
        assert credential.api_key_hash != hash_api_key(publisher.api_key)


def test_campaign_create_validates_share(cli_db):
    args = ["campaign", "create", "cmp_cli", "--advertiser", "adv_cli", "--destination", "https://x.example"]
    assert manage.main(args + ["--fee", "4", "--publisher-share", "5"]) == 1
    assert manage.main(args + ["--fee", "4", "--publisher-share", "2.5"]) == 0

    with session_scope(cli_db) as session:
        campaign = session.get(Campaign, "cmp_cli")
        assert campaign.conversion_fee == Decimal("4")


def test_wallet_deposit_and_reconcile(cli_db, capsys):
    assert manage.main(["wallet", "deposit", "adv_cli", "25.50"]) == 0
    assert manage.main(["wallet", "deposit", "adv_cli", "-1"]) == 1
    assert manage.main(["wallet", "reconcile"]) == 0
    assert "ok" in capsys.readouterr().out

    with session_scope(cli_db) as session:
        session.execute(select(Wallet)).scalar_one().balance = Decimal("1")
    assert manage.main(["wallet", "reconcile"]) == 2


def test_idempotency_purge(cli_db, capsys):
    assert manage.main(["idempotency", "purge"]) == 0
    assert "removed 0 expired entries" in capsys.readouterr().out


def test_campaign_and_wallet_listings(cli_db, capsys):
    args = ["campaign", "create", "cmp_cli", "--advertiser", "adv_cli", "--destination", "https://x.example"]
    assert manage.main(args + ["--fee", "4"]) == 0
    assert manage.main(["wallet", "deposit", "adv_cli", "10"]) == 0
    capsys.readouterr()

    assert manage.main(["campaign", "list", "adv_cli"]) == 0
    (campaign_line,) = capsys.readouterr().out.splitlines()
    assert campaign_line.startswith("cmp_cli\t")
    assert "https://x.example" in campaign_line

    assert manage.main(["campaign", "list", "adv_other"]) == 0
    assert capsys.readouterr().out == ""

    assert manage.main(["wallet", "list"]) == 0
    (wallet_line,) = capsys.readouterr().out.splitlines()
    _, advertiser_id, currency, balance = wallet_line.split("\t")
    assert (advertiser_id, currency) == ("adv_cli", "USD")
    assert Decimal(balance) == Decimal("10")
