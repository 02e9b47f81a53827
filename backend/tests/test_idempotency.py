from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from pauselink.db import session_scope
from pauselink.errors import ConflictError
from pauselink.models import EventReceipt, IdempotencyRecord
from pauselink.services import IdempotencyGuard


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 12, tzinfo=timezone.utc))


@pytest.fixture
def guard(session_factory, clock):
    return IdempotencyGuard(session_factory, ttl_hours=24, lease_seconds=300, clock=clock)


def _complete(session_factory, guard, reservation, payload):
    with session_scope(session_factory) as session:
        guard.complete(session, reservation, payload, payload.get("receipt_id"))


def test_first_reservation_is_fresh(guard):
    reservation = guard.reserve("pub_a", "key-1")
    assert reservation.record_id is not None
    assert not reservation.is_duplicate


def test_completed_key_replays_cached_response(session_factory, guard):
    payload = {"status": "accepted", "receipt_id": "rct_1", "ingested_at": "2026-03-01T12:00:00Z"}
    _complete(session_factory, guard, guard.reserve("pub_a", "key-1"), payload)

    replay = guard.reserve("pub_a", "key-1")
    assert replay.is_duplicate
    assert replay.cached_response == payload
    assert list(replay.cached_response) == list(payload)


def test_in_flight_key_conflicts(guard):
    guard.reserve("pub_a", "key-1")
    with pytest.raises(ConflictError) as excinfo:
        guard.reserve("pub_a", "key-1")
    assert excinfo.value.code == "request_in_progress"
    assert excinfo.value.status_code == 409


def test_abandoned_reservation_is_taken_over_after_lease(session_factory, guard, clock):
    guard.reserve("pub_a", "key-1")

    clock.now += timedelta(seconds=299)
    with pytest.raises(ConflictError):
        guard.reserve("pub_a", "key-1")

    clock.now += timedelta(seconds=1)
    retry = guard.reserve("pub_a", "key-1")
    assert retry.record_id is not None
    assert not retry.is_duplicate

    with session_scope(session_factory) as session:
        count = session.execute(select(func.count()).select_from(IdempotencyRecord)).scalar_one()
    assert count == 1


def test_answered_key_outlives_lease(session_factory, guard, clock):
    payload = {"status": "accepted", "receipt_id": "rct_1"}
    _complete(session_factory, guard, guard.reserve("pub_a", "key-1"), payload)

    clock.now += timedelta(hours=1)
    assert guard.reserve("pub_a", "key-1").cached_response == payload


def test_keys_are_scoped_per_publisher(guard):
    guard.reserve("pub_a", "key-1")
    assert not guard.reserve("pub_b", "key-1").is_duplicate


def test_expired_entry_is_treated_as_absent(session_factory, guard, clock):
    _complete(session_factory, guard, guard.reserve("pub_a", "key-1"), {"status": "accepted"})

    clock.now += timedelta(hours=24, seconds=1)
    fresh = guard.reserve("pub_a", "key-1")
    assert not fresh.is_duplicate

    with session_scope(session_factory) as session:
        count = session.execute(select(func.count()).select_from(IdempotencyRecord)).scalar_one()
    assert count == 1


def test_release_allows_retry(guard):
    reservation = guard.reserve("pub_a", "key-1")
    guard.release(reservation)
    assert not guard.reserve("pub_a", "key-1").is_duplicate


def test_release_keeps_answered_entries(session_factory, guard):
    reservation = guard.reserve("pub_a", "key-1")
    _complete(session_factory, guard, reservation, {"status": "accepted"})
    guard.release(reservation)
    assert guard.reserve("pub_a", "key-1").is_duplicate


def test_purge_expired(session_factory, guard, clock):
    guard.reserve("pub_a", "old")
    clock.now += timedelta(hours=25)
    guard.reserve("pub_a", "new")

    assert guard.purge_expired() == 1
    with session_scope(session_factory) as session:
        keys = session.execute(select(IdempotencyRecord.idempotency_key)).scalars().all()
    assert keys == ["new"]


def test_api_replay_is_byte_identical(client, bearer, impression_body, session_factory):
    body = impression_body()
    first = client.post("/v1/events", json=body, headers=bearer("retry-me"))
    second = client.post("/v1/events", json=body, headers=bearer("retry-me"))

    assert first.status_code == second.status_code == 200
    assert first.content == second.content

    with session_scope(session_factory) as session:
        receipts = session.execute(select(func.count()).select_from(EventReceipt)).scalar_one()
    assert receipts == 1


def test_api_same_event_under_new_key_is_duplicate(client, bearer, impression_body):
    body = impression_body()
    first = client.post("/v1/events", json=body, headers=bearer("key-a")).json()
    second = client.post("/v1/events", json=body, headers=bearer("key-b")).json()

    assert second["status"] == "duplicate"
    assert second["receipt_id"] == first["receipt_id"]


def test_api_key_from_body_field(client, bearer, impression_body):
    body = impression_body()
    body["idempotency_key"] = "from-body"
    response = client.post("/v1/events", json=body, headers=bearer())
    assert response.status_code == 200
    assert client.post("/v1/events", json=body, headers=bearer()).content == response.content


def test_api_missing_key(client, bearer, impression_body):
    response = client.post("/v1/events", json=impression_body(), headers=bearer())
    assert response.status_code == 400
    assert response.json()["error"] == "missing_idempotency_key"
