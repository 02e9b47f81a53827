from __future__ import annotations

import json

import httpx
import pytest

from pauselink.services.auth_service import compute_signature, verify_signature
from publisher_sdk import PublisherClient, PublisherClientError, build_conversion, sign_body


def _event():
    return build_conversion(publisher_id="pub_stream_co", opportunity_id="opp_1", event_id="evt_1")


def test_sdk_signature_matches_server():
    raw = b'{"event_id":"evt_1"}'
    timestamp, signature = sign_body("whsec_test", raw, timestamp=1_772_366_400)
    assert timestamp == "1772366400"
    assert signature == compute_signature("whsec_test", timestamp, raw)
    assert verify_signature("whsec_test", timestamp, raw, signature)


def test_signed_client_sends_verifiable_headers():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "accepted", "receipt_id": "rct_1"})

    with PublisherClient(
        "http://ingest.test",
        publisher_id="pub_stream_co",
        webhook_secret="whsec_test",
        transport=httpx.MockTransport(handler),
    ) as client:
        payload = client.send_event(_event(), idempotency_key="key-1")

    assert payload["receipt_id"] == "rct_1"
    (request,) = seen
    assert request.headers["Idempotency-Key"] == "key-1"
    assert "authorization" not in request.headers
    assert verify_signature(
        "whsec_test",
        request.headers["X-Timestamp"],
        request.content,
        request.headers["X-Signature"],
    )
    assert json.loads(request.content)["event_id"] == "evt_1"


def test_transport_errors_are_retried_with_the_same_key(monkeypatch):
    monkeypatch.setattr("publisher_sdk.client.time.sleep", lambda _: None)
    keys: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        keys.append(request.headers["Idempotency-Key"])
        if len(keys) < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"status": "accepted", "receipt_id": "rct_1"})

    with PublisherClient(
        "http://ingest.test",
        publisher_id="pub_stream_co",
        api_key="pk_test",
        transport=httpx.MockTransport(handler),
    ) as client:
        client.send_event(_event())

    assert len(keys) == 3
    assert len(set(keys)) == 1
    assert keys[0].startswith("idem_")


def test_retries_are_bounded(monkeypatch):
    monkeypatch.setattr("publisher_sdk.client.time.sleep", lambda _: None)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = PublisherClient(
        "http://ingest.test",
        publisher_id="pub_stream_co",
        api_key="pk_test",
        max_retries=1,
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(httpx.ConnectError):
        client.send_event(_event())
    client.close()


def test_api_errors_raise_with_code():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer pk_test"
        return httpx.Response(404, json={"error": "pause_not_found", "message": "no match"})

    with PublisherClient(
        "http://ingest.test",
        publisher_id="pub_stream_co",
        api_key="pk_test",
        transport=httpx.MockTransport(handler),
    ) as client:
        with pytest.raises(PublisherClientError) as excinfo:
            client.send_event(_event())

    assert excinfo.value.status_code == 404
    assert excinfo.value.code == "pause_not_found"


def test_client_requires_credentials():
    with pytest.raises(ValueError):
        PublisherClient("http://ingest.test", publisher_id="pub_stream_co")


def test_client_against_api(client, publisher, campaign, impression_body):
    with PublisherClient(
        "http://testserver",
        publisher_id=publisher.publisher_id,
        webhook_secret=publisher.webhook_secret,
        transport=client._transport,
    ) as sdk:
        accepted = sdk.send_event(impression_body(), idempotency_key="sdk-1")
        listing = sdk.list_events()

    assert accepted["status"] == "accepted"
    assert listing["events"][0]["receipt_id"] == accepted["receipt_id"]


def test_in_progress_conflict_is_retried_with_the_same_key(monkeypatch):
    monkeypatch.setattr("publisher_sdk.client.time.sleep", lambda _: None)
    keys: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        keys.append(request.headers["Idempotency-Key"])
        if len(keys) == 1:
            return httpx.Response(409, json={"error": "request_in_progress", "message": "busy"})
        return httpx.Response(200, json={"status": "accepted", "receipt_id": "rct_1"})

    with PublisherClient(
        "http://ingest.test",
        publisher_id="pub_stream_co",
        api_key="pk_test",
        transport=httpx.MockTransport(handler),
    ) as client:
        payload = client.send_event(_event(), idempotency_key="key-1")

    assert payload["receipt_id"] == "rct_1"
    assert keys == ["key-1", "key-1"]


def test_in_progress_conflict_gives_up_after_retries(monkeypatch):
    monkeypatch.setattr("publisher_sdk.client.time.sleep", lambda _: None)
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(409, json={"error": "request_in_progress", "message": "busy"})

    with PublisherClient(
        "http://ingest.test",
        publisher_id="pub_stream_co",
        api_key="pk_test",
        max_retries=2,
        transport=httpx.MockTransport(handler),
    ) as client:
        with pytest.raises(PublisherClientError) as excinfo:
            client.send_event(_event())

    assert excinfo.value.code == "request_in_progress"
    assert len(calls) == 3
