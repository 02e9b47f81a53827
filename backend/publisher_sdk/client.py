from __future__ import annotations

import json
import time
import uuid
from typing import Any

import httpx
from loguru import logger

from .signing import sign_body


class PublisherClientError(RuntimeError):
    """Raised when the ingest API rejects an event."""

    def __init__(self, status_code: int, payload: dict[str, Any]) -> None:
        super().__init__(f"{status_code} {payload.get('error')}: {payload.get('message')}")
        self.status_code = status_code
        self.payload = payload

    @property
    def code(self) -> str | None:
        return self.payload.get("error")


class PublisherClient:
    """Send pause impressions and QR conversions to the ingest API.

    Authenticates with either a bearer API key or the publisher's webhook
    secret. Every submission carries an idempotency key. Transport errors and
    in-progress conflicts are retried with that same key so a retry can never
    double count.
    """

    def __init__(
        self,
        base_url: str,
        *,
        publisher_id: str,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key and not webhook_secret:
            raise ValueError("Either api_key or webhook_secret is required")
        self.publisher_id = publisher_id
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def _auth_headers(self, raw_body: bytes) -> dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        timestamp, signature = sign_body(self.webhook_secret, raw_body)
        return {
            "X-Timestamp": timestamp,
            "X-Signature": signature,
            "X-Publisher-Id": self.publisher_id,
        }

    def send_event(self, event: dict[str, Any], *, idempotency_key: str | None = None) -> dict[str, Any]:
        key = idempotency_key or f"idem_{uuid.uuid4().hex}"
        raw_body = json.dumps(event, separators=(",", ":")).encode("utf-8")

        attempt = 0
        while True:
            attempt += 1
            headers = {
                "Content-Type": "application/json",
                "Idempotency-Key": key,
                **self._auth_headers(raw_body),
            }
            try:
                response = self.client.post("/v1/events", content=raw_body, headers=headers)
            except httpx.TransportError as exc:
                if attempt > self.max_retries:
                    raise
                self._back_off(event, attempt, exc)
                continue

            payload = response.json()
            if response.status_code == 409 and payload.get("error") == "request_in_progress":
                # An earlier attempt with this key is still being processed.
                if attempt > self.max_retries:
                    raise PublisherClientError(response.status_code, payload)
                self._back_off(event, attempt, payload.get("error"))
                continue
            if response.status_code >= 400:
                raise PublisherClientError(response.status_code, payload)
            logger.info(
                "Sent {} {} -> {} ({})",
                event.get("event_type"),
                event.get("event_id"),
                payload.get("receipt_id"),
                payload.get("status"),
            )
            return payload

    def _back_off(self, event: dict[str, Any], attempt: int, reason: Any) -> None:
        delay = self.backoff_seconds * 2 ** (attempt - 1)
        logger.warning(
            "Retrying {} after attempt {} failed: {}; waiting {:.1f}s",
            event.get("event_id"),
            attempt,
            reason,
            delay,
        )
        time.sleep(delay)

    def list_events(self, **params: Any) -> dict[str, Any]:
        headers = self._auth_headers(b"")
        response = self.client.get(
            "/v1/events",
            params={key: value for key, value in params.items() if value is not None},
            headers=headers,
        )
        payload = response.json()
        if response.status_code >= 400:
            raise PublisherClientError(response.status_code, payload)
        return payload

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "PublisherClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
