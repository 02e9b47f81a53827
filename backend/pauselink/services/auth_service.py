"""Publisher authentication by bearer API key or signed webhook headers."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from pauselink.db import session_scope
from pauselink.domain.models import PublisherIdentity
from pauselink.errors import AuthenticationError, ValidationError
from pauselink.models import PublisherCredential
from pauselink.repositories import CredentialRepository

TIMESTAMP_HEADER = "x-timestamp"
SIGNATURE_HEADER = "x-signature"
PUBLISHER_HEADER = "x-publisher-id"
SIGNATURE_SCHEME = "sha256="


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    message = timestamp.encode("utf-8") + b"." + raw_body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return SIGNATURE_SCHEME + digest


def verify_signature(secret: str, timestamp: str, raw_body: bytes, signature: str) -> bool:
    if not secret or not signature:
        return False
    candidate = signature.strip()
    if not candidate.startswith(SIGNATURE_SCHEME):
        candidate = SIGNATURE_SCHEME + candidate
    expected = compute_signature(secret, timestamp, raw_body)
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def _publisher_id_from_body(raw_body: bytes) -> str | None:
    if not raw_body:
        return None
    try:
        body = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(body, dict):
        return None
    publisher = body.get("publisher")
    if isinstance(publisher, dict) and publisher.get("publisher_id"):
        return str(publisher["publisher_id"])
    return None


class CredentialAuthenticator:
    """Resolve request credentials to an active publisher identity."""

    def __init__(
        self,
        session: Session,
        *,
        tolerance_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credentials = CredentialRepository(session)
        self._tolerance = tolerance_seconds
        self._clock = clock

    def authenticate(self, headers: Mapping[str, str], raw_body: bytes) -> PublisherIdentity:
        authorization = headers.get("authorization")
        if authorization and authorization.lower().startswith("bearer "):
            return self._authenticate_api_key(authorization[7:].strip())

        timestamp = headers.get(TIMESTAMP_HEADER)
        signature = headers.get(SIGNATURE_HEADER)
        if timestamp and signature:
            publisher_id = _publisher_id_from_body(raw_body) or headers.get(PUBLISHER_HEADER)
            return self._authenticate_signature(publisher_id, timestamp, signature, raw_body)

        raise AuthenticationError(
            "authentication_required",
            "Provide either an Authorization bearer token or signed webhook headers "
            "(X-Timestamp, X-Signature)",
        )

    def _authenticate_api_key(self, api_key: str) -> PublisherIdentity:
        credential = self._credentials.find_active_by_api_key(api_key) if api_key else None
        if credential is None:
            logger.warning("Rejected request with unknown or inactive API key")
            raise AuthenticationError("invalid_credentials", "Invalid or inactive API key")
        return self._identity(credential, "api_key")

    def _authenticate_signature(
        self,
        publisher_id: str | None,
        timestamp: str,
        signature: str,
        raw_body: bytes,
    ) -> PublisherIdentity:
        if not publisher_id:
            raise ValidationError(
                "missing_publisher_id",
                "publisher.publisher_id is required for signed requests",
            )
        credential = self._credentials.find_active(publisher_id)
        if credential is None:
            logger.warning("Signed request for unknown or inactive publisher {}", publisher_id)
            raise AuthenticationError("publisher_not_found", "Publisher not found or inactive")

        if not verify_signature(credential.webhook_secret, timestamp, raw_body, signature):
            logger.warning("Signature verification failed for publisher {}", publisher_id)
            raise AuthenticationError("invalid_signature", "Webhook signature verification failed")

        try:
            sent_at = int(timestamp)
        except ValueError:
            raise AuthenticationError(
                "timestamp_expired", "X-Timestamp must be integer seconds since the epoch"
            ) from None
        if abs(int(self._clock()) - sent_at) > self._tolerance:
            logger.warning("Stale signed request from publisher {} (ts={})", publisher_id, sent_at)
            raise AuthenticationError(
                "timestamp_expired",
                f"Request timestamp is outside the {self._tolerance}s window",
            )
        return self._identity(credential, "signature")

    @staticmethod
    def _identity(credential: PublisherCredential, method: str) -> PublisherIdentity:
        return PublisherIdentity(
            publisher_id=credential.publisher_id,
            publisher_name=credential.publisher_name,
            auth_method=method,
        )


def record_credential_usage(factory: sessionmaker[Session], publisher_id: str) -> None:
    """Bump usage counters; runs after the response has been sent."""

    try:
        with session_scope(factory) as session:
            CredentialRepository(session).record_usage(publisher_id, datetime.now(timezone.utc))
    except Exception:  # noqa: BLE001
        logger.exception("Failed to record API usage for publisher {}", publisher_id)


__all__ = [
    "CredentialAuthenticator",
    "compute_signature",
    "record_credential_usage",
    "verify_signature",
]
