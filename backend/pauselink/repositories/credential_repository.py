"""Publisher credential lookups and administrative mutations."""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from pauselink.models import PlatformType, PublisherCredential, PublisherStatus

API_KEY_PREFIX = "pk_"
WEBHOOK_SECRET_PREFIX = "whsec_"


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(32)


def generate_webhook_secret() -> str:
    return WEBHOOK_SECRET_PREFIX + secrets.token_hex(32)


def derive_publisher_id(publisher_name: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "_", publisher_name.lower())
    slug = re.sub(r"_+", "_", slug).strip("_")
    return f"pub_{slug}"


@dataclass(slots=True)
class IssuedCredentials:
    """Plaintext secrets returned once, at creation or rotation time."""

    publisher_id: str
    api_key: str
    webhook_secret: str


class CredentialRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Queries

    def get(self, publisher_id: str) -> PublisherCredential | None:
        return self._session.get(PublisherCredential, publisher_id)

    def find_active(self, publisher_id: str) -> PublisherCredential | None:
        query = select(PublisherCredential).where(
            PublisherCredential.publisher_id == publisher_id,
            PublisherCredential.status == PublisherStatus.ACTIVE.value,
        )
        return self._session.execute(query).scalar_one_or_none()

    def find_active_by_api_key(self, api_key: str) -> PublisherCredential | None:
        query = select(PublisherCredential).where(
            PublisherCredential.api_key_hash == hash_api_key(api_key),
            PublisherCredential.status == PublisherStatus.ACTIVE.value,
        )
        return self._session.execute(query).scalar_one_or_none()

    def list(self, *, status: str | None = None) -> Sequence[PublisherCredential]:
        query = select(PublisherCredential).order_by(PublisherCredential.publisher_id)
        if status:
            query = query.where(PublisherCredential.status == status)
        return self._session.execute(query).scalars().all()

    # ------------------------------------------------------------------
    # Mutations

    def record_usage(self, publisher_id: str, used_at: datetime) -> None:
        self._session.execute(
            update(PublisherCredential)
            .where(PublisherCredential.publisher_id == publisher_id)
            .values(
                last_used_at=used_at,
                requests_count=PublisherCredential.requests_count + 1,
            )
        )

    def create(
        self,
        *,
        publisher_name: str,
        publisher_id: str | None = None,
        contact_name: str | None = None,
        contact_email: str | None = None,
        platform_type: str = PlatformType.CTV.value,
        notes: str | None = None,
    ) -> IssuedCredentials:
        api_key = generate_api_key()
        webhook_secret = generate_webhook_secret()
        credential = PublisherCredential(
            publisher_id=publisher_id or derive_publisher_id(publisher_name),
            publisher_name=publisher_name,
            contact_name=contact_name,
            contact_email=contact_email,
            platform_type=PlatformType(platform_type).value,
            api_key_hash=hash_api_key(api_key),
            api_key_prefix=api_key[:12],
            webhook_secret=webhook_secret,
            status=PublisherStatus.ACTIVE.value,
            notes=notes,
        )
        self._session.add(credential)
        self._session.flush()
        return IssuedCredentials(
            publisher_id=credential.publisher_id,
            api_key=api_key,
            webhook_secret=webhook_secret,
        )

    def rotate(self, credential: PublisherCredential, *, rotate_secret: bool = False) -> IssuedCredentials:
        api_key = generate_api_key()
        credential.api_key_hash = hash_api_key(api_key)
        credential.api_key_prefix = api_key[:12]
        if rotate_secret:
            credential.webhook_secret = generate_webhook_secret()
        self._session.flush()
        return IssuedCredentials(
            publisher_id=credential.publisher_id,
            api_key=api_key,
            webhook_secret=credential.webhook_secret,
        )

    def set_status(self, credential: PublisherCredential, status: str) -> PublisherCredential:
        credential.status = PublisherStatus(status).value
        self._session.flush()
        return credential


__all__ = [
    "CredentialRepository",
    "IssuedCredentials",
    "derive_publisher_id",
    "generate_api_key",
    "generate_webhook_secret",
    "hash_api_key",
]
