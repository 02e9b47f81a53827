from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .domain.billing import BillingStatus
from .domain.models import EventType


class PublisherStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"


class PlatformType(str, Enum):
    CTV = "CTV"
    MOBILE = "Mobile"
    WEB = "Web"
    FAST = "FAST"
    OTHER = "Other"


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    CONVERSION_FEE = "conversion_fee"
    REFUND = "refund"
    PAYOUT = "payout"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PublisherCredential(Base):
    __tablename__ = "publisher_credentials"

    publisher_id: Mapped[str] = mapped_column(String, primary_key=True)
    publisher_name: Mapped[str] = mapped_column(String, nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String, nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String, nullable=True)
    platform_type: Mapped[str] = mapped_column(String, nullable=False, default=PlatformType.CTV.value)
    api_key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    api_key_prefix: Mapped[str] = mapped_column(String(16), nullable=False)
    webhook_secret: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=PublisherStatus.ACTIVE.value, index=True
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    requests_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class Campaign(Base):
    __tablename__ = "campaigns"

    campaign_id: Mapped[str] = mapped_column(String, primary_key=True)
    advertiser_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    destination_url: Mapped[str] = mapped_column(String, nullable=False)
    publisher_id: Mapped[str | None] = mapped_column(String, nullable=True)
    program: Mapped[str | None] = mapped_column(String, nullable=True)
    creative_id: Mapped[str | None] = mapped_column(String, nullable=True)
    conversion_fee: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    publisher_share: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class EventReceipt(Base):
    __tablename__ = "event_receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    receipt_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    event_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    event_version: Mapped[str] = mapped_column(String, nullable=False, default="1.0")
    event_time_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    opportunity_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    publisher_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    publisher_name: Mapped[str | None] = mapped_column(String, nullable=True)
    app_id: Mapped[str | None] = mapped_column(String, nullable=True)
    supply_type: Mapped[str | None] = mapped_column(String, nullable=True)

    session_id: Mapped[str | None] = mapped_column(String, nullable=True)
    content_session_id: Mapped[str | None] = mapped_column(String, nullable=True)

    content_id: Mapped[str | None] = mapped_column(String, nullable=True)
    content_title: Mapped[str | None] = mapped_column(String, nullable=True)
    series: Mapped[str | None] = mapped_column(String, nullable=True)
    season: Mapped[str | None] = mapped_column(String, nullable=True)
    episode: Mapped[str | None] = mapped_column(String, nullable=True)
    genre: Mapped[list | None] = mapped_column(JSON, nullable=True)
    rating: Mapped[str | None] = mapped_column(String, nullable=True)
    pause_timestamp_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_live: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    ad_id: Mapped[str | None] = mapped_column(String, nullable=True)
    campaign_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    brand: Mapped[str | None] = mapped_column(String, nullable=True)
    creative_id: Mapped[str | None] = mapped_column(String, nullable=True)
    qr_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    device_type: Mapped[str | None] = mapped_column(String, nullable=True)
    os: Mapped[str | None] = mapped_column(String, nullable=True)
    country: Mapped[str | None] = mapped_column(String, nullable=True)
    region: Mapped[str | None] = mapped_column(String, nullable=True)

    conversion_type: Mapped[str | None] = mapped_column(String, nullable=True)
    conversion_result: Mapped[str | None] = mapped_column(String, nullable=True)
    qr_destination_id: Mapped[str | None] = mapped_column(String, nullable=True)

    qr_appeared_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    qr_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    asv_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    asv_tier: Mapped[int | None] = mapped_column(Integer, nullable=True)
    asv_label: Mapped[str | None] = mapped_column(String, nullable=True)

    matched_conversion_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("event_receipts.receipt_id"), nullable=True
    )
    matched_pause_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("event_receipts.receipt_id"), nullable=True
    )
    billing_status: Mapped[str] = mapped_column(
        String, nullable=False, default=BillingStatus.PENDING.value, index=True
    )

    raw_payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String, nullable=True)
    ingested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_event_receipts_opportunity_type", "opportunity_id", "event_type"),
        Index("ix_event_receipts_publisher_time", "publisher_id", "event_time_utc"),
        Index("ix_event_receipts_campaign_status", "campaign_id", "billing_status"),
    )

    @property
    def is_impression(self) -> bool:
        return self.event_type == EventType.PAUSE_IMPRESSION.value


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    publisher_id: Mapped[str] = mapped_column(String, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String, nullable=False)
    receipt_id: Mapped[str | None] = mapped_column(String, nullable=True)
    response_payload: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("publisher_id", "idempotency_key", name="uq_idempotency_scope"),
    )


class Wallet(Base):
    __tablename__ = "wallets"

    wallet_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    advertiser_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    transactions: Mapped[list["WalletTransaction"]] = relationship(
        "WalletTransaction", back_populates="wallet", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("advertiser_id", "currency", name="uq_wallet_owner_currency"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    transaction_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_id: Mapped[int] = mapped_column(Integer, ForeignKey("wallets.wallet_id"), nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    wallet: Mapped[Wallet] = relationship("Wallet", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("wallet_id", "type", "reference_id", name="uq_wallet_transaction_reference"),
        Index("ix_wallet_transactions_wallet_created", "wallet_id", "created_at"),
    )


class BillingRecord(Base):
    __tablename__ = "billing_records"

    billing_record_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    advertiser_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    wallet_id: Mapped[int] = mapped_column(Integer, ForeignKey("wallets.wallet_id"), nullable=False)
    conversion_receipt_id: Mapped[str] = mapped_column(
        String, ForeignKey("event_receipts.receipt_id"), nullable=False, unique=True
    )
    impression_receipt_id: Mapped[str] = mapped_column(
        String, ForeignKey("event_receipts.receipt_id"), nullable=False
    )
    campaign_id: Mapped[str] = mapped_column(String, nullable=False)
    publisher_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    publisher_name: Mapped[str | None] = mapped_column(String, nullable=True)
    creative_id: Mapped[str | None] = mapped_column(String, nullable=True)
    conversion_fee: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    publisher_share: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    platform_cut: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    billed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AttentionRollup(Base):
    __tablename__ = "attention_rollups"

    rollup_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rollup_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    advertiser_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    publisher_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    program_title: Mapped[str] = mapped_column(String, nullable=False)

    pause_opportunities: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    qr_scans: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_conversions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    a2ar_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    a2ar_tier: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    a2ar_label: Mapped[str] = mapped_column(String, nullable=False, default="Low")

    asv_samples: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_asv_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    asv_tier: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    asv_label: Mapped[str] = mapped_column(String, nullable=False, default="N/A")

    aci_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    aci_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    aci_label: Mapped[str] = mapped_column(String, nullable=False, default="N/A")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "rollup_date",
            "advertiser_id",
            "publisher_id",
            "program_title",
            name="uq_attention_rollup_scope",
        ),
    )
