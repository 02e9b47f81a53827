from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_serializer

from .domain.models import isoformat_utc


class ReceiptBase(BaseModel):
    receipt_id: str
    event_id: str
    event_type: str
    event_version: str
    event_time_utc: datetime
    opportunity_id: str
    publisher_id: str
    billing_status: str
    ingested_at: datetime

    @field_serializer("event_time_utc", "ingested_at")
    def _serialize_utc(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        return isoformat_utc(value)


class ReceiptSummary(ReceiptBase):
    campaign_id: str | None = None
    content_title: str | None = None
    conversion_result: str | None = None
    asv_seconds: float | None = None
    asv_tier: int | None = None
    matched_conversion_id: str | None = None
    matched_pause_id: str | None = None

    model_config = {"from_attributes": True}


class Receipt(ReceiptSummary):
    publisher_name: str | None = None
    app_id: str | None = None
    supply_type: str | None = None
    session_id: str | None = None
    content_session_id: str | None = None
    content_id: str | None = None
    series: str | None = None
    season: str | None = None
    episode: str | None = None
    genre: list[str] | None = None
    rating: str | None = None
    pause_timestamp_ms: int | None = None
    is_live: bool = False
    ad_id: str | None = None
    brand: str | None = None
    creative_id: str | None = None
    qr_enabled: bool = False
    device_type: str | None = None
    os: str | None = None
    country: str | None = None
    region: str | None = None
    conversion_type: str | None = None
    qr_destination_id: str | None = None
    qr_appeared_at: datetime | None = None
    qr_scanned_at: datetime | None = None
    asv_label: str | None = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"from_attributes": True}

    @field_serializer("qr_appeared_at", "qr_scanned_at")
    def _serialize_optional_utc(self, value: datetime | None) -> str | None:
        return isoformat_utc(value) if value is not None else None


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class ReceiptList(BaseModel):
    events: list[ReceiptSummary]
    pagination: Pagination


class AttentionRateOut(BaseModel):
    percentage: float
    tier: int
    label: str

    model_config = {"from_attributes": True}


class CompositeIndexOut(BaseModel):
    score: int
    level: int
    label: str

    model_config = {"from_attributes": True}


class AttentionSummary(BaseModel):
    publisher_id: str
    start_date: date
    end_date: date
    pause_opportunities: int
    qr_scans: int
    verified_conversions: int
    a2ar: AttentionRateOut
    average_asv_seconds: float | None = None
    asv_tier: int
    asv_label: str
    aci: CompositeIndexOut


class ProgramAttention(AttentionSummary):
    program_title: str


class ProgramAttentionList(BaseModel):
    publisher_id: str
    days: int
    items: list[ProgramAttention]


class TierBand(BaseModel):
    label: str
    min: float | None = None
    max: float | None = None
    tier: int | None = None
    level: int | None = None


class TierTable(BaseModel):
    a2ar: list[TierBand]
    asv: list[TierBand]
    aci: list[TierBand]
