"""Domain logic that does not depend on persistence or HTTP."""

from .billing import (
    BillingStatus,
    can_transition,
    impression_status,
    quantize_money,
    split_fee,
    transition,
)
from .metrics import (
    AttentionRate,
    CompositeIndex,
    ScanVelocity,
    attention_rate,
    composite_index,
    scan_velocity,
)
from .models import (
    ConversionEvent,
    EventType,
    ImpressionEvent,
    PublisherIdentity,
    ValidatedEvent,
    as_utc,
    isoformat_utc,
)

__all__ = [
    "AttentionRate",
    "BillingStatus",
    "CompositeIndex",
    "ConversionEvent",
    "EventType",
    "ImpressionEvent",
    "PublisherIdentity",
    "ScanVelocity",
    "ValidatedEvent",
    "as_utc",
    "attention_rate",
    "can_transition",
    "composite_index",
    "impression_status",
    "isoformat_utc",
    "quantize_money",
    "scan_velocity",
    "split_fee",
    "transition",
]
