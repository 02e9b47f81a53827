"""Application services composed by the API and the admin scripts."""

from .auth_service import CredentialAuthenticator, compute_signature, record_credential_usage
from .billing_service import BillingLedger, BillingOutcome
from .idempotency_service import IdempotencyGuard, Reservation
from .ingest_service import EventIngestService, IngestPipeline, IngestResult
from .rollup_service import AttentionReport, AttentionRollupService
from .validation import validate_event

__all__ = [
    "AttentionReport",
    "AttentionRollupService",
    "BillingLedger",
    "BillingOutcome",
    "CredentialAuthenticator",
    "EventIngestService",
    "IdempotencyGuard",
    "IngestPipeline",
    "IngestResult",
    "Reservation",
    "compute_signature",
    "record_credential_usage",
    "validate_event",
]
