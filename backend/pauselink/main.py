from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.orm import Session, sessionmaker
from starlette.background import BackgroundTask

from . import schemas
from .core.config import settings
from .core.logging import configure_logging
from .db import get_db, get_session_factory, init_db
from .domain.metrics import tier_table
from .domain.models import EventType, PublisherIdentity
from .errors import ForbiddenError, IngestError, NotFoundError, ValidationError
from .repositories import ReceiptRepository
from .services import (
    AttentionReport,
    AttentionRollupService,
    CredentialAuthenticator,
    IdempotencyGuard,
    IngestPipeline,
    record_credential_usage,
)

IDEMPOTENCY_HEADER = "idempotency-key"

app = FastAPI(title="PauseLink Ingest API", version="0.1.0", debug=settings.debug)


@app.on_event("startup")
def on_startup() -> None:
    """Configure logging and create tables when the API boots."""

    configure_logging()
    init_db()


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.middleware("http")
async def record_usage_after_response(request: Request, call_next):
    """Count every authenticated request, including ones rejected after authentication."""

    response = await call_next(request)
    publisher_id = getattr(request.state, "publisher_id", None)
    if publisher_id is not None:
        response.background = BackgroundTask(
            record_credential_usage, request.state.session_factory, publisher_id
        )
    return response


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


async def _raw_body(request: Request) -> bytes:
    return await request.body()


def _authenticated_publisher(
    request: Request,
    raw_body: bytes = Depends(_raw_body),
    db: Session = Depends(get_db),
    factory: sessionmaker[Session] = Depends(get_session_factory),
) -> PublisherIdentity:
    """Resolve the caller and mark the request for the usage counter."""

    authenticator = CredentialAuthenticator(
        db, tolerance_seconds=settings.signature_tolerance_seconds
    )
    publisher = authenticator.authenticate(request.headers, raw_body)
    request.state.publisher_id = publisher.publisher_id
    request.state.session_factory = factory
    return publisher


def _ingest_pipeline(
    factory: sessionmaker[Session] = Depends(get_session_factory),
) -> IngestPipeline:
    guard = IdempotencyGuard(
        factory,
        ttl_hours=settings.idempotency_ttl_hours,
        lease_seconds=settings.idempotency_lease_seconds,
    )
    return IngestPipeline(
        factory,
        guard,
        default_fee=settings.default_conversion_fee,
        default_ratio=settings.default_publisher_share_ratio,
        default_currency=settings.default_currency,
    )


def _parse_body(raw_body: bytes) -> dict[str, Any]:
    try:
        body = json.loads(raw_body or b"null")
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("invalid_body", "Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("invalid_body", "Request body must be a JSON object")
    return body


@app.post("/v1/events", tags=["events"])
def ingest_event(
    request: Request,
    publisher: PublisherIdentity = Depends(_authenticated_publisher),
    raw_body: bytes = Depends(_raw_body),
    pipeline: IngestPipeline = Depends(_ingest_pipeline),
) -> JSONResponse:
    """Accept a pause impression or QR conversion from a publisher."""

    body = _parse_body(raw_body)
    idempotency_key = (request.headers.get(IDEMPOTENCY_HEADER) or "").strip()
    if not idempotency_key:
        idempotency_key = str(body.get("idempotency_key") or "").strip()
    if not idempotency_key:
        raise ValidationError(
            "missing_idempotency_key",
            "Provide an Idempotency-Key header or an idempotency_key body field",
        )

    payload = pipeline.submit(publisher, body, idempotency_key)
    return JSONResponse(status_code=200, content=payload)


@app.get("/v1/events", response_model=schemas.ReceiptList, tags=["events"])
def list_receipts(
    *,
    publisher: PublisherIdentity = Depends(_authenticated_publisher),
    db: Session = Depends(get_db),
    event_type: Annotated[EventType | None, Query(description="Filter by event kind")] = None,
    start_date: Annotated[
        datetime | None, Query(description="Only events at or after this timestamp")
    ] = None,
    end_date: Annotated[
        datetime | None, Query(description="Only events at or before this timestamp")
    ] = None,
    limit: Annotated[int, Query(ge=1, le=settings.receipt_page_size_limit)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """List the authenticated publisher's receipts, newest event first."""

    rows, total = ReceiptRepository(db).list_for_publisher(
        publisher.publisher_id,
        event_type=event_type.value if event_type else None,
        start=start_date,
        end=end_date,
        limit=limit,
        offset=offset,
    )
    return schemas.ReceiptList(
        events=[schemas.ReceiptSummary.model_validate(row) for row in rows],
        pagination=schemas.Pagination(
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(rows) < total,
        ),
    )


@app.get("/v1/events/{receipt_id}", response_model=schemas.Receipt, tags=["events"])
def get_receipt(
    receipt_id: str,
    publisher: PublisherIdentity = Depends(_authenticated_publisher),
    db: Session = Depends(get_db),
):
    """Retrieve one receipt owned by the authenticated publisher."""

    receipt = ReceiptRepository(db).get(receipt_id)
    if receipt is None:
        raise NotFoundError("not_found", "Receipt not found")
    if receipt.publisher_id != publisher.publisher_id:
        logger.warning(
            "Publisher {} requested receipt {} owned by {}",
            publisher.publisher_id,
            receipt_id,
            receipt.publisher_id,
        )
        raise ForbiddenError("forbidden", "Receipt belongs to another publisher")
    return receipt


@app.get(
    "/v1/attention/tiers",
    response_model=schemas.TierTable,
    response_model_exclude_none=True,
    tags=["attention"],
)
def attention_tiers():
    """Publish the A2AR, ASV and ACI tier boundaries."""

    return tier_table()


def _summary_out(publisher_id: str, report: AttentionReport) -> dict[str, Any]:
    return {
        "publisher_id": publisher_id,
        "start_date": report.start_date,
        "end_date": report.end_date,
        "pause_opportunities": report.pause_opportunities,
        "qr_scans": report.qr_scans,
        "verified_conversions": report.verified_conversions,
        "a2ar": schemas.AttentionRateOut.model_validate(report.a2ar),
        "average_asv_seconds": report.average_asv_seconds,
        "asv_tier": report.asv_tier,
        "asv_label": report.asv_label,
        "aci": schemas.CompositeIndexOut.model_validate(report.aci),
    }


@app.get("/v1/attention/summary", response_model=schemas.AttentionSummary, tags=["attention"])
def attention_summary(
    *,
    publisher: PublisherIdentity = Depends(_authenticated_publisher),
    db: Session = Depends(get_db),
    days: Annotated[int, Query(ge=1, le=366, description="Window length in days")] = 30,
):
    """Summarise attention metrics for the authenticated publisher."""

    report = AttentionRollupService(db).summary(publisher.publisher_id, days=days)
    return schemas.AttentionSummary(**_summary_out(publisher.publisher_id, report))


@app.get(
    "/v1/attention/programs",
    response_model=schemas.ProgramAttentionList,
    tags=["attention"],
)
def attention_by_program(
    *,
    publisher: PublisherIdentity = Depends(_authenticated_publisher),
    db: Session = Depends(get_db),
    days: Annotated[int, Query(ge=1, le=366, description="Window length in days")] = 30,
):
    """Break attention metrics down per program, best composite index first."""

    reports = AttentionRollupService(db).by_program(publisher.publisher_id, days=days)
    return schemas.ProgramAttentionList(
        publisher_id=publisher.publisher_id,
        days=days,
        items=[
            schemas.ProgramAttention(
                **_summary_out(publisher.publisher_id, report),
                program_title=report.program_title,
            )
            for report in reports
        ],
    )
