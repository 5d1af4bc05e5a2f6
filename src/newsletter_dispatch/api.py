# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory and HTTP schemas for the delivery engine.

Endpoints:

- ``POST /batch-send`` starts a run: ``{campaignId, resumeType}``
- ``GET /batch-send?campaignId=`` reads progress (pure read, safe to poll)
- ``GET /delivery-status?campaignId=`` per-recipient breakdown
- ``GET /delivery-status.csv?campaignId=`` failed and not-attempted recipients as CSV
- ``GET /estimate?campaignId=&resumeType=`` duration and quota estimate
- ``GET /health`` and ``GET /metrics``

JSON bodies use camelCase keys. When an API token is configured every
endpoint except ``/health`` requires the ``X-API-Token`` header.

Example:
    from newsletter_dispatch.core import NewsletterCore
    from newsletter_dispatch.api import create_app

    core = NewsletterCore(db_path="/data/newsletter.db", transport=transport)
    app = create_app(core, api_token="secret-token")
    uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .core import NewsletterCore
from .logger import get_logger

logger = get_logger("api")

service: NewsletterCore | None = None
API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)

STATUS_BY_ERROR_CODE = {
    "invalid_request": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_state": status.HTTP_409_CONFLICT,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "campaign_locked": status.HTTP_409_CONFLICT,
    "dispatch_failed": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "missing_smtp_configuration": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    When no token was configured through :func:`create_app` the check is skipped.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BatchSendPayload(CamelModel):
    """Body of ``POST /batch-send``. Missing fields are reported as 400."""

    campaign_id: str | None = None
    resume_type: str | None = Field(default="all", description="failed, unsent or all")


class BatchSendResponse(CamelModel):
    successful: int
    failed: int
    total: int
    batches: int


class BatchInfoModel(CamelModel):
    total_batches: int = 0
    batch_size: int = 0
    completed_at: str | None = None
    processing_time_ms: int | None = None


class ProgressResponse(CamelModel):
    """Progress of a campaign as returned by ``GET /batch-send``."""

    status: str
    successful_sends: int
    failed_sends: int
    recipient_count: int
    batch_info: BatchInfoModel | None = None
    last_sent_at: str | None = None
    last_error: str | None = None


class DeliverySummary(CamelModel):
    total: int
    sent: int
    failed: int
    pending: int
    not_attempted: int


class DeliveryRecord(CamelModel):
    email: str
    status: str
    attempts: int
    last_attempt_at: str | None = None
    sent_at: str | None = None
    message_id: str | None = None
    failure_reason: str | None = None
    error: str | None = None


class FailedDelivery(CamelModel):
    email: str
    attempts: int
    failure_reason: str | None = None
    error: str | None = None
    last_attempt_at: str | None = None


class DeliveryStatusResponse(CamelModel):
    campaign_id: str
    status: str
    summary: DeliverySummary
    recent: list[DeliveryRecord]
    failed_emails: list[FailedDelivery]
    not_attempted_emails: list[str]


class QuotaInfo(CamelModel):
    can_send: bool
    remaining_quota: int
    daily_limit: int
    would_exceed: bool


class EstimateResponse(CamelModel):
    campaign_id: str
    recipients: int
    provider: str
    batch_size: int
    batch_delay_ms: int
    retry_attempts: int
    batches: int
    estimated_time_ms: int
    estimated_time_minutes: int
    quota: QuotaInfo


def _require_service() -> NewsletterCore:
    if service is None:
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, "Service not initialized")
    return service


def _unwrap(result: dict[str, Any]) -> dict[str, Any]:
    """Strip ``ok`` from a command result, or raise the HTTP error matching its code."""
    if result.get("ok") is True:
        return {k: v for k, v in result.items() if k != "ok"}
    code = result.get("code") or "error"
    status_code = STATUS_BY_ERROR_CODE.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("Command failed (%s): %s", code, result.get("error"))
    raise HTTPException(status_code, detail={"error": result.get("error"), "code": code})


def _missing_campaign_id() -> HTTPException:
    return HTTPException(
        status.HTTP_400_BAD_REQUEST,
        detail={"error": "campaignId is required", "code": "invalid_request"},
    )


def create_app(
    svc: NewsletterCore,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        svc: Service core implementing every command.
        api_token: Optional secret required in ``X-API-Token``.
        lifespan: Optional lifespan context manager for startup/shutdown.

    Returns:
        A configured application ready to be served by uvicorn.
    """
    global service
    service = svc

    api = FastAPI(title="Newsletter Dispatch", lifespan=lifespan)
    api.state.api_token = api_token

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Report malformed requests as 400 and log the details."""
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": {
                    "error": "invalid request",
                    "code": "invalid_request",
                    "errors": jsonable_encoder(exc.errors()),
                }
            },
        )

    @api.get("/health")
    async def health():
        """Health check endpoint for container monitoring (no authentication required)."""
        return {"status": "ok"}

    @api.post("/batch-send", response_model=BatchSendResponse, dependencies=[auth_dependency])
    async def batch_send(payload: BatchSendPayload):
        """Start a run for the recipients selected by ``resumeType``."""
        svc = _require_service()
        if not payload.campaign_id:
            raise _missing_campaign_id()
        result = await svc.handle_command(
            "batchSend",
            {"campaign_id": payload.campaign_id, "resume_type": payload.resume_type},
        )
        return BatchSendResponse.model_validate(_unwrap(result))

    @api.get("/batch-send", response_model=ProgressResponse, dependencies=[auth_dependency])
    async def batch_progress(campaign_id: str | None = Query(default=None, alias="campaignId")):
        """Return the campaign's counters and status without side effects."""
        svc = _require_service()
        if not campaign_id:
            raise _missing_campaign_id()
        result = await svc.handle_command("getProgress", {"campaign_id": campaign_id})
        return ProgressResponse.model_validate(_unwrap(result))

    @api.get("/delivery-status", response_model=DeliveryStatusResponse, dependencies=[auth_dependency])
    async def delivery_status(campaign_id: str | None = Query(default=None, alias="campaignId")):
        """Breakdown of sent, failed, pending and not-attempted recipients."""
        svc = _require_service()
        if not campaign_id:
            raise _missing_campaign_id()
        result = await svc.handle_command("deliveryStatus", {"campaign_id": campaign_id})
        return DeliveryStatusResponse.model_validate(_unwrap(result))

    @api.get("/delivery-status.csv", dependencies=[auth_dependency])
    async def delivery_status_csv(campaign_id: str | None = Query(default=None, alias="campaignId")):
        """Download failed and not-attempted recipients as CSV."""
        svc = _require_service()
        if not campaign_id:
            raise _missing_campaign_id()
        result = _unwrap(await svc.handle_command("exportCsv", {"campaign_id": campaign_id}))
        return PlainTextResponse(
            result["csv"],
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="deliveries-{campaign_id}.csv"'},
        )

    @api.get("/estimate", response_model=EstimateResponse, dependencies=[auth_dependency])
    async def estimate(
        campaign_id: str | None = Query(default=None, alias="campaignId"),
        resume_type: str | None = Query(default="all", alias="resumeType"),
    ):
        """Estimate run duration and daily quota impact."""
        svc = _require_service()
        if not campaign_id:
            raise _missing_campaign_id()
        result = await svc.handle_command(
            "estimate", {"campaign_id": campaign_id, "resume_type": resume_type}
        )
        return EstimateResponse.model_validate(_unwrap(result))

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Expose Prometheus metrics collected by the dispatcher."""
        svc = _require_service()
        return Response(content=svc.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    return api


__all__ = ["API_TOKEN_HEADER_NAME", "create_app"]
