# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""FastAPI application factory and HTTP schemas for the mail scheduler.

Routes:

- ``GET /health``: database and SMTP state (no authentication, 503 when the
  database is unreachable)
- ``GET /metrics``: Prometheus exposition
- ``/api/users``: lookup by e-mail and upsert from the identity provider
- ``/api/senders``: sender profiles of a user
- ``/api/email-jobs``: batch scheduling, listing, detail and cancellation
- ``/api/stats``: per-sender status counts and queue counts

Request bodies are validated by the service, so malformed payloads answer
400 with the validation details; bodies that are not JSON answer 422.

Example:
    Creating and running the API application::

        from mail_scheduler.core import MailScheduler
        from mail_scheduler.api import create_app

        service = MailScheduler(load_config())
        app = create_app(service, api_token="secret-token")

        uvicorn.run(app, host="0.0.0.0", port=3001)
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .core import MailScheduler
from .errors import ConflictError, NotFoundError, SchedulerError, ValidationError

logger = logging.getLogger(__name__)

API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)

ERROR_STATUS: dict[type[SchedulerError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
}


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the ``X-API-Token`` header when the app was given a token."""
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or not secrets.compare_digest(api_token, expected):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserOut(CamelModel):
    id: str
    email: str
    name: str | None = None
    image: str | None = None
    email_verified_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SenderOut(CamelModel):
    id: str
    user_id: str
    email: str
    name: str | None = None
    hourly_limit: int
    delay_seconds: int
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SenderDetail(SenderOut):
    email_job_count: int = 0


class EmailJobOut(CamelModel):
    id: str
    sender_id: str
    recipient: str
    subject: str
    body: str
    scheduled_at: datetime
    sent_at: datetime | None = None
    status: str
    error: str | None = None
    retry_count: int
    max_retries: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


class EmailJobDetail(EmailJobOut):
    sender: SenderOut | None = None


class ScheduleResponse(BaseModel):
    """Response of ``POST /api/email-jobs/schedule``."""

    message: str
    count: int
    jobs: list[EmailJobOut]


class StatsResponse(BaseModel):
    status_counts: dict[str, int] = Field(serialization_alias="statusCounts")
    queue_metrics: dict[str, int] = Field(serialization_alias="queueMetrics")
    last_24_hours: dict[str, int] = Field(serialization_alias="last24Hours")


def _error_body(message: str, details: Any = None) -> dict[str, Any]:
    body: dict[str, Any] = {"error": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body


def create_app(
    svc: MailScheduler,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        svc: Service implementing every operation.
        api_token: When set, every route except ``/health`` requires it in
            the ``X-API-Token`` header.
        lifespan: Optional lifespan context manager for startup/shutdown.

    Returns:
        A configured application ready to be served by Uvicorn.
    """
    api = FastAPI(title="Mail Scheduler", lifespan=lifespan)
    api.state.api_token = api_token
    api.state.service = svc

    @api.exception_handler(SchedulerError)
    async def scheduler_error_handler(request: Request, exc: SchedulerError):
        code = next(
            (value for cls, value in ERROR_STATUS.items() if isinstance(exc, cls)),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        logger.info("%s %s -> %d: %s", request.method, request.url.path, code, exc.message)
        return JSONResponse(status_code=code, content=_error_body(exc.message, exc.details))

    @api.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log and report request validation errors (422)."""
        logger.error("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})

    @api.get("/health")
    async def health():
        """Database and SMTP state for probes and load balancers."""
        report = await svc.health()
        code = status.HTTP_200_OK if report["status"] == "ok" else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content=report)

    @api.get("/metrics", dependencies=[auth_dependency])
    async def metrics():
        """Export Prometheus metrics in text exposition format."""
        return Response(content=svc.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    router = APIRouter(prefix="/api", dependencies=[auth_dependency])

    # Users
    @router.get("/users/{email}", response_model=UserOut)
    async def get_user(email: str):
        return UserOut.model_validate(await svc.get_user_by_email(email))

    @router.post("/users/sync", response_model=UserOut)
    async def sync_user(payload: dict[str, Any] = Body(...)):
        """Create or update a user from identity provider data."""
        return UserOut.model_validate(await svc.sync_user(payload))

    # Senders
    @router.get("/senders", response_model=list[SenderOut])
    async def list_senders(user_id: str | None = Query(default=None, alias="userId")):
        if not user_id:
            raise ValidationError("userId is required")
        return [SenderOut.model_validate(s) for s in await svc.list_senders(user_id)]

    @router.get("/senders/{sender_id}", response_model=SenderDetail)
    async def get_sender(sender_id: str):
        return SenderDetail.model_validate(await svc.get_sender(sender_id))

    @router.post("/senders", response_model=SenderOut, status_code=status.HTTP_201_CREATED)
    async def create_sender(payload: dict[str, Any] = Body(...)):
        return SenderOut.model_validate(await svc.create_sender(payload))

    @router.patch("/senders/{sender_id}", response_model=SenderOut)
    async def update_sender(sender_id: str, payload: dict[str, Any] = Body(...)):
        return SenderOut.model_validate(await svc.update_sender(sender_id, payload))

    @router.delete("/senders/{sender_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_sender(sender_id: str):
        await svc.delete_sender(sender_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # E-mail jobs
    @router.post("/email-jobs/schedule", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
    async def schedule(payload: dict[str, Any] = Body(...)):
        """Schedule a batch given as ``csvData`` or ``rows``."""
        result = await svc.schedule_batch(payload)
        return ScheduleResponse(
            message=f"Scheduled {result.scheduled_count} emails",
            count=result.scheduled_count,
            jobs=[EmailJobOut.model_validate(job) for job in result.jobs],
        )

    @router.get("/email-jobs", response_model=list[EmailJobOut])
    async def list_jobs(
        sender_id: str | None = Query(default=None, alias="senderId"),
        job_status: str | None = Query(default=None, alias="status"),
    ):
        if not sender_id:
            raise ValidationError("senderId is required")
        return [EmailJobOut.model_validate(job) for job in await svc.list_jobs(sender_id, job_status)]

    @router.get("/email-jobs/{job_id}", response_model=EmailJobDetail)
    async def get_job(job_id: str):
        return EmailJobDetail.model_validate(await svc.get_job(job_id))

    @router.delete("/email-jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def cancel_job(job_id: str):
        await svc.cancel_job(job_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Stats
    @router.get("/stats")
    async def stats(sender_id: str | None = Query(default=None, alias="senderId")):
        """Status counts (all time and last 24 hours) and queue counts."""
        if not sender_id:
            raise ValidationError("senderId is required")
        result = StatsResponse.model_validate(await svc.stats(sender_id))
        return result.model_dump(by_alias=True)

    api.include_router(router)
    return api


__all__ = ["API_TOKEN_HEADER_NAME", "create_app"]
