"""
FastAPI application factory and HTTP schemas for the email queue.

The module exposes a `create_app` function that builds the health and
notification endpoints around an :class:`~conference_mailer.core.EmailQueue`
instance and defines the pydantic payloads that document them. Health
probes are public; every other endpoint is protected by an optional API
token carried in the ``X-API-Token`` header.
"""

import platform
import time
from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Callable, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import Response
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from . import __version__
from .core import EmailQueue
from .logger import get_logger
from .models import JobStatus

API_TOKEN_HEADER_NAME = "X-API-Token"
api_key_scheme = APIKeyHeader(name=API_TOKEN_HEADER_NAME, auto_error=False)

logger = get_logger("ConferenceMailer.api")


async def require_token(request: Request, api_token: str | None = Depends(api_key_scheme)) -> None:
    """Validate the API token carried in the ``X-API-Token`` header.

    When no token was configured through :func:`create_app` the check is
    bypassed; otherwise a missing or different value raises ``401``.
    """
    expected = getattr(request.app.state, "api_token", None)
    if expected is None:
        return
    if not api_token or api_token != expected:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid or missing API token")


auth_dependency = Depends(require_token)


def get_queue(request: Request) -> EmailQueue:
    queue = getattr(request.app.state, "email_queue", None)
    if queue is None:
        raise HTTPException(500, "Service not initialized")
    return queue


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CommandStatus(BaseModel):
    """Base schema shared by the command style responses."""
    ok: bool
    error: Optional[str] = None


class AttachmentPayload(BaseModel):
    """Attachment carried inline as base64 ``content`` or referenced by ``url``."""
    filename: str
    content: Optional[str] = None
    url: Optional[str] = None
    content_type: Optional[str] = None


class NotificationPayload(BaseModel):
    """Email accepted by ``POST /notifications``."""
    model_config = ConfigDict(populate_by_name=True)
    to: Union[List[str], str]
    cc: Optional[Union[List[str], str]] = None
    bcc: Optional[Union[List[str], str]] = None
    from_: Optional[str] = Field(default=None, alias="from")
    from_name: Optional[str] = None
    reply_to: Optional[str] = None
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None
    attachments: Optional[List[AttachmentPayload]] = None
    priority: Literal["high", "normal", "low"] = "normal"

    @model_validator(mode="after")
    def body_required(self):
        if not self.html and not self.text:
            raise ValueError("either 'html' or 'text' is required")
        if not self.to:
            raise ValueError("'to' must not be empty")
        return self


class EnqueueResponse(CommandStatus):
    id: str


class HealthModel(BaseModel):
    """Health payloads keep the camelCase keys monitors already poll (``queueLength``, ``responseTime``)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueueStatus(HealthModel):
    """Counts reported by :meth:`EmailQueue.get_status`."""
    queue_length: int
    pending: int
    processing: int
    failed: int
    scheduled: int = 0
    completed: int = 0
    draining: bool = False


class EmailQueueHealth(QueueStatus):
    timestamp: str


class HealthResponse(HealthModel):
    status: str
    timestamp: str
    uptime: float
    version: str


class DetailedHealthResponse(HealthResponse):
    response_time: str
    email_queue: QueueStatus
    transport: str
    environment: Dict[str, bool]
    python_version: str
    platform: str


class JobRecord(BaseModel):
    """Job snapshot as returned by :meth:`EmailJob.to_dict`."""
    id: str
    priority: str
    status: JobStatus
    attempts: int
    max_attempts: int
    to: str
    subject: Optional[str] = None
    created_at: Optional[str] = None
    retry_at: Optional[str] = None
    completed_at: Optional[str] = None
    last_error: Optional[str] = None


class JobsResponse(CommandStatus):
    jobs: List[JobRecord]


class ClearCompletedResponse(CommandStatus):
    removed: int


def create_app(
    queue: EmailQueue,
    api_token: str | None = None,
    lifespan: Callable[[FastAPI], AsyncContextManager] | None = None,
    settings: Optional[Dict[str, Any]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    queue:
        The process wide :class:`~conference_mailer.core.EmailQueue`.
    api_token:
        Optional secret protecting every non-health endpoint.
    lifespan:
        Optional lifespan context manager for startup/shutdown events.
    settings:
        Loaded settings, used only to report which credentials are present
        in ``/health/detailed``.
    """
    api = FastAPI(title="Conference Mailer", version=__version__, lifespan=lifespan)
    api.state.email_queue = queue
    api.state.api_token = api_token
    api.state.started_at = time.monotonic()
    api.state.settings = settings or {}

    health = APIRouter(prefix="/health", tags=["health"])
    router = APIRouter(tags=["notifications"], dependencies=[auth_dependency])

    def uptime() -> float:
        return round(time.monotonic() - api.state.started_at, 3)

    @health.get("", response_model=HealthResponse)
    async def basic_health():
        """Return a lightweight liveness payload."""
        return HealthResponse(status="healthy", timestamp=_utc_now_iso(), uptime=uptime(), version=__version__)

    @health.get("/detailed", response_model=DetailedHealthResponse)
    async def detailed_health(svc: EmailQueue = Depends(get_queue)):
        """Report queue counts, configured credentials and runtime information."""
        started = time.perf_counter()
        queue_status = svc.get_status()
        cfg = api.state.settings
        environment = {
            "BREVO_API_KEY": bool(cfg.get("brevo_api_key")),
            "BREVO_FROM_EMAIL": bool(cfg.get("sender_email")),
            "MAILQ_SMTP_HOST": bool(cfg.get("smtp_host")),
            "MAILQ_API_TOKEN": api.state.api_token is not None,
        }
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        result = DetailedHealthResponse(
            status="healthy",
            timestamp=_utc_now_iso(),
            uptime=uptime(),
            version=__version__,
            response_time=f"{elapsed_ms}ms",
            email_queue=QueueStatus.model_validate(queue_status),
            transport=getattr(svc.transport, "name", type(svc.transport).__name__),
            environment=environment,
            python_version=platform.python_version(),
            platform=platform.platform(),
        )
        logger.info(
            "Health check performed (status=%s, queue_length=%d, failed=%d)",
            result.status,
            queue_status["queue_length"],
            queue_status["failed"],
        )
        return result

    @health.get("/email-queue", response_model=EmailQueueHealth)
    async def email_queue_health(svc: EmailQueue = Depends(get_queue)):
        """Expose the queue counters alongside a timestamp."""
        return EmailQueueHealth(**svc.get_status(), timestamp=_utc_now_iso())

    @router.post(
        "/notifications",
        response_model=EnqueueResponse,
        response_model_exclude_none=True,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def enqueue_notification(payload: NotificationPayload, svc: EmailQueue = Depends(get_queue)):
        """Queue one email; delivery happens after the response is sent."""
        data = payload.model_dump(by_alias=True, exclude_none=True, exclude={"priority"})
        job_id = svc.enqueue(data, payload.priority)
        return EnqueueResponse(ok=True, id=job_id)

    @router.get("/notifications", response_model=JobsResponse, response_model_exclude_none=True)
    async def list_notifications(
        job_status: Optional[JobStatus] = Query(default=None, alias="status"),
        svc: EmailQueue = Depends(get_queue),
    ):
        """List tracked jobs, optionally filtered with ``?status=failed``."""
        jobs = [JobRecord.model_validate(job.to_dict()) for job in svc.list_jobs(job_status)]
        return JobsResponse(ok=True, jobs=jobs)

    @router.get("/notifications/{job_id}", response_model=JobRecord)
    async def get_notification(job_id: str, svc: EmailQueue = Depends(get_queue)):
        job = svc.get_job(job_id)
        if job is None:
            raise HTTPException(status.HTTP_404_NOT_FOUND, "Job not found")
        return JobRecord.model_validate(job.to_dict())

    @router.post("/commands/clear-completed", response_model=ClearCompletedResponse, response_model_exclude_none=True)
    async def clear_completed(svc: EmailQueue = Depends(get_queue)):
        """Run the completed-job sweep immediately."""
        return ClearCompletedResponse(ok=True, removed=svc.clear_completed())

    @router.get("/metrics")
    async def metrics(svc: EmailQueue = Depends(get_queue)):
        """Expose Prometheus metrics collected by the queue."""
        return Response(content=svc.metrics.generate_latest(), media_type="text/plain; version=0.0.4")

    api.include_router(health)
    api.include_router(router)
    return api
