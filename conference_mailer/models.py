"""Job records tracked by the email queue.

Models:
    - Priority: ordered delivery tiers (low < normal < high)
    - JobStatus: lifecycle states of a job
    - EmailJob: one queued email and its delivery bookkeeping
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional


class Priority(IntEnum):
    """Delivery tiers. Higher values are dequeued first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2

    @property
    def label(self) -> str:
        return self.name.lower()


LABEL_TO_PRIORITY = {p.label: p for p in Priority}
DEFAULT_PRIORITY = Priority.NORMAL
DEFAULT_MAX_ATTEMPTS = 3


class JobStatus(str, Enum):
    """Lifecycle states of an :class:`EmailJob`.

    Attributes:
        PENDING: Waiting in the ready queue or for a retry timer.
        PROCESSING: Handed to the transport right now.
        COMPLETED: Delivered. Terminal.
        FAILED: Every attempt was spent. Terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def normalise_priority(value: Any, default: Any = DEFAULT_PRIORITY) -> Priority:
    """Coerce a user supplied priority (label, integer or enum) into :class:`Priority`."""
    if isinstance(default, Priority):
        fallback = default
    elif isinstance(default, str):
        fallback = LABEL_TO_PRIORITY.get(default.strip().lower(), DEFAULT_PRIORITY)
    else:
        fallback = DEFAULT_PRIORITY

    if value is None:
        return fallback
    if isinstance(value, Priority):
        return value
    if isinstance(value, str):
        key = value.strip().lower()
        if key in LABEL_TO_PRIORITY:
            return LABEL_TO_PRIORITY[key]
        try:
            value = int(key)
        except ValueError:
            return fallback
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return fallback
    number = max(min(number, max(Priority)), min(Priority))
    return Priority(number)


def new_job_id() -> str:
    """Return an identifier made of a nanosecond timestamp and a random suffix."""
    return f"{time.time_ns()}-{uuid.uuid4().hex[:8]}"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def summarise_addresses(value: Any) -> str:
    """Return a compact textual representation of recipient-like values."""
    if not value:
        return "-"
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
    elif isinstance(value, (list, tuple, set)):
        items = [str(item).strip() for item in value if item]
    else:
        items = [str(value).strip()]
    preview = ", ".join(item for item in items if item)
    if len(preview) > 200:
        return f"{preview[:197]}..."
    return preview or "-"


@dataclass
class EmailJob:
    """One email waiting for (or done with) delivery.

    ``payload`` is opaque to the queue: only the transport reads it.
    ``sequence`` is stamped by :class:`~conference_mailer.job_queue.PriorityQueue`
    on every insertion and orders jobs of the same tier.
    """

    payload: Dict[str, Any]
    priority: Priority = DEFAULT_PRIORITY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    id: str = field(default_factory=new_job_id)
    sequence: int = 0
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    created_at: datetime = field(default_factory=_utc_now)
    retry_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def recipients(self) -> str:
        payload = self.payload if isinstance(self.payload, dict) else {}
        return summarise_addresses(payload.get("to"))

    def sort_key(self) -> tuple[int, int]:
        return (-int(self.priority), self.sequence)

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON friendly snapshot without the message body."""
        payload = self.payload if isinstance(self.payload, dict) else {}
        return {
            "id": self.id,
            "priority": self.priority.label,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "to": self.recipients,
            "subject": payload.get("subject"),
            "created_at": _iso(self.created_at),
            "retry_at": _iso(self.retry_at),
            "completed_at": _iso(self.completed_at),
            "last_error": self.last_error,
        }
