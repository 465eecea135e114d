"""Core orchestration logic for the in-process email queue."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

from .job_queue import PriorityQueue
from .logger import get_logger
from .models import DEFAULT_MAX_ATTEMPTS, DEFAULT_PRIORITY, EmailJob, JobStatus, normalise_priority
from .prometheus import QueueMetrics
from .scheduler import RetryScheduler
from .transport import EmailTransport

DEFAULT_RETRY_DELAY = 5.0
DEFAULT_CLEANUP_INTERVAL = 60 * 60.0


class EmailQueue:
    """Coordinate enqueueing, delivery attempts, retries and housekeeping.

    One instance is created by the application entry point and shared by
    every collaborator that sends email. All methods must be called from the
    event loop thread; the drain loop is cooperative, so the shared
    collections need no locking.
    """

    def __init__(
        self,
        transport: EmailTransport,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        scheduler: RetryScheduler | None = None,
        metrics: QueueMetrics | None = None,
        logger=None,
        log_delivery_activity: bool = False,
    ):
        """Prepare the runtime collaborators and queue state."""
        self.transport = transport
        self.logger = logger or get_logger()
        self.metrics = metrics if metrics is not None else QueueMetrics()
        # schedulers define __len__, so an idle one is falsy
        self.scheduler = scheduler if scheduler is not None else RetryScheduler()
        self._max_attempts = max(1, int(max_attempts))
        self._retry_delay = max(0.0, float(retry_delay))
        self._cleanup_interval = float(cleanup_interval)
        self._log_delivery_activity = bool(log_delivery_activity)

        self._ready = PriorityQueue()
        self._jobs: Dict[str, EmailJob] = {}
        self._waiting: Set[str] = set()  # ids held out of the queue by a retry timer

        self._processing = False
        self._stopping = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._drain_task: Optional[asyncio.Task] = None
        self._task_cleanup: Optional[asyncio.Task] = None

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def retry_delay(self) -> float:
        return self._retry_delay

    @property
    def is_draining(self) -> bool:
        return self._processing

    # ----------------------------------------------------------------- lifecycle
    async def start(self) -> None:
        """Start the cleanup task and drain anything enqueued before startup."""
        self._stopping = False
        # a non-positive interval disables the periodic sweep
        if self._cleanup_interval > 0 and (self._task_cleanup is None or self._task_cleanup.done()):
            self._task_cleanup = asyncio.create_task(self._cleanup_loop(), name="email-queue-cleanup")
        self.logger.debug("Email queue started (max_attempts=%d, retry_delay=%.1fs)", self._max_attempts, self._retry_delay)
        self._wake()

    async def stop(self) -> None:
        """Stop background work: cancel retry timers and let the current job finish.

        Jobs whose retry timer is cancelled go back to the ready queue as
        ``pending`` so a later :meth:`start` attempts them again.
        """
        self._stopping = True
        cancelled = self.scheduler.cancel_all()
        held = sorted(
            (self._jobs[job_id] for job_id in self._waiting if job_id in self._jobs),
            key=lambda job: job.sequence,
        )
        self._waiting.clear()
        for job in held:
            job.retry_at = None
            self._ready.enqueue(job)
        self.metrics.set_queue_length(len(self._ready))
        if self._task_cleanup:
            self._task_cleanup.cancel()
        await asyncio.gather(
            *(task for task in [self._task_cleanup, self._drain_task] if task),
            return_exceptions=True,
        )
        self._task_cleanup = None
        self._drain_task = None
        undelivered = len(self._ready)
        if undelivered:
            self.logger.warning(
                "Email queue stopped with %d undelivered job(s) (retry timers cancelled=%d)",
                undelivered,
                cancelled,
            )
        self._refresh_idle()

    async def join(self) -> None:
        """Wait until nothing is queued, processing or waiting for a retry."""
        await self._idle.wait()

    # ------------------------------------------------------------------ enqueue
    def enqueue(self, payload: Dict[str, Any], priority: Any = DEFAULT_PRIORITY) -> str:
        """Queue an email for delivery and return its job id.

        Never raises because of delivery: transport failures are handled by
        the drain loop long after this call has returned.
        """
        job = EmailJob(
            payload=payload,
            priority=normalise_priority(priority),
            max_attempts=self._max_attempts,
        )
        self._jobs[job.id] = job
        self._ready.enqueue(job)
        self._idle.clear()
        self.metrics.inc_enqueued(job.priority.label)
        self.metrics.set_queue_length(len(self._ready))
        self._log_activity(
            "Email %s added to queue (to=%s, priority=%s)",
            job.id,
            job.recipients,
            job.priority.label,
        )
        self._wake()
        return job.id

    def _wake(self) -> None:
        """Start a drain task unless one is already running or scheduled."""
        if self._processing or self._stopping:
            return
        if self._drain_task is not None and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug("No running event loop, drain deferred until start()")
            return
        self._drain_task = loop.create_task(self.process_queue(), name="email-queue-drain")

    # ------------------------------------------------------------------- drain
    async def process_queue(self) -> None:
        """Drain the ready queue in priority order.

        A no-op when another drain is active or nothing is ready. The queue
        is re-checked after every job, so jobs enqueued mid-drain are picked
        up by the running loop.
        """
        if self._processing or self._ready.is_empty():
            return
        self._processing = True
        self.logger.debug("Starting email queue processing (queue_length=%d)", len(self._ready))
        try:
            while not self._stopping and not self._ready.is_empty():
                job = self._ready.dequeue_next()
                self.metrics.set_queue_length(len(self._ready))
                await self._process_job(job)
        finally:
            self._processing = False
            self._refresh_idle()
        self.logger.debug("Email queue processing completed")

    async def _process_job(self, job: EmailJob) -> None:
        """Make one delivery attempt and apply the resulting transition."""
        job.status = JobStatus.PROCESSING
        job.attempts += 1
        job.retry_at = None
        self._log_activity(
            "Processing email job %s (attempt %d/%d, to=%s)",
            job.id,
            job.attempts,
            job.max_attempts,
            job.recipients,
        )
        try:
            await self.transport.send(job.payload)
        except Exception as exc:
            self._handle_failure(job, exc)
            return
        job.status = JobStatus.COMPLETED
        job.completed_at = self.scheduler.now()
        self.metrics.inc_sent(job.priority.label)
        self._log_activity("Email %s sent successfully (to=%s)", job.id, job.recipients)

    def _handle_failure(self, job: EmailJob, exc: Exception) -> None:
        job.last_error = str(exc) or type(exc).__name__
        if job.attempts < job.max_attempts:
            delay = self._retry_delay * job.attempts
            job.status = JobStatus.PENDING
            self.metrics.inc_retried(job.priority.label)
            if self._stopping:
                # no timers after stop(); the next start() drains it
                self._requeue(job)
                return
            job.retry_at = self.scheduler.now() + timedelta(seconds=delay)
            self._waiting.add(job.id)
            self.scheduler.call_later(delay, self._requeue, job)
            self.logger.warning(
                "Email %s failed (attempt %d/%d): %s - retrying in %.1fs",
                job.id,
                job.attempts,
                job.max_attempts,
                job.last_error,
                delay,
            )
            return
        job.status = JobStatus.FAILED
        self.metrics.inc_failed(job.priority.label)
        self.logger.error(
            "Email %s failed permanently after %d attempts (to=%s): %s",
            job.id,
            job.attempts,
            job.recipients,
            job.last_error,
        )

    def _requeue(self, job: EmailJob) -> None:
        """Put a job back at its original priority and wake the drain.

        While stopping the job only waits in the ready queue for the next start.
        """
        self._waiting.discard(job.id)
        job.retry_at = None
        if job.id not in self._jobs:
            self._refresh_idle()
            return
        self._ready.enqueue(job)
        self._idle.clear()
        self.metrics.set_queue_length(len(self._ready))
        self.logger.debug("Email %s re-queued for attempt %d", job.id, job.attempts + 1)
        self._wake()

    # ----------------------------------------------------------------- status
    def get_status(self) -> Dict[str, Any]:
        """Return a snapshot of queue and job counts. Pure read."""
        by_status = Counter(job.status for job in self._jobs.values())
        ready_pending = sum(1 for job in self._ready if job.status is JobStatus.PENDING)
        return {
            "queue_length": len(self._ready),
            "pending": ready_pending,
            "processing": by_status[JobStatus.PROCESSING],
            "failed": by_status[JobStatus.FAILED],
            "scheduled": len(self._waiting),
            "completed": by_status[JobStatus.COMPLETED],
            "draining": self._processing,
        }

    def get_job(self, job_id: str) -> Optional[EmailJob]:
        return self._jobs.get(job_id)

    def list_jobs(self, status: JobStatus | str | None = None) -> List[EmailJob]:
        """Return tracked jobs in creation order, optionally filtered by status."""
        jobs = sorted(self._jobs.values(), key=lambda job: job.created_at)
        if status is None:
            return jobs
        wanted = JobStatus(status)
        return [job for job in jobs if job.status is wanted]

    # ------------------------------------------------------------ housekeeping
    def clear_completed(self) -> int:
        """Forget every delivered job; pending, processing and failed jobs stay."""
        completed = [job_id for job_id, job in self._jobs.items() if job.status is JobStatus.COMPLETED]
        for job_id in completed:
            del self._jobs[job_id]
        if completed:
            self.logger.info("Cleared completed email jobs (removed=%d)", len(completed))
        return len(completed)

    async def _cleanup_loop(self) -> None:
        """Background coroutine that periodically sweeps delivered jobs."""
        while not self._stopping:
            await asyncio.sleep(self._cleanup_interval)
            self.clear_completed()

    def _refresh_idle(self) -> None:
        if self._processing or self._ready or self._waiting:
            self._idle.clear()
        else:
            self._idle.set()

    def _log_activity(self, msg: str, *args: Any) -> None:
        """Log per-job activity at INFO when delivery logging is enabled, DEBUG otherwise."""
        level = logging.INFO if self._log_delivery_activity else logging.DEBUG
        self.logger.log(level, msg, *args)
