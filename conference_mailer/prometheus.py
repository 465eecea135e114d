"""Prometheus metrics exposed by the email queue."""

from prometheus_client import Counter, Gauge, CollectorRegistry, generate_latest


class QueueMetrics:
    """Wrapper around the Prometheus registry used by the queue."""

    def __init__(self, registry: CollectorRegistry | None = None):
        """Create counters and gauges inside the provided registry."""
        self.registry = registry or CollectorRegistry()
        self.enqueued = Counter("cmq_enqueued_total", "Total emails enqueued", ["priority"], registry=self.registry)
        self.sent = Counter("cmq_sent_total", "Total emails delivered", ["priority"], registry=self.registry)
        self.retried = Counter("cmq_retried_total", "Total delivery retries scheduled", ["priority"], registry=self.registry)
        self.failed = Counter("cmq_failed_total", "Total emails failed permanently", ["priority"], registry=self.registry)
        self.queue_length = Gauge("cmq_queue_length", "Jobs waiting in the ready queue", registry=self.registry)

    def inc_enqueued(self, priority: str):
        """Increase the ``enqueued`` counter for the given priority label."""
        self.enqueued.labels(priority=priority or "normal").inc()

    def inc_sent(self, priority: str):
        """Increase the ``sent`` counter for the given priority label."""
        self.sent.labels(priority=priority or "normal").inc()

    def inc_retried(self, priority: str):
        self.retried.labels(priority=priority or "normal").inc()

    def inc_failed(self, priority: str):
        self.failed.labels(priority=priority or "normal").inc()

    def set_queue_length(self, value: int):
        """Update the gauge tracking ready jobs."""
        self.queue_length.set(value)

    def generate_latest(self) -> bytes:
        """Return the latest metrics snapshot in Prometheus text format."""
        return generate_latest(self.registry)
