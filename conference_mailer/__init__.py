"""In-process email notification queue for the conference registration backend.

This package provides the asynchronous delivery path used by the
registration endpoints:

- Priority-based job queue (high/normal/low) drained by a single worker
- Linear-backoff retry with a bounded number of attempts
- Brevo REST and SMTP transports
- Prometheus metrics and health endpoints exposed through FastAPI
- Periodic sweep of delivered jobs

Example:
    Wiring the queue into the FastAPI application::

        from conference_mailer.core import EmailQueue
        from conference_mailer.api import create_app
        from conference_mailer.transport import BrevoTransport

        queue = EmailQueue(BrevoTransport(api_key="...", sender_email="noreply@example.org"))
        app = create_app(queue, api_token="secret")
"""

__version__ = "1.0.0"
