"""Email transports used by the queue processor.

Every transport exposes ``async send(payload)``: one delivery attempt that
returns on success and raises on failure.
"""

from typing import Any, Dict

from .base import ConfigurationError, DeliveryError, EmailTransport
from .brevo import BrevoTransport
from .smtp import SMTPTransport


def build_transport(settings: Dict[str, Any]) -> EmailTransport:
    """Instantiate the transport described by ``settings``.

    Brevo wins when an API key is configured, then SMTP when a host is set.

    Raises:
        ConfigurationError: if neither provider is configured.
    """
    timeout = float(settings.get("send_timeout") or 15.0)
    if settings.get("brevo_api_key"):
        return BrevoTransport(
            api_key=str(settings["brevo_api_key"]),
            sender_email=settings.get("sender_email"),
            sender_name=settings.get("sender_name"),
            timeout=timeout,
        )
    if settings.get("smtp_host"):
        return SMTPTransport(
            host=str(settings["smtp_host"]),
            port=int(settings.get("smtp_port") or 587),
            user=settings.get("smtp_user"),
            password=settings.get("smtp_password"),
            use_tls=settings.get("smtp_use_tls"),
            sender_email=settings.get("sender_email"),
            sender_name=settings.get("sender_name"),
            timeout=timeout,
        )
    raise ConfigurationError("Set BREVO_API_KEY or MAILQ_SMTP_HOST to configure email delivery")


__all__ = [
    "BrevoTransport",
    "ConfigurationError",
    "DeliveryError",
    "EmailTransport",
    "SMTPTransport",
    "build_transport",
]
