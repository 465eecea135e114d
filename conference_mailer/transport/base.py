"""Base interface and shared helpers for email transports."""

from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

DEFAULT_SENDER_NAME = "ICCICT 2026"


class DeliveryError(RuntimeError):
    """Raised by a transport when the provider did not accept the email."""


class ConfigurationError(RuntimeError):
    """Raised when no transport can be built from the supplied settings."""

    def __init__(self, message: str = "Missing email transport configuration"):
        super().__init__(message)
        self.code = "missing_transport_configuration"


class EmailTransport(ABC):
    """Interface implemented by concrete transports.

    ``send`` performs exactly one delivery attempt: it returns on success and
    raises on any failure. Retrying is the queue's job, never the transport's.
    """

    name = "base"

    @abstractmethod
    async def send(self, payload: Dict[str, Any]) -> Any:
        """Deliver ``payload`` or raise."""

    async def close(self) -> None:
        """Release any connection held by the transport."""
        return None


def recipient_list(value: Any) -> List[str]:
    """Normalise a recipient field (string, comma separated string or list) into addresses."""
    if not value:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(addr).strip() for addr in value if addr and str(addr).strip()]
    return [str(value).strip()]


def resolve_sender(payload: Dict[str, Any], default_email: str | None, default_name: str | None) -> Tuple[str, str]:
    """Return ``(name, email)`` for the sender, letting the payload override the defaults."""
    email = payload.get("from") or default_email
    if not email:
        raise DeliveryError("Failed to send email: missing sender address")
    name = payload.get("from_name") or default_name or DEFAULT_SENDER_NAME
    return name, email


def guess_mime(filename: str) -> Tuple[str, str]:
    """Guess the MIME type for the given filename."""
    mt, _ = mimetypes.guess_type(filename)
    if not mt:
        return ("application", "octet-stream")
    return tuple(mt.split("/", 1))  # type: ignore[return-value]
