"""Deliver emails through an SMTP relay using pooled aiosmtplib connections."""

from __future__ import annotations

import asyncio
import base64
import binascii
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Dict, Optional

import aiosmtplib

from ..logger import get_logger
from .base import DEFAULT_SENDER_NAME, DeliveryError, EmailTransport, guess_mime, recipient_list, resolve_sender
from .smtp_pool import SMTPPool

logger = get_logger("ConferenceMailer.smtp")


class SMTPTransport(EmailTransport):
    """Build a MIME message from the queue payload and relay it over SMTP."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        *,
        use_tls: Optional[bool] = None,
        sender_email: Optional[str] = None,
        sender_name: Optional[str] = DEFAULT_SENDER_NAME,
        timeout: float = 30.0,
        pool: Optional[SMTPPool] = None,
    ):
        self.host = host
        self.port = int(port)
        self.user = user
        self.password = password
        # Implicit TLS is the convention on 465 unless told otherwise
        self.use_tls = self.port == 465 if use_tls is None else bool(use_tls)
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.timeout = float(timeout)
        self.pool = pool or SMTPPool()

    def build_message(self, payload: Dict[str, Any]) -> EmailMessage:
        """Translate the queue payload into an :class:`EmailMessage`."""
        name, email = resolve_sender(payload, self.sender_email, self.sender_name)
        to = recipient_list(payload.get("to"))
        if not to:
            raise DeliveryError("Failed to send email: missing recipient")

        msg = EmailMessage()
        msg["From"] = formataddr((name, email))
        msg["To"] = ", ".join(to)
        msg["Subject"] = payload.get("subject") or ""
        if cc := recipient_list(payload.get("cc")):
            msg["Cc"] = ", ".join(cc)
        if bcc := recipient_list(payload.get("bcc")):
            msg["Bcc"] = ", ".join(bcc)
        if reply_to := payload.get("reply_to"):
            msg["Reply-To"] = reply_to

        html = payload.get("html")
        text = payload.get("text")
        if html and text:
            msg.set_content(text)
            msg.add_alternative(html, subtype="html")
        elif html:
            msg.set_content(html, subtype="html")
        else:
            msg.set_content(text or "")

        for att in payload.get("attachments") or []:
            filename = att.get("filename") or "file.bin"
            content = att.get("content")
            if not content:
                logger.warning("Skipping attachment without data (filename=%s)", filename)
                continue
            try:
                data = base64.b64decode(content, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise DeliveryError(f"Failed to send email: invalid attachment {filename}: {exc}") from exc
            if att.get("content_type") and "/" in att["content_type"]:
                maintype, subtype = att["content_type"].split("/", 1)
            else:
                maintype, subtype = guess_mime(filename)
            msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=filename)
        return msg

    async def send(self, payload: Dict[str, Any]) -> Any:
        msg = self.build_message(payload)
        try:
            smtp = await self.pool.get_connection(self.host, self.port, self.user, self.password, use_tls=self.use_tls)
            async with asyncio.timeout(self.timeout):
                result = await smtp.send_message(msg)
        except (aiosmtplib.SMTPException, asyncio.TimeoutError, OSError) as exc:
            await self.pool.discard(self.host, self.port, self.user, use_tls=self.use_tls)
            raise DeliveryError(f"Failed to send email: {str(exc) or type(exc).__name__}") from exc
        logger.debug("SMTP relay %s accepted email to %s", self.host, msg["To"])
        return result

    async def close(self) -> None:
        await self.pool.close_all()
