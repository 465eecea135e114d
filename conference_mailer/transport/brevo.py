"""Deliver emails through the Brevo transactional email REST API."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import aiohttp

from ..logger import get_logger
from .base import DEFAULT_SENDER_NAME, DeliveryError, EmailTransport, recipient_list, resolve_sender

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"

logger = get_logger("ConferenceMailer.brevo")


class BrevoTransport(EmailTransport):
    """Send one email per call with ``POST /v3/smtp/email``.

    Payload keys understood: ``to``, ``cc``, ``bcc``, ``from``,
    ``from_name``, ``reply_to``, ``subject``, ``html``, ``text`` and
    ``attachments`` (``filename`` plus base64 ``content`` or ``url``).
    """

    name = "brevo"

    def __init__(
        self,
        api_key: str,
        sender_email: str | None = None,
        sender_name: str | None = DEFAULT_SENDER_NAME,
        *,
        api_url: str = BREVO_API_URL,
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.api_url = api_url
        self.timeout = float(timeout)

    def build_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Translate a queue payload into the Brevo ``SendSmtpEmail`` JSON body."""
        name, email = resolve_sender(payload, self.sender_email, self.sender_name)
        to = recipient_list(payload.get("to"))
        if not to:
            raise DeliveryError("Failed to send email: missing recipient")

        body: Dict[str, Any] = {
            "sender": {"name": name, "email": email},
            "to": [{"email": addr} for addr in to],
            "subject": payload.get("subject") or "",
        }
        if cc := recipient_list(payload.get("cc")):
            body["cc"] = [{"email": addr} for addr in cc]
        if bcc := recipient_list(payload.get("bcc")):
            body["bcc"] = [{"email": addr} for addr in bcc]
        if reply_to := payload.get("reply_to"):
            body["replyTo"] = {"email": reply_to}
        if html := payload.get("html"):
            body["htmlContent"] = html
        if text := payload.get("text"):
            body["textContent"] = text

        attachments: List[Dict[str, Any]] = []
        for att in payload.get("attachments") or []:
            filename = att.get("filename") or "file.bin"
            if att.get("content"):
                attachments.append({"name": filename, "content": att["content"]})
            elif att.get("url"):
                attachments.append({"name": filename, "url": att["url"]})
            else:
                logger.warning("Skipping attachment without data (filename=%s)", filename)
        if attachments:
            body["attachment"] = attachments
        return body

    async def send(self, payload: Dict[str, Any]) -> Any:
        body = self.build_request(payload)
        headers = {
            "api-key": self.api_key,
            "accept": "application/json",
            "content-type": "application/json",
        }
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.post(self.api_url, json=body, headers=headers) as resp:
                    if resp.status >= 400:
                        detail = await resp.text()
                        raise DeliveryError(f"Failed to send email: HTTP {resp.status} {detail[:200]}".rstrip())
                    result = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeliveryError(f"Failed to send email: {str(exc) or type(exc).__name__}") from exc
        logger.debug("Brevo accepted email to %s", ", ".join(item["email"] for item in body["to"]))
        return result
