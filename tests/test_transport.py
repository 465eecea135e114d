import asyncio
import base64

import aiohttp
import aiosmtplib
import pytest

from conference_mailer.transport import (
    BrevoTransport,
    ConfigurationError,
    DeliveryError,
    EmailTransport,
    SMTPTransport,
    build_transport,
)
from conference_mailer.transport.base import guess_mime, recipient_list, resolve_sender


class DummyResponse:
    def __init__(self, status=201, body=None, text=""):
        self.status = status
        self._body = body if body is not None else {"messageId": "<abc@brevo>"}
        self._text = text

    async def json(self, content_type="application/json"):
        return self._body

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummySession:
    response = DummyResponse()
    error = None
    requests = []

    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def post(self, url, json=None, headers=None):
        if DummySession.error is not None:
            raise DummySession.error
        DummySession.requests.append({"url": url, "json": json, "headers": headers})
        return DummySession.response


@pytest.fixture
def session(monkeypatch):
    DummySession.response = DummyResponse()
    DummySession.error = None
    DummySession.requests = []
    monkeypatch.setattr("conference_mailer.transport.brevo.aiohttp.ClientSession", DummySession)
    return DummySession


class DummyConnection:
    def __init__(self, error=None):
        self.error = error
        self.sent = []

    async def send_message(self, msg):
        if self.error is not None:
            raise self.error
        self.sent.append(msg)
        return {}, "OK"


class DummyPool:
    def __init__(self, connection):
        self.connection = connection
        self.requests = []
        self.discarded = []
        self.closed = False

    async def get_connection(self, host, port, user, password, *, use_tls):
        self.requests.append((host, port, user, password, use_tls))
        return self.connection

    async def discard(self, host, port, user, *, use_tls):
        self.discarded.append((host, port, user, use_tls))

    async def close_all(self):
        self.closed = True


PAYLOAD = {
    "to": ["alice@example.org", "bob@example.org"],
    "cc": "chair@example.org",
    "reply_to": "help@example.org",
    "subject": "Registration confirmed",
    "html": "<p>Welcome</p>",
    "text": "Welcome",
}


def test_recipient_list_accepts_strings_and_lists():
    assert recipient_list("a@x.org, b@x.org") == ["a@x.org", "b@x.org"]
    assert recipient_list(["a@x.org", "", None]) == ["a@x.org"]
    assert recipient_list(None) == []


def test_resolve_sender_prefers_payload():
    assert resolve_sender({"from": "me@x.org", "from_name": "Me"}, "d@x.org", "Default") == ("Me", "me@x.org")
    assert resolve_sender({}, "d@x.org", None) == ("ICCICT 2026", "d@x.org")
    with pytest.raises(DeliveryError):
        resolve_sender({}, None, None)


def test_guess_mime_falls_back_to_octet_stream():
    assert guess_mime("paper.pdf") == ("application", "pdf")
    assert guess_mime("blob") == ("application", "octet-stream")


def test_brevo_build_request():
    transport = BrevoTransport("key", sender_email="noreply@iccict.org")
    payload = dict(PAYLOAD, attachments=[
        {"filename": "a.txt", "content": "aGVsbG8="},
        {"filename": "b.pdf", "url": "https://files.example.org/b.pdf"},
        {"filename": "empty.bin"},
    ])

    body = transport.build_request(payload)

    assert body["sender"] == {"name": "ICCICT 2026", "email": "noreply@iccict.org"}
    assert body["to"] == [{"email": "alice@example.org"}, {"email": "bob@example.org"}]
    assert body["cc"] == [{"email": "chair@example.org"}]
    assert "bcc" not in body
    assert body["replyTo"] == {"email": "help@example.org"}
    assert body["htmlContent"] == "<p>Welcome</p>"
    assert body["textContent"] == "Welcome"
    assert body["attachment"] == [
        {"name": "a.txt", "content": "aGVsbG8="},
        {"name": "b.pdf", "url": "https://files.example.org/b.pdf"},
    ]


def test_brevo_build_request_requires_recipient():
    transport = BrevoTransport("key", sender_email="noreply@iccict.org")
    with pytest.raises(DeliveryError):
        transport.build_request({"subject": "x", "text": "y"})


@pytest.mark.asyncio
async def test_brevo_send_posts_to_api(session):
    transport = BrevoTransport("secret", sender_email="noreply@iccict.org", timeout=3)

    result = await transport.send(PAYLOAD)

    assert result == {"messageId": "<abc@brevo>"}
    request = session.requests[0]
    assert request["url"] == "https://api.brevo.com/v3/smtp/email"
    assert request["headers"]["api-key"] == "secret"
    assert request["json"]["subject"] == "Registration confirmed"


@pytest.mark.asyncio
async def test_brevo_send_raises_on_http_error(session):
    session.response = DummyResponse(status=401, text='{"code":"unauthorized"}')
    transport = BrevoTransport("bad", sender_email="noreply@iccict.org")

    with pytest.raises(DeliveryError) as excinfo:
        await transport.send(PAYLOAD)
    assert "HTTP 401" in str(excinfo.value)


@pytest.mark.asyncio
async def test_brevo_send_wraps_network_errors(session):
    session.error = aiohttp.ClientConnectionError("connection refused")
    transport = BrevoTransport("key", sender_email="noreply@iccict.org")

    with pytest.raises(DeliveryError, match="connection refused"):
        await transport.send(PAYLOAD)


@pytest.mark.asyncio
async def test_brevo_send_wraps_timeouts(session):
    session.error = asyncio.TimeoutError()
    transport = BrevoTransport("key", sender_email="noreply@iccict.org")

    with pytest.raises(DeliveryError, match="TimeoutError"):
        await transport.send(PAYLOAD)


def test_smtp_build_message_with_alternative_and_attachment():
    transport = SMTPTransport("smtp.local", sender_email="noreply@iccict.org", pool=DummyPool(DummyConnection()))
    payload = dict(PAYLOAD, attachments=[
        {"filename": "notes.txt", "content": base64.b64encode(b"hello").decode()},
        {"filename": "remote.pdf", "url": "https://files.example.org/remote.pdf"},
    ])

    msg = transport.build_message(payload)

    assert msg["From"] == "ICCICT 2026 <noreply@iccict.org>"
    assert msg["To"] == "alice@example.org, bob@example.org"
    assert msg["Cc"] == "chair@example.org"
    assert msg["Reply-To"] == "help@example.org"
    attachments = list(msg.iter_attachments())
    assert len(attachments) == 1
    assert attachments[0].get_filename() == "notes.txt"
    assert attachments[0].get_content() == "hello"
    body = msg.get_body(preferencelist=("html",))
    assert "<p>Welcome</p>" in body.get_content()


def test_smtp_build_message_rejects_invalid_attachment():
    transport = SMTPTransport("smtp.local", sender_email="noreply@iccict.org", pool=DummyPool(DummyConnection()))
    payload = dict(PAYLOAD, attachments=[{"filename": "bad.bin", "content": "not base64!!"}])
    with pytest.raises(DeliveryError, match="invalid attachment"):
        transport.build_message(payload)


def test_smtp_use_tls_defaults_from_port():
    assert SMTPTransport("smtp.local", port=465, pool=DummyPool(None)).use_tls is True
    assert SMTPTransport("smtp.local", port=587, pool=DummyPool(None)).use_tls is False
    assert SMTPTransport("smtp.local", port=2525, use_tls=True, pool=DummyPool(None)).use_tls is True


@pytest.mark.asyncio
async def test_smtp_send_uses_pooled_connection():
    connection = DummyConnection()
    pool = DummyPool(connection)
    transport = SMTPTransport("smtp.local", 587, "user", "pw", sender_email="noreply@iccict.org", pool=pool)

    await transport.send(PAYLOAD)

    assert pool.requests == [("smtp.local", 587, "user", "pw", False)]
    assert connection.sent[0]["Subject"] == "Registration confirmed"

    await transport.close()
    assert pool.closed is True


@pytest.mark.asyncio
async def test_smtp_send_failure_discards_connection():
    pool = DummyPool(DummyConnection(error=aiosmtplib.SMTPRecipientsRefused([])))
    transport = SMTPTransport("smtp.local", sender_email="noreply@iccict.org", pool=pool)

    with pytest.raises(DeliveryError):
        await transport.send(PAYLOAD)
    assert pool.discarded == [("smtp.local", 587, None, False)]


def test_build_transport_prefers_brevo():
    transport = build_transport({"brevo_api_key": "key", "smtp_host": "smtp.local", "send_timeout": 4})
    assert isinstance(transport, BrevoTransport)
    assert transport.timeout == 4.0


def test_build_transport_falls_back_to_smtp():
    transport = build_transport({"smtp_host": "smtp.local", "smtp_port": 465})
    assert isinstance(transport, SMTPTransport)
    assert transport.use_tls is True


def test_build_transport_without_configuration():
    with pytest.raises(ConfigurationError) as excinfo:
        build_transport({})
    assert excinfo.value.code == "missing_transport_configuration"


def test_transport_without_send_cannot_be_instantiated():
    class Incomplete(EmailTransport):
        name = "incomplete"

    with pytest.raises(TypeError):
        Incomplete()
