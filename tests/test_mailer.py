import json

import httpx
import pytest

from crypto_mail_agent.config import EmailConfig
from crypto_mail_agent.mailer import (
    Mailer,
    MailerError,
    format_email_response,
    reply_subject,
)


def _recording_transport(requests: list, status: int = 200, body: dict | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json=body if body is not None else {"id": "msg_1"})

    return httpx.MockTransport(handler)


def test_reply_subject():
    assert reply_subject("Balance") == "Re: Balance"
    assert reply_subject("Re: Balance") == "Re: Balance"
    assert reply_subject("") == "Re: Your Crypto Request"
    assert reply_subject(None) == "Re: Your Crypto Request"


def test_format_email_response_escapes_and_keeps_lines():
    html = format_email_response("Line one\n<b>two</b>")
    assert "Line one<br>&lt;b&gt;two&lt;/b&gt;" in html
    assert html.startswith("<!DOCTYPE html>")


async def test_send_via_resend():
    requests = []
    config = EmailConfig(
        api_key="re_123", from_address="agent@example.com", from_name="Agent", reply_to="help@example.com",
    )
    mailer = Mailer(config, transport=_recording_transport(requests))

    result = await mailer.send("alice@test.com", "Re: hi", "Hello there")

    assert result == {"id": "msg_1"}
    request = requests[0]
    assert str(request.url) == "https://api.resend.com/emails"
    assert request.headers["Authorization"] == "Bearer re_123"
    payload = json.loads(request.content)
    assert payload["from"] == "Agent <agent@example.com>"
    assert payload["to"] == ["alice@test.com"]
    assert payload["text"] == "Hello there"
    assert "Hello there" in payload["html"]
    assert payload["reply_to"] == "help@example.com"


async def test_send_via_sendgrid():
    requests = []
    config = EmailConfig(provider="sendgrid", api_key="SG.x", from_address="agent@example.com", from_name="")

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202, headers={"X-Message-Id": "sg-42"})

    mailer = Mailer(config, transport=httpx.MockTransport(handler))
    result = await mailer.send("alice@test.com", "Re: hi", "Hello")

    assert result == {"id": "sg-42", "status": "sent"}
    payload = json.loads(requests[0].content)
    assert payload["from"] == {"email": "agent@example.com"}
    assert [c["type"] for c in payload["content"]] == ["text/plain", "text/html"]


async def test_provider_error_raises():
    requests = []
    mailer = Mailer(
        EmailConfig(api_key="re_123", from_address="agent@example.com"),
        transport=_recording_transport(requests, status=422, body={"message": "bad from"}),
    )
    with pytest.raises(MailerError, match="422"):
        await mailer.send("alice@test.com", "Re: hi", "Hello")


async def test_unconfigured_mailer_refuses_to_send():
    mailer = Mailer(EmailConfig(api_key=""))
    assert mailer.enabled is False
    with pytest.raises(MailerError):
        await mailer.send("alice@test.com", "Re: hi", "Hello")
