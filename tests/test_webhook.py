import hashlib
import hmac
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from crypto_mail_agent.core.app import Application
from crypto_mail_agent.llm.base import LLMResponse
from crypto_mail_agent.mailer import Mailer
from crypto_mail_agent.storage.database import Database
from crypto_mail_agent.webhook.server import (
    GENERIC_ERROR,
    create_app,
    extract_sender,
    verify_signature,
)

from conftest import FakeChainProvider, ScriptedProvider, make_config, tool_call

SECRET = "whsec_test"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _inbound(sender, subject="Wallet", text="create wallet", event_type="email.received") -> bytes:
    return json.dumps({
        "type": event_type,
        "data": {"from": sender, "to": ["agent@example.com"], "subject": subject, "text": text},
    }).encode()


@pytest.fixture
def outbox():
    return []


@pytest.fixture
def signed_application(db, chain, llm, outbox):
    config = make_config(webhook={"secret": SECRET})

    def handler(request: httpx.Request) -> httpx.Response:
        outbox.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "msg_1"})

    mailer = Mailer(config.email, transport=httpx.MockTransport(handler))
    return Application(config, db, chain, llm, mailer=mailer)


@pytest.fixture
async def client(signed_application):
    app = create_app(signed_application)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def offline_client(tmp_path):
    # Routes exercised here never reach the database.
    config = make_config(webhook={"secret": SECRET})
    application = Application(config, Database(tmp_path / "unused.db"), FakeChainProvider(), ScriptedProvider())
    return TestClient(create_app(application))


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def test_verify_signature():
    body = b'{"type": "email.received"}'
    assert verify_signature(body, _sign(body), SECRET) is True
    assert verify_signature(body, _sign(body, "other"), SECRET) is False
    assert verify_signature(body, None, SECRET) is False
    assert verify_signature(body, None, "") is True


@pytest.mark.parametrize(
    "value, expected",
    [
        ("alice@test.com", "alice@test.com"),
        ("Alice <alice@test.com>", "alice@test.com"),
        ({"email": "alice@test.com", "name": "Alice"}, "alice@test.com"),
        ([{"email": "alice@test.com"}], "alice@test.com"),
        ([], None),
        (None, None),
        ({"name": "Alice"}, None),
    ],
)
def test_extract_sender(value, expected):
    assert extract_sender(value) == expected


def test_create_app_needs_something_to_serve():
    with pytest.raises(ValueError):
        create_app()


# ------------------------------------------------------------------
# Routes
# ------------------------------------------------------------------


def test_health(offline_client):
    response = offline_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "crypto-mail-agent"}


def test_bad_signature_is_rejected(offline_client):
    body = _inbound("alice@test.com")
    response = offline_client.post(
        "/webhook/email", content=body, headers={"resend-signature": _sign(body, "wrong")},
    )
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}


def test_missing_signature_is_rejected(offline_client):
    response = offline_client.post("/webhook/email", content=_inbound("alice@test.com"))
    assert response.status_code == 401


async def test_inbound_email_is_answered_by_email(client, llm, engine, outbox):
    llm.script = [tool_call("create_wallet"), LLMResponse(content="Your wallet is ready!")]
    body = _inbound({"email": "Alice@Test.com"}, subject="New wallet")

    response = await client.post("/webhook/email", content=body, headers={"resend-signature": _sign(body)})

    assert response.status_code == 200
    assert response.json() == {"received": True}
    assert await engine.get_primary_wallet("alice@test.com") is not None
    assert len(outbox) == 1
    assert outbox[0]["to"] == ["alice@test.com"]
    assert outbox[0]["subject"] == "Re: New wallet"
    assert outbox[0]["text"] == "Your wallet is ready!"


@pytest.mark.parametrize("event_type", ["email.bounced", "email.delivered", "email.sent"])
async def test_other_events_are_acknowledged_only(client, llm, outbox, event_type):
    body = _inbound("alice@test.com", event_type=event_type)

    response = await client.post("/webhook/email", content=body, headers={"resend-signature": _sign(body)})

    assert response.json() == {"received": True}
    assert llm.calls == []
    assert outbox == []


async def test_inbound_email_without_sender(client):
    body = _inbound(None)
    response = await client.post("/webhook/email", content=body, headers={"resend-signature": _sign(body)})
    assert response.status_code == 400


async def test_unexpected_failure_gets_generic_answer(client, llm, outbox):
    llm.script = [RuntimeError("boom")]
    body = _inbound("alice@test.com")

    response = await client.post("/webhook/email", content=body, headers={"resend-signature": _sign(body)})

    assert response.status_code == 500
    assert response.json() == {"error": GENERIC_ERROR}
    assert outbox == []


async def test_process_email_api(client, llm, outbox):
    llm.script = [LLMResponse(content="Here to help.\nAsk away.")]

    response = await client.post(
        "/api/process-email", json={"from": "alice@test.com", "subject": "hi", "body": "help"},
    )

    data = response.json()
    assert response.status_code == 200
    assert data["success"] is True
    assert data["response"] == "Here to help.\nAsk away."
    assert "Here to help.<br>Ask away." in data["html"]
    assert data["sent"] is False
    assert outbox == []


async def test_process_email_api_can_send(client, llm, outbox):
    llm.script = [LLMResponse(content="Sure.")]

    response = await client.post(
        "/api/process-email?send=true", json={"from": "alice@test.com", "body": "help"},
    )

    assert response.json()["sent"] is True
    assert outbox[0]["subject"] == "Re: Your Crypto Request"


async def test_process_email_api_requires_fields(client):
    response = await client.post("/api/process-email", json={"from": "alice@test.com"})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required fields: from, body"}


async def test_wallet_lookup(client, engine):
    missing = await client.get("/api/wallet/alice@test.com")
    assert missing.status_code == 404

    created = await engine.create_wallet("alice@test.com")
    found = await client.get("/api/wallet/Alice@Test.com")

    assert found.status_code == 200
    assert found.json()["address"] == created["address"]
    assert found.json()["chainId"] == 11155111
