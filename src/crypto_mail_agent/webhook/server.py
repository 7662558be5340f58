"""FastAPI webhook server for inbound e-mail."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from email.utils import parseaddr
from typing import Any

import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from crypto_mail_agent.config import AppConfig
from crypto_mail_agent.core.app import Application
from crypto_mail_agent.mailer import MailerError, format_email_response
from crypto_mail_agent.wallet.manager import normalize_email

logger = logging.getLogger("crypto_mail_agent.webhook")

SERVICE_NAME = "crypto-mail-agent"
INBOUND_EVENTS = {"email.received"}
GENERIC_ERROR = "Something went wrong on our side. Please try again later."


def verify_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """Check a hex HMAC-SHA256 of *payload*. An empty *secret* disables the check."""
    if not secret:
        return True
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, (signature or "").strip())


def extract_sender(value: Any) -> str | None:
    """Pull the sender address out of a ``from`` field.

    Accepts ``"a@b.c"``, ``"Name <a@b.c>"``, ``{"email": ...}`` or a list of
    either.
    """
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("email")
    if not isinstance(value, str):
        return None
    _, address = parseaddr(value)
    return address or None


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def create_app(
    application: Application | None = None,
    config: AppConfig | None = None,
) -> FastAPI:
    """Build the webhook app.

    Pass a ready *application* (tests), or a *config* to have the
    application loaded on startup and closed on shutdown.
    """
    if application is None and config is None:
        raise ValueError("create_app needs an application or a config")

    app = FastAPI(title="Crypto Mail Agent Webhook")
    app.state.application = application

    if application is None:
        @app.on_event("startup")
        async def startup():
            app.state.application = await Application.load(config)
            logger.info("Webhook server started")

        @app.on_event("shutdown")
        async def shutdown():
            if app.state.application:
                await app.state.application.close()

    def _app() -> Application:
        return app.state.application

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": SERVICE_NAME}

    @app.post("/webhook/email")
    async def webhook_email(request: Request):
        application = _app()
        raw = await request.body()
        secret = application.config.webhook.secret if application.config.webhook.verify_signatures else ""
        if not verify_signature(raw, request.headers.get("resend-signature"), secret):
            logger.warning("Rejected webhook with invalid signature")
            return _error(401, "Invalid signature")

        try:
            event = json.loads(raw or b"{}")
        except json.JSONDecodeError:
            return _error(400, "Body is not valid JSON")
        if not isinstance(event, dict):
            return _error(400, "Body must be a JSON object")

        event_type = event.get("type")
        logger.info(f"Received webhook: {event_type}")
        if event_type not in INBOUND_EVENTS:
            return {"received": True}

        data = event.get("data") or {}
        sender = extract_sender(data.get("from"))
        if not sender:
            logger.error("Webhook event has no sender address")
            return _error(400, "No sender email")

        try:
            await application.process_email(
                sender,
                data.get("subject"),
                data.get("text") or data.get("html") or "",
            )
        except MailerError as exc:
            logger.error(f"Reply to {sender} could not be sent: {exc}")
            return _error(502, "Reply could not be sent")
        except Exception:
            logger.exception(f"Webhook processing failed for {sender}")
            return _error(500, GENERIC_ERROR)

        logger.info(f"Responded to {sender}")
        return {"received": True}

    @app.post("/api/process-email")
    async def api_process_email(body: dict, send: bool = Query(default=False)):
        sender = extract_sender(body.get("from"))
        text = body.get("body")
        if not sender or not text:
            return _error(400, "Missing required fields: from, body")

        try:
            result = await _app().process_email(
                sender, body.get("subject"), text, send_reply=send,
            )
        except MailerError as exc:
            logger.error(f"Reply to {sender} could not be sent: {exc}")
            return _error(502, "Reply could not be sent")
        except Exception:
            logger.exception(f"Processing failed for {sender}")
            return _error(500, GENERIC_ERROR)

        return {
            "success": True,
            "response": result["response"],
            "html": format_email_response(result["response"]),
            "sent": result["sent"],
        }

    @app.get("/api/wallet/{email}")
    async def api_wallet(email: str):
        wallet = await _app().engine.get_primary_wallet(normalize_email(email))
        if wallet is None:
            return _error(404, "Wallet not found")
        return {
            "address": wallet.address,
            "chainId": wallet.chain_id,
            "createdAt": wallet.created_at.isoformat(),
        }

    return app


def run_server(config: AppConfig, host: str | None = None, port: int | None = None) -> None:
    """Start the webhook server with uvicorn (blocking)."""
    app = create_app(config=config)
    host = host or config.webhook.host
    port = port or config.webhook.port
    logger.info(f"Webhook URL: http://{host}:{port}/webhook/email")
    uvicorn.run(app, host=host, port=port, log_level="info")
