"""Outbound e-mail - Resend or SendGrid via httpx."""

from __future__ import annotations

import html
import logging

import httpx

from crypto_mail_agent.config import EmailConfig

logger = logging.getLogger("crypto_mail_agent.mailer")

RESEND_URL = "https://api.resend.com/emails"
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class MailerError(RuntimeError):
    """The mail provider rejected or could not be reached for a send."""


def format_email_response(text: str) -> str:
    """Wrap a plain-text reply in a minimal HTML e-mail body."""
    body = html.escape(text).replace("\n", "<br>")
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<body style=\"font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', "
        "Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; "
        "margin: 0 auto; padding: 20px;\">\n"
        "<div style=\"background: #f8f9fa; border-radius: 8px; padding: 20px;\">\n"
        f"{body}\n"
        "</div>\n"
        "<p style=\"color: #888; font-size: 12px; margin-top: 20px;\">"
        "Sent by your Crypto Mail Agent. Reply to this e-mail to manage your wallet.</p>\n"
        "</body>\n"
        "</html>"
    )


def reply_subject(subject: str | None) -> str:
    subject = (subject or "").strip()
    if not subject:
        return "Re: Your Crypto Request"
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


class Mailer:
    """Sends replies through the configured provider.

    A ``transport`` can be passed for tests; it is handed to
    :class:`httpx.AsyncClient` unchanged.
    """

    def __init__(self, config: EmailConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def _sender(self) -> str:
        if self.config.from_name:
            return f"{self.config.from_name} <{self.config.from_address}>"
        return self.config.from_address

    async def send(self, to: str, subject: str, text: str, html_body: str | None = None) -> dict:
        """Send one e-mail and return the provider's response payload."""
        if not self.enabled:
            raise MailerError(
                "Email not configured. Set email.api_key and email.from_address in config.yaml."
            )
        html_body = html_body or format_email_response(text)
        if self.config.provider == "sendgrid":
            result = await self._send_via_sendgrid(to, subject, text, html_body)
        else:
            result = await self._send_via_resend(to, subject, text, html_body)
        logger.info(f"Email sent to {to} (subject={subject!r}, id={result.get('id', '')})")
        return result

    async def _post(self, url: str, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                return await client.post(
                    url,
                    headers={
                        "Authorization": f"Bearer {self.config.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                    timeout=30.0,
                )
            except httpx.HTTPError as exc:
                raise MailerError(f"Mail provider unreachable: {exc}") from exc

    @staticmethod
    def _raise_for_status(resp: httpx.Response, provider: str) -> None:
        if resp.status_code < 400:
            return
        try:
            data = resp.json()
        except ValueError:
            data = resp.text
        raise MailerError(f"{provider} API error ({resp.status_code}): {data}")

    async def _send_via_resend(self, to: str, subject: str, text: str, html_body: str) -> dict:
        payload: dict = {
            "from": self._sender(),
            "to": [to],
            "subject": subject,
            "text": text,
            "html": html_body,
        }
        if self.config.reply_to:
            payload["reply_to"] = self.config.reply_to

        resp = await self._post(RESEND_URL, payload)
        self._raise_for_status(resp, "Resend")
        return resp.json()

    async def _send_via_sendgrid(self, to: str, subject: str, text: str, html_body: str) -> dict:
        sender = {"email": self.config.from_address}
        if self.config.from_name:
            sender["name"] = self.config.from_name
        payload: dict = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": sender,
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html_body},
            ],
        }
        if self.config.reply_to:
            payload["reply_to"] = {"email": self.config.reply_to}

        resp = await self._post(SENDGRID_URL, payload)
        self._raise_for_status(resp, "SendGrid")
        # SendGrid returns 202 with an empty body
        return {"id": resp.headers.get("X-Message-Id", ""), "status": "sent"}
