from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from creative_evaluator.config import settings
from creative_evaluator.errors import ConfigurationError

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class SendResult:
    recipient: str
    status: int
    ok: bool
    text: str = ""


class SendGridMailer:
    """Thin client for the SendGrid v3 mail/send endpoint: one recipient per call."""

    def __init__(
        self,
        api_key: str,
        session: requests.Session | None = None,
        api_url: str | None = None,
        from_address: str | None = None,
        from_name: str | None = None,
    ) -> None:
        self.api_key = api_key
        self.session = session or requests.Session()
        self.api_url = api_url or settings.sendgrid_api_url
        self.from_address = from_address or settings.email_from_address
        self.from_name = from_name or settings.email_from_name

    def payload(self, to: str, subject: str, html: str) -> dict[str, Any]:
        return {
            "personalizations": [{"to": [{"email": to}], "subject": subject}],
            "from": {"email": self.from_address, "name": self.from_name},
            "content": [{"type": "text/html", "value": html}],
        }

    def send(self, to: str, subject: str, html: str) -> SendResult:
        to = to.strip()
        try:
            resp = self.session.post(
                self.api_url,
                json=self.payload(to, subject, html),
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=SEND_TIMEOUT_SECONDS,
            )
        except requests.RequestException as exc:
            logger.error("SendGrid request to %s failed: %s", to, exc)
            return SendResult(recipient=to, status=0, ok=False, text=str(exc))

        if resp.ok:
            logger.info("Sent '%s' to %s (status %d)", subject, to, resp.status_code)
            return SendResult(recipient=to, status=resp.status_code, ok=True)
        logger.error("SendGrid rejected mail to %s: %d %s", to, resp.status_code, resp.text)
        return SendResult(recipient=to, status=resp.status_code, ok=False, text=resp.text or "Unable to parse error")


def get_mailer() -> SendGridMailer:
    if not settings.sendgrid_api_key:
        raise ConfigurationError("SendGrid API key not configured")
    return SendGridMailer(api_key=settings.sendgrid_api_key)
