"""
email_alert.py — Email delivery channel over the SendGrid v3 API.

    POST {SENDGRID_API_URL}
         Authorization: Bearer <SENDGRID_API_KEY>
         {"personalizations": [{"to": [{"email": …}]}],
          "from": {"email": FROM_EMAIL},
          "subject": …,
          "content": [{"type": "text/plain", …}, {"type": "text/html", …}]}
    ← 202 Accepted, header ``X-Message-Id``

SendGrid answers with an empty body; the message id comes from the
``X-Message-Id`` header. Missing API key → ``build_email_sender`` returns
None and email delivery is simulated.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from backend.app.core.config import Settings
from backend.app.core.errors import TransportError

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    async def send(
        self, to: str, subject: str, text: str, html: str, from_: Optional[str] = None,
    ) -> str:
        ...


class SendGridEmailSender:
    def __init__(
        self,
        api_key: str,
        from_email: str,
        *,
        api_url: str = "https://api.sendgrid.com/v3/mail/send",
        timeout_seconds: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.from_email = from_email
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._url = api_url
        self._timeout = timeout_seconds
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send(
        self, to: str, subject: str, text: str, html: str, from_: Optional[str] = None,
    ) -> str:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": from_ or self.from_email},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text},
                {"type": "text/html", "value": html},
            ],
        }
        try:
            client = await self._get_client()
            response = await client.post(self._url, json=payload, headers=self._headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                "email",
                f"SendGrid returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError("email", str(exc) or exc.__class__.__name__) from exc

        message_id = response.headers.get("x-message-id", "")
        logger.debug("[EMAIL/SendGrid] %s → %s", message_id or "<no id>", to)
        return message_id


def build_email_sender(config: Settings) -> Optional[SendGridEmailSender]:
    """SendGrid sender if an API key is set, else None (simulated delivery)."""
    if not config.email_configured:
        logger.warning("SendGrid API key not found - email delivery will be simulated")
        return None
    logger.info("SendGrid email channel initialised")
    return SendGridEmailSender(
        config.SENDGRID_API_KEY,
        config.FROM_EMAIL,
        api_url=config.SENDGRID_API_URL,
        timeout_seconds=config.TRANSPORT_TIMEOUT_SECONDS,
    )
