"""
sms_gateway.py — SMS delivery channel over the Twilio REST API.

═══════════════════════════════════════════════════════════════════════════
SMS GATEWAY ARCHITECTURE
═══════════════════════════════════════════════════════════════════════════

    Dispatcher  →  HTTP POST (form)  →  Twilio API  →  Carrier  →  Handset

        POST {TWILIO_API_URL}/Accounts/{SID}/Messages.json
             Basic auth (SID, token)
             Body=…&From=…&To=…
        ← 201 {"sid": "SM…", …}

    The returned ``sid`` is the provider message id. Any network error or
    non-2xx response raises TransportError; the dispatcher records it as a
    failed DeliveryAttempt.

When Twilio credentials are missing ``build_sms_sender`` returns None and
the dispatcher simulates SMS delivery (logged, outcome "simulated").
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from backend.app.core.config import Settings
from backend.app.core.errors import TransportError
from backend.app.core.logging_config import mask_phone

logger = logging.getLogger(__name__)


class SmsSender(Protocol):
    """Anything that can push one text message and return its provider id."""

    async def send(self, body: str, to: str, from_: Optional[str] = None) -> str:
        ...


class TwilioSmsSender:
    """Send SMS through Twilio's Messages resource."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        api_url: str = "https://api.twilio.com/2010-04-01",
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self._auth = (account_sid, auth_token)
        self._url = f"{api_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self._timeout = timeout_seconds
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def send(self, body: str, to: str, from_: Optional[str] = None) -> str:
        form = {"Body": body, "From": from_ or self.from_number, "To": to}
        try:
            client = await self._get_client()
            response = await client.post(self._url, data=form, auth=self._auth)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                "sms",
                f"Twilio returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError("sms", str(exc) or exc.__class__.__name__) from exc

        sid = response.json().get("sid")
        if not sid:
            raise TransportError("sms", "Twilio response carried no message sid")
        logger.debug("[SMS/Twilio] %s → %s", sid, mask_phone(to))
        return sid


def build_sms_sender(config: Settings) -> Optional[TwilioSmsSender]:
    """Twilio sender if fully configured, else None (simulated delivery)."""
    if not config.sms_configured:
        logger.warning("Twilio credentials not found - SMS delivery will be simulated")
        return None
    logger.info("Twilio SMS channel initialised")
    return TwilioSmsSender(
        config.TWILIO_ACCOUNT_SID,
        config.TWILIO_AUTH_TOKEN,
        config.TWILIO_PHONE_NUMBER,
        api_url=config.TWILIO_API_URL,
        timeout_seconds=config.TRANSPORT_TIMEOUT_SECONDS,
    )
