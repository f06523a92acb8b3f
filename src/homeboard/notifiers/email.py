"""Transactional email via the ZeptoMail HTTP API, rendered with Jinja2."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from homeboard.config import Settings
from homeboard.errors import EmailDeliveryError
from homeboard.logging import get_logger

logger = get_logger(__name__)

ZEPTO_API_URL: Final = "https://api.zeptomail.com/v1.1/email"
_TIMEOUT: Final = 15.0

TEMPLATES_DIR: Final = Path(__file__).parent / "templates"

_env = Environment(
    loader=FileSystemLoader(TEMPLATES_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render_email(template_name: str, **context: Any) -> str:
    """Render an email template inside the brand shell."""
    context.setdefault("year", datetime.now(UTC).year)
    context.setdefault("brand", "HaDirot")
    return _env.get_template(template_name).render(**context)


class ZeptoMailClient:
    """Minimal ZeptoMail sender.

    Accepts an optional shared ``httpx.AsyncClient``; otherwise a client
    is opened per send.
    """

    def __init__(
        self,
        *,
        token: str,
        from_address: str,
        from_name: str,
        reply_to: str = "",
        api_url: str = ZEPTO_API_URL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token
        self.from_address = from_address
        self.from_name = from_name
        self.reply_to = reply_to
        self.api_url = api_url
        self._client = client

    @classmethod
    def from_settings(
        cls, settings: Settings, *, client: httpx.AsyncClient | None = None
    ) -> ZeptoMailClient:
        return cls(
            token=settings.zepto_token.get_secret_value(),
            from_address=settings.zepto_from_address,
            from_name=settings.zepto_from_name,
            reply_to=settings.zepto_reply_to,
            api_url=settings.zepto_api_url,
            client=client,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.token and self.from_address and self.from_name)

    def build_payload(
        self,
        to: Sequence[str],
        subject: str,
        html: str,
        text: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "from": {"address": self.from_address, "name": self.from_name},
            "to": [{"email_address": {"address": address}} for address in to],
            "subject": subject,
            "htmlbody": html,
            "track_opens": False,
            "track_clicks": False,
        }
        if text is not None:
            payload["textbody"] = text
        if self.reply_to:
            payload["reply_to"] = [{"address": self.reply_to}]
        return payload

    async def send(
        self,
        to: Sequence[str],
        subject: str,
        html: str,
        *,
        text: str | None = None,
    ) -> dict[str, Any]:
        """Send one message to all recipients.

        Raises:
            EmailDeliveryError: If the client is unconfigured, there are no
                recipients, the request fails, or ZeptoMail answers non-2xx.
        """
        if not self.is_configured:
            raise EmailDeliveryError("ZeptoMail is not configured")
        recipients = [address for address in to if address]
        if not recipients:
            raise EmailDeliveryError("No recipients")

        payload = self.build_payload(recipients, subject, html, text)
        headers = {
            "Authorization": f"Zoho-enczapikey {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            if self._client is not None:
                resp = await self._client.post(self.api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=_TIMEOUT) as client:
                    resp = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("email_request_failed", subject=subject, exc_info=True)
            raise EmailDeliveryError(f"ZeptoMail request failed: {e}") from e

        if not resp.is_success:
            logger.warning(
                "email_rejected", status=resp.status_code, subject=subject, body=resp.text[:500]
            )
            raise EmailDeliveryError(f"ZeptoMail error: {resp.status_code} {resp.text}")

        logger.info("email_sent", subject=subject, recipients=len(recipients))
        try:
            result: dict[str, Any] = resp.json()
        except ValueError:
            result = {}
        return result
