"""Alert sinks — outbound delivery to webhook and Telegram.

Delivery is best-effort: every failure is logged and swallowed so a slow or
broken channel can never stall tick processing.
"""

import logging
from typing import Protocol

import httpx

from spikewatch.models.alert import Alert

logger = logging.getLogger("spikewatch.alerts")

_TIMEOUT = 10.0


class AlertSink(Protocol):
    """Interface every delivery channel satisfies."""

    name: str

    @property
    def enabled(self) -> bool: ...

    async def send(self, alert: Alert) -> None: ...


class WebhookSink:
    """POSTs the alert payload as JSON (e.g. a TradingView webhook)."""

    name = "webhook"

    def __init__(self, url: str) -> None:
        self._url = url.strip()

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def send(self, alert: Alert) -> None:
        if not self.enabled:
            return
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self._url, json=alert.to_payload(), timeout=_TIMEOUT,
                )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("[webhook] delivery failed for %s: %s", alert.symbol, exc)


class TelegramSink:
    """Sends the one-line alert summary through the Telegram Bot API."""

    name = "telegram"

    def __init__(self, token: str, chat_id: str) -> None:
        self._token = token.strip()
        self._chat_id = chat_id.strip()

    @property
    def enabled(self) -> bool:
        return bool(self._token and self._chat_id)

    async def send(self, alert: Alert) -> None:
        if not self.enabled:
            return
        url = f"https://api.telegram.org/bot{self._token}/sendMessage"
        body = {
            "chat_id": self._chat_id,
            "text": alert.to_line(),
            "disable_web_page_preview": True,
        }
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(url, json=body, timeout=_TIMEOUT)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("[telegram] delivery failed for %s: %s", alert.symbol, exc)
