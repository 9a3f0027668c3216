"""
Credentia — Notification Senders

Outbound notifications to users (template authors, recipients).
Delivery is someone else's problem: a sender either logs the message
(development) or hands it to a webhook (push/email gateway). Callers treat
every send as best-effort.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog

if TYPE_CHECKING:
    from credentia.config import NotificationConfig

logger = structlog.get_logger("credentia.clients.notifications")


class NotificationSender(Protocol):
    async def send(
        self,
        recipient_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> None: ...

    async def close(self) -> None: ...


class LogNotificationSender:
    """
    Writes notifications to the log instead of delivering them.

    The most recent ``history_size`` messages stay inspectable on ``sent``.
    """

    def __init__(self, history_size: int = 100) -> None:
        self.sent: deque[dict[str, Any]] = deque(maxlen=history_size)

    async def send(
        self,
        recipient_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        message = {"recipient_id": recipient_id, "title": title, "body": body, "data": data or {}}
        self.sent.append(message)
        logger.info("notification_logged", recipient_id=recipient_id, title=title)

    async def close(self) -> None:
        return None


class WebhookNotificationSender:
    """POSTs each notification as JSON to a delivery gateway."""

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout_s: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook notification sender needs a URL")
        self._url = url
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout_s, headers=headers)

    async def send(
        self,
        recipient_id: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        response = await self._client.post(
            self._url,
            json={
                "recipient_id": recipient_id,
                "title": title,
                "body": body,
                "data": data or {},
            },
        )
        response.raise_for_status()
        logger.debug("notification_delivered", recipient_id=recipient_id, status=response.status_code)

    async def close(self) -> None:
        await self._client.aclose()


def create_notification_sender(config: NotificationConfig) -> NotificationSender:
    if config.strategy == "webhook":
        return WebhookNotificationSender(
            url=config.webhook_url,
            token=config.webhook_token,
            timeout_s=config.timeout_s,
        )
    if config.strategy != "log":
        logger.warning("unknown_notification_strategy", strategy=config.strategy)
    return LogNotificationSender()
