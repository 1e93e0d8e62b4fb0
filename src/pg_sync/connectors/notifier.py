"""
Webhook notifier - reports the outcome of a run.

A run ends with exactly one message. Delivery problems are logged and never
turn a successful run into a failed one.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from pg_sync.config import Settings

LOG = logging.getLogger(__name__)


class WebhookNotifier:
    """
    Posts ``{"message": ...}`` to a webhook URL.

    Example:
        notifier = WebhookNotifier("https://hooks.example.com/abc")
        notifier.notify("Pipeline nightly succeeded")
    """

    def __init__(
        self,
        url: str | None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Initialize notifier.

        Args:
            url: Webhook URL (None disables notifications)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.url = url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookNotifier":
        """Create a notifier from settings."""
        return cls(
            url=settings.notify.webhook_url,
            timeout=settings.notify.timeout_seconds,
        )

    def notify(self, message: str, **extra: Any) -> bool:
        """
        Send one outcome message.

        Returns:
            True when the webhook accepted the message
        """
        if not self.url:
            LOG.warning("No webhook URL configured, skipping notification: %s", message)
            return False

        payload: dict[str, Any] = {"message": message}
        payload.update(extra)

        LOG.info("Notifying webhook")
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            LOG.error("Webhook notification failed: %s", e, exc_info=True)
            return False

        if response.is_success:
            LOG.info("Webhook notified (status %s)", response.status_code)
            return True

        LOG.error(
            "Webhook rejected notification: status=%s body=%s",
            response.status_code,
            response.text[:500],
        )
        return False
