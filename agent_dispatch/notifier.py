"""Webhook notification for session events.

Failures are logged and never raised: a notification problem must not
affect the operation that triggered it.
"""

import logging
from datetime import datetime
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts small JSON event documents to a configured webhook."""

    def __init__(self, config: Optional[dict] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or {}
        notify_config = self.config.get("notify", {})
        self.webhook_url: Optional[str] = notify_config.get("webhook_url")
        self.timeout_seconds = notify_config.get("timeout_seconds", 5.0)
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def notify(self, event: str, session_name: str, **fields) -> bool:
        """Send one event. Returns True if the webhook accepted it."""
        if not self.webhook_url:
            return False

        payload = {
            "event": event,
            "session": session_name,
            "timestamp": datetime.now().isoformat(),
            **fields,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(self.webhook_url, json=payload)
                if response.status_code >= 400:
                    logger.warning(f"Webhook returned {response.status_code}: {response.text[:200]}")
                    return False
                return True
        except httpx.TimeoutException:
            logger.warning("Webhook request timed out")
        except httpx.HTTPError as e:
            logger.warning(f"Webhook error: {e}")
        return False
