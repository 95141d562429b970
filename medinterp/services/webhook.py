"""
Webhook client for clinical actions (appointments, lab orders).

If no webhook URL is configured, the client logs the action instead of
sending it and reports success.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp

from medinterp.config import WebhookConfig, settings
from medinterp.logger import get_logger

logger = get_logger(__name__)


class WebhookError(RuntimeError):
    """The webhook endpoint rejected or could not receive an action."""


class WebhookClient:
    """Async action sender with graceful fallback to logging."""

    def __init__(self, config: Optional[WebhookConfig] = None) -> None:
        self.config = config or settings.webhook

    @staticmethod
    def build_payload(action_type: str, action_data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "actionType": action_type,
            "actionData": action_data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def send(self, action_type: str, action_data: Dict[str, Any]) -> Dict[str, Any]:
        """Post an action or log it if the webhook is not configured."""
        payload = self.build_payload(action_type, action_data)

        if not self.config.is_configured:
            logger.warning("Webhook not configured; logging action instead")
            logger.info("Action %s | %s", action_type, action_data)
            return {"success": True, "actionType": action_type, "delivered": False}

        timeout = aiohttp.ClientTimeout(total=self.config.timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.config.url, json=payload) as response:
                    if response.status >= 400:
                        body = await response.text()
                        logger.error("Webhook error %s: %s", response.status, body[:200])
                        raise WebhookError(f"Webhook returned {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Failed to send webhook: %s", exc)
            raise WebhookError(str(exc)) from exc

        logger.info("Sent %s to webhook", action_type)
        return {"success": True, "actionType": action_type, "delivered": True}
