"""Async client for the disposable webhook inbox used as a notification relay.

The relay lets the dispatcher receive webhook deliveries without running
a server: webhooks are pointed at ``<base_url>in/`` and the buffered
deliveries are read back from ``<base_url>items/``.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.huddle.services.retry import http_retry

logger = structlog.get_logger(__name__)


class RelayClient:
    """Async client for the webhook inbox REST API.

    Args:
        api_base: Inbox service root (default: http://api.webhookinbox.com).
    """

    TIMEOUT = 15.0

    def __init__(self, api_base: str = "http://api.webhookinbox.com") -> None:
        self._base_url = api_base.rstrip("/")

    @staticmethod
    def delivery_url(base_url: str) -> str:
        """Where webhooks should be delivered for an inbox."""
        return f"{base_url}in/"

    @staticmethod
    def items_url(base_url: str) -> str:
        return f"{base_url}items/"

    @http_retry
    async def create_inbox(self) -> str:
        """Create a fresh inbox. POST /create/.

        Returns:
            The inbox base URL, always ending in ``/``.
        """
        async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
            response = await client.post(f"{self._base_url}/create/")
            response.raise_for_status()
            data = response.json()
        base_url = data.get("base_url")
        if not base_url:
            raise ValueError("Relay create response did not include base_url")
        if not base_url.endswith("/"):
            base_url += "/"
        logger.info("relay.inbox_created", base_url=base_url)
        return base_url

    @http_retry
    async def list_items(self, base_url: str) -> list[dict[str, Any]]:
        """Read every delivery currently buffered at an inbox.

        GET {base_url}items/

        Returns:
            Raw delivery items in relay order.
        """
        async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
            response = await client.get(self.items_url(base_url))
            response.raise_for_status()
            data = response.json()
        items = data.get("items", []) if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise ValueError("Relay items response is not a list of deliveries")
        logger.debug("relay.items_listed", base_url=base_url, item_count=len(items))
        return items
