"""Async HTTP client wrapper for the Teams REST API.

Provides TeamsClient with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s on transient failures). All methods are async and log with
structlog for observability.

Methods cover what a huddle needs: guest login, people lookup, rooms,
memberships, messages and webhooks.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.huddle.services.retry import http_retry

logger = structlog.get_logger(__name__)


class TeamsClient:
    """Async client for the Teams REST API.

    The client starts unauthenticated; login_with_jwt exchanges a signed
    guest JWT for an access token used by every later call.

    Args:
        api_base: API root (default: https://webexapis.com/v1).
        access_token: Pre-issued access token, if already known.
    """

    # Timeouts per operation type
    TIMEOUT_MUTATE = 30.0  # create/delete operations
    TIMEOUT_READ = 10.0    # get/list operations

    def __init__(
        self,
        api_base: str = "https://webexapis.com/v1",
        access_token: str | None = None,
    ) -> None:
        self._base_url = api_base.rstrip("/")
        self._access_token = access_token

    @property
    def is_authenticated(self) -> bool:
        return bool(self._access_token)

    def _client(self, timeout: float, token: str | None = None) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout and bearer token."""
        bearer = token or self._access_token
        if not bearer:
            raise RuntimeError("TeamsClient is not authenticated; call login_with_jwt first")
        return httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {bearer}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )

    @http_retry
    async def login_with_jwt(self, guest_jwt: str) -> str:
        """Exchange a guest JWT for an access token.

        POST /jwt/login with the guest JWT as bearer. The returned token is
        kept on the client for all subsequent calls.

        Returns:
            The access token string.
        """
        async with self._client(self.TIMEOUT_MUTATE, token=guest_jwt) as client:
            response = await client.post(f"{self._base_url}/jwt/login")
            response.raise_for_status()
            data = response.json()
        token = data.get("token")
        if not token:
            raise ValueError("Guest login response did not include a token")
        self._access_token = token
        logger.info("teams.guest_login", expires_in=data.get("expiresIn"))
        return token

    @http_retry
    async def list_people(self, email: str) -> list[dict[str, Any]]:
        """List directory entries matching an email address.

        GET /people?email=...

        Returns:
            The raw people items (possibly empty).
        """
        async with self._client(self.TIMEOUT_READ) as client:
            response = await client.get(f"{self._base_url}/people", params={"email": email})
            response.raise_for_status()
            items = response.json().get("items", [])
        logger.debug("teams.people_listed", email=email, match_count=len(items))
        return items

    @http_retry
    async def create_room(self, title: str) -> dict[str, Any]:
        """Create a group room. POST /rooms."""
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(f"{self._base_url}/rooms", json={"title": title})
            response.raise_for_status()
            data = response.json()
        logger.info("teams.room_created", room_id=data.get("id"), title=title)
        return data

    @http_retry
    async def get_room(self, room_id: str) -> dict[str, Any]:
        """Get room details including the SIP address. GET /rooms/{id}."""
        async with self._client(self.TIMEOUT_READ) as client:
            response = await client.get(f"{self._base_url}/rooms/{room_id}")
            response.raise_for_status()
            return response.json()

    @http_retry
    async def delete_room(self, room_id: str) -> None:
        """Delete a room and, with it, all memberships. DELETE /rooms/{id}."""
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.delete(f"{self._base_url}/rooms/{room_id}")
            response.raise_for_status()
        logger.info("teams.room_deleted", room_id=room_id)

    @http_retry
    async def create_membership(
        self,
        room_id: str,
        person_id: str | None = None,
        person_email: str | None = None,
    ) -> dict[str, Any]:
        """Add a person to a room by id or by email. POST /memberships."""
        body: dict[str, Any] = {"roomId": room_id}
        if person_id:
            body["personId"] = person_id
        elif person_email:
            body["personEmail"] = person_email
        else:
            raise ValueError("create_membership needs person_id or person_email")

        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(f"{self._base_url}/memberships", json=body)
            response.raise_for_status()
            data = response.json()
        logger.info(
            "teams.membership_created",
            room_id=room_id,
            person_id=data.get("personId"),
        )
        return data

    @http_retry
    async def create_message(
        self,
        text: str,
        room_id: str | None = None,
        to_person_id: str | None = None,
    ) -> dict[str, Any]:
        """Post a message to a room or directly to a person. POST /messages."""
        body: dict[str, Any] = {"text": text}
        if room_id:
            body["roomId"] = room_id
        elif to_person_id:
            body["toPersonId"] = to_person_id
        else:
            raise ValueError("create_message needs room_id or to_person_id")

        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(f"{self._base_url}/messages", json=body)
            response.raise_for_status()
            data = response.json()
        logger.info(
            "teams.message_created",
            message_id=data.get("id"),
            room_id=room_id,
            to_person_id=to_person_id,
        )
        return data

    @http_retry
    async def create_webhook(
        self,
        name: str,
        target_url: str,
        resource: str,
        event: str,
        filter: str | None = None,
    ) -> dict[str, Any]:
        """Register a webhook. POST /webhooks."""
        body: dict[str, Any] = {
            "name": name,
            "targetUrl": target_url,
            "resource": resource,
            "event": event,
        }
        if filter:
            body["filter"] = filter

        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(f"{self._base_url}/webhooks", json=body)
            response.raise_for_status()
            data = response.json()
        logger.info("teams.webhook_created", webhook_id=data.get("id"), filter=filter)
        return data

    @http_retry
    async def delete_webhook(self, webhook_id: str) -> None:
        """Remove a webhook. DELETE /webhooks/{id}."""
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.delete(f"{self._base_url}/webhooks/{webhook_id}")
            response.raise_for_status()
        logger.info("teams.webhook_deleted", webhook_id=webhook_id)
