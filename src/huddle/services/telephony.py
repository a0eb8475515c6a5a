"""Async Twilio voice service for the SIP leg into a huddle space.

The Twilio SDK is synchronous, so every call is wrapped in
asyncio.to_thread() to keep the event loop free.
"""

from __future__ import annotations

import asyncio

import structlog
from twilio.rest import Client

logger = structlog.get_logger(__name__)


class TelephonyService:
    """Places and completes outbound calls through Twilio.

    Args:
        client: Authenticated twilio.rest.Client.
        call_flow_url: TwiML URL that drives the call (announcement, recording).
        caller_id: Value sent as the call's ``from``.
    """

    def __init__(self, client: Client, call_flow_url: str, caller_id: str) -> None:
        self._client = client
        self._call_flow_url = call_flow_url
        self._caller_id = caller_id

    @classmethod
    def from_credentials(
        cls,
        account_sid: str,
        auth_token: str,
        call_flow_url: str,
        caller_id: str,
    ) -> TelephonyService:
        return cls(Client(account_sid, auth_token), call_flow_url, caller_id)

    async def create_call(self, to: str) -> str:
        """Originate a call and return its SID."""

        def _create() -> str:
            call = self._client.calls.create(
                to=to,
                from_=self._caller_id,
                url=self._call_flow_url,
            )
            return call.sid

        sid = await asyncio.to_thread(_create)
        logger.info("telephony.call_created", call_sid=sid, to=to)
        return sid

    async def complete_call(self, call_sid: str) -> None:
        """Mark a call leg as completed, hanging it up if still live."""

        def _complete() -> None:
            self._client.calls(call_sid).update(status="completed")

        await asyncio.to_thread(_complete)
        logger.info("telephony.call_completed", call_sid=call_sid)
