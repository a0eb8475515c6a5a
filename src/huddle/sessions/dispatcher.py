"""Call dispatch: the SIP leg that starts the space's meeting."""

from __future__ import annotations

import structlog
from twilio.base.exceptions import TwilioException

from src.huddle.services.telephony import TelephonyService
from src.huddle.sessions.errors import CallError
from src.huddle.sessions.schemas import SessionState

logger = structlog.get_logger(__name__)


def sip_target(space_address: str) -> str:
    """Dial string for a space: TLS-transported SIP."""
    return f"sip:{space_address};transport=tls"


class CallDispatcher:
    """Places and ends the call leg into a space. No retries."""

    def __init__(self, telephony: TelephonyService) -> None:
        self._telephony = telephony

    async def place_call(self, space_address: str) -> str:
        try:
            return await self._telephony.create_call(sip_target(space_address))
        except TwilioException as exc:
            raise CallError(f"Failed to call {space_address}: {exc}") from exc

    async def end_call(self, call_sid: str) -> None:
        try:
            await self._telephony.complete_call(call_sid)
        except TwilioException as exc:
            raise CallError(
                f"Failed to end call {call_sid}: {exc}", stage=SessionState.CLEANED_UP
            ) from exc
