"""Space lifecycle: create, address lookup, membership, messages, removal."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import httpx
import structlog

from src.huddle.services.teams import TeamsClient
from src.huddle.sessions.errors import (
    MembershipError,
    MessageError,
    SpaceCreateError,
    SpaceDeleteError,
    SpaceLookupError,
)
from src.huddle.sessions.schemas import MembershipRecord

logger = structlog.get_logger(__name__)


class SpaceManager:
    """Manages the shared conversation space for one huddle.

    Args:
        teams: Authenticated TeamsClient.
    """

    def __init__(self, teams: TeamsClient) -> None:
        self._teams = teams

    async def create_space(self, title: str) -> str:
        """Create an empty space and return its id."""
        try:
            room = await self._teams.create_room(title)
        except httpx.HTTPError as exc:
            raise SpaceCreateError(f"Failed to create space '{title}': {exc}") from exc
        space_id = room.get("id")
        if not space_id:
            raise SpaceCreateError(f"Space creation for '{title}' returned no id")
        return space_id

    async def get_space_address(self, space_id: str) -> str:
        """Look up the dialable SIP address of a space.

        Creation does not return the address, so this is a second round
        trip. Single attempt: a space that is not visible yet fails here.
        """
        try:
            room = await self._teams.get_room(space_id)
        except httpx.HTTPError as exc:
            raise SpaceLookupError(f"Failed to look up space {space_id}: {exc}") from exc
        address = room.get("sipAddress")
        if not address:
            raise SpaceLookupError(f"Space {space_id} has no SIP address yet")
        logger.info("space.address_known", space_id=space_id, sip_address=address)
        return address

    async def _add_all(
        self, space_id: str, keys: Sequence[str], by_email: bool
    ) -> list[MembershipRecord]:
        async def _add(key: str) -> MembershipRecord:
            if by_email:
                data = await self._teams.create_membership(space_id, person_email=key)
            else:
                data = await self._teams.create_membership(space_id, person_id=key)
            return MembershipRecord(
                membership_id=data.get("id", ""),
                person_id=data.get("personId", "" if by_email else key),
                space_id=space_id,
            )

        results = await asyncio.gather(*[_add(k) for k in keys], return_exceptions=True)

        failed: list[str] = []
        records: list[MembershipRecord] = []
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.error("space.member_add_failed", space_id=space_id, member=key, error=str(result))
                failed.append(key)
            else:
                records.append(result)

        if failed:
            raise MembershipError(space_id, failed)
        logger.info("space.members_added", space_id=space_id, count=len(records))
        return records

    async def add_members(self, space_id: str, person_ids: Sequence[str]) -> list[MembershipRecord]:
        """Add every person to the space; any single failure fails the stage.

        No rollback is attempted for the additions that succeeded; deleting
        the space releases them.
        """
        return await self._add_all(space_id, person_ids, by_email=False)

    async def add_members_by_email(self, space_id: str, emails: Sequence[str]) -> list[MembershipRecord]:
        """Same as add_members, keyed by email address."""
        return await self._add_all(space_id, emails, by_email=True)

    async def post_message(self, space_id: str, text: str) -> None:
        try:
            await self._teams.create_message(text, room_id=space_id)
        except httpx.HTTPError as exc:
            raise MessageError(f"Failed to post to space {space_id}: {exc}") from exc

    async def send_direct_message(self, person_id: str, text: str) -> None:
        try:
            await self._teams.create_message(text, to_person_id=person_id)
        except httpx.HTTPError as exc:
            raise MessageError(f"Failed to message {person_id}: {exc}") from exc

    async def remove_space(self, space_id: str) -> None:
        """Delete the space and, with it, every membership.

        A 404 means the space was already gone; it is surfaced, not
        treated as success.
        """
        try:
            await self._teams.delete_room(space_id)
        except httpx.HTTPError as exc:
            raise SpaceDeleteError(f"Failed to delete space {space_id}: {exc}") from exc
