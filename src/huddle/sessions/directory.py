"""Directory resolution: contact emails to stable person ids.

Webhooks and direct messages are keyed by person id, so every invited
contact must resolve to exactly one directory entry before the space is
created.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import httpx
import structlog

from src.huddle.services.teams import TeamsClient
from src.huddle.sessions.errors import ResolutionError

logger = structlog.get_logger(__name__)


class DirectoryResolver:
    """Resolves contacts concurrently, all-or-fail, preserving input order."""

    def __init__(self, teams: TeamsClient) -> None:
        self._teams = teams

    async def resolve_one(self, contact: str) -> str:
        try:
            matches = await self._teams.list_people(contact)
        except httpx.HTTPError as exc:
            raise ResolutionError(contact, reason=f"lookup failed: {exc}") from exc
        if len(matches) != 1:
            raise ResolutionError(contact, match_count=len(matches))
        person_id = matches[0].get("id")
        if not person_id:
            raise ResolutionError(contact, reason="entry has no id")
        return person_id

    async def resolve(self, contacts: Sequence[str]) -> list[str]:
        """Map contacts to person ids in the same order.

        Raises:
            ResolutionError: For the first contact (in input order) that
                matched zero or several entries, once all lookups settled.
        """
        results = await asyncio.gather(
            *[self.resolve_one(c) for c in contacts],
            return_exceptions=True,
        )

        person_ids: list[str] = []
        for contact, result in zip(contacts, results):
            if isinstance(result, BaseException):
                logger.error("directory.resolution_failed", contact=contact, error=str(result))
                raise result
            person_ids.append(result)

        logger.info("directory.resolved", count=len(person_ids))
        return person_ids
