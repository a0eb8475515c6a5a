"""Join-event watching through the notification relay.

One webhook per invited participant fires when that participant's call
membership becomes ``joined``. Deliveries land in the relay inbox and are
read back in a single poll at join-check time, then reconciled against
the invited roster.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable, Sequence
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from src.huddle.services.relay import RelayClient
from src.huddle.services.teams import TeamsClient
from src.huddle.sessions.errors import RelayError, WatchRegistrationError
from src.huddle.sessions.schemas import JoinEvent, SessionState, WatchRegistration

logger = structlog.get_logger(__name__)

WATCH_NAME = "huddleMember"
WATCH_RESOURCE = "callMemberships"
WATCH_EVENT = "updated"
JOINED_STATUS = "joined"


def reconcile(invited: Sequence[str], observed: Iterable[str]) -> list[str]:
    """Invited participants not yet observed as joined, in invitation order."""
    seen = set(observed)
    return [person_id for person_id in invited if person_id not in seen]


def parse_join_event(item: Any) -> JoinEvent | None:
    """Extract a join event from one relay item, or None if it has none.

    The relay stores each delivery's body as a JSON string; the webhook
    payload carries the call membership under ``data``.
    """
    if not isinstance(item, dict):
        return None
    body = item.get("body")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            return None
    if not isinstance(body, dict):
        return None
    data = body.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("personId"), str):
        return None
    try:
        return JoinEvent(
            person_id=data["personId"],
            status=data.get("status") or JOINED_STATUS,
            call_id=data.get("callId"),
        )
    except ValidationError:
        return None


class JoinEventWatcher:
    """Registers join watches and reads back who joined.

    Observed joiners are accumulated per relay URL, so the set returned by
    poll_delivered_events never shrinks within a session.

    Args:
        teams: Authenticated TeamsClient (webhook registration).
        relay: RelayClient for the disposable inbox.
    """

    def __init__(self, teams: TeamsClient, relay: RelayClient) -> None:
        self._teams = teams
        self._relay = relay
        self._observed: dict[str, set[str]] = {}

    async def provision_inbox(self) -> str:
        try:
            return await self._relay.create_inbox()
        except (httpx.HTTPError, ValueError) as exc:
            raise RelayError(f"Failed to provision relay inbox: {exc}") from exc

    async def register_watch(self, person_id: str, relay_url: str) -> WatchRegistration:
        target_url = RelayClient.delivery_url(relay_url)
        data = await self._teams.create_webhook(
            name=WATCH_NAME,
            target_url=target_url,
            resource=WATCH_RESOURCE,
            event=WATCH_EVENT,
            filter=f"personId={person_id}&status={JOINED_STATUS}",
        )
        return WatchRegistration(watch_id=data["id"], person_id=person_id, target_url=target_url)

    async def register_watches(
        self, person_ids: Sequence[str], relay_url: str
    ) -> list[WatchRegistration]:
        """Register one watch per participant.

        Partial coverage would under-report non-joiners, so any failure
        fails the stage. The registrations that did succeed travel on the
        error so they can still be removed.
        """
        results = await asyncio.gather(
            *[self.register_watch(p, relay_url) for p in person_ids],
            return_exceptions=True,
        )

        created: list[WatchRegistration] = []
        failed: list[str] = []
        for person_id, result in zip(person_ids, results):
            if isinstance(result, BaseException):
                logger.error("watch.register_failed", person_id=person_id, error=str(result))
                failed.append(person_id)
            else:
                created.append(result)

        if failed:
            raise WatchRegistrationError(failed, created)
        logger.info("watch.registered", count=len(created), relay_url=relay_url)
        return created

    async def poll_delivered_events(self, relay_url: str) -> set[str]:
        """Read every buffered delivery and return all joiners seen so far."""
        try:
            items = await self._relay.list_items(relay_url)
        except (httpx.HTTPError, ValueError) as exc:
            raise RelayError(
                f"Failed to read relay inbox {relay_url}: {exc}", stage=SessionState.JOIN_CHECK
            ) from exc

        observed = self._observed.setdefault(relay_url, set())
        for item in items:
            event = parse_join_event(item)
            if event is None:
                logger.warning("watch.unparseable_delivery", relay_url=relay_url)
                continue
            if event.status == JOINED_STATUS:
                observed.add(event.person_id)

        logger.info("watch.polled", relay_url=relay_url, item_count=len(items), joined=len(observed))
        return set(observed)

    def reconcile(self, invited: Sequence[str], observed: Iterable[str]) -> list[str]:
        return reconcile(invited, observed)

    async def teardown_watches(self, watch_ids: Sequence[str]) -> list[str]:
        """Delete every registration, attempting all of them.

        Returns:
            Ids that could not be deleted (empty on full success).
        """
        results = await asyncio.gather(
            *[self._teams.delete_webhook(w) for w in watch_ids],
            return_exceptions=True,
        )
        failed = [w for w, r in zip(watch_ids, results) if isinstance(r, BaseException)]
        if failed:
            logger.error("watch.teardown_incomplete", failed=failed, attempted=len(watch_ids))
        else:
            logger.info("watch.teardown_complete", count=len(watch_ids))
        return failed
