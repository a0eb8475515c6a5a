"""Unit tests for the session collaborators.

Tests DirectoryResolver, SpaceManager, JoinEventWatcher and
CallDispatcher against a mocked TeamsClient / RelayClient / Twilio
service. Covers:
- 1:1 order-preserving resolution and its failure modes
- all-or-fail membership with every addition attempted
- watch registration payloads, partial registration, exhaustive teardown
- relay polling: parsing, status filtering, idempotence, monotonic growth
- reconcile() ordering and monotonicity
- SIP dial string and telephony error translation
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from twilio.base.exceptions import TwilioException

from src.huddle.services.relay import RelayClient
from src.huddle.sessions.directory import DirectoryResolver
from src.huddle.sessions.dispatcher import CallDispatcher, sip_target
from src.huddle.sessions.errors import (
    CallError,
    MembershipError,
    MessageError,
    RelayError,
    ResolutionError,
    SpaceCreateError,
    SpaceDeleteError,
    SpaceLookupError,
    WatchRegistrationError,
)
from src.huddle.sessions.schemas import SessionState
from src.huddle.sessions.spaces import SpaceManager
from src.huddle.sessions.watcher import JoinEventWatcher, parse_join_event, reconcile

RELAY_URL = "http://relay.example.com/i/abc/"


def _status_error(status: int, method: str = "POST") -> httpx.HTTPStatusError:
    request = httpx.Request(method, "https://teams.example.com/v1")
    return httpx.HTTPStatusError(
        f"{status}", request=request, response=httpx.Response(status, request=request)
    )


def _delivery(person_id: str, status: str | None = "joined") -> dict:
    data = {"personId": person_id, "callId": "call-1"}
    if status is not None:
        data["status"] = status
    return {"body": json.dumps({"resource": "callMemberships", "data": data})}


@pytest.fixture
def mock_teams():
    return AsyncMock()


@pytest.fixture
def mock_relay():
    relay = AsyncMock()
    relay.create_inbox = AsyncMock(return_value=RELAY_URL)
    relay.list_items = AsyncMock(return_value=[])
    return relay


# ── DirectoryResolver ───────────────────────────────────────────────────────


class TestDirectoryResolver:
    @pytest.mark.asyncio
    async def test_preserves_input_order(self, mock_teams):
        delays = {"a@example.com": 0.03, "b@example.com": 0.0, "c@example.com": 0.01}

        async def _list_people(email):
            await asyncio.sleep(delays[email])
            return [{"id": f"id-{email[0]}"}]

        mock_teams.list_people.side_effect = _list_people
        resolver = DirectoryResolver(mock_teams)

        ids = await resolver.resolve(["a@example.com", "b@example.com", "c@example.com"])

        assert ids == ["id-a", "id-b", "id-c"]

    @pytest.mark.asyncio
    async def test_ambiguous_contact_fails(self, mock_teams):
        async def _list_people(email):
            if email == "d@example.com":
                return [{"id": "id-d1"}, {"id": "id-d2"}]
            return [{"id": f"id-{email[0]}"}]

        mock_teams.list_people.side_effect = _list_people
        resolver = DirectoryResolver(mock_teams)

        with pytest.raises(ResolutionError) as exc_info:
            await resolver.resolve(["a@example.com", "d@example.com"])

        assert exc_info.value.contact == "d@example.com"
        assert exc_info.value.match_count == 2
        assert exc_info.value.stage == SessionState.PARTICIPANTS_RESOLVED

    @pytest.mark.asyncio
    async def test_missing_contact_fails(self, mock_teams):
        mock_teams.list_people.return_value = []
        resolver = DirectoryResolver(mock_teams)

        with pytest.raises(ResolutionError) as exc_info:
            await resolver.resolve(["ghost@example.com"])

        assert exc_info.value.match_count == 0

    @pytest.mark.asyncio
    async def test_lookup_transport_error_is_a_resolution_error(self, mock_teams):
        mock_teams.list_people.side_effect = httpx.ConnectError("refused")
        resolver = DirectoryResolver(mock_teams)

        with pytest.raises(ResolutionError):
            await resolver.resolve(["a@example.com"])

    @pytest.mark.asyncio
    async def test_entry_without_id_is_a_resolution_error(self, mock_teams):
        mock_teams.list_people.return_value = [{"displayName": "Ghost"}]
        resolver = DirectoryResolver(mock_teams)

        with pytest.raises(ResolutionError) as exc_info:
            await resolver.resolve(["ghost@example.com"])

        assert exc_info.value.contact == "ghost@example.com"
        assert "no id" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_contact_list(self, mock_teams):
        assert await DirectoryResolver(mock_teams).resolve([]) == []


# ── SpaceManager ────────────────────────────────────────────────────────────


class TestSpaceManager:
    @pytest.mark.asyncio
    async def test_create_space_returns_id(self, mock_teams):
        mock_teams.create_room.return_value = {"id": "space-1", "title": "Incident 112"}

        assert await SpaceManager(mock_teams).create_space("Incident 112") == "space-1"

    @pytest.mark.asyncio
    async def test_create_space_rejected(self, mock_teams):
        mock_teams.create_room.side_effect = _status_error(400)

        with pytest.raises(SpaceCreateError):
            await SpaceManager(mock_teams).create_space("Incident 112")

    @pytest.mark.asyncio
    async def test_space_address_from_lookup(self, mock_teams):
        mock_teams.get_room.return_value = {"id": "space-1", "sipAddress": "huddle@meet.example.com"}

        address = await SpaceManager(mock_teams).get_space_address("space-1")

        assert address == "huddle@meet.example.com"

    @pytest.mark.asyncio
    async def test_space_without_address_is_a_lookup_error(self, mock_teams):
        mock_teams.get_room.return_value = {"id": "space-1"}

        with pytest.raises(SpaceLookupError):
            await SpaceManager(mock_teams).get_space_address("space-1")

    @pytest.mark.asyncio
    async def test_add_members_returns_records_in_order(self, mock_teams):
        async def _create(space_id, person_id=None, person_email=None):
            return {"id": f"m-{person_id}", "personId": person_id}

        mock_teams.create_membership.side_effect = _create

        records = await SpaceManager(mock_teams).add_members("space-1", ["p1", "p2"])

        assert [r.person_id for r in records] == ["p1", "p2"]
        assert records[0].membership_id == "m-p1"

    @pytest.mark.asyncio
    async def test_one_failed_member_fails_the_stage_after_all_attempts(self, mock_teams):
        async def _create(space_id, person_id=None, person_email=None):
            if person_id == "p2":
                raise _status_error(403)
            return {"id": f"m-{person_id}", "personId": person_id}

        mock_teams.create_membership.side_effect = _create

        with pytest.raises(MembershipError) as exc_info:
            await SpaceManager(mock_teams).add_members("space-1", ["p1", "p2", "p3"])

        assert exc_info.value.failed == ["p2"]
        assert mock_teams.create_membership.await_count == 3

    @pytest.mark.asyncio
    async def test_add_members_by_email(self, mock_teams):
        mock_teams.create_membership.return_value = {"id": "m-1", "personId": "p1"}

        records = await SpaceManager(mock_teams).add_members_by_email("space-1", ["a@example.com"])

        mock_teams.create_membership.assert_awaited_once_with("space-1", person_email="a@example.com")
        assert records[0].person_id == "p1"

    @pytest.mark.asyncio
    async def test_message_failures_are_message_errors(self, mock_teams):
        mock_teams.create_message.side_effect = _status_error(403)
        spaces = SpaceManager(mock_teams)

        with pytest.raises(MessageError):
            await spaces.post_message("space-1", "hello")
        with pytest.raises(MessageError):
            await spaces.send_direct_message("p1", "hello")

    @pytest.mark.asyncio
    async def test_direct_message_targets_person(self, mock_teams):
        await SpaceManager(mock_teams).send_direct_message("p1", "join us")

        mock_teams.create_message.assert_awaited_once_with("join us", to_person_id="p1")

    @pytest.mark.asyncio
    async def test_deleting_missing_space_is_surfaced(self, mock_teams):
        mock_teams.delete_room.side_effect = _status_error(404, "DELETE")

        with pytest.raises(SpaceDeleteError):
            await SpaceManager(mock_teams).remove_space("space-1")


# ── reconcile / parse_join_event ────────────────────────────────────────────


class TestReconcile:
    def test_keeps_invitation_order(self):
        assert reconcile(["c", "a", "b"], {"a"}) == ["c", "b"]

    def test_result_is_subset_of_invited(self):
        assert reconcile(["a", "b"], {"a", "stranger"}) == ["b"]

    def test_more_observed_never_grows_remind_set(self):
        invited = ["a", "b", "c", "d"]
        observed: set[str] = set()
        previous = reconcile(invited, observed)
        for person in ["c", "x", "a", "d", "b"]:
            observed.add(person)
            current = reconcile(invited, observed)
            assert set(current) <= set(previous)
            previous = current
        assert previous == []

    def test_repeatable(self):
        assert reconcile(["a", "b"], ["b"]) == reconcile(["a", "b"], ["b"])


class TestParseJoinEvent:
    def test_parses_json_string_body(self):
        event = parse_join_event(_delivery("p1"))

        assert event.person_id == "p1"
        assert event.status == "joined"
        assert event.call_id == "call-1"

    def test_missing_status_counts_as_joined(self):
        assert parse_join_event(_delivery("p1", status=None)).status == "joined"

    def test_malformed_items_are_ignored(self):
        assert parse_join_event({"body": "not json"}) is None
        assert parse_join_event({"body": json.dumps({"data": {}})}) is None
        assert parse_join_event({}) is None

    def test_non_dict_items_are_ignored(self):
        assert parse_join_event("joined") is None
        assert parse_join_event(None) is None
        assert parse_join_event(["body"]) is None

    def test_wrong_typed_fields_are_ignored(self):
        assert parse_join_event({"body": json.dumps({"data": {"personId": "p1", "callId": 123}})}) is None
        assert parse_join_event({"body": json.dumps({"data": {"personId": "p1", "status": ["joined"]}})}) is None
        assert parse_join_event({"body": json.dumps({"data": {"personId": 42}})}) is None


# ── JoinEventWatcher ────────────────────────────────────────────────────────


class TestJoinEventWatcher:
    @pytest.mark.asyncio
    async def test_provision_inbox_failure_is_relay_error(self, mock_teams, mock_relay):
        mock_relay.create_inbox.side_effect = httpx.ConnectError("down")

        with pytest.raises(RelayError):
            await JoinEventWatcher(mock_teams, mock_relay).provision_inbox()

    @pytest.mark.asyncio
    async def test_register_watch_payload(self, mock_teams, mock_relay):
        mock_teams.create_webhook.return_value = {"id": "w-1"}

        registration = await JoinEventWatcher(mock_teams, mock_relay).register_watch("p1", RELAY_URL)

        mock_teams.create_webhook.assert_awaited_once_with(
            name="huddleMember",
            target_url=f"{RELAY_URL}in/",
            resource="callMemberships",
            event="updated",
            filter="personId=p1&status=joined",
        )
        assert registration.watch_id == "w-1"
        assert registration.person_id == "p1"

    @pytest.mark.asyncio
    async def test_partial_registration_carries_created_watches(self, mock_teams, mock_relay):
        async def _create(**kwargs):
            if "p2" in kwargs["filter"]:
                raise _status_error(500)
            return {"id": f"w-{kwargs['filter'].split('=')[1].split('&')[0]}"}

        mock_teams.create_webhook.side_effect = _create
        watcher = JoinEventWatcher(mock_teams, mock_relay)

        with pytest.raises(WatchRegistrationError) as exc_info:
            await watcher.register_watches(["p1", "p2", "p3"], RELAY_URL)

        assert exc_info.value.failed == ["p2"]
        assert [r.watch_id for r in exc_info.value.created] == ["w-p1", "w-p3"]

    @pytest.mark.asyncio
    async def test_poll_extracts_joined_participants(self, mock_teams, mock_relay):
        mock_relay.list_items.return_value = [
            _delivery("p1"),
            _delivery("p2", status="left"),
            {"body": "garbage"},
            _delivery("p3"),
        ]

        observed = await JoinEventWatcher(mock_teams, mock_relay).poll_delivered_events(RELAY_URL)

        assert observed == {"p1", "p3"}

    @pytest.mark.asyncio
    async def test_poll_is_idempotent(self, mock_teams, mock_relay):
        mock_relay.list_items.return_value = [_delivery("p1"), _delivery("p1")]
        watcher = JoinEventWatcher(mock_teams, mock_relay)

        first = await watcher.poll_delivered_events(RELAY_URL)
        second = await watcher.poll_delivered_events(RELAY_URL)

        assert first == second == {"p1"}

    @pytest.mark.asyncio
    async def test_observed_joiners_never_shrink(self, mock_teams, mock_relay):
        watcher = JoinEventWatcher(mock_teams, mock_relay)

        mock_relay.list_items.return_value = [_delivery("p1"), _delivery("p2")]
        first = await watcher.poll_delivered_events(RELAY_URL)
        mock_relay.list_items.return_value = [_delivery("p3")]
        second = await watcher.poll_delivered_events(RELAY_URL)

        assert first <= second
        assert second == {"p1", "p2", "p3"}

    @pytest.mark.asyncio
    async def test_poll_failure_is_relay_error_at_join_check(self, mock_teams, mock_relay):
        mock_relay.list_items.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(RelayError) as exc_info:
            await JoinEventWatcher(mock_teams, mock_relay).poll_delivered_events(RELAY_URL)

        assert exc_info.value.stage == SessionState.JOIN_CHECK

    @pytest.mark.asyncio
    async def test_poll_skips_malformed_items_next_to_valid_ones(self, mock_teams, mock_relay):
        bad_call_id = {"body": json.dumps({"data": {"personId": "p1", "callId": 123}})}
        mock_relay.list_items.return_value = ["garbage", bad_call_id, _delivery("p2")]

        observed = await JoinEventWatcher(mock_teams, mock_relay).poll_delivered_events(RELAY_URL)

        assert observed == {"p2"}

    @pytest.mark.asyncio
    async def test_poll_non_json_response_is_relay_error(self, mock_teams):
        request = httpx.Request("GET", f"{RELAY_URL}items/")
        html = httpx.Response(200, text="<html>oops</html>", request=request)
        watcher = JoinEventWatcher(mock_teams, RelayClient())

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=html):
            with pytest.raises(RelayError) as exc_info:
                await watcher.poll_delivered_events(RELAY_URL)

        assert exc_info.value.stage == SessionState.JOIN_CHECK

    @pytest.mark.asyncio
    async def test_teardown_attempts_every_watch(self, mock_teams, mock_relay):
        async def _delete(webhook_id):
            if webhook_id == "w-2":
                raise _status_error(500, "DELETE")

        mock_teams.delete_webhook.side_effect = _delete

        failed = await JoinEventWatcher(mock_teams, mock_relay).teardown_watches(["w-1", "w-2", "w-3"])

        assert failed == ["w-2"]
        assert mock_teams.delete_webhook.await_count == 3

    @pytest.mark.asyncio
    async def test_teardown_success_returns_nothing(self, mock_teams, mock_relay):
        failed = await JoinEventWatcher(mock_teams, mock_relay).teardown_watches(["w-1"])

        assert failed == []


# ── CallDispatcher ──────────────────────────────────────────────────────────


class TestCallDispatcher:
    def test_sip_target_uses_tls(self):
        assert sip_target("huddle@meet.example.com") == "sip:huddle@meet.example.com;transport=tls"

    @pytest.mark.asyncio
    async def test_place_call_dials_space(self):
        telephony = AsyncMock()
        telephony.create_call.return_value = "CA123"

        sid = await CallDispatcher(telephony).place_call("huddle@meet.example.com")

        assert sid == "CA123"
        telephony.create_call.assert_awaited_once_with("sip:huddle@meet.example.com;transport=tls")

    @pytest.mark.asyncio
    async def test_place_call_failure_is_call_error(self):
        telephony = AsyncMock()
        telephony.create_call.side_effect = TwilioException("unreachable")

        with pytest.raises(CallError) as exc_info:
            await CallDispatcher(telephony).place_call("huddle@meet.example.com")

        assert exc_info.value.stage == SessionState.CALL_PLACED

    @pytest.mark.asyncio
    async def test_end_call_failure_is_call_error_at_cleanup(self):
        telephony = AsyncMock()
        telephony.complete_call.side_effect = TwilioException("gone")

        with pytest.raises(CallError) as exc_info:
            await CallDispatcher(telephony).end_call("CA123")

        assert exc_info.value.stage == SessionState.CLEANED_UP
