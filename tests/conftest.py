"""Shared fixtures for huddle session tests.

Provides mocked collaborators for the SessionOrchestrator (Teams client,
directory, spaces, watcher, dispatcher) wired for the happy path:
three invited participants A, B, C of whom A and C join.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.huddle.sessions.orchestrator import SessionOrchestrator
from src.huddle.sessions.schemas import MembershipRecord, WatchRegistration
from src.huddle.sessions.watcher import reconcile

RELAY_URL = "http://relay.example.com/abc123/"
INVITED = ["person-a", "person-b", "person-c"]
CONTACTS = ["a@example.com", "b@example.com", "c@example.com"]


@pytest.fixture
def mock_teams():
    teams = AsyncMock()
    teams.login_with_jwt = AsyncMock(return_value="access-token")
    return teams


@pytest.fixture
def mint_token():
    return MagicMock(return_value="guest-jwt")


@pytest.fixture
def mock_directory():
    directory = AsyncMock()
    directory.resolve = AsyncMock(return_value=list(INVITED))
    return directory


@pytest.fixture
def mock_spaces():
    spaces = AsyncMock()
    spaces.create_space = AsyncMock(return_value="space-1")
    spaces.get_space_address = AsyncMock(return_value="huddle-1@meet.example.com")
    spaces.add_members = AsyncMock(
        return_value=[
            MembershipRecord(membership_id=f"m-{p}", person_id=p, space_id="space-1")
            for p in INVITED
        ]
    )
    spaces.post_message = AsyncMock()
    spaces.send_direct_message = AsyncMock()
    spaces.remove_space = AsyncMock()
    return spaces


@pytest.fixture
def mock_watcher():
    watcher = AsyncMock()
    watcher.provision_inbox = AsyncMock(return_value=RELAY_URL)
    watcher.register_watches = AsyncMock(
        return_value=[
            WatchRegistration(watch_id=f"w-{p}", person_id=p, target_url=f"{RELAY_URL}in/")
            for p in INVITED
        ]
    )
    watcher.poll_delivered_events = AsyncMock(return_value={"person-a", "person-c"})
    watcher.reconcile = MagicMock(side_effect=reconcile)
    watcher.teardown_watches = AsyncMock(return_value=[])
    return watcher


@pytest.fixture
def mock_dispatcher():
    dispatcher = AsyncMock()
    dispatcher.place_call = AsyncMock(return_value="CA123")
    dispatcher.end_call = AsyncMock()
    return dispatcher


@pytest.fixture
def mock_sleep():
    return AsyncMock()


@pytest.fixture
def orchestrator(
    mock_teams, mint_token, mock_directory, mock_spaces, mock_watcher, mock_dispatcher, mock_sleep
):
    """SessionOrchestrator with every collaborator mocked."""
    return SessionOrchestrator(
        teams=mock_teams,
        mint_token=mint_token,
        directory=mock_directory,
        spaces=mock_spaces,
        watcher=mock_watcher,
        dispatcher=mock_dispatcher,
        wait_before_check=20.0,
        wait_before_cleanup=20.0,
        sleep=mock_sleep,
    )
