"""Pydantic v2 schemas for the huddle session domain.

Defines the session state enum, the mutable Session owned by one
orchestrator run, and the records produced by each stage (memberships,
watch registrations, join events, the terminal report).
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class SessionState(str, Enum):
    """Lifecycle of one huddle session, in strict order."""

    INIT = "init"
    IDENTITY_READY = "identity_ready"
    INBOX_READY = "inbox_ready"
    PARTICIPANTS_RESOLVED = "participants_resolved"
    SPACE_CREATED = "space_created"
    SPACE_ADDRESS_KNOWN = "space_address_known"
    MEMBERS_ADDED = "members_added"
    WATCHES_REGISTERED = "watches_registered"
    WELCOME_SENT = "welcome_sent"
    CALL_PLACED = "call_placed"
    WAIT_1 = "wait_1"
    JOIN_CHECK = "join_check"
    REMINDERS_SENT = "reminders_sent"
    WAIT_2 = "wait_2"
    CLEANED_UP = "cleaned_up"
    ABORTED = "aborted"


# ── Stage Records ────────────────────────────────────────────────────────────


class MembershipRecord(BaseModel):
    """A participant's membership in a space."""

    model_config = ConfigDict(frozen=True)

    membership_id: str
    person_id: str
    space_id: str


class WatchRegistration(BaseModel):
    """A webhook that fires when one participant joins the space's call."""

    model_config = ConfigDict(frozen=True)

    watch_id: str
    person_id: str
    target_url: str


class JoinEvent(BaseModel):
    """One call-membership delivery read back from the relay."""

    model_config = ConfigDict(frozen=True)

    person_id: str
    status: str = "joined"
    call_id: str | None = None


class StateTransition(BaseModel):
    """One entry in a session's state history."""

    from_state: SessionState
    to_state: SessionState
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── Session ──────────────────────────────────────────────────────────────────


class Session(BaseModel):
    """State of a single huddle, mutated as the orchestrator advances.

    Only resources recorded here are released during cleanup, so every
    stage writes its result back before the next stage starts.
    """

    title: str
    contacts: list[str] = Field(default_factory=list)
    state: SessionState = SessionState.INIT
    space_id: str | None = None
    space_address: str | None = None
    space_removed: bool = False
    invited_ids: list[str] = Field(default_factory=list)
    not_joined: list[str] = Field(default_factory=list)
    relay_url: str | None = None
    call_sid: str | None = None
    call_ended: bool = False
    watch_ids: list[str] = Field(default_factory=list)
    transitions: list[StateTransition] = Field(default_factory=list)


class SessionReport(BaseModel):
    """Terminal outcome of a session: success or the first fatal error."""

    title: str
    state: SessionState
    ok: bool
    error: str | None = None
    error_stage: SessionState | None = None
    not_joined: list[str] = Field(default_factory=list)
    welcome_failed: bool = False
    reminder_failures: list[str] = Field(default_factory=list)
    cleanup_failures: list[str] = Field(default_factory=list)
    transitions: list[StateTransition] = Field(default_factory=list)
