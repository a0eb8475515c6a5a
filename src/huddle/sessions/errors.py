"""Error taxonomy for huddle sessions.

Every fatal error carries the stage it was raised from so the orchestrator
can report where the session stopped. Service adapters translate transport
errors into these types with ``raise ... from exc``.
"""

from __future__ import annotations

from collections.abc import Sequence

from src.huddle.sessions.schemas import SessionState


class HuddleError(Exception):
    """Base class for all huddle session failures.

    Attributes:
        stage: The state the session was trying to reach when this failed.
    """

    stage: SessionState | None = None

    def __init__(self, message: str, stage: SessionState | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class IdentityError(HuddleError):
    """Guest token could not be minted or exchanged."""

    stage = SessionState.IDENTITY_READY


class RelayError(HuddleError):
    """Notification relay could not be provisioned or read."""

    stage = SessionState.INBOX_READY


class ResolutionError(HuddleError):
    """A contact resolved to zero or more than one directory entry."""

    stage = SessionState.PARTICIPANTS_RESOLVED

    def __init__(self, contact: str, match_count: int | None = None, reason: str | None = None) -> None:
        self.contact = contact
        self.match_count = match_count
        if reason is None:
            reason = f"{match_count} directory matches" if match_count is not None else "lookup failed"
        super().__init__(f"Could not resolve contact '{contact}': {reason}")


class SpaceCreateError(HuddleError):
    stage = SessionState.SPACE_CREATED


class SpaceLookupError(HuddleError):
    stage = SessionState.SPACE_ADDRESS_KNOWN


class MembershipError(HuddleError):
    """One or more member additions failed; the whole stage fails."""

    stage = SessionState.MEMBERS_ADDED

    def __init__(self, space_id: str, failed: Sequence[str]) -> None:
        self.space_id = space_id
        self.failed = list(failed)
        super().__init__(
            f"Failed to add {len(self.failed)} member(s) to space {space_id}: {', '.join(self.failed)}"
        )


class WatchRegistrationError(HuddleError):
    """One or more watch registrations failed.

    Attributes:
        failed: Person ids whose registration failed.
        created: Registrations that succeeded and must still be released.
    """

    stage = SessionState.WATCHES_REGISTERED

    def __init__(self, failed: Sequence[str], created: Sequence[object] = ()) -> None:
        self.failed = list(failed)
        self.created = list(created)
        super().__init__(
            f"Failed to register join watches for {len(self.failed)} participant(s): {', '.join(self.failed)}"
        )


class MessageError(HuddleError):
    """A room or direct message could not be posted."""


class CallError(HuddleError):
    stage = SessionState.CALL_PLACED


class SpaceDeleteError(HuddleError):
    stage = SessionState.CLEANED_UP


class CleanupError(HuddleError):
    """Cleanup finished but left resources behind."""

    stage = SessionState.CLEANED_UP

    def __init__(self, failures: Sequence[str]) -> None:
        self.failures = list(failures)
        super().__init__(f"Cleanup left {len(self.failures)} resource(s) behind: {'; '.join(self.failures)}")


class InvalidStateTransitionError(ValueError):
    """Raised when a session transition violates the state sequence."""

    def __init__(self, from_state: SessionState, to_state: SessionState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid session transition: {from_state.value} -> {to_state.value}")
