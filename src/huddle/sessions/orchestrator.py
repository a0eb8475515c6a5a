"""Session orchestrator: the huddle state machine.

Drives one session through a strict sequence of states:

    INIT -> IDENTITY_READY -> INBOX_READY -> PARTICIPANTS_RESOLVED
    -> SPACE_CREATED -> SPACE_ADDRESS_KNOWN -> MEMBERS_ADDED
    -> WATCHES_REGISTERED -> WELCOME_SENT -> CALL_PLACED -> WAIT_1
    -> JOIN_CHECK -> REMINDERS_SENT -> WAIT_2 -> CLEANED_UP

Each state is reached once the work leading to it has fully settled.
The first fatal error moves the session to ABORTED, and whatever was
already created (call leg, space, watch registrations) is released
before the report is returned. Welcome and reminder messages are
best-effort: their failures are reported but never abort the session.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence

import httpx
import structlog
from jose import JWTError

from src.huddle.core.monitoring import report_exception
from src.huddle.services.teams import TeamsClient
from src.huddle.sessions.directory import DirectoryResolver
from src.huddle.sessions.dispatcher import CallDispatcher
from src.huddle.sessions.errors import (
    CleanupError,
    IdentityError,
    InvalidStateTransitionError,
    MessageError,
    WatchRegistrationError,
)
from src.huddle.sessions.schemas import (
    Session,
    SessionReport,
    SessionState,
    StateTransition,
)
from src.huddle.sessions.spaces import SpaceManager
from src.huddle.sessions.watcher import JoinEventWatcher

logger = structlog.get_logger(__name__)

# ── State Transition Rules ────────────────────────────────────────────────────

SESSION_SEQUENCE: tuple[SessionState, ...] = (
    SessionState.INIT,
    SessionState.IDENTITY_READY,
    SessionState.INBOX_READY,
    SessionState.PARTICIPANTS_RESOLVED,
    SessionState.SPACE_CREATED,
    SessionState.SPACE_ADDRESS_KNOWN,
    SessionState.MEMBERS_ADDED,
    SessionState.WATCHES_REGISTERED,
    SessionState.WELCOME_SENT,
    SessionState.CALL_PLACED,
    SessionState.WAIT_1,
    SessionState.JOIN_CHECK,
    SessionState.REMINDERS_SENT,
    SessionState.WAIT_2,
    SessionState.CLEANED_UP,
)

# Every non-terminal state moves to its successor or aborts.
VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    state: {successor, SessionState.ABORTED}
    for state, successor in zip(SESSION_SEQUENCE, SESSION_SEQUENCE[1:])
}
VALID_TRANSITIONS[SessionState.CLEANED_UP] = set()  # Terminal
VALID_TRANSITIONS[SessionState.ABORTED] = set()  # Terminal


def validate_transition(from_state: SessionState, to_state: SessionState) -> None:
    """Raise InvalidStateTransitionError unless the move is allowed."""
    if to_state not in VALID_TRANSITIONS.get(from_state, set()):
        raise InvalidStateTransitionError(from_state, to_state)


def next_state(state: SessionState) -> SessionState:
    """The state a session in ``state`` is working towards."""
    if state not in SESSION_SEQUENCE or state == SessionState.CLEANED_UP:
        return state
    return SESSION_SEQUENCE[SESSION_SEQUENCE.index(state) + 1]


# ── Orchestrator ──────────────────────────────────────────────────────────────


class SessionOrchestrator:
    """Runs one huddle end to end.

    Args:
        teams: TeamsClient, authenticated during IDENTITY_READY.
        mint_token: Returns a signed guest JWT for the dispatcher.
        directory: DirectoryResolver for contact -> person id.
        spaces: SpaceManager for the space, members and messages.
        watcher: JoinEventWatcher for join detection.
        dispatcher: CallDispatcher for the SIP call leg.
        wait_before_check: Seconds between placing the call and checking joins.
        wait_before_cleanup: Seconds between reminders and cleanup.
        welcome_template: Room message; ``{title}`` is substituted.
        reminder_template: Direct message to non-joiners; ``{title}`` is substituted.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        teams: TeamsClient,
        mint_token: Callable[[], str],
        directory: DirectoryResolver,
        spaces: SpaceManager,
        watcher: JoinEventWatcher,
        dispatcher: CallDispatcher,
        wait_before_check: float = 20.0,
        wait_before_cleanup: float = 20.0,
        welcome_template: str = "Welcome to the {title} huddle space",
        reminder_template: str = "Hey, can you join our call in the {title} space",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._teams = teams
        self._mint_token = mint_token
        self._directory = directory
        self._spaces = spaces
        self._watcher = watcher
        self._dispatcher = dispatcher
        self._wait_before_check = wait_before_check
        self._wait_before_cleanup = wait_before_cleanup
        self._welcome_template = welcome_template
        self._reminder_template = reminder_template
        self._sleep = sleep

    async def run(self, title: str, contacts: Sequence[str]) -> SessionReport:
        """Convene, observe, remind and tear down one huddle.

        Never raises for stage failures: the outcome, including the first
        fatal error, is in the returned report.
        """
        session = Session(title=title, contacts=list(contacts))
        report = SessionReport(title=title, state=session.state, ok=False)
        log = logger.bind(title=title)
        log.info("session.started", contact_count=len(session.contacts))

        try:
            await self._advance(session, report)
        except Exception as exc:
            attempted = next_state(session.state)
            log.error(
                "session.aborted",
                stage=attempted.value,
                error=str(exc),
                exc_info=True,
            )
            report_exception(exc, huddle_stage=attempted.value)
            report.error = str(exc)
            report.error_stage = attempted
            self._transition(session, SessionState.ABORTED)

            if isinstance(exc, CleanupError):
                # Cleanup already ran in full on the success path.
                report.cleanup_failures = list(exc.failures)
            else:
                report.cleanup_failures = await self._cleanup(session)
        else:
            report.ok = True

        report.state = session.state
        report.not_joined = list(session.not_joined)
        report.transitions = list(session.transitions)
        log.info(
            "session.finished",
            state=report.state.value,
            ok=report.ok,
            not_joined=report.not_joined,
            cleanup_failures=len(report.cleanup_failures),
        )
        return report

    # ── Stages ──────────────────────────────────────────────────────────────

    async def _advance(self, session: Session, report: SessionReport) -> None:
        await self._establish_identity()
        self._transition(session, SessionState.IDENTITY_READY)

        session.relay_url = await self._watcher.provision_inbox()
        self._transition(session, SessionState.INBOX_READY)

        session.invited_ids = await self._directory.resolve(session.contacts)
        self._transition(session, SessionState.PARTICIPANTS_RESOLVED)

        session.space_id = await self._spaces.create_space(session.title)
        self._transition(session, SessionState.SPACE_CREATED)

        session.space_address = await self._spaces.get_space_address(session.space_id)
        self._transition(session, SessionState.SPACE_ADDRESS_KNOWN)

        await self._spaces.add_members(session.space_id, session.invited_ids)
        session.not_joined = list(session.invited_ids)
        self._transition(session, SessionState.MEMBERS_ADDED)

        try:
            registrations = await self._watcher.register_watches(
                session.invited_ids, session.relay_url
            )
        except WatchRegistrationError as exc:
            session.watch_ids.extend(r.watch_id for r in exc.created)
            raise
        session.watch_ids = [r.watch_id for r in registrations]
        self._transition(session, SessionState.WATCHES_REGISTERED)

        report.welcome_failed = not await self._post_welcome(session)
        self._transition(session, SessionState.WELCOME_SENT)

        session.call_sid = await self._dispatcher.place_call(session.space_address)
        self._transition(session, SessionState.CALL_PLACED)

        await self._sleep(self._wait_before_check)
        self._transition(session, SessionState.WAIT_1)

        observed = await self._watcher.poll_delivered_events(session.relay_url)
        session.not_joined = self._watcher.reconcile(session.invited_ids, observed)
        self._transition(session, SessionState.JOIN_CHECK)

        report.reminder_failures = await self._send_reminders(session)
        self._transition(session, SessionState.REMINDERS_SENT)

        await self._sleep(self._wait_before_cleanup)
        self._transition(session, SessionState.WAIT_2)

        failures = await self._cleanup(session)
        if failures:
            raise CleanupError(failures)
        self._transition(session, SessionState.CLEANED_UP)

    async def _establish_identity(self) -> None:
        try:
            guest_jwt = self._mint_token()
            await self._teams.login_with_jwt(guest_jwt)
        except (ValueError, JWTError, httpx.HTTPError) as exc:
            raise IdentityError(f"Failed to establish dispatcher identity: {exc}") from exc

    async def _post_welcome(self, session: Session) -> bool:
        text = self._welcome_template.format(title=session.title)
        try:
            await self._spaces.post_message(session.space_id, text)
        except MessageError as exc:
            logger.warning("session.welcome_failed", space_id=session.space_id, error=str(exc))
            return False
        return True

    async def _send_reminders(self, session: Session) -> list[str]:
        """Direct-message every non-joiner; return those that could not be reached."""
        text = self._reminder_template.format(title=session.title)
        results = await asyncio.gather(
            *[self._spaces.send_direct_message(p, text) for p in session.not_joined],
            return_exceptions=True,
        )
        failed = [p for p, r in zip(session.not_joined, results) if isinstance(r, BaseException)]
        if failed:
            logger.warning("session.reminders_incomplete", failed=failed)
        logger.info(
            "session.reminders_sent",
            reminded=len(session.not_joined) - len(failed),
            failed=len(failed),
        )
        return failed

    async def _cleanup(self, session: Session) -> list[str]:
        """Release every resource the session still holds.

        Each step is attempted regardless of earlier failures.

        Returns:
            Descriptions of what could not be released.
        """
        failures: list[str] = []

        if session.call_sid and not session.call_ended:
            try:
                await self._dispatcher.end_call(session.call_sid)
                session.call_ended = True
            except Exception as exc:
                logger.error("cleanup.call_end_failed", call_sid=session.call_sid, error=str(exc))
                failures.append(f"call {session.call_sid}: {exc}")

        if session.space_id and not session.space_removed:
            try:
                await self._spaces.remove_space(session.space_id)
                session.space_removed = True
            except Exception as exc:
                logger.error("cleanup.space_delete_failed", space_id=session.space_id, error=str(exc))
                failures.append(f"space {session.space_id}: {exc}")

        if session.watch_ids:
            try:
                remaining = await self._watcher.teardown_watches(session.watch_ids)
            except Exception as exc:
                logger.error("cleanup.watch_teardown_failed", error=str(exc))
                remaining = list(session.watch_ids)
            session.watch_ids = list(remaining)
            failures.extend(f"watch {w}" for w in remaining)

        logger.info("session.cleanup_finished", failures=len(failures))
        return failures

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _transition(self, session: Session, to_state: SessionState) -> None:
        validate_transition(session.state, to_state)
        session.transitions.append(StateTransition(from_state=session.state, to_state=to_state))
        logger.info(
            "session.state_changed",
            title=session.title,
            from_state=session.state.value,
            to_state=to_state.value,
        )
        session.state = to_state
