"""Process entry point: run one huddle from environment configuration.

Usage:
    HUDDLE_TITLE="Incident 112" HUDDLE_CONTACTS="a@example.com,b@example.com" huddle

All configuration comes from environment variables or a .env file in the
working directory (see src.huddle.config.Settings).
"""

from __future__ import annotations

import asyncio
import sys
from datetime import timedelta
from functools import partial

import structlog

from src.huddle.config import Settings, get_settings
from src.huddle.core.logging import configure_structlog
from src.huddle.core.monitoring import init_sentry
from src.huddle.core.security import create_guest_token
from src.huddle.services.relay import RelayClient
from src.huddle.services.teams import TeamsClient
from src.huddle.services.telephony import TelephonyService
from src.huddle.sessions.directory import DirectoryResolver
from src.huddle.sessions.dispatcher import CallDispatcher
from src.huddle.sessions.orchestrator import SessionOrchestrator
from src.huddle.sessions.schemas import SessionReport
from src.huddle.sessions.spaces import SpaceManager
from src.huddle.sessions.watcher import JoinEventWatcher

logger = structlog.get_logger(__name__)


def build_orchestrator(settings: Settings) -> SessionOrchestrator:
    """Wire every collaborator from settings."""
    teams = TeamsClient(api_base=settings.TEAMS_API_BASE)
    relay = RelayClient(api_base=settings.RELAY_API_BASE)
    telephony = TelephonyService.from_credentials(
        account_sid=settings.TWILIO_ACCOUNT_SID,
        auth_token=settings.TWILIO_AUTH_TOKEN,
        call_flow_url=settings.TWILIO_CALL_FLOW_URL,
        caller_id=settings.TWILIO_CALLER_ID,
    )
    mint_token = partial(
        create_guest_token,
        issuer_id=settings.GUEST_ISSUER_ID,
        shared_secret_b64=settings.GUEST_ISSUER_SHARED_SECRET,
        display_name=settings.GUEST_DISPLAY_NAME,
        expires_delta=timedelta(hours=settings.GUEST_TOKEN_EXPIRE_HOURS),
    )
    return SessionOrchestrator(
        teams=teams,
        mint_token=mint_token,
        directory=DirectoryResolver(teams),
        spaces=SpaceManager(teams),
        watcher=JoinEventWatcher(teams, relay),
        dispatcher=CallDispatcher(telephony),
        wait_before_check=settings.WAIT_BEFORE_CHECK_SECONDS,
        wait_before_cleanup=settings.WAIT_BEFORE_CLEANUP_SECONDS,
        welcome_template=settings.WELCOME_TEMPLATE,
        reminder_template=settings.REMINDER_TEMPLATE,
    )


def format_report(report: SessionReport) -> str:
    lines = [f"Huddle '{report.title}': {'completed' if report.ok else 'aborted'} ({report.state.value})"]
    if report.error:
        stage = report.error_stage.value if report.error_stage else "unknown"
        lines.append(f"  Error at {stage}: {report.error}")
    lines.append(f"  Never joined: {', '.join(report.not_joined) or 'none'}")
    if report.welcome_failed:
        lines.append("  Welcome message could not be posted")
    if report.reminder_failures:
        lines.append(f"  Reminders not delivered: {', '.join(report.reminder_failures)}")
    if report.cleanup_failures:
        lines.append("  Left behind:")
        lines.extend(f"    {failure}" for failure in report.cleanup_failures)
    return "\n".join(lines)


async def run(settings: Settings) -> SessionReport:
    orchestrator = build_orchestrator(settings)
    return await orchestrator.run(settings.HUDDLE_TITLE, settings.invited_contacts())


def main() -> None:
    settings = get_settings()
    configure_structlog(settings)
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    if not settings.invited_contacts():
        logger.error("huddle.no_contacts")
        print("No contacts configured. Set HUDDLE_CONTACTS.", file=sys.stderr)
        sys.exit(2)

    report = asyncio.run(run(settings))
    print(format_report(report))
    sys.exit(0 if report.ok else 1)


if __name__ == "__main__":
    main()
