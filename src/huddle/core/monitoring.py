"""Sentry integration for aborted sessions."""

from __future__ import annotations

import sentry_sdk
import structlog

logger = structlog.get_logger(__name__)


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with huddle-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Tag events raised from a session stage with that stage."""
        exc_info = hint.get("exc_info") if hint else None
        if exc_info:
            stage = getattr(exc_info[1], "stage", None)
            if stage is not None:
                event.setdefault("tags", {})["huddle_stage"] = getattr(stage, "value", str(stage))
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        before_send=before_send,
    )
    logger.info("monitoring.sentry_initialized", environment=environment)


def report_exception(exc: BaseException, **tags: str) -> None:
    """Send an exception to Sentry if the SDK has been initialized."""
    if not sentry_sdk.get_client().is_active():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in tags.items():
            scope.set_tag(key, value)
        sentry_sdk.capture_exception(exc)
