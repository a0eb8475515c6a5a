"""Shared tenacity retry policy for outbound HTTP calls.

Retries connect errors, timeouts, 429 and 5xx responses (3 attempts,
exponential backoff 1-10s). Other 4xx responses are configuration or
payload problems and fail immediately. The last error is re-raised so
callers can translate it into a domain error.
"""

from __future__ import annotations

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)


def is_transient_http_error(exc: BaseException) -> bool:
    """True for failures worth retrying."""
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or 500 <= status <= 599
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "http.retrying",
        call=getattr(retry_state.fn, "__qualname__", "unknown"),
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


http_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(is_transient_http_error),
    before_sleep=_log_retry,
    reraise=True,
)
