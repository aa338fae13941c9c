from __future__ import annotations

import datetime as dt
import logging

from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from slotbook.config import Settings
from slotbook.domain import CalendarEvent, CalendarProvider, ProviderError

logger = logging.getLogger(__name__)


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    # Type and message only, no traceback between attempts.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_attempt(retry_state: RetryCallState) -> None:
    logger.debug("Busy-interval read, attempt %s", retry_state.attempt_number)


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        reason = _short_exc(retry_state)
        if reason:
            logger.warning("Busy-interval read, attempt %s failed (%s)", retry_state.attempt_number, reason)
        else:
            logger.warning("Busy-interval read, attempt %s failed", retry_state.attempt_number)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Retrying busy-interval read")
        return
    logger.info("Retrying busy-interval read (attempt %s) in %.1fs", retry_state.attempt_number + 1, sleep_seconds)


def list_busy_with_retry(
    provider: CalendarProvider,
    settings: Settings,
    time_min: dt.datetime,
    time_max: dt.datetime,
) -> list[CalendarEvent]:
    """Busy intervals for ``[time_min, time_max]``, retrying provider failures.

    Only reads go through here: they are idempotent. Event creation must not.
    """
    backoff = settings.provider_retry_backoff_seconds
    decorated = retry(
        stop=stop_after_attempt(settings.provider_retry_attempts),
        wait=wait_exponential(multiplier=backoff, min=0, max=backoff * 4),
        retry=retry_if_exception_type(ProviderError),
        before=_log_before_attempt,
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(provider.list_busy_intervals)

    return decorated(settings.calendar_id, time_min, time_max)
