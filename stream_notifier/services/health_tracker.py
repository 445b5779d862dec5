import logging
import random

import requests

from stream_notifier.utils.constants import (
    BACKOFF_BASE_MS, BACKOFF_RATE_LIMITED_BASE_MS, BACKOFF_MAX_DOUBLINGS,
    BACKOFF_CAP_MS, BACKOFF_JITTER_MS, HEALTH_LOG_INTERVAL_MS
)
from stream_notifier.utils.data_store import now_ms
from stream_notifier.utils.formatters import format_iso_time

logger = logging.getLogger(__name__)


def error_status(err):
    """HTTP status carried by a requests error, or None."""
    response_obj = getattr(err, 'response', None)
    status = getattr(response_obj, 'status_code', None)
    return status if isinstance(status, int) else None


def retry_after_ms(err):
    response_obj = getattr(err, 'response', None)
    headers = getattr(response_obj, 'headers', None) or {}
    raw = headers.get("Retry-After") or headers.get("retry-after")
    if raw is None:
        return None
    try:
        seconds = int(str(raw).strip())
    except ValueError:
        return None
    return seconds * 1000 if seconds > 0 else None


def is_retryable_error(err) -> bool:
    """Rate limits, server errors and transient network failures are worth a scheduled retry."""
    status = error_status(err)
    if status is not None:
        return status == 429 or status >= 500
    return isinstance(err, (requests.exceptions.Timeout, requests.exceptions.ConnectionError))


def compute_backoff_ms(err, consecutive_failures: int, jitter_ms=None) -> int:
    """
    30s base (60s on 429, or Retry-After when larger), doubled per extra consecutive
    failure up to 6 doublings, capped at 10 minutes, plus up to 5s jitter.
    """
    base = BACKOFF_RATE_LIMITED_BASE_MS if error_status(err) == 429 else BACKOFF_BASE_MS
    retry_after = retry_after_ms(err)
    if retry_after:
        base = max(base, retry_after)

    exponent = min(BACKOFF_MAX_DOUBLINGS, max(0, int(consecutive_failures) - 1))
    backoff = min(BACKOFF_CAP_MS, base * (2 ** exponent))

    if jitter_ms is None:
        jitter_ms = int(random.random() * BACKOFF_JITTER_MS)
    return backoff + jitter_ms


def describe_error(err, context_label: str) -> str:
    status = error_status(err)
    status_part = f"HTTP {status} " if status else ""
    return f"{context_label}: {status_part}{err}"


class HealthTracker:
    """Per-platform failure counters and backoff windows, stored inside NotifierState."""

    def __init__(self, state, time_func=now_ms, jitter_func=None):
        self.state = state
        self._now = time_func
        self._jitter = jitter_func
        self.dirty = False

    def health(self, platform: str) -> dict:
        return self.state.health(platform)

    def is_in_backoff(self, platform: str) -> bool:
        next_allowed_at = int(self.health(platform).get("nextAllowedAt") or 0)
        return bool(next_allowed_at and self._now() < next_allowed_at)

    def record_success(self, platform: str):
        health = self.health(platform)
        health["consecutiveFailures"] = 0
        health["nextAllowedAt"] = 0
        health["lastSuccessAt"] = self._now()
        self.dirty = True

    def record_failure(self, platform: str, err, context_label: str = None) -> bool:
        now = self._now()
        health = self.health(platform)
        health["consecutiveFailures"] = int(health.get("consecutiveFailures") or 0) + 1

        retryable = is_retryable_error(err)
        if retryable:
            jitter = self._jitter() if self._jitter else None
            health["nextAllowedAt"] = now + compute_backoff_ms(err, health["consecutiveFailures"], jitter)

        health["lastError"] = describe_error(err, context_label or platform)
        health["lastErrorAt"] = now
        self.dirty = True

        if now - int(health.get("lastLoggedAt") or 0) > HEALTH_LOG_INTERVAL_MS:
            health["lastLoggedAt"] = now
            until = format_iso_time(health["nextAllowedAt"]) if health.get("nextAllowedAt") else "none"
            logger.error(
                f"{platform.upper()} API error. failures={health['consecutiveFailures']} "
                f"backoffUntil={until} err={health['lastError']}"
            )
        return retryable

    def consume_dirty(self) -> bool:
        dirty, self.dirty = self.dirty, False
        return dirty
