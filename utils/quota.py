"""
Quota error parsing and backoff calculation.

Provider quota errors arrive as free text (often an embedded JSON error body).
This module pulls the useful fields out of that text once, at the adapter
boundary, and turns them into a QuotaInfo value.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

QUOTA_MARKERS = (
    "quota",
    "resource_exhausted",
    "quotafailure",
    "insufficient_quota",
)

RETRY_AFTER_PATTERN = re.compile(r"retry in ([\d.]+)s", re.IGNORECASE)
METRIC_PATTERN = re.compile(r"quotaMetric[\":\s]+([^\"]+)", re.IGNORECASE)
LIMIT_PATTERN = re.compile(r"quotaValue[\":\s]+(\d+)", re.IGNORECASE)

# Backoff constants (seconds)
QUOTA_BASE_DELAY = 5 * 60
QUOTA_MAX_DELAY = 60 * 60
DEFAULT_BASE_DELAY = 2
DEFAULT_MAX_DELAY = 30

# Daily provider quotas reset at midnight Pacific
QUOTA_RESET_TZ = ZoneInfo("America/Los_Angeles")


def _is_per_minute(text: str) -> bool:
    return "per_minute" in text or "PerMinute" in text


def _is_daily(text: str) -> bool:
    return "per_day" in text or "PerDay" in text


def _is_free_tier(text: str) -> bool:
    return "free_tier" in text or "FreeTier" in text


def next_quota_reset(now: Optional[datetime] = None) -> datetime:
    """Next midnight Pacific, returned in UTC."""
    now = now or datetime.now(timezone.utc)
    local = now.astimezone(QUOTA_RESET_TZ)
    midnight = (local + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def quota_day(now: Optional[datetime] = None) -> str:
    """Calendar day of the current quota window (Pacific), as YYYY-MM-DD."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(QUOTA_RESET_TZ).strftime("%Y-%m-%d")


@dataclass
class QuotaInfo:
    """Structured view of a provider quota error."""
    error_message: str
    retry_after_seconds: Optional[int] = None
    quota_metric: Optional[str] = None
    quota_limit: Optional[int] = None
    estimated_recovery_time: Optional[datetime] = None
    suggested_action: str = "Please try again later or upgrade your API plan"
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def retryable(self) -> bool:
        """Only per-minute quotas clear within a single pipeline run."""
        metric = self.quota_metric or ""
        if _is_daily(metric) or _is_free_tier(metric):
            return False
        if _is_per_minute(metric):
            return True
        return _is_per_minute(self.error_message) and not (
            _is_daily(self.error_message) or _is_free_tier(self.error_message)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "retry_after_seconds": self.retry_after_seconds,
            "quota_metric": self.quota_metric,
            "quota_limit": self.quota_limit,
            "estimated_recovery_time": (
                self.estimated_recovery_time.isoformat() if self.estimated_recovery_time else None
            ),
            "suggested_action": self.suggested_action,
            "retryable": self.retryable,
        }

    def user_message(self) -> str:
        if self.quota_limit:
            message = f"API quota limit reached ({self.quota_limit} requests)."
        else:
            message = "API quota limit has been exceeded."
        if self.estimated_recovery_time:
            message += f" Estimated recovery: {self.estimated_recovery_time.isoformat()}."
        return f"{message} {self.suggested_action}"


def is_quota_error_text(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in QUOTA_MARKERS)


def parse_quota_error(text: str, now: Optional[datetime] = None) -> Optional[QuotaInfo]:
    """
    Parse provider error text into QuotaInfo.

    Returns None when the text carries no quota marker, so a plain 429
    (rate limiting without quota details) stays a transient error.
    """
    if not text or not is_quota_error_text(text):
        return None

    now = now or datetime.now(timezone.utc)
    info = QuotaInfo(error_message=text, detected_at=now)

    retry_match = RETRY_AFTER_PATTERN.search(text)
    if retry_match:
        retry_seconds = float(retry_match.group(1))
        info.retry_after_seconds = math.ceil(retry_seconds)
        info.estimated_recovery_time = now + timedelta(seconds=retry_seconds)

    metric_match = METRIC_PATTERN.search(text)
    if metric_match:
        info.quota_metric = metric_match.group(1).strip()

    limit_match = LIMIT_PATTERN.search(text)
    if limit_match:
        info.quota_limit = int(limit_match.group(1))

    if _is_free_tier(text):
        info.suggested_action = (
            f"Free tier quota limit reached ({info.quota_limit or 50} requests/day). "
            "Wait until the quota resets at midnight Pacific, switch to a lighter model, "
            "or upgrade to a paid tier."
        )
    elif _is_per_minute(text):
        info.suggested_action = (
            f"Rate limit exceeded. Please wait {info.retry_after_seconds or 60} seconds before retrying."
        )
    elif _is_daily(text):
        info.suggested_action = (
            "Daily quota exceeded. Quota resets at midnight Pacific Time. Consider upgrading your API plan."
        )

    if info.estimated_recovery_time is None:
        if info.retryable:
            info.estimated_recovery_time = now + timedelta(seconds=QUOTA_BASE_DELAY)
        elif _is_daily(text) or _is_free_tier(text):
            info.estimated_recovery_time = next_quota_reset(now)
        else:
            info.estimated_recovery_time = now + timedelta(seconds=QUOTA_BASE_DELAY)

    return info


def calculate_backoff_delay(attempt: int, quota_info: Optional[QuotaInfo] = None) -> float:
    """
    Seconds to wait before retry number `attempt` (0-based).

    Quota errors honour retry-after when present, otherwise back off from
    five minutes up to an hour. Other errors back off from 2s up to 30s.
    """
    if quota_info is not None:
        if quota_info.retry_after_seconds:
            return float(quota_info.retry_after_seconds)
        return float(min(QUOTA_BASE_DELAY * (2 ** attempt), QUOTA_MAX_DELAY))
    return float(min(DEFAULT_BASE_DELAY * (2 ** attempt), DEFAULT_MAX_DELAY))
