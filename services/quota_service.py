"""
Daily generator quota tracking.

Counts requests per provider per day in Redis and answers "can we make
another request" for the auto-resume job. When Redis is unavailable the
service reports unknown usage and lets requests proceed.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from clients import redis_client
from utils.model_config import ModelConfig, ModelProvider, fallback_chain
from utils.quota import next_quota_reset
from utils.settings import DAILY_REQUEST_LIMIT

logger = logging.getLogger(__name__)


class QuotaService:
    def __init__(
        self,
        daily_limit: int = DAILY_REQUEST_LIMIT,
        incr: Callable[..., Awaitable[Optional[int]]] = redis_client.incr_daily_usage,
        get: Callable[..., Awaitable[Optional[int]]] = redis_client.get_daily_usage,
    ):
        self.daily_limit = daily_limit
        self._incr = incr
        self._get = get

    async def record_request(self, generator_id: str, outcome: str = "success") -> None:
        """Count a generator call. outcome is success, failure or quota_exceeded."""
        provider = self._provider(generator_id)
        await self._incr(provider, "requests")
        if outcome != "success":
            await self._incr(provider, outcome)

    async def can_make_request(self, generator_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        """True when at least one of the given generators' providers is under its daily limit."""
        generator_ids = generator_ids or fallback_chain("general")
        reasons = []
        for generator_id in generator_ids:
            provider = self._provider(generator_id)
            count = await self._get(provider, "requests")
            if count is None or count < self.daily_limit:
                return {"can_proceed": True, "provider": provider}
            reasons.append(f"{provider}: {count}/{self.daily_limit}")
        return {
            "can_proceed": False,
            "reason": (
                f"Daily quota limit of {self.daily_limit} requests reached ({', '.join(reasons)}). "
                "Resets at midnight Pacific Time."
            ),
        }

    async def get_status(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        hours_to_reset = math.ceil((next_quota_reset(now) - now).total_seconds() / 3600)
        providers = {}
        for provider in ModelProvider:
            count = await self._get(provider.value, "requests")
            exceeded = await self._get(provider.value, "quota_exceeded")
            failures = await self._get(provider.value, "failure")
            providers[provider.value] = self._provider_stats(count, exceeded, failures, hours_to_reset)
        return {"providers": providers, "daily_limit": self.daily_limit}

    def _provider_stats(
        self,
        count: Optional[int],
        exceeded: Optional[int],
        failures: Optional[int],
        hours_to_reset: int,
    ) -> Dict[str, Any]:
        if count is None:
            return {"tracked": False, "recommendations": ["Usage tracking unavailable (Redis offline)."]}
        percent_used = round(count / self.daily_limit * 100, 2) if self.daily_limit else 0.0
        return {
            "tracked": True,
            "today_count": count,
            "quota_limit": self.daily_limit,
            "percent_used": percent_used,
            "remaining_requests": max(0, self.daily_limit - count),
            "recent_failures": failures or 0,
            "quota_exceeded_count": exceeded or 0,
            "estimated_time_to_reset": f"{hours_to_reset} hour{'s' if hours_to_reset != 1 else ''}",
            "recommendations": self.recommendations(count, exceeded or 0),
        }

    def recommendations(self, today_count: int, quota_exceeded_count: int) -> List[str]:
        recs = []
        percent_used = today_count / self.daily_limit * 100 if self.daily_limit else 0
        if percent_used >= 90:
            recs.append("You're near your daily quota limit. Consider upgrading to a paid plan.")
            recs.append("Batch process multiple documents to optimize API usage.")
        elif percent_used >= 70:
            recs.append("You've used 70%+ of your daily quota. Monitor usage carefully.")
        elif percent_used < 30:
            recs.append("You have plenty of quota remaining for today.")
        if quota_exceeded_count > 0:
            recs.append("Quota exceeded errors detected today. Processing has been paused and will auto-resume.")
        if today_count == 0:
            recs.append("No API requests today. Upload content to start learning!")
        return recs

    @staticmethod
    def _provider(generator_id: str) -> str:
        try:
            return ModelConfig.get_config(generator_id)["provider"].value
        except ValueError:
            return generator_id
