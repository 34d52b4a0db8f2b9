"""
Progress and status notifications for content processing.
Delivery is fire-and-forget: a failed notification is logged and never
affects the pipeline.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Set

import httpx
from pydantic import BaseModel, Field
from datetime import datetime

from models.content_models import utcnow
from utils.settings import NOTIFICATION_WEBHOOK_URL

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    RESUMED = "resumed"


class NotificationEvent(BaseModel):
    content_id: str
    user_id: str
    stage: Optional[str] = None
    progress: int = 0
    message: str = ""
    type: NotificationType = NotificationType.PROGRESS
    timestamp: datetime = Field(default_factory=utcnow)


class LoggingNotifier:
    def notify(self, event: NotificationEvent) -> None:
        logger.info(
            f"[notify] {event.type.value} content={event.content_id} stage={event.stage} "
            f"progress={event.progress} {event.message}"
        )


class WebhookNotifier:
    """POSTs events to a webhook as background tasks."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client
        self._tasks: Set[asyncio.Task] = set()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _post(self, event: NotificationEvent) -> None:
        response = await self._get_client().post(self.url, json=event.model_dump(mode="json"))
        response.raise_for_status()

    def notify(self, event: NotificationEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"[notify] No running loop, dropping {event.type.value} event for {event.content_id}")
            return
        task = loop.create_task(self._post(event))
        self._tasks.add(task)
        task.add_done_callback(self._log_result)

    def _log_result(self, task: asyncio.Task) -> None:
        """Callback for fire-and-forget notification tasks."""
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"[notify] Webhook delivery failed (non-fatal): {error}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def build_notifier(url: Optional[str] = NOTIFICATION_WEBHOOK_URL):
    if url:
        return WebhookNotifier(url)
    return LoggingNotifier()
