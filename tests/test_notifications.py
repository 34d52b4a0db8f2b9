import asyncio
import logging

import httpx

from services.notifications import (
    LoggingNotifier,
    NotificationEvent,
    NotificationType,
    WebhookNotifier,
    build_notifier,
)


def _event(**fields):
    return NotificationEvent(content_id="content-1", user_id="user-1", stage="summarization", progress=45, **fields)


async def _drain(notifier):
    await asyncio.gather(*notifier._tasks, return_exceptions=True)
    await asyncio.sleep(0)


async def test_webhook_posts_event_json():
    received = []

    def handler(request):
        received.append(request)
        return httpx.Response(204)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier("https://hooks.example.test/progress", client=client)

    notifier.notify(_event(type=NotificationType.PAUSED, message="Processing paused"))
    await _drain(notifier)
    await notifier.aclose()

    assert len(received) == 1
    body = received[0].read().decode()
    assert '"type":"paused"' in body.replace(" ", "")
    assert '"stage":"summarization"' in body.replace(" ", "")


async def test_webhook_failure_is_logged_not_raised(caplog):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    notifier = WebhookNotifier("https://hooks.example.test/progress", client=client)

    with caplog.at_level(logging.WARNING):
        notifier.notify(_event())
        await _drain(notifier)

    assert "Webhook delivery failed (non-fatal)" in caplog.text
    assert not notifier._tasks
    await notifier.aclose()


def test_notify_without_running_loop_is_dropped(caplog):
    notifier = WebhookNotifier("https://hooks.example.test/progress")
    with caplog.at_level(logging.WARNING):
        notifier.notify(_event())
    assert "No running loop" in caplog.text


def test_build_notifier_defaults_to_logging():
    assert isinstance(build_notifier(None), LoggingNotifier)
    assert isinstance(build_notifier("https://hooks.example.test"), WebhookNotifier)
