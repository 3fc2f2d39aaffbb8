"""Verifier notifications are fire-and-forget."""
from resolver.services.notification_service import NotificationService


async def test_notify_without_webhook_only_logs():
    notifier = NotificationService(webhook_url="")

    assert await notifier.notify_verifier("m-1", "Best album of 2026?", "commit", "0xverifier1") is False


async def test_notify_verifiers_schedules_one_task_each(monkeypatch):
    notifier = NotificationService(webhook_url="http://hooks.test/verifiers")
    delivered = []

    async def fake_send(payload):
        delivered.append(payload)
        return True

    monkeypatch.setattr(notifier, "send_webhook", fake_send)

    notifier.notify_verifiers("m-1", "Best album of 2026?", "reveal", ["0xa", "0xb"])
    await notifier.drain()

    assert sorted(p["verifier"] for p in delivered) == ["0xa", "0xb"]
    assert all(p["phase"] == "reveal" for p in delivered)
    assert delivered[0]["message"] == "Please reveal your outcome"


async def test_delivery_failure_is_contained(monkeypatch):
    notifier = NotificationService(webhook_url="http://hooks.test/verifiers")

    async def failing_send(payload):
        raise RuntimeError("connection refused")

    monkeypatch.setattr(notifier, "send_webhook", failing_send)

    notifier.notify_verifiers("m-1", "Best album of 2026?", "commit", ["0xa"])
    await notifier.drain()


def test_notify_outside_event_loop_does_not_raise():
    notifier = NotificationService(webhook_url="")

    notifier.notify_verifiers("m-1", "Best album of 2026?", "commit", ["0xa"])
