"""Tests for the in-process notification bus."""

import pytest

from marketplace.services import notification_service


@pytest.fixture(autouse=True)
def clean_bus():
    notification_service.clear()
    yield
    notification_service.clear()


class TestNotificationBus:
    def test_emit_reaches_subscribers(self):
        received = []
        notification_service.subscribe(
            "order.placed", lambda event, payload: received.append(payload))

        delivered = notification_service.emit("order.placed", {"order_id": 1})

        assert delivered == 1
        assert received == [{"order_id": 1}]

    def test_failing_handler_is_skipped(self):
        received = []

        def broken(event, payload):
            raise RuntimeError("mail server down")

        notification_service.subscribe("order.refunded", broken)
        notification_service.subscribe(
            "order.refunded", lambda event, payload: received.append(event))

        delivered = notification_service.emit("order.refunded", {})

        assert delivered == 1
        assert received == ["order.refunded"]

    def test_unsubscribe(self):
        received = []
        handler = lambda event, payload: received.append(payload)  # noqa: E731
        notification_service.subscribe("payout.created", handler)

        notification_service.unsubscribe("payout.created", handler)
        notification_service.unsubscribe("payout.created", handler)

        assert notification_service.emit("payout.created", {}) == 0
        assert received == []

    def test_event_without_subscribers(self):
        assert notification_service.emit("order.confirmed", {}) == 0
