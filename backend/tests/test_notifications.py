# Overview: Pytest coverage for critical-alert webhook delivery and dispatch.

import httpx
import pytest

from stockzen.extensions import db
from stockzen.models import User
from stockzen.services import notification_service
from stockzen.services.notification_service import (
    DELIVERY_FATAL,
    DELIVERY_OK,
    DELIVERY_RETRYABLE,
    CriticalAlertNotification,
    NotificationDispatcher,
    WebhookTransport,
    build_webhook_payload,
    deliver_with_retry,
    dispatch_pending,
    resolve_recipients,
)

WEBHOOK = "https://hooks.test/critical-alert"


def _transport_returning(*responses):
    """WebhookTransport over httpx.MockTransport that replays the given statuses or exceptions."""
    calls = []
    queue = list(responses)

    def handler(request):
        calls.append(request)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item)

    transport = WebhookTransport(client=httpx.Client(transport=httpx.MockTransport(handler)))
    return transport, calls


class ScriptedTransport:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.posted = []

    def post(self, url, payload):
        self.posted.append((url, payload))
        return self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]


class TestWebhookTransport:
    @pytest.mark.parametrize(
        "status,expected",
        [(200, DELIVERY_OK), (202, DELIVERY_OK), (429, DELIVERY_RETRYABLE), (503, DELIVERY_RETRYABLE),
         (400, DELIVERY_FATAL), (404, DELIVERY_FATAL)],
    )
    def test_status_mapping(self, status, expected):
        transport, calls = _transport_returning(status)
        assert transport.post(WEBHOOK, {"productId": "p"}) == expected
        assert calls[0].method == "POST"

    def test_timeout_and_network_errors_are_retryable(self):
        transport, _calls = _transport_returning(httpx.ReadTimeout("slow"))
        assert transport.post(WEBHOOK, {}) == DELIVERY_RETRYABLE
        transport, _calls = _transport_returning(httpx.ConnectError("refused"))
        assert transport.post(WEBHOOK, {}) == DELIVERY_RETRYABLE


class TestDeliverWithRetry:
    def test_retries_once_then_succeeds(self):
        transport = ScriptedTransport(DELIVERY_RETRYABLE, DELIVERY_OK)
        sleeps = []
        assert deliver_with_retry(transport, WEBHOOK, {}, sleep=sleeps.append) == DELIVERY_OK
        assert len(transport.posted) == 2
        assert len(sleeps) == 1

    def test_fatal_is_not_retried(self):
        transport = ScriptedTransport(DELIVERY_FATAL)
        assert deliver_with_retry(transport, WEBHOOK, {}, sleep=lambda _s: None) == DELIVERY_FATAL
        assert len(transport.posted) == 1

    def test_gives_up_after_max_attempts(self, caplog):
        transport = ScriptedTransport(DELIVERY_RETRYABLE)
        outcome = deliver_with_retry(transport, WEBHOOK, {"productId": "p1"}, sleep=lambda _s: None)
        assert outcome == DELIVERY_RETRYABLE
        assert len(transport.posted) == 2
        assert "event=notification.dropped" in caplog.text

    @pytest.mark.parametrize("max_attempts", [0, -3])
    def test_non_positive_max_attempts_still_delivers_once(self, max_attempts):
        transport = ScriptedTransport(DELIVERY_RETRYABLE)
        outcome = deliver_with_retry(transport, WEBHOOK, {"productId": "p1"}, max_attempts=max_attempts,
                                     sleep=lambda _s: None)
        assert outcome == DELIVERY_RETRYABLE
        assert len(transport.posted) == 1


class TestDispatcher:
    def test_synchronous_delivery(self):
        transport = ScriptedTransport(DELIVERY_OK)
        dispatcher = NotificationDispatcher(transport, webhook_url=WEBHOOK, synchronous=True)
        dispatcher.enqueue({"productId": "p1"})
        assert transport.posted == [(WEBHOOK, {"productId": "p1"})]

    def test_background_delivery(self):
        transport = ScriptedTransport(DELIVERY_OK)
        dispatcher = NotificationDispatcher(transport, webhook_url=WEBHOOK)
        try:
            for n in range(3):
                dispatcher.enqueue({"productId": f"p{n}"})
            dispatcher.join()
        finally:
            dispatcher.shutdown()
        assert [payload["productId"] for _url, payload in transport.posted] == ["p0", "p1", "p2"]

    def test_skipped_without_webhook(self):
        transport = ScriptedTransport(DELIVERY_OK)
        NotificationDispatcher(transport, webhook_url=None, synchronous=True).enqueue({"productId": "p"})
        assert transport.posted == []

    def test_transport_exception_is_contained(self, caplog):
        class Exploding:
            def post(self, url, payload):
                raise RuntimeError("boom")

        dispatcher = NotificationDispatcher(Exploding(), webhook_url=WEBHOOK, synchronous=True)
        dispatcher.enqueue({"productId": "p"})
        assert "event=notification.failed" in caplog.text

    def test_zero_max_attempts_from_config_is_clamped(self):
        transport = ScriptedTransport(DELIVERY_OK)
        dispatcher = NotificationDispatcher(transport, webhook_url=WEBHOOK, max_attempts=0, synchronous=True)
        assert dispatcher.max_attempts == 1
        dispatcher.enqueue({"productId": "p1"})
        assert len(transport.posted) == 1

    def test_from_config(self):
        dispatcher = NotificationDispatcher.from_config({
            "CRITICAL_ALERT_WEBHOOK_URL": WEBHOOK,
            "NOTIFICATION_MAX_ATTEMPTS": 3,
            "NOTIFICATIONS_SYNCHRONOUS": True,
        })
        assert dispatcher.webhook_url == WEBHOOK
        assert dispatcher.max_attempts == 3
        assert dispatcher.synchronous is True


class TestPayloads:
    def test_payload_shape(self):
        notification = CriticalAlertNotification("t1", "p1", "Bolts", 3)
        payload = build_webhook_payload(notification, "ops@acme.test", "https://app.stockzen.test/")
        assert payload == {
            "template": "critical-alert",
            "to": "ops@acme.test",
            "productName": "Bolts",
            "productId": "p1",
            "currentStock": 3,
            "alertLevel": "red",
            "productUrl": "https://app.stockzen.test/products/p1",
        }

    def test_recipients_are_active_members_once(self, db_session, tenant_a, tenant_b, admin_a, operator_a, admin_b):
        operator_a.is_active = False
        db.session.commit()
        assert resolve_recipients(tenant_a.id) == ["admin@acme.test"]

    def test_dispatch_pending_fans_out(self, tenant_a, admin_a, manager_a, notifications):
        dispatch_pending([CriticalAlertNotification(tenant_a.id, "p1", "Bolts", 2)])
        assert sorted(p["to"] for p in notifications.payloads) == ["admin@acme.test", "manager@acme.test"]
        assert all(p["productUrl"] == "https://app.stockzen.test/products/p1" for p in notifications.payloads)

    def test_dispatch_failure_never_propagates(self, app, monkeypatch, tenant_a, admin_a, caplog):
        class Broken:
            def enqueue(self, payload):
                raise RuntimeError("queue full")

        monkeypatch.setitem(app.extensions, "stockzen.notifications", Broken())
        dispatch_pending([CriticalAlertNotification(tenant_a.id, "p1", "Bolts", 2)])
        assert "event=notification.dispatch_failed" in caplog.text

    def test_no_recipients_is_logged(self, tenant_a, notifications, caplog):
        caplog.set_level("INFO", logger="stockzen")
        notification_service.dispatch_pending([CriticalAlertNotification(tenant_a.id, "p1", "Bolts", 2)])
        assert notifications.payloads == []
        assert "event=notification.no_recipients" in caplog.text

    def test_user_without_membership_is_not_notified(self, db_session, tenant_a, admin_a):
        db.session.add(User(email="stranger@acme.test", default_tenant_id=tenant_a.id))
        db.session.commit()
        assert resolve_recipients(tenant_a.id) == ["admin@acme.test"]
