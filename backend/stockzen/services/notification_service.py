# Overview: Critical-alert notification tasks, webhook transport, and the background dispatcher.

"""
Critical Alert Notifications

WHY: A product entering red must reach the people who can restock it, but
delivery is best-effort. A slow or failing webhook must never hold a
business transaction open or roll it back.

FLOW:
1. alert_service collects CriticalAlertNotification tasks while the
   transaction is open.
2. After commit, the owning service calls dispatch_pending(tasks).
3. dispatch_pending resolves recipients (tenant members, one per user)
   and hands one webhook payload per recipient to the dispatcher.
4. NotificationDispatcher delivers on a daemon worker thread, retrying
   once on timeout, network errors, 429 and 5xx. Exhausted or fatal
   deliveries are logged and dropped.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from urllib.parse import urljoin

import httpx
from flask import current_app

from ..extensions import db
from ..models import TenantMembership, User

logger = logging.getLogger(__name__)

DELIVERY_OK = "ok"
DELIVERY_RETRYABLE = "retryable"
DELIVERY_FATAL = "fatal"

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRY_BACKOFF_SECONDS = 0.15

WEBHOOK_TEMPLATE = "critical-alert"

_STOP = object()


@dataclass(frozen=True)
class CriticalAlertNotification:
    tenant_id: str
    product_id: str
    product_name: str
    current_stock: int


class WebhookTransport:
    """POSTs JSON with a bounded timeout and maps the result to ok / retryable / fatal."""

    def __init__(self, timeout: float = 5.0, client: httpx.Client | None = None):
        self._client = client or httpx.Client(timeout=timeout)

    def post(self, url: str, payload: dict) -> str:
        try:
            response = self._client.post(url, json=payload)
        except httpx.TimeoutException:
            logger.warning("event=notification.timeout url=%s", url)
            return DELIVERY_RETRYABLE
        except httpx.TransportError as exc:
            logger.warning("event=notification.transport_error url=%s error=%s", url, exc)
            return DELIVERY_RETRYABLE

        if response.is_success:
            return DELIVERY_OK
        if response.status_code in RETRYABLE_STATUS_CODES:
            return DELIVERY_RETRYABLE
        return DELIVERY_FATAL

    def close(self) -> None:
        self._client.close()


def deliver_with_retry(
    transport,
    url: str,
    payload: dict,
    *,
    max_attempts: int = 2,
    backoff_seconds: float = RETRY_BACKOFF_SECONDS,
    sleep=time.sleep,
) -> str:
    """
    Deliver one payload. Returns the final outcome; never raises on delivery failure.

    max_attempts below 1 still makes one attempt.
    """
    max_attempts = max(1, int(max_attempts))
    outcome = DELIVERY_FATAL
    for attempt in range(1, max_attempts + 1):
        outcome = transport.post(url, payload)
        if outcome == DELIVERY_OK:
            return outcome
        if outcome == DELIVERY_FATAL or attempt >= max_attempts:
            break
        sleep(backoff_seconds * attempt)

    logger.error(
        "event=notification.dropped outcome=%s product_id=%s attempts=%d",
        outcome,
        payload.get("productId"),
        attempt,
    )
    return outcome


class NotificationDispatcher:
    """
    Message-passing boundary between business transactions and webhook delivery.

    enqueue() returns immediately; a daemon worker drains the queue. With
    synchronous=True delivery happens inline (CLI runs and tests).
    """

    def __init__(
        self,
        transport=None,
        *,
        webhook_url: str | None = None,
        max_attempts: int = 2,
        synchronous: bool = False,
        sleep=time.sleep,
    ):
        self.transport = transport or WebhookTransport()
        self.webhook_url = webhook_url
        self.max_attempts = max(1, int(max_attempts))
        self.synchronous = synchronous
        self._sleep = sleep
        self._queue: queue.Queue = queue.Queue()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "NotificationDispatcher":
        return cls(
            WebhookTransport(timeout=config.get("NOTIFICATION_TIMEOUT_SECONDS", 5.0)),
            webhook_url=config.get("CRITICAL_ALERT_WEBHOOK_URL"),
            max_attempts=config.get("NOTIFICATION_MAX_ATTEMPTS", 2),
            synchronous=config.get("NOTIFICATIONS_SYNCHRONOUS", False),
        )

    def enqueue(self, payload: dict) -> None:
        if not self.webhook_url:
            logger.info(
                "event=notification.skipped reason=webhook_not_configured product_id=%s",
                payload.get("productId"),
            )
            return
        if self.synchronous:
            self._deliver(payload)
            return
        self._ensure_worker()
        self._queue.put(payload)

    def join(self) -> None:
        """Block until every queued payload has been attempted."""
        self._queue.join()

    def shutdown(self) -> None:
        with self._lock:
            worker = self._worker
            self._worker = None
        if worker is not None:
            self._queue.put(_STOP)
            worker.join()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run, name="critical-alert-notifier", daemon=True
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            payload = self._queue.get()
            try:
                if payload is _STOP:
                    return
                self._deliver(payload)
            finally:
                self._queue.task_done()

    def _deliver(self, payload: dict) -> None:
        try:
            deliver_with_retry(
                self.transport,
                self.webhook_url,
                payload,
                max_attempts=self.max_attempts,
                sleep=self._sleep,
            )
        except Exception:
            # Delivery runs outside any request; nothing upstream can handle this.
            logger.exception("event=notification.failed product_id=%s", payload.get("productId"))


def build_product_url(product_id: str, base_url: str) -> str:
    return urljoin(base_url.rstrip("/") + "/", f"products/{product_id}")


def build_webhook_payload(notification: CriticalAlertNotification, recipient: str, base_url: str) -> dict:
    return {
        "template": WEBHOOK_TEMPLATE,
        "to": recipient,
        "productName": notification.product_name,
        "productId": notification.product_id,
        "currentStock": notification.current_stock,
        "alertLevel": "red",
        "productUrl": build_product_url(notification.product_id, base_url),
    }


def resolve_recipients(tenant_id: str) -> list[str]:
    """Emails of active tenant members, one per user."""
    rows = (
        db.session.query(User.id, User.email)
        .join(TenantMembership, TenantMembership.user_id == User.id)
        .filter(TenantMembership.tenant_id == tenant_id, User.is_active.is_(True))
        .order_by(User.email.asc())
        .all()
    )
    seen: set[str] = set()
    recipients = []
    for user_id, email in rows:
        if user_id in seen:
            continue
        seen.add(user_id)
        recipients.append(email)
    return recipients


def get_dispatcher() -> NotificationDispatcher:
    return current_app.extensions["stockzen.notifications"]


def dispatch_pending(notifications: list[CriticalAlertNotification]) -> None:
    """
    Hand committed notification tasks to the dispatcher.

    Must be called after the owning transaction commits. Failures here are
    logged and never propagate to the business operation.
    """
    if not notifications:
        return
    dispatcher = get_dispatcher()
    base_url = current_app.config.get("APP_BASE_URL", "")
    for notification in notifications:
        try:
            recipients = resolve_recipients(notification.tenant_id)
            if not recipients:
                logger.info(
                    "event=notification.no_recipients tenant_id=%s product_id=%s",
                    notification.tenant_id,
                    notification.product_id,
                )
                continue
            for recipient in recipients:
                dispatcher.enqueue(build_webhook_payload(notification, recipient, base_url))
        except Exception:
            logger.exception(
                "event=notification.dispatch_failed tenant_id=%s product_id=%s",
                notification.tenant_id,
                notification.product_id,
            )
