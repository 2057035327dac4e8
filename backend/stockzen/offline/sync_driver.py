# Overview: Drains the outbox against POST /api/sync and reconciles the local store.

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from .local_store import LocalStore
from .outbox import MAX_BATCH_SIZE, Outbox, OutboxEntry

logger = logging.getLogger(__name__)

SYNC_PATH = "/api/sync"

COMPLETED_STATUSES = ("success", "duplicate", "conflict_resolved")
TERMINAL_FAILURE_STATUSES = ("validation_error", "tenant_mismatch", "not_found")


class SyncTransportError(Exception):
    """The request never produced an HTTP response (network down, timeout)."""


class HttpSyncTransport:
    """Posts sync batches with httpx. Pass client= to route through a custom transport."""

    def __init__(self, base_url: str, token: str, *, client: httpx.Client | None = None, timeout: float = 30.0):
        self.token = token
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def post_sync(self, body: dict, *, idempotency_key: str | None = None) -> tuple[int, dict | None]:
        headers = {"Authorization": f"Bearer {self.token}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        try:
            response = self._client.post(SYNC_PATH, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise SyncTransportError(str(exc)) from exc
        try:
            data = response.json()
        except ValueError:
            data = None
        return response.status_code, data

    def close(self) -> None:
        self._client.close()


@dataclass
class SyncReport:
    sent: int = 0
    completed: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    retrying: list = field(default_factory=list)
    http_status: int | None = None
    checkpoint: str | None = None


class SyncDriver:
    """
    One device's sync loop.

    Per result status:
        success / duplicate   entry removed, local record clean
        conflict_resolved     entry removed, server state replaces local data
        validation_error, tenant_mismatch, not_found
                              entry failed (terminal), local data kept, record in conflict
        rate_limited          entry failed (retryable) with backoff
    Transport failures, HTTP 429 and 5xx retry every entry in the batch
    with the same operation ids.
    """

    def __init__(self, outbox: Outbox, store: LocalStore, transport, tenant_id: str, *,
                 batch_size: int = MAX_BATCH_SIZE, checkpoint: str | None = None):
        self.outbox = outbox
        self.store = store
        self.transport = transport
        self.tenant_id = tenant_id
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.checkpoint = checkpoint
        # a batch interrupted before its response was handled is sent again
        self.outbox.recover_processing()

    def sync_once(self) -> SyncReport:
        report = SyncReport(checkpoint=self.checkpoint)
        entries = self.outbox.get_eligible(limit=self.batch_size)
        if not entries:
            return report

        self.outbox.mark_processing(e.operation_id for e in entries)
        report.sent = len(entries)

        body = {"operations": [e.to_operation(self.tenant_id) for e in entries]}
        if self.checkpoint:
            body["checkpoint"] = self.checkpoint
        idempotency_key = entries[0].operation_id if len(entries) == 1 else None

        try:
            status_code, data = self.transport.post_sync(body, idempotency_key=idempotency_key)
        except SyncTransportError as exc:
            logger.warning("event=sync.transport_failed operations=%d error=%s", len(entries), exc)
            self._retry_all(entries, f"Network error: {exc}", report)
            return report

        report.http_status = status_code
        if status_code == 429 or status_code >= 500 or status_code == 401:
            message = (data or {}).get("message") or f"HTTP {status_code}"
            self._retry_all(entries, message, report)
            return report

        if status_code != 200 or not isinstance(data, dict):
            # Batch rejected by protocol rules; replaying it unchanged cannot succeed
            message = (data or {}).get("message") or f"HTTP {status_code}"
            for entry in entries:
                self._fail_terminal(entry, message, report)
            return report

        results = {r.get("operationId"): r for r in data.get("results", []) if isinstance(r, dict)}
        for entry in entries:
            result = results.get(entry.operation_id)
            if result is None:
                self.outbox.mark_failed(entry.operation_id, "No result returned for operation")
                report.retrying.append(entry.operation_id)
                continue
            self._apply_result(entry, result, report)

        self.checkpoint = data.get("checkpoint") or self.checkpoint
        report.checkpoint = self.checkpoint
        return report

    def sync_all(self, max_rounds: int = 10) -> list[SyncReport]:
        """Sync until nothing eligible remains (backed-off entries wait for a later call)."""
        reports = []
        for _ in range(max_rounds):
            report = self.sync_once()
            if report.sent == 0:
                break
            reports.append(report)
            if report.retrying:
                break
        return reports

    def _apply_result(self, entry: OutboxEntry, result: dict, report: SyncReport) -> None:
        status = result.get("status")
        server_state = result.get("serverState") or {}

        if status in COMPLETED_STATUSES:
            self.outbox.mark_completed(entry.operation_id)
            report.completed.append(entry.operation_id)
            self._reconcile_completed(entry, status, server_state)
        elif status in TERMINAL_FAILURE_STATUSES:
            self._fail_terminal(entry, result.get("message") or status, report)
        else:
            self.outbox.mark_failed(entry.operation_id, result.get("message") or str(status))
            report.retrying.append(entry.operation_id)

    def _reconcile_completed(self, entry: OutboxEntry, status: str, server_state: dict) -> None:
        if status == "conflict_resolved":
            self.store.server_state_applied(entry.entity_type, entry.entity_id, server_state)
            return

        if entry.entity_type == "product":
            # Server state replaces local data only once nothing else for the product is queued
            if not self.outbox.has_outstanding_for_product(entry.entity_id):
                self.store.server_state_applied(entry.entity_type, entry.entity_id, server_state)
            elif not self.outbox.has_outstanding(entry.entity_type, entry.entity_id):
                self._mark_synced(entry.entity_type, entry.entity_id)
            return

        if not self.outbox.has_outstanding(entry.entity_type, entry.entity_id):
            self._mark_synced(entry.entity_type, entry.entity_id)

        if entry.entity_type == "stockMovement":
            product_id = entry.payload.get("productId")
            quantity = server_state.get("productQuantity")
            if quantity is not None and not self.outbox.has_outstanding_for_product(product_id):
                self.store.set_quantity(product_id, quantity)

    def _mark_synced(self, entity_type: str, entity_id: str) -> None:
        record = self.store.get(entity_type, entity_id)
        if record is not None and record.is_pending:
            self.store.sync_succeeded(entity_type, entity_id)

    def _fail_terminal(self, entry: OutboxEntry, message: str, report: SyncReport) -> None:
        self.outbox.mark_failed(entry.operation_id, message, terminal=True)
        report.failed.append(entry.operation_id)
        if self.store.get(entry.entity_type, entry.entity_id) is not None:
            self.store.sync_failed(entry.entity_type, entry.entity_id, message)
        logger.info(
            "event=sync.operation_rejected operation_id=%s entity_type=%s error=%s",
            entry.operation_id, entry.entity_type, message,
        )

    def _retry_all(self, entries, message: str, report: SyncReport) -> None:
        for entry in entries:
            updated = self.outbox.mark_failed(entry.operation_id, message)
            if updated.terminal:
                report.failed.append(entry.operation_id)
                if self.store.get(entry.entity_type, entry.entity_id) is not None:
                    self.store.sync_failed(entry.entity_type, entry.entity_id, message)
            else:
                report.retrying.append(entry.operation_id)
