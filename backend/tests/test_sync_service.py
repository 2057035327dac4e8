# Overview: Pytest coverage for sync batch validation and per-operation reconciliation.

import uuid
from datetime import timedelta

import pytest

from stockzen.models import Product, StockMovement
from stockzen.services import products_service, sync_service
from stockzen.services.sync_service import SyncProtocolError, parse_sync_request, process_sync, validate_sync_batch
from stockzen.time_utils import next_checkpoint, normalize_checkpoint, parse_iso_datetime, to_utc_z, utcnow


def _parse(operations, checkpoint=None):
    body = {"operations": operations}
    if checkpoint is not None:
        body["checkpoint"] = checkpoint
    return parse_sync_request(body)


def _run(tenant, user, operations, **kwargs):
    request = _parse(operations, kwargs.pop("checkpoint", None))
    return process_sync(tenant.id, user.id, request.operations, checkpoint=request.checkpoint, **kwargs)


class TestParse:
    @pytest.mark.parametrize(
        "body",
        [
            None,
            [],
            {},
            {"operations": []},
            {"operations": "nope"},
            {"operations": [{"operationId": "a"}]},
            {"operations": [1]},
            {"operations": [], "checkpoint": 5},
        ],
    )
    def test_malformed_bodies(self, body):
        with pytest.raises(SyncProtocolError) as exc:
            parse_sync_request(body)
        assert exc.value.code == "VALIDATION_ERROR"
        assert exc.value.message == "Invalid request format"

    def test_rejects_unknown_entity_and_operation_types(self, sync_op):
        with pytest.raises(SyncProtocolError):
            _parse([sync_op("t", "supplier", "create", "e1")])
        with pytest.raises(SyncProtocolError):
            _parse([sync_op("t", "product", "upsert", "e1")])

    def test_rejects_non_object_payload(self, sync_op):
        operation = sync_op("t", "product", "create", "e1")
        operation["payload"] = "name=x"
        with pytest.raises(SyncProtocolError):
            _parse([operation])

    def test_batch_limit(self, sync_op):
        operations = [sync_op("t", "product", "delete", f"e{i}") for i in range(101)]
        with pytest.raises(SyncProtocolError):
            _parse(operations)
        assert len(_parse(operations[:100]).operations) == 100

    @pytest.mark.parametrize(
        "checkpoint",
        ["9999-12-31T23:59:59.999999Z", "0001-01-01T00:00:00+01:00", "2999-01-01T00:00:00Z", "yesterday", ""],
    )
    def test_unusable_checkpoints_are_dropped(self, sync_op, checkpoint):
        request = parse_sync_request({"operations": [sync_op("t", "product", "delete", "e1")], "checkpoint": checkpoint})
        assert request.checkpoint is None

    def test_checkpoint_is_normalized_to_utc(self, sync_op):
        request = _parse([sync_op("t", "product", "delete", "e1")], "2026-03-01T10:00:00+02:00")
        assert request.checkpoint == "2026-03-01T08:00:00.000000Z"


class TestBatchValidation:
    def test_idempotency_key_must_equal_operation_id(self, sync_op):
        operation = sync_op("t1", "product", "delete", "e1")
        operation["idempotencyKey"] = "something-else"
        with pytest.raises(SyncProtocolError) as exc:
            validate_sync_batch(_parse([operation]).operations, "t1")
        assert exc.value.code == "VALIDATION_ERROR"
        assert exc.value.message == "Each operation must use idempotencyKey equal to operationId"

    def test_foreign_tenant_rejects_whole_batch(self, sync_op, caplog):
        operations = _parse([
            sync_op("t1", "product", "delete", "e1"),
            sync_op("t2", "product", "delete", "e2"),
        ]).operations
        with pytest.raises(SyncProtocolError) as exc:
            validate_sync_batch(operations, "t1", user_id="u1")
        assert exc.value.code == "TENANT_MISMATCH"
        assert exc.value.http_status == 403
        assert "event=security.tenant_mismatch" in caplog.text

    def test_header_must_match_single_operation(self, sync_op):
        operation = sync_op("t1", "product", "delete", "e1")
        operations = _parse([operation]).operations
        validate_sync_batch(operations, "t1", idempotency_header=operation["operationId"])
        with pytest.raises(SyncProtocolError) as exc:
            validate_sync_batch(operations, "t1", idempotency_header="other")
        assert exc.value.code == "VALIDATION_ERROR"

    def test_header_ignored_for_multi_operation_batches(self, sync_op):
        operations = _parse([sync_op("t1", "product", "delete", "e1"), sync_op("t1", "product", "delete", "e2")])
        validate_sync_batch(operations.operations, "t1", idempotency_header="anything")

    def test_batch_rejection_writes_nothing(self, db_session, tenant_a, admin_a, sync_op):
        good = sync_op(tenant_a.id, "product", "create", str(uuid.uuid4()), {"name": "Never"})
        bad = sync_op(tenant_a.id, "product", "create", str(uuid.uuid4()), {"name": "Never"})
        bad["idempotencyKey"] = "mismatch"
        with pytest.raises(SyncProtocolError):
            _run(tenant_a, admin_a, [good, bad])
        assert db_session.query(Product).count() == 0


class TestProcessSync:
    def test_mixed_batch_keeps_order_and_isolates_failures(self, db_session, tenant_a, admin_a, sync_op):
        product_id = str(uuid.uuid4())
        movement_id = str(uuid.uuid4())
        operations = [
            sync_op(tenant_a.id, "product", "create", product_id, {"name": "Nails", "quantity": 100}),
            sync_op(tenant_a.id, "stockMovement", "create", movement_id,
                    {"productId": product_id, "type": "exit", "quantity": 30}),
            sync_op(tenant_a.id, "stockMovement", "create", str(uuid.uuid4()),
                    {"productId": str(uuid.uuid4()), "type": "entry", "quantity": 1}),
            sync_op(tenant_a.id, "stockMovement", "update", movement_id, {"quantity": 2}),
            sync_op(tenant_a.id, "stockMovement", "create", str(uuid.uuid4()),
                    {"productId": product_id, "type": "exit", "quantity": 0}),
        ]
        response = _run(tenant_a, admin_a, operations).to_dict()

        results = response["results"]
        assert [r["operationId"] for r in results] == [op["operationId"] for op in operations]
        assert [r["status"] for r in results] == [
            "success", "success", "not_found", "validation_error", "validation_error",
        ]
        assert "code" not in results[0]
        assert results[2]["code"] == "NOT_FOUND"
        assert results[3]["code"] == "UNSUPPORTED_OPERATION"
        assert results[4]["code"] == "VALIDATION_ERROR"

        movement_state = results[1]["serverState"]
        assert movement_state["id"] == movement_id
        assert movement_state["productQuantity"] == 70
        assert db_session.get(Product, product_id).quantity == 70

    def test_replaying_a_batch_is_idempotent(self, db_session, tenant_a, admin_a, sync_op):
        product_id = str(uuid.uuid4())
        operations = [
            sync_op(tenant_a.id, "product", "create", product_id, {"name": "Nails", "quantity": 10}),
            sync_op(tenant_a.id, "stockMovement", "create", str(uuid.uuid4()),
                    {"productId": product_id, "type": "entry", "quantity": 5}),
        ]
        first = _run(tenant_a, admin_a, operations)
        second = _run(tenant_a, admin_a, operations)

        assert [r.status for r in first.results] == ["success", "success"]
        assert [r.status for r in second.results] == ["duplicate", "duplicate"]
        assert db_session.get(Product, product_id).quantity == 15
        assert db_session.query(StockMovement).filter_by(product_id=product_id).count() == 2

    def test_payload_tenant_mismatch(self, db_session, tenant_a, tenant_b, admin_a, sync_op):
        operation = sync_op(tenant_a.id, "product", "create", str(uuid.uuid4()),
                            {"name": "Sneaky", "tenantId": tenant_b.id})
        result = _run(tenant_a, admin_a, [operation]).results[0]
        assert result.status == "tenant_mismatch"
        assert result.code == "TENANT_MISMATCH"
        assert db_session.query(Product).count() == 0

    def test_create_with_foreign_product_id(self, tenant_a, tenant_b, admin_a, make_product, sync_op):
        product_b = make_product(tenant_b, quantity=5)
        operation = sync_op(tenant_a.id, "product", "create", product_b.id, {"name": "Clash"})
        result = _run(tenant_a, admin_a, [operation]).results[0]
        assert result.status == "tenant_mismatch"

    def test_update_of_deleted_product_returns_server_state(self, tenant_a, admin_a, make_product, sync_op):
        product = make_product(tenant_a, quantity=200, name="Server name")
        products_service.delete_product(tenant_a.id, product.id)

        operation = sync_op(tenant_a.id, "product", "update", product.id,
                            {"updatedFields": {"name": "Client name"}})
        result = _run(tenant_a, admin_a, [operation]).to_dict()["results"][0]
        assert result["status"] == "conflict_resolved"
        assert result["code"] == "CONFLICT_RESOLVED"
        assert result["serverState"]["name"] == "Server name"
        assert result["serverState"]["deletedAt"] is not None

    def test_delete_and_repeat_delete(self, tenant_a, admin_a, make_product, sync_op):
        product = make_product(tenant_a, quantity=200)
        first = _run(tenant_a, admin_a, [sync_op(tenant_a.id, "product", "delete", product.id)]).results[0]
        second = _run(tenant_a, admin_a, [sync_op(tenant_a.id, "product", "delete", product.id)]).results[0]
        assert first.status == "success"
        assert second.status == "success"
        assert first.server_state["deletedAt"] == second.server_state["deletedAt"]

    def test_unexpected_error_is_reported_generically(self, monkeypatch, tenant_a, admin_a, make_product, sync_op):
        product = make_product(tenant_a, quantity=200)

        def boom(*_args, **_kwargs):
            raise RuntimeError("database exploded: secret detail")

        monkeypatch.setattr(products_service, "update_product", boom)
        operations = [
            sync_op(tenant_a.id, "product", "update", product.id, {"updatedFields": {"name": "x"}}),
            sync_op(tenant_a.id, "stockMovement", "create", str(uuid.uuid4()),
                    {"productId": product.id, "type": "entry", "quantity": 1}),
        ]
        results = _run(tenant_a, admin_a, operations).results
        assert results[0].status == "validation_error"
        assert results[0].message == "Failed to process operation"
        assert results[1].status == "success"

    def test_checkpoint_never_goes_backwards(self, tenant_a, admin_a, make_product, sync_op):
        product = make_product(tenant_a, quantity=200)
        # ahead of the server clock, but inside the allowed skew
        future = to_utc_z(utcnow() + timedelta(minutes=2), precise=True)
        response = _run(tenant_a, admin_a, [sync_op(tenant_a.id, "product", "delete", product.id)],
                        checkpoint=future)
        assert parse_iso_datetime(response.checkpoint) > parse_iso_datetime(future)

    def test_result_statuses_module_constants(self):
        result = sync_service.SyncResult("op", sync_service.STATUS_RATE_LIMITED)
        assert result.to_dict() == {"operationId": "op", "status": "rate_limited", "code": "RATE_LIMITED"}


class TestCheckpoints:
    NOW = parse_iso_datetime("2026-05-01T12:00:00Z")

    def test_extreme_checkpoints_do_not_overflow(self):
        for value in ("9999-12-31T23:59:59.999999Z", "0001-01-01T00:00:00+01:00"):
            assert next_checkpoint(value, now=self.NOW) == "2026-05-01T12:00:00.000000Z"

    def test_checkpoint_within_skew_is_stepped_forward(self):
        ahead = "2026-05-01T12:03:00.000000Z"
        assert normalize_checkpoint(ahead, now=self.NOW) == ahead
        assert next_checkpoint(ahead, now=self.NOW) == "2026-05-01T12:03:00.000001Z"

    def test_checkpoint_beyond_skew_is_ignored(self):
        assert normalize_checkpoint("2026-05-01T12:06:00Z", now=self.NOW) is None
        assert next_checkpoint("2026-05-01T12:06:00Z", now=self.NOW) == "2026-05-01T12:00:00.000000Z"
