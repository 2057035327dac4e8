# Overview: Pytest coverage for product create/update/delete as replayed by sync.

import uuid

import pytest

from stockzen.models import Alert, Product, StockMovement
from stockzen.services import products_service
from stockzen.services.alert_service import get_active_alert
from stockzen.services.inventory_service import get_ledger_quantity
from stockzen.services.tenant_service import TenantAccessError
from stockzen.validation import NotFoundError, ValidationError


def _create(tenant, payload, product_id=None, operation_id=None):
    return products_service.create_product(
        tenant.id,
        None,
        product_id or str(uuid.uuid4()),
        payload,
        operation_id=operation_id or str(uuid.uuid4()),
    )


class TestCreate:
    def test_opening_quantity_is_booked_in_the_ledger(self, db_session, tenant_a):
        change = _create(tenant_a, {"name": "Bolts", "quantity": 120, "priceCents": 250}, operation_id="op-1")

        assert change.outcome == products_service.OUTCOME_CREATED
        product = db_session.get(Product, change.product.id)
        assert product.quantity == 120
        assert product.price_cents == 250
        opening = db_session.query(StockMovement).filter_by(idempotency_key="op-1:opening").one()
        assert opening.type == "entry"
        assert opening.quantity == 120
        assert get_ledger_quantity(tenant_a.id, product.id) == 120

    def test_replayed_create_is_a_duplicate(self, db_session, tenant_a):
        product_id = str(uuid.uuid4())
        _create(tenant_a, {"name": "Bolts", "quantity": 5}, product_id=product_id, operation_id="op-1")
        replay = _create(tenant_a, {"name": "Renamed", "quantity": 5}, product_id=product_id, operation_id="op-1")

        assert replay.outcome == products_service.OUTCOME_DUPLICATE
        assert replay.product.name == "Bolts"
        assert db_session.query(StockMovement).filter_by(product_id=product_id).count() == 1

    def test_id_owned_by_another_tenant(self, tenant_a, tenant_b):
        product_id = str(uuid.uuid4())
        _create(tenant_b, {"name": "Theirs"}, product_id=product_id)
        with pytest.raises(TenantAccessError):
            _create(tenant_a, {"name": "Mine"}, product_id=product_id)

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"name": "  "},
            {"name": "X", "quantity": -1},
            {"name": "X", "quantity": "3"},
            {"name": "X", "priceCents": 1.5},
            {"name": "X", "priceCents": -1},
            {"name": "X", "thresholdMode": "sometimes"},
            {"name": "X", "thresholdMode": "custom", "customCriticalThreshold": 10},
            {"name": "X", "thresholdMode": "custom", "customCriticalThreshold": 20, "customAttentionThreshold": 20},
            {"name": "X", "thresholdMode": "defaults", "customCriticalThreshold": 5},
        ],
    )
    def test_rejects_invalid_payload(self, db_session, tenant_a, payload):
        with pytest.raises(ValidationError):
            _create(tenant_a, payload)
        assert db_session.query(Product).count() == 0

    def test_custom_thresholds_drive_the_first_alert(self, tenant_a):
        change = _create(tenant_a, {
            "name": "Screws",
            "quantity": 15,
            "thresholdMode": "custom",
            "customCriticalThreshold": 10,
            "customAttentionThreshold": 20,
        })
        alert = get_active_alert(tenant_a.id, change.product.id)
        assert alert.level == "orange"
        state = products_service.serialize_product_state(change.product)
        assert state["thresholdMode"] == "custom"
        assert state["quantity"] == 15


class TestUpdate:
    def test_updates_fields_and_ignores_quantity(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=200, name="Old")
        change = products_service.update_product(
            tenant_a.id, product.id, {"updatedFields": {"name": "New", "quantity": 999, "sku": "SKU-1"}}
        )
        assert change.outcome == products_service.OUTCOME_UPDATED
        refreshed = db_session.get(Product, product.id)
        assert refreshed.name == "New"
        assert refreshed.sku == "SKU-1"
        assert refreshed.quantity == 200

    def test_accepts_top_level_fields(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=200, name="Old")
        products_service.update_product(tenant_a.id, product.id, {"name": "Flat", "tenantId": tenant_a.id})
        assert db_session.get(Product, product.id).name == "Flat"

    def test_later_write_wins(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=200)
        products_service.update_product(tenant_a.id, product.id, {"updatedFields": {"name": "Device A"}})
        products_service.update_product(tenant_a.id, product.id, {"updatedFields": {"name": "Device B"}})
        assert db_session.get(Product, product.id).name == "Device B"

    def test_threshold_change_recomputes_alert(self, tenant_a, make_product):
        product = make_product(tenant_a, quantity=30)
        assert get_active_alert(tenant_a.id, product.id).level == "red"

        products_service.update_product(tenant_a.id, product.id, {"updatedFields": {
            "thresholdMode": "custom", "customCriticalThreshold": 10, "customAttentionThreshold": 20,
        }})
        assert get_active_alert(tenant_a.id, product.id) is None

        products_service.update_product(tenant_a.id, product.id, {"updatedFields": {"thresholdMode": "defaults"}})
        assert get_active_alert(tenant_a.id, product.id).level == "red"

    def test_thresholds_without_mode_are_rejected(self, tenant_a, make_product):
        product = make_product(tenant_a, quantity=30)
        with pytest.raises(ValidationError):
            products_service.update_product(
                tenant_a.id, product.id, {"updatedFields": {"customCriticalThreshold": 5}}
            )

    def test_update_on_deleted_product_is_a_conflict(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=200, name="Keep")
        products_service.delete_product(tenant_a.id, product.id)

        change = products_service.update_product(tenant_a.id, product.id, {"updatedFields": {"name": "Revive"}})
        assert change.outcome == products_service.OUTCOME_CONFLICT
        state = products_service.serialize_product_state(change.product)
        assert state["name"] == "Keep"
        assert state["deletedAt"] is not None

    def test_missing_or_foreign_product(self, tenant_a, tenant_b, make_product):
        product_b = make_product(tenant_b, quantity=200)
        with pytest.raises(NotFoundError):
            products_service.update_product(tenant_a.id, "missing", {"updatedFields": {"name": "x"}})
        with pytest.raises(NotFoundError):
            products_service.update_product(tenant_a.id, product_b.id, {"updatedFields": {"name": "x"}})


class TestDelete:
    def test_soft_delete_closes_alert_and_is_repeatable(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        alert = get_active_alert(tenant_a.id, product.id)

        first = products_service.delete_product(tenant_a.id, product.id)
        deleted_at = first.product.deleted_at
        assert deleted_at is not None
        assert db_session.get(Alert, alert.id).status == "closed"

        second = products_service.delete_product(tenant_a.id, product.id)
        assert second.product.deleted_at == deleted_at
        assert products_service.list_products(tenant_a.id) == []

    def test_deleted_product_is_hidden_from_get(self, tenant_a, make_product):
        product = make_product(tenant_a, quantity=10)
        products_service.delete_product(tenant_a.id, product.id)
        with pytest.raises(NotFoundError):
            products_service.get_product(tenant_a.id, product.id)
        assert products_service.get_product(tenant_a.id, product.id, include_deleted=True).id == product.id
