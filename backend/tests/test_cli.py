# Overview: Pytest coverage for the tenant and alert CLI commands.

import pytest

from stockzen.models import Alert, Tenant, TenantMembership, User
from stockzen.services import session_service
from stockzen.services.alert_service import get_active_alert


@pytest.fixture
def runner(app, db_session):
    return app.test_cli_runner()


def _values(output: str) -> dict:
    return dict(line.split("=", 1) for line in output.strip().splitlines() if "=" in line)


class TestTenantCommands:
    def test_create_prints_working_token(self, runner, db_session):
        result = runner.invoke(args=[
            "tenant", "create", "--name", "Gamma Tools", "--admin-email", "owner@gamma.test",
            "--critical", "5", "--attention", "15",
        ])
        assert result.exit_code == 0, result.output
        values = _values(result.output)

        tenant = db_session.get(Tenant, values["tenant_id"])
        assert tenant.name == "Gamma Tools"
        assert (tenant.default_critical_threshold, tenant.default_attention_threshold) == (5, 15)

        membership = db_session.query(TenantMembership).filter_by(tenant_id=tenant.id).one()
        assert membership.role == "Admin"

        context = session_service.validate_session(values["token"])
        assert context.tenant_id == tenant.id

    def test_create_rejects_bad_thresholds(self, runner, db_session):
        result = runner.invoke(args=[
            "tenant", "create", "--name", "Bad", "--admin-email", "bad@bad.test",
            "--critical", "20", "--attention", "10",
        ])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert db_session.query(Tenant).filter_by(name="Bad").count() == 0

    def test_add_member(self, runner, tenant_a, db_session):
        result = runner.invoke(args=[
            "tenant", "add-member", "--tenant-id", tenant_a.id, "--email", "picker@acme.test",
        ])
        assert result.exit_code == 0, result.output
        user = db_session.query(User).filter_by(email="picker@acme.test").one()
        membership = db_session.query(TenantMembership).filter_by(user_id=user.id).one()
        assert membership.role == "Operator"

    def test_add_member_unknown_tenant(self, runner, db_session):
        result = runner.invoke(args=[
            "tenant", "add-member", "--tenant-id", "no-such-tenant", "--email", "x@x.test",
        ])
        assert result.exit_code == 1

    def test_set_thresholds_recomputes(self, runner, tenant_a, admin_a, make_product, notifications):
        product = make_product(tenant_a, quantity=60)
        assert get_active_alert(tenant_a.id, product.id).level == "orange"

        result = runner.invoke(args=[
            "tenant", "set-thresholds", "--tenant-id", tenant_a.id, "--critical", "70", "--attention", "90",
        ])
        assert result.exit_code == 0, result.output
        assert "recomputed=1" in result.output
        assert get_active_alert(tenant_a.id, product.id).level == "red"
        assert len(notifications.payloads) == 1


class TestAlertCommands:
    def test_recompute_opens_missing_alerts(self, runner, tenant_a, admin_a, make_product, db_session,
                                           notifications):
        product = make_product(tenant_a, quantity=120)
        assert get_active_alert(tenant_a.id, product.id) is None

        # thresholds changed behind the service layer
        tenant_a.default_critical_threshold = 150
        tenant_a.default_attention_threshold = 200
        db_session.commit()

        result = runner.invoke(args=["alerts", "recompute", "--tenant-id", tenant_a.id])
        assert result.exit_code == 0, result.output
        assert "recomputed=1 notifications=1" in result.output
        assert db_session.query(Alert).filter_by(product_id=product.id, status="active").one().level == "red"
        assert len(notifications.payloads) == 1
