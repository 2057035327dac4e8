# Overview: Flask CLI command groups for tenant bootstrap and alert maintenance.

# backend/stockzen/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask db upgrade
#   Apply Alembic migrations (Flask-Migrate).
#
# Tenant bootstrap:
# - python -m flask tenant create --name "Acme" --admin-email admin@acme.test
#   Create a tenant, an admin member, and print a bearer token for that admin.
# - python -m flask tenant add-member --tenant-id <id> --email op@acme.test --role Operator
#   Add a member and print a bearer token.
# - python -m flask tenant set-thresholds --tenant-id <id> --critical 20 --attention 40
#   Change default thresholds and recompute alerts for products using them.
#
# Alerts:
# - python -m flask alerts recompute --tenant-id <id>
#   Re-derive every product's alert from its current quantity.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .models.tenancy import ROLE_ADMIN, TENANT_ROLES
from .services import session_service, tenant_service
from .services.alert_service import recompute_alerts_for_products
from .services.notification_service import dispatch_pending
from .validation import ValidationError


@click.group('tenant')
def tenant_group():
    """Tenant bootstrap commands."""


@tenant_group.command('create')
@click.option('--name', required=True, help='Tenant display name')
@click.option('--admin-email', required=True, help='Email of the first admin')
@click.option('--admin-name', default=None, help='Display name of the first admin')
@click.option('--critical', type=int, default=None, help='Default critical threshold')
@click.option('--attention', type=int, default=None, help='Default attention threshold')
@with_appcontext
def create_tenant_command(name, admin_email, admin_name, critical, attention):
    """Create a tenant with an admin and print the admin's token."""
    try:
        tenant = tenant_service.create_tenant(name, critical_threshold=critical, attention_threshold=attention)
        user = tenant_service.add_member(tenant.id, admin_email, name=admin_name, role=ROLE_ADMIN)
    except ValidationError as e:
        raise click.ClickException(str(e))
    _session, token = session_service.create_session(user.id, tenant_id=tenant.id)

    click.echo(f"tenant_id={tenant.id}")
    click.echo(f"user_id={user.id}")
    click.echo(f"token={token}")


@tenant_group.command('add-member')
@click.option('--tenant-id', required=True)
@click.option('--email', required=True)
@click.option('--name', default=None)
@click.option('--role', type=click.Choice(TENANT_ROLES), default='Operator', show_default=True)
@with_appcontext
def add_member_command(tenant_id, email, name, role):
    """Add a user to a tenant and print a token scoped to it."""
    try:
        user = tenant_service.add_member(tenant_id, email, name=name, role=role)
    except ValueError as e:
        raise click.ClickException(str(e))
    _session, token = session_service.create_session(user.id, tenant_id=tenant_id)
    click.echo(f"user_id={user.id}")
    click.echo(f"token={token}")


@tenant_group.command('set-thresholds')
@click.option('--tenant-id', required=True)
@click.option('--critical', type=int, required=True)
@click.option('--attention', type=int, required=True)
@with_appcontext
def set_thresholds_command(tenant_id, critical, attention):
    """Change default thresholds (runs as an admin operation)."""
    try:
        tenant, recomputed = tenant_service.update_tenant_default_thresholds(
            tenant_id, ROLE_ADMIN, critical, attention
        )
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"tenant={tenant.id} critical={tenant.default_critical_threshold} "
        f"attention={tenant.default_attention_threshold} recomputed={recomputed}"
    )


@click.group('alerts')
def alerts_group():
    """Alert maintenance commands."""


@alerts_group.command('recompute')
@click.option('--tenant-id', required=True)
@with_appcontext
def recompute_alerts_command(tenant_id):
    """Re-derive alerts for every live product of a tenant."""
    tenant_service.require_tenant(tenant_id)
    product_ids = [
        row.id for row in db.session.query(Product.id)
        .filter(Product.tenant_id == tenant_id, Product.deleted_at.is_(None))
        .all()
    ]
    pending = []
    count = recompute_alerts_for_products(tenant_id, product_ids, pending_notifications=pending)
    db.session.commit()
    dispatch_pending(pending)
    click.echo(f"recomputed={count} notifications={len(pending)}")


def register_commands(app):
    app.cli.add_command(tenant_group)
    app.cli.add_command(alerts_group)
