# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management Service with Tenant Context

WHY: The sync and inventory APIs need a caller identity and a tenant scope.
Login itself is handled by the external identity provider; this service
issues and validates the bearer tokens that carry the result.

MULTI-TENANT: Sessions capture the user's default tenant at creation time.
validate_session resolves the caller's role in that tenant on every
request, so a removed membership takes effect immediately.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_TTL_HOURS)
- Revocable
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, TenantMembership, User
from ..time_utils import utcnow


@dataclass
class SessionContext:
    """
    Session context returned by validate_session.

    tenant_id and role are None when the user has no membership in the
    session's tenant; routes answer that with 403, not 401.
    """
    user: User
    session: SessionToken
    tenant_id: str | None
    role: str | None

    @property
    def user_id(self) -> str:
        return self.user.id


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    WHY SHA-256 not bcrypt: Tokens are already high-entropy (unlike passwords).
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: str, *, tenant_id: str | None = None) -> tuple[SessionToken, str]:
    """
    Create a session for the user. Returns (session_record, plaintext_token).

    Raises ValueError if the user does not exist or is inactive.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if not user.is_active:
        raise ValueError("User is not active")

    plaintext_token = generate_token()
    now = utcnow()
    ttl_hours = current_app.config.get("SESSION_TTL_HOURS", 24)

    session = SessionToken(
        user_id=user.id,
        tenant_id=tenant_id or user.default_tenant_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def validate_session(token: str) -> SessionContext | None:
    """
    Returns None if the token is unknown, expired, or revoked, or the user is inactive.
    """
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return None

    now = utcnow()
    if session.expires_at <= now:
        return None

    user = db.session.get(User, session.user_id)
    if user is None or not user.is_active:
        return None

    tenant_id = None
    role = None
    if session.tenant_id:
        membership = (
            db.session.query(TenantMembership)
            .filter_by(tenant_id=session.tenant_id, user_id=user.id)
            .first()
        )
        if membership is not None:
            tenant_id = membership.tenant_id
            role = membership.role

    session.last_used_at = now
    db.session.commit()
    return SessionContext(user=user, session=session, tenant_id=tenant_id, role=role)


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
