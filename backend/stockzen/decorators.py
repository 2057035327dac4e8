# Overview: Request and role decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def authenticate_request():
    """
    Resolve the request's session, or None.

    Also used directly by the sync route, which answers with its own
    {code, message} envelope instead of the decorator's {"error": ...}.
    """
    token = _bearer_token()
    if not token:
        return None
    return session_service.validate_session(token)


def bind_session_context(context) -> None:
    g.current_user = context.user
    g.user_id = context.user.id
    g.tenant_id = context.tenant_id
    g.role = context.role
    g.session_context = context


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user / g.user_id: the authenticated user
    - g.tenant_id: the tenant every query in the request is scoped to
    - g.role: the user's role in that tenant
    - g.session_context: the full SessionContext object

    SECURITY: 401 for a missing, invalid, or expired token; 403 when the
    user has no membership in the session's tenant.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        context = authenticate_request()
        if context is None:
            return jsonify({"error": "Authentication required"}), 401
        if not context.tenant_id:
            return jsonify({"error": "Tenant context is required"}), 403

        bind_session_context(context)
        return f(*args, **kwargs)

    return decorated_function


def require_role(predicate, action: str = "perform this action"):
    """
    Require the tenant role to satisfy a capability predicate from permissions.py.

    Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "tenant_id"):
                return jsonify({"error": "Authentication required"}), 401
            if not predicate(g.role):
                return jsonify({
                    "error": "Permission denied",
                    "message": f"Role {g.role} is not allowed to {action}",
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
