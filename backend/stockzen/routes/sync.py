# backend/stockzen/routes/sync.py
"""
Offline sync endpoint.

Batch-level failures use the {code, message} envelope:
    401 UNAUTHORIZED     no valid session
    429 RATE_LIMITED     too many sync requests for this (user, IP)
    403 FORBIDDEN        session has no tenant context
    400 VALIDATION_ERROR malformed body or protocol violation
    403 TENANT_MISMATCH  an operation targets another tenant
    500 INTERNAL_ERROR   unexpected failure (details only in the server log)

Per-operation outcomes are in the 200 response body; see sync_service.
"""

import time

from flask import Blueprint, current_app, jsonify, request

from ..decorators import authenticate_request
from ..services import sync_service
from ..services.rate_limit_service import get_client_ip, get_sync_rate_limiter, sync_rate_limit_key
from ..services.sync_service import (
    ERROR_FORBIDDEN,
    ERROR_INTERNAL,
    ERROR_RATE_LIMITED,
    ERROR_UNAUTHORIZED,
    SyncProtocolError,
)

sync_bp = Blueprint("sync", __name__, url_prefix="/api")


def _error(code: str, message: str, status: int, headers: dict | None = None):
    response = jsonify({"code": code, "message": message})
    response.status_code = status
    if headers:
        response.headers.update(headers)
    return response


@sync_bp.post("/sync")
def sync_route():
    context = authenticate_request()
    if context is None:
        return _error(ERROR_UNAUTHORIZED, "Authentication required", 401)

    limiter = get_sync_rate_limiter()
    client_ip = get_client_ip(request.headers, request.remote_addr)
    limit = limiter.hit(sync_rate_limit_key(context.user_id, client_ip))
    if not limit.allowed:
        retry_after = limit.retry_after_seconds(limiter.clock())
        current_app.logger.warning("event=sync.rate_limited user_id=%s ip=%s", context.user_id, client_ip)
        return _error(
            ERROR_RATE_LIMITED,
            "Too many sync requests. Please wait before retrying.",
            429,
            {"Retry-After": str(retry_after)},
        )

    if not context.tenant_id:
        return _error(ERROR_FORBIDDEN, "Tenant context is required", 403)

    try:
        sync_request = sync_service.parse_sync_request(
            request.get_json(silent=True),
            max_batch=current_app.config.get("SYNC_MAX_BATCH", sync_service.MAX_BATCH_SIZE),
        )
        started = time.perf_counter()
        response = sync_service.process_sync(
            context.tenant_id,
            context.user_id,
            sync_request.operations,
            checkpoint=sync_request.checkpoint,
            idempotency_header=request.headers.get("Idempotency-Key"),
        )
    except SyncProtocolError as e:
        return _error(e.code, e.message, e.http_status)
    except Exception:
        current_app.logger.exception("event=sync.failed user_id=%s tenant_id=%s", context.user_id, context.tenant_id)
        return _error(ERROR_INTERNAL, "An unexpected error occurred", 500)

    current_app.logger.debug(
        "event=sync.completed operations=%d elapsed_ms=%.1f",
        len(sync_request.operations), (time.perf_counter() - started) * 1000,
    )
    return jsonify(response.to_dict()), 200
