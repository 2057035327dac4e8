# Overview: Retry helpers for transactions that lose a race on a row or constraint.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


class RetryableConflict(Exception):
    """
    A concurrent writer won a race the current transaction depends on.

    Raised after a storage constraint rejected a write (for example the
    one-active-alert-per-product index). Replaying the whole transaction
    reads the winner's row and takes the update path instead.
    """


class ConcurrentAlertError(RetryableConflict):
    """Another transaction inserted the active alert for the same product first."""


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and RetryableConflict (constraint races).
    func must be safe to replay from scratch: it runs in a fresh
    transaction after each rollback.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, RetryableConflict) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.info("event=db.retry attempt=%d error=%s", attempt + 1, type(exc).__name__)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
