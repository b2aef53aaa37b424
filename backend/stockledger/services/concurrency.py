# Overview: Row locking and retry helpers for stock read-modify-write steps.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking to a product read that precedes a stock write.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; Postgres and MySQL honor it.
    Product.version_id still catches lost updates there.
    """
    return query.with_for_update()


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def _is_retryable(exc: BaseException) -> bool:
    # Store functions chain the SQLAlchemy error as __cause__
    return isinstance(exc, RETRYABLE_ERRORS) or isinstance(exc.__cause__, RETRYABLE_ERRORS)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a stock step, retrying on lock contention and stale versions.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (Product.version_id conflicts). The session is rolled back before each
    retry so func() starts from fresh rows.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except Exception as exc:
            if not _is_retryable(exc):
                raise
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying stock operation after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
