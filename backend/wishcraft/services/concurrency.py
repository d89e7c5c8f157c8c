# Overview: Transaction helpers shared by the reconciliation services.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

# Errors that mean "the database could not do it right now", not "the data is wrong".
# StaleDataError is a version_id conflict that outlived run_with_retry.
TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the engine's
    BEGIN IMMEDIATE serializes writers instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one transaction with retry on concurrency-related failures.

    func must do its own commit. Retries OperationalError (deadlocks, lock
    timeouts, dropped connections) and StaleDataError (version_id conflicts).
    Domain errors roll back and propagate immediately.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Retrying transaction after %s (attempt %d/%d)",
                type(exc).__name__,
                attempt + 1,
                attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
