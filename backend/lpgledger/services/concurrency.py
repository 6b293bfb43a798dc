# Overview: Service-layer operations for concurrency; encapsulates transaction boundaries and database locking.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class ConcurrencyConflictError(Exception):
    """
    Raised when the write boundary detects a conflicting concurrent update.

    The whole operation was rolled back; the caller may retry it. Retries are
    safe because bill numbers make postings idempotent.
    """


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Models that matter also carry a version_id_col, so a stale write still
    fails on SQLite.
    """
    return query.with_for_update()


def atomic(func):
    """
    Run func as one unit of work: commit on success, roll back on any error.

    Lock and version conflicts surface as ConcurrencyConflictError; nothing is
    retried here.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        raise ConcurrencyConflictError(
            "Concurrent update detected; the operation was rolled back and can be retried"
        ) from exc
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and ConcurrencyConflictError.
    Only for idempotent operations.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, ConcurrencyConflictError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                break
            time.sleep(backoff_base * (2 ** attempt))
    if isinstance(last_exc, ConcurrencyConflictError):
        raise last_exc
    raise ConcurrencyConflictError(
        f"Operation failed after {attempts} attempts due to concurrent updates"
    ) from last_exc
