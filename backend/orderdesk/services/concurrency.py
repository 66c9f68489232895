# Overview: Transaction and retry helpers shared by the service layer.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConcurrentModificationError, UnauthorizedError


def lock_for_update(query):
    """
    Apply row-level locking for critical reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def require_actor(actor) -> None:
    """Every state-changing operation needs an authenticated caller."""
    if actor is None:
        raise UnauthorizedError("Authenticated caller required")


def flush_or_conflict(message: str = "Sale was modified by another request") -> None:
    """
    Flush pending ORM writes, turning an optimistic version miss into a
    ConcurrentModificationError.

    Sale rows carry a version_id column; the ORM issues
    UPDATE ... WHERE id = :id AND version_id = :seen and raises StaleDataError
    when zero rows match.
    """
    try:
        db.session.flush()
    except StaleDataError as exc:
        raise ConcurrentModificationError(message) from exc


def run_in_transaction(func):
    """
    Run func() as one unit of work.

    Commits when func returns, rolls back on any exception and re-raises it,
    so a failed validation or a lost race never leaves half-applied writes.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except StaleDataError as exc:
        db.session.rollback()
        raise ConcurrentModificationError("Sale was modified by another request") from exc
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute an operation with retry on concurrency-related failures.

    Retries on ConcurrentModificationError (optimistic check lost) and
    OperationalError (deadlocks, locks). Used by callers such as the HTTP
    routes; services never retry on their own.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (ConcurrentModificationError, OperationalError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
