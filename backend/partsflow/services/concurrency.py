# Overview: Row locking and the unit-of-work retry loop shared by every workflow service.

"""
Every workflow operation runs as one unit of work:

    def _op():
        doc = get_x(doc_id, lock=True)
        ...
        db.session.flush()
        return doc

    return run_with_retry(_op)

The body only flushes. Routes and CLI commands commit with
commit_with_retry once the operation returns. A lock timeout or a
version_id mismatch on a document header rolls the session back and runs
the whole body again, re-reading every row it touches. Any other exception,
including every WorkflowError, is raised on the first attempt.
"""

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF = 0.1


def lock_for_update(query):
    """SELECT ... FOR UPDATE on backends that support it; SQLite ignores it."""
    return query.with_for_update()


def _setting(name: str, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def backoff_delay(attempt: int, base: float) -> float:
    """Delay before retry number attempt + 1 (0.1, 0.2, 0.4, ... for base 0.1)."""
    return base * (2 ** attempt)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    attempts = max(1, attempts if attempts is not None else _setting("DB_RETRY_ATTEMPTS", DEFAULT_ATTEMPTS))
    base = backoff_base if backoff_base is not None else _setting("DB_RETRY_BACKOFF", DEFAULT_BACKOFF)

    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt + 1 >= attempts:
                current_app.logger.error(
                    "Giving up after %d attempts: %s", attempts, type(exc).__name__
                )
                raise
            current_app.logger.warning(
                "Retrying after %s (attempt %d/%d)", type(exc).__name__, attempt + 1, attempts
            )
            time.sleep(backoff_delay(attempt, base))


def commit_with_retry(*, attempts: int | None = None, backoff_base: float | None = None):
    """Commit the unit of work; lock and stale-row failures are retried."""
    return run_with_retry(db.session.commit, attempts=attempts, backoff_base=backoff_base)
