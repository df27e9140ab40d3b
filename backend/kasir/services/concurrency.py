# Overview: Shared helpers for transient DB conflicts; bounded retry and commit error wrapping.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

# Worth retrying: a locked SQLite file / deadlock, or a version_id mismatch.
TRANSIENT_ERRORS = (OperationalError, StaleDataError)


class PersistenceError(Exception):
    """Raised when the database rejects an operation; the session was rolled back."""

    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.original = original


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Call `func` until it stops failing with a transient error.

    The session is rolled back before each new attempt, so `func` must
    re-read whatever it works on. Waits backoff_base * 2**n between tries;
    the last failure is re-raised. Defaults to DB_RETRY_ATTEMPTS tries.
    """
    attempts = max(1, attempts or int(current_app.config.get("DB_RETRY_ATTEMPTS", 3)))
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except TRANSIENT_ERRORS as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            current_app.logger.debug("Transient DB error (attempt %s/%s): %s", attempt, attempts, exc)
            time.sleep(backoff_base * (2 ** (attempt - 1)))


def commit_or_raise(action: str) -> None:
    """
    Commit the session.

    Transient errors are re-raised as-is for run_with_retry; anything else
    is rolled back, logged and turned into PersistenceError.
    """
    try:
        db.session.commit()
    except TRANSIENT_ERRORS:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to %s", action)
        raise PersistenceError(f"Failed to {action}", original=exc) from exc


def run_in_savepoint(work, action: str, *, attempts: int | None = None):
    """
    One row of a batch: `work()` inside a savepoint, then commit.

    Transient errors roll the whole session back and the row is tried again
    (see run_with_retry); any other error propagates with the session rolled
    back to where it was before the row.
    """
    def _attempt():
        nested = db.session.begin_nested()
        try:
            value = work()
            db.session.flush()
            nested.commit()
        except Exception:
            if nested.is_active:
                nested.rollback()
            raise
        commit_or_raise(action)
        return value

    return run_with_retry(_attempt, attempts=attempts)
