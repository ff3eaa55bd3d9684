# Overview: Transaction helpers shared by every write path (locking, retry, rollback).

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import LedgerError, StoreError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_write_transaction() -> None:
    """
    Take the write lock up front on SQLite.

    SQLite serializes writers; starting with BEGIN IMMEDIATE means the
    read-check-mutate sequence runs under the lock instead of failing with
    "database is locked" when a deferred transaction tries to upgrade.
    Other engines rely on conditional updates and FOR UPDATE row locks.
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock waits) and StaleDataError
    (optimistic locking conflicts). The whole callable is re-run; a failed
    attempt is always rolled back first.

    LedgerError subclasses roll back and propagate unchanged. Any other
    SQLAlchemy failure rolls back and surfaces as StoreError.
    """
    if attempts is None:
        attempts = current_app.config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("DB_RETRY_BACKOFF", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error("Giving up after %d attempts: %s", attempts, exc)
                raise StoreError(
                    "Database is busy, operation was rolled back",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.warning(
                "Retrying unit of work (attempt %d/%d): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
        except LedgerError:
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Unit of work failed")
            raise StoreError("Database error, operation was rolled back") from exc
        except Exception:
            db.session.rollback()
            raise
