# Overview: Service-layer operations for concurrency; every ledger write runs through run_atomic.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InvalidInputError, LedgerConflictError, LedgerError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite writers are serialized by begin_write() instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the DB transaction with the write lock taken up front.

    On SQLite this is BEGIN IMMEDIATE, so two requests cannot both read the
    same balance and then both write. Other backends rely on lock_for_update()
    plus the version_id columns.
    """
    if db.engine.dialect.name != "sqlite":
        return
    conn = db.session.connection()
    raw = conn.connection.dbapi_connection
    if getattr(raw, "in_transaction", False):
        return
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def run_atomic(func, *, operation: str, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one ledger operation as a single atomic unit.

    - Any exception rolls back everything the operation staged.
    - OperationalError (locks, timeouts) and StaleDataError (optimistic
      locking conflicts) retry the whole operation from scratch.
    - DataError (a value the column cannot hold) surfaces as InvalidInputError.
    - Exhausted retries and constraint races surface as LedgerConflictError;
      raw storage errors never leave this function.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF_SECONDS", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except LedgerError:
            db.session.rollback()
            raise
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "%s: transient storage failure on attempt %d/%d (%s)",
                operation, attempt + 1, attempts, type(exc).__name__,
            )
            if attempt >= attempts - 1:
                raise LedgerConflictError(
                    "The ledger is busy; retry the operation",
                    details={"operation": operation},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except IntegrityError as exc:
            db.session.rollback()
            current_app.logger.warning("%s: constraint violated by a concurrent write", operation)
            raise LedgerConflictError(
                "A concurrent change conflicted with this operation; retry it",
                details={"operation": operation},
            ) from exc
        except DataError as exc:
            db.session.rollback()
            current_app.logger.warning("%s: value rejected by the database", operation)
            raise InvalidInputError(
                "A value is out of range for storage",
                details={"operation": operation},
            ) from exc
        except DBAPIError as exc:
            db.session.rollback()
            current_app.logger.exception("%s: storage failure; all staged writes rolled back", operation)
            raise LedgerConflictError(
                "The ledger could not store this change; retry the operation",
                details={"operation": operation},
            ) from exc
        except Exception:
            db.session.rollback()
            current_app.logger.exception("%s failed; all staged writes rolled back", operation)
            raise
