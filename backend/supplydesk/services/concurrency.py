# Overview: Transaction boundaries and write locking for engine commands.

from __future__ import annotations

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError, StorageError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() covers it there.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Take the write lock for the current transaction.

    On SQLite the whole database is the serialization point, so the
    transaction is opened with BEGIN IMMEDIATE before the first read. Other
    backends rely on lock_for_update() row locks.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_in_transaction(func, *, write: bool = True):
    """
    Run func() as one atomic unit and commit.

    Any exception rolls the whole unit back. Store-level failures are
    translated into engine errors; nothing is retried here, retry policy
    belongs to the caller.
    """
    try:
        if write:
            begin_write()
        result = func()
        db.session.commit()
        return result
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError(
            "Record was modified by another writer. Reload and retry."
        ) from exc
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "Write conflicts with an existing record",
            details={"constraint": str(exc.orig)},
        ) from exc
    except OperationalError as exc:
        db.session.rollback()
        current_app.logger.exception("Storage failure during transaction")
        raise StorageError("Storage is unavailable, try again later") from exc
    except Exception:
        db.session.rollback()
        raise
