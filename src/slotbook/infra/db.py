"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a database connection from DATABASE_URL
- txn(): Context manager for short, safe transactions
- for_update(): SELECT ... FOR UPDATE helper

Driver-level connectivity failures surface as StorageError so callers
can retry them without knowing about psycopg2.
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

from slotbook.domain.errors import StorageError

# Transient failures: lost connection, server shutdown, serialization/deadlock.
_TRANSIENT_ERRORS = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
)


def get_conn(dsn: str | None = None) -> PgConnection:
    """Get a new database connection.

    Args:
        dsn: Connection string. Defaults to DATABASE_URL.

    Raises:
        RuntimeError: If no DSN is given and DATABASE_URL is not set.
        StorageError: On connection failure.
    """
    dsn = dsn or os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    try:
        return psycopg2.connect(dsn)
    except psycopg2.OperationalError as exc:
        raise StorageError() from exc


@contextmanager
def txn(conn: PgConnection | None = None, *, dsn: str | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception. Transient
    driver errors are re-raised as StorageError after rollback.

    Example:
        with txn() as cur:
            cur.execute("UPDATE slots SET reserved = reserved + 1 WHERE ...")
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn(dsn)

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except _TRANSIENT_ERRORS as exc:
        _safe_rollback(conn)
        raise StorageError() from exc
    except Exception:
        _safe_rollback(conn)
        raise
    finally:
        if owns_conn:
            conn.close()


def _safe_rollback(conn: PgConnection) -> None:
    # A dropped connection cannot roll back; the server discards the transaction.
    try:
        conn.rollback()
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        pass


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    nowait: bool = False,
) -> tuple[Any, ...] | None:
    """Execute SELECT ... FOR UPDATE and fetch one row.

    Use within a transaction to lock the selected row until commit/rollback.

    Args:
        cur: Database cursor.
        query: SELECT query (without FOR UPDATE).
        params: Query parameters.
        nowait: If True, fail immediately if row is locked.
    """
    suffix = " FOR UPDATE NOWAIT" if nowait else " FOR UPDATE"
    cur.execute(query.rstrip().rstrip(";") + suffix, params)
    return cur.fetchone()
