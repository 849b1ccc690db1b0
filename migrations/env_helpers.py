"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
The application connects with psycopg2 using DATABASE_URL as-is; Alembic
needs the same target as a SQLAlchemy URL.
"""

from __future__ import annotations

import os

from psycopg2.extensions import parse_dsn
from sqlalchemy.engine import URL

_DRIVER = "postgresql+psycopg2"


def to_sqlalchemy_url(dsn: str) -> str:
    """Convert a DATABASE_URL (URI or libpq key=value form) for SQLAlchemy.

    Examples:
        postgres://u:p@h/db          -> postgresql+psycopg2://u:p@h/db
        dbname=db user=u host=/sock  -> postgresql+psycopg2://u@/db?host=%2Fsock
    """
    if "://" in dsn:
        scheme, rest = dsn.split("://", 1)
        if scheme in ("postgres", "postgresql"):
            return f"{_DRIVER}://{rest}"
        return dsn

    params = parse_dsn(dsn)
    host = params.get("host")
    query: dict[str, str] = {}
    if host and host.startswith("/"):
        # Unix socket directory goes in the query string
        query["host"] = host
        host = None
    url = URL.create(
        _DRIVER,
        username=params.get("user"),
        password=params.get("password"),
        host=host,
        port=int(params["port"]) if params.get("port") else None,
        database=params.get("dbname"),
        query=query,
    )
    return url.render_as_string(hide_password=False)


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    return to_sqlalchemy_url(url)
