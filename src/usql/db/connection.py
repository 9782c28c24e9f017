"""Connection handling for usql providers.

Connections are short-lived: providers open one around each operation and
close it before returning. SQLite connections run in autocommit mode so a
single statement is its own transaction; multi-statement work opts into an
explicit transaction with ``transaction()``.
"""

import logging
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from usql.errors import ConnectionFailure

logger = logging.getLogger(__name__)

_SQLITE_SOURCE_KEYS = ("data source", "datasource", "filename")

_MYSQL_KEY_ALIASES: dict[str, str] = {
    "server": "host",
    "host": "host",
    "data source": "host",
    "datasource": "host",
    "port": "port",
    "database": "database",
    "initial catalog": "database",
    "uid": "user",
    "user": "user",
    "user id": "user",
    "username": "user",
    "pwd": "password",
    "password": "password",
}


def _split_pairs(connection_string: str) -> dict[str, str]:
    """Split an ADO-style 'Key=Value;Key=Value' string into lower-cased keys."""
    pairs: dict[str, str] = {}
    for part in connection_string.split(";"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        if not sep:
            raise ValueError(f"Malformed connection string segment: {part!r}")
        pairs[key.strip().lower()] = value.strip()
    return pairs


def sqlite_path(connection_string: str) -> Path:
    """Return the database path from a SQLite connection string.

    Accepts a bare path (or ':memory:') or an ADO-style string such as
    'Data Source=game.db;Version=3;'.
    """
    if "=" not in connection_string:
        return Path(connection_string)
    pairs = _split_pairs(connection_string)
    for key in _SQLITE_SOURCE_KEYS:
        if key in pairs:
            return Path(pairs[key])
    raise ValueError(f"No data source in SQLite connection string: {connection_string!r}")


def mysql_params(connection_string: str) -> dict[str, Any]:
    """Parse a MySQL connection string into driver keyword arguments.

    Accepts either a URL ('mysql://user:pw@host:3306/db') or an ADO-style
    string ('Server=host;Port=3306;Database=db;Uid=user;Pwd=pw;').

    Returns:
        Keyword arguments for ``mysql.connector.connect``.
    """
    if "://" in connection_string:
        url = urlparse(connection_string)
        if url.scheme not in ("mysql", "mariadb"):
            raise ValueError(f"Unsupported URL scheme: {url.scheme!r}")
        params: dict[str, Any] = {"host": url.hostname or "localhost"}
        if url.port:
            params["port"] = url.port
        if url.username:
            params["user"] = unquote(url.username)
        if url.password:
            params["password"] = unquote(url.password)
        database = url.path.lstrip("/")
        if database:
            params["database"] = database
        return params

    params = {}
    for key, value in _split_pairs(connection_string).items():
        target = _MYSQL_KEY_ALIASES.get(key)
        if target is None:
            # Driver options like SslMode have no connector equivalent
            logger.debug("Ignoring connection string option %r", key)
            continue
        params[target] = int(value) if target == "port" else value
    params.setdefault("host", "localhost")
    return params


@contextmanager
def connect_sqlite(path: Path | str) -> Generator[sqlite3.Connection]:
    """Open a short-lived SQLite connection in autocommit mode.

    Creates the parent directory for file databases. The connection is
    always closed on exit.

    Raises:
        ConnectionFailure: If the database file cannot be opened.
    """
    path = Path(path)
    # Create parent directory for file-based databases
    if path != Path(":memory:") and path.parent.name:
        path.parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(path, isolation_level=None)
    except sqlite3.Error as e:
        raise ConnectionFailure(f"Cannot open SQLite database {path}: {e}") from e
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def connect_mysql(params: dict[str, Any]) -> Generator[Any]:
    """Open a short-lived MySQL connection.

    The driver is imported here rather than at module load so SQLite-only
    installs do not need it.

    Raises:
        ConnectionFailure: If the driver is missing or the server refuses us.
    """
    try:
        import mysql.connector
    except ImportError as e:
        raise ConnectionFailure(
            "MySQL support requires mysql-connector-python "
            "(pip install 'usql[mysql]')"
        ) from e

    try:
        conn = mysql.connector.connect(**params)
    except mysql.connector.Error as e:
        host = params.get("host", "localhost")
        raise ConnectionFailure(f"Cannot connect to MySQL at {host}: {e}") from e
    try:
        yield conn
    finally:
        conn.close()


def _cursor(conn: Any) -> Any:
    if isinstance(conn, sqlite3.Connection):
        return conn.cursor()
    # Buffered so a later statement never trips over unread results
    return conn.cursor(buffered=True)


def _run(cursor: Any, sql: str, params: tuple[Any, ...]) -> None:
    # Drivers differ on empty parameter sequences; MySQL would still
    # apply %-formatting to the statement
    if params:
        cursor.execute(sql, params)
    else:
        cursor.execute(sql)


def fetch_all(conn: Any, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
    """Execute a statement and return every result row."""
    logger.debug("SQL: %s %r", sql, params)
    cursor = _cursor(conn)
    try:
        _run(cursor, sql, params)
        return cursor.fetchall()
    finally:
        cursor.close()


def fetch_with_columns(
    conn: Any, sql: str, params: tuple[Any, ...] = ()
) -> tuple[list[str], list[tuple[Any, ...]], int]:
    """Execute a statement and return (column names, rows, affected row count).

    Statements that produce no result set return no columns and no rows.
    """
    logger.debug("SQL: %s %r", sql, params)
    cursor = _cursor(conn)
    try:
        _run(cursor, sql, params)
        if cursor.description is None:
            return [], [], cursor.rowcount
        columns = [desc[0] for desc in cursor.description]
        return columns, cursor.fetchall(), cursor.rowcount
    finally:
        cursor.close()


def execute(conn: Any, sql: str, params: tuple[Any, ...] = ()) -> int:
    """Execute a statement that returns no rows; return the affected row count."""
    logger.debug("SQL: %s %r", sql, params)
    cursor = _cursor(conn)
    try:
        _run(cursor, sql, params)
        return cursor.rowcount
    finally:
        cursor.close()


@contextmanager
def transaction(conn: Any) -> Generator[Any]:
    """Run a block inside an explicit transaction.

    Commits on successful exit, rolls back on exception. Works for both
    sqlite3 connections in autocommit mode and MySQL connector connections.
    """
    if isinstance(conn, sqlite3.Connection):
        conn.execute("BEGIN")
    else:
        conn.start_transaction()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
