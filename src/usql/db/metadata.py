"""Logical column type side-channel.

SQL schemas cannot express the extended kinds (vectors, asset references),
so the logical type of such columns is recorded in the ``__column_types``
table. Plain SQL types are not recorded: their storage type is their
declared type.
"""

from typing import Any

from usql.db.connection import execute, fetch_all
from usql.db.dialect import Dialect
from usql.types import DeclaredType

METADATA_TABLE = "__column_types"


def ensure_metadata_table(conn: Any, dialect: Dialect) -> None:
    """Ensure the ``__column_types`` table exists. Idempotent.

    Args:
        conn: Active database connection.
        dialect: Dialect of the connection.
    """
    execute(
        conn,
        f"""
        CREATE TABLE IF NOT EXISTS {dialect.quote(METADATA_TABLE)} (
            table_name VARCHAR(255) NOT NULL,
            column_name VARCHAR(255) NOT NULL,
            logical_type VARCHAR(64) NOT NULL,
            PRIMARY KEY (table_name, column_name)
        )
        """,
    )


def metadata_table_exists(conn: Any, dialect: Dialect) -> bool:
    """Return True if the ``__column_types`` table has been created."""
    if dialect.name == "sqlite":
        sql = "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?"
    else:
        sql = (
            "SELECT 1 FROM INFORMATION_SCHEMA.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s"
        )
    return bool(fetch_all(conn, sql, (METADATA_TABLE,)))


def get_logical_types(conn: Any, dialect: Dialect, table: str) -> dict[str, str]:
    """Return the recorded logical types of a table's columns.

    Args:
        conn: Active database connection.
        dialect: Dialect of the connection.
        table: Table whose columns to look up.

    Returns:
        Mapping of column name to logical type name; empty when nothing
        has been recorded yet.
    """
    if not metadata_table_exists(conn, dialect):
        return {}
    rows = fetch_all(
        conn,
        f"SELECT column_name, logical_type FROM {dialect.quote(METADATA_TABLE)} "
        f"WHERE table_name = {dialect.placeholder}",
        (table,),
    )
    return {column: logical_type for column, logical_type in rows}


def clear_column_type(conn: Any, dialect: Dialect, table: str, column: str) -> None:
    """Forget the logical type of one column."""
    if not metadata_table_exists(conn, dialect):
        return
    p = dialect.placeholder
    execute(
        conn,
        f"DELETE FROM {dialect.quote(METADATA_TABLE)} "
        f"WHERE table_name = {p} AND column_name = {p}",
        (table, column),
    )


def record_column_type(
    conn: Any, dialect: Dialect, table: str, column: str, declared: DeclaredType
) -> None:
    """Record a column's logical type, or clear it for plain SQL types.

    Args:
        conn: Active database connection.
        dialect: Dialect of the connection.
        table: Table the column belongs to.
        column: Column name.
        declared: The column's declared type.
    """
    if declared.is_extended:
        ensure_metadata_table(conn, dialect)
    clear_column_type(conn, dialect, table, column)
    if not declared.is_extended:
        return
    execute(
        conn,
        f"INSERT INTO {dialect.quote(METADATA_TABLE)} "
        f"(table_name, column_name, logical_type) VALUES ({dialect.placeholders(3)})",
        (table, column, declared.kind.value),
    )


def drop_table_types(conn: Any, dialect: Dialect, table: str) -> None:
    """Forget every logical type recorded for a table."""
    if not metadata_table_exists(conn, dialect):
        return
    execute(
        conn,
        f"DELETE FROM {dialect.quote(METADATA_TABLE)} WHERE table_name = {dialect.placeholder}",
        (table,),
    )
