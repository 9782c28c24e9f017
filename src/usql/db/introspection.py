"""Schema introspection for SQLite and MySQL.

Normalises ``PRAGMA table_info`` and ``INFORMATION_SCHEMA.COLUMNS`` output
into one column model. Logical types recorded in the ``__column_types``
table are merged in by the providers via ``apply_logical_types``.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from usql.db.connection import fetch_all
from usql.db.dialect import Dialect
from usql.db.metadata import METADATA_TABLE
from usql.errors import SchemaIntrospectionFailure, TableNotFound
from usql.types import DeclaredType, parse_declared_type

logger = logging.getLogger(__name__)

SQLITE_SEQUENCE_TABLE = "sqlite_sequence"


@dataclass
class ColumnInfo:
    """Information about a database column.

    Attributes:
        name: Column name as stored by the engine.
        type: Declared type; the logical type when one is recorded,
            otherwise the storage type as written.
        nullable: False when the column is NOT NULL.
        primary_key: True for the table's primary key column.
        default_value: Default expression as SQL text, if any.
        auto_increment: True when the engine assigns values itself.
        unique: True when a single-column unique constraint exists.
        storage_type: Physical type reported by the engine.
    """

    name: str
    type: str
    nullable: bool = True
    primary_key: bool = False
    default_value: str | None = None
    auto_increment: bool = False
    unique: bool = False
    storage_type: str = ""

    def __post_init__(self) -> None:
        if not self.storage_type:
            self.storage_type = self.type

    @property
    def declared(self) -> DeclaredType:
        """Return the parsed declared type."""
        return parse_declared_type(self.type)


@dataclass
class TableInfo:
    """Ordered column list of one table."""

    name: str
    columns: list[ColumnInfo]
    case_sensitive: bool = field(default=True, repr=False)

    def __repr__(self) -> str:
        """Return string representation with column count."""
        return f"TableInfo(name={self.name!r}, {len(self.columns)} columns)"

    def column_by_name(self, name: str) -> ColumnInfo | None:
        """Return column by name, or None if not found."""
        for col in self.columns:
            if col.name == name:
                return col
        if not self.case_sensitive:
            for col in self.columns:
                if col.name.lower() == name.lower():
                    return col
        return None

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    @property
    def primary_key(self) -> ColumnInfo | None:
        """Return the first column flagged as primary key."""
        for col in self.columns:
            if col.primary_key:
                return col
        return None

    def declared_types(self) -> dict[str, DeclaredType]:
        """Map column names to their declared types."""
        return {col.name: col.declared for col in self.columns}


def apply_logical_types(table: TableInfo, logical: dict[str, str]) -> TableInfo:
    """Overlay recorded logical types onto introspected columns.

    Args:
        table: Introspected table; modified in place.
        logical: Column name to logical type name, from ``__column_types``.

    Returns:
        The same TableInfo, for chaining.
    """
    for name, logical_type in logical.items():
        col = table.column_by_name(name)
        if col is None:
            logger.debug("Stale logical type for %s.%s ignored", table.name, name)
            continue
        col.type = logical_type
    return table


def _is_internal(name: str) -> bool:
    return name.startswith("sqlite_") or name == METADATA_TABLE


# =============================================================================
# SQLite
# =============================================================================


def list_sqlite_tables(conn: sqlite3.Connection) -> list[str]:
    """Return user table names in the order SQLite reports them.

    Excludes SQLite internal tables and the logical type table.
    """
    try:
        cursor = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        return [name for (name,) in cursor.fetchall() if not _is_internal(name)]
    except sqlite3.Error as e:
        raise SchemaIntrospectionFailure(f"Cannot list tables: {e}") from e


def sqlite_columns(conn: sqlite3.Connection, dialect: Dialect, table: str) -> TableInfo:
    """Get column info for a table using PRAGMA table_info.

    Args:
        conn: Active database connection.
        dialect: SQLite dialect, used for quoting.
        table: Name of table to introspect.

    Returns:
        TableInfo with physical types (no logical overlay).

    Raises:
        TableNotFound: If the table does not exist.
        SchemaIntrospectionFailure: If the PRAGMA output cannot be read.
    """
    try:
        rows = conn.execute(f"PRAGMA table_info({dialect.quote(table)})").fetchall()
        unique_columns = _sqlite_unique_columns(conn, dialect, table)
    except sqlite3.Error as e:
        raise SchemaIntrospectionFailure(f"Cannot introspect {table!r}: {e}") from e

    if not rows:
        raise TableNotFound(f"Table {table!r} does not exist")

    columns: list[ColumnInfo] = []
    try:
        pk_count = sum(1 for row in rows if row[5])
        for row in rows:
            # PRAGMA table_info returns: (cid, name, type, notnull, dflt_value, pk)
            storage_type = row[2] or ""
            primary_key = row[5] > 0
            columns.append(
                ColumnInfo(
                    name=row[1],
                    type=storage_type,
                    nullable=row[3] == 0,  # notnull=0 means nullable
                    primary_key=primary_key,
                    default_value=row[4],
                    auto_increment=(
                        primary_key
                        and pk_count == 1
                        and storage_type.upper() == "INTEGER"
                        and table != SQLITE_SEQUENCE_TABLE
                    ),
                    unique=row[1] in unique_columns,
                    storage_type=storage_type,
                )
            )
    except (IndexError, TypeError) as e:
        raise SchemaIntrospectionFailure(
            f"Unexpected PRAGMA table_info output for {table!r}: {e}"
        ) from e

    return TableInfo(name=table, columns=columns, case_sensitive=dialect.case_sensitive_names)


def _sqlite_unique_columns(
    conn: sqlite3.Connection, dialect: Dialect, table: str
) -> set[str]:
    """Return columns covered by a single-column UNIQUE constraint."""
    unique: set[str] = set()
    for row in conn.execute(f"PRAGMA index_list({dialect.quote(table)})").fetchall():
        # (seq, name, unique, origin, partial); origin 'u' = UNIQUE constraint
        if not row[2] or row[3] != "u":
            continue
        info = conn.execute(f"PRAGMA index_info({dialect.quote(row[1])})").fetchall()
        if len(info) == 1:
            unique.add(info[0][2])
    return unique


# =============================================================================
# MySQL
# =============================================================================

_MYSQL_COLUMNS_SQL = """
    SELECT COLUMN_NAME, COLUMN_TYPE, COLUMN_KEY, IS_NULLABLE, COLUMN_DEFAULT, EXTRA
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s
    ORDER BY ORDINAL_POSITION
"""


def _text(value: Any) -> str:
    """Normalise driver output that may arrive as bytes."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return str(value)


def list_mysql_tables(conn: Any) -> list[str]:
    """Return user table names in the order SHOW TABLES reports them."""
    try:
        names = [_text(row[0]) for row in fetch_all(conn, "SHOW TABLES")]
    except Exception as e:  # driver errors
        raise SchemaIntrospectionFailure(f"Cannot list tables: {e}") from e
    return [name for name in names if name != METADATA_TABLE]


def mysql_columns(conn: Any, dialect: Dialect, table: str) -> TableInfo:
    """Get column info for a table from INFORMATION_SCHEMA.COLUMNS.

    Raises:
        TableNotFound: If the table does not exist in the current schema.
        SchemaIntrospectionFailure: If the query fails or rows are malformed.
    """
    try:
        rows = fetch_all(conn, _MYSQL_COLUMNS_SQL, (table,))
    except Exception as e:  # driver errors
        raise SchemaIntrospectionFailure(f"Cannot introspect {table!r}: {e}") from e

    if not rows:
        raise TableNotFound(f"Table {table!r} does not exist")

    columns: list[ColumnInfo] = []
    try:
        for name, column_type, key, is_nullable, default, extra in rows:
            storage_type = _text(column_type)
            columns.append(
                ColumnInfo(
                    name=_text(name),
                    type=storage_type,
                    nullable=_text(is_nullable).upper() == "YES",
                    primary_key=_text(key) == "PRI",
                    default_value=None if default is None else _text(default),
                    auto_increment="auto_increment" in _text(extra).lower(),
                    unique=_text(key) == "UNI",
                    storage_type=storage_type,
                )
            )
    except (ValueError, TypeError) as e:
        raise SchemaIntrospectionFailure(
            f"Unexpected INFORMATION_SCHEMA output for {table!r}: {e}"
        ) from e

    return TableInfo(name=table, columns=columns, case_sensitive=dialect.case_sensitive_names)
