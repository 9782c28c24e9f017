"""Row operations shared by the providers.

Statement builders return parameterized SQL; values are never interpolated.
The executors encode values with usql.codec using the table's declared
types, then run the statements on an open connection.
"""

import logging
from dataclasses import dataclass
from typing import Any

from usql.codec import AssetResolver, coerce, encode
from usql.db.connection import execute, fetch_all, fetch_with_columns
from usql.db.dialect import Dialect
from usql.db.introspection import ColumnInfo, TableInfo
from usql.errors import ColumnNotFound, EmptyRowMatch, NoPrimaryKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Statement:
    """A SQL string and its positional parameters."""

    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of a row delete.

    Attributes:
        deleted: Rows removed, as reported by the driver.
        by_primary_key: True when the primary key anchored the delete.
    """

    deleted: int
    by_primary_key: bool

    @property
    def ambiguous(self) -> bool:
        """True when a value-matching delete removed more than one row."""
        return not self.by_primary_key and self.deleted > 1


def insert_statement(dialect: Dialect, table: str, values: dict[str, Any]) -> Statement:
    """Build an INSERT with one placeholder per supplied column."""
    q_table = dialect.quote(table)
    if not values:
        if dialect.name == "mysql":
            return Statement(f"INSERT INTO {q_table} () VALUES ()")
        return Statement(f"INSERT INTO {q_table} DEFAULT VALUES")
    columns = list(values)
    return Statement(
        f"INSERT INTO {q_table} ({dialect.quote_all(columns)}) "
        f"VALUES ({dialect.placeholders(len(columns))})",
        tuple(values[col] for col in columns),
    )


def update_cell_statement(
    dialect: Dialect,
    table: str,
    column: str,
    value: Any,
    key_column: str,
    key_value: Any,
) -> Statement:
    """Build an UPDATE of one cell anchored on the primary key."""
    p = dialect.placeholder
    return Statement(
        f"UPDATE {dialect.quote(table)} SET {dialect.quote(column)} = {p} "
        f"WHERE {dialect.quote(key_column)} = {p}",
        (value, key_value),
    )


def delete_by_key_statement(
    dialect: Dialect, table: str, key_column: str, key_value: Any
) -> Statement:
    """Build a DELETE of the single row with the given primary key."""
    return Statement(
        f"DELETE FROM {dialect.quote(table)} "
        f"WHERE {dialect.quote(key_column)} = {dialect.placeholder}",
        (key_value,),
    )


def delete_matching_statement(dialect: Dialect, table: str, row: dict[str, Any]) -> Statement:
    """Build a DELETE matching every non-null value of a row.

    May match zero, one or several rows when the table holds duplicates.

    Raises:
        EmptyRowMatch: If the row has no non-null values to match on.
    """
    matched = {name: value for name, value in row.items() if value is not None}
    if not matched:
        raise EmptyRowMatch(
            f"Cannot delete from '{table}': row has no non-null values to match"
        )
    conditions = " AND ".join(
        f"{dialect.quote(name)} = {dialect.placeholder}" for name in matched
    )
    return Statement(
        f"DELETE FROM {dialect.quote(table)} WHERE {conditions}",
        tuple(matched.values()),
    )


def key_exists_statement(
    dialect: Dialect, table: str, key_column: str, key_value: Any
) -> Statement:
    """Build a COUNT(*) query for rows with the given key value."""
    return Statement(
        f"SELECT COUNT(*) FROM {dialect.quote(table)} "
        f"WHERE {dialect.quote(key_column)} = {dialect.placeholder}",
        (key_value,),
    )


def duplicate_values_statement(dialect: Dialect, table: str, column: str) -> Statement:
    """Build a query returning one duplicated non-null value of a column, if any."""
    q_col = dialect.quote(column)
    return Statement(
        f"SELECT {q_col}, COUNT(*) FROM {dialect.quote(table)} "
        f"WHERE {q_col} IS NOT NULL GROUP BY {q_col} HAVING COUNT(*) > 1 LIMIT 1"
    )


def select_all_statement(dialect: Dialect, table: str, limit: int | None = None) -> Statement:
    """Build a SELECT * over a table, optionally limited."""
    sql = f"SELECT * FROM {dialect.quote(table)}"
    if limit is None:
        return Statement(sql)
    return Statement(f"{sql} LIMIT {dialect.placeholder}", (limit,))


# =============================================================================
# Executors
# =============================================================================


def _column(schema: TableInfo, name: str) -> ColumnInfo:
    col = schema.column_by_name(name)
    if col is None:
        raise ColumnNotFound(f"Column '{name}' not found in table '{schema.name}'")
    return col


def encode_values(
    schema: TableInfo, values: dict[str, Any], resolver: AssetResolver | None
) -> dict[str, Any]:
    """Encode a column -> value mapping using the schema's declared types.

    Raises:
        ColumnNotFound: If a key is not a column of the table.
        UnresolvableReference: If a reference value has no stable path.
    """
    encoded: dict[str, Any] = {}
    for name, value in values.items():
        col = _column(schema, name)
        encoded[col.name] = encode(value, col.declared, resolver)
    return encoded


def insert_row(
    conn: Any,
    dialect: Dialect,
    schema: TableInfo,
    row: dict[str, Any],
    resolver: AssetResolver | None = None,
) -> int:
    """Insert one row; return the affected row count.

    Only supplied columns are written. An auto-increment key supplied as
    None is left for the engine to assign.
    """
    values = {
        name: value
        for name, value in row.items()
        if not (value is None and _column(schema, name).auto_increment)
    }
    stmt = insert_statement(dialect, schema.name, encode_values(schema, values, resolver))
    return execute(conn, stmt.sql, stmt.params)


def primary_key_anchor(schema: TableInfo, row: dict[str, Any]) -> tuple[ColumnInfo, Any] | None:
    """Return the key column and its value in ``row``, if both are available."""
    key = schema.primary_key
    if key is None:
        return None
    for name, value in row.items():
        if value is not None and schema.column_by_name(name) is key:
            return key, value
    return None


def update_cell(
    conn: Any,
    dialect: Dialect,
    schema: TableInfo,
    row: dict[str, Any],
    column: str,
    new_value: Any,
    resolver: AssetResolver | None = None,
) -> int:
    """Update one cell of the row identified by its primary key.

    ``new_value`` may be user-entered text; it is coerced to the column's
    type when it parses.

    Raises:
        NoPrimaryKey: If the table has no key or ``row`` lacks its value.
        ColumnNotFound: If ``column`` does not exist.
    """
    anchor = primary_key_anchor(schema, row)
    if anchor is None:
        raise NoPrimaryKey(
            f"Cannot update '{column}' in '{schema.name}': no primary key value available"
        )
    key, key_value = anchor
    col = _column(schema, column)
    value = encode(coerce(new_value, col.declared), col.declared, resolver)
    stmt = update_cell_statement(
        dialect,
        schema.name,
        col.name,
        value,
        key.name,
        encode(key_value, key.declared, resolver),
    )
    return execute(conn, stmt.sql, stmt.params)


def delete_row(
    conn: Any,
    dialect: Dialect,
    schema: TableInfo,
    row: dict[str, Any],
    resolver: AssetResolver | None = None,
) -> DeleteResult:
    """Delete a row by primary key, or by matching all its non-null values.

    The value-matching fallback is not deterministic when the table holds
    duplicate rows: every matching row is removed.
    """
    anchor = primary_key_anchor(schema, row)
    if anchor is not None:
        key, key_value = anchor
        stmt = delete_by_key_statement(
            dialect, schema.name, key.name, encode(key_value, key.declared, resolver)
        )
        return DeleteResult(deleted=execute(conn, stmt.sql, stmt.params), by_primary_key=True)

    stmt = delete_matching_statement(
        dialect, schema.name, encode_values(schema, row, resolver)
    )
    result = DeleteResult(deleted=execute(conn, stmt.sql, stmt.params), by_primary_key=False)
    if result.ambiguous:
        logger.warning(
            "Delete from %s without a primary key matched %d rows",
            schema.name,
            result.deleted,
        )
    return result


def key_exists(
    conn: Any,
    dialect: Dialect,
    schema: TableInfo,
    key_column: str,
    value: Any,
    resolver: AssetResolver | None = None,
) -> bool:
    """Return True if any row has ``value`` in ``key_column``."""
    col = _column(schema, key_column)
    stmt = key_exists_statement(
        dialect, schema.name, col.name, encode(coerce(value, col.declared), col.declared, resolver)
    )
    ((count,),) = fetch_all(conn, stmt.sql, stmt.params)
    return count > 0


def find_duplicate(conn: Any, dialect: Dialect, table: str, column: str) -> Any | None:
    """Return one value that occurs more than once in a column, or None."""
    stmt = duplicate_values_statement(dialect, table, column)
    rows = fetch_all(conn, stmt.sql, stmt.params)
    return rows[0][0] if rows else None


def select_rows(
    conn: Any, dialect: Dialect, table: str, limit: int | None = None
) -> list[dict[str, Any]]:
    """Return raw rows of a table as column -> value mappings."""
    stmt = select_all_statement(dialect, table, limit)
    columns, rows, _ = fetch_with_columns(conn, stmt.sql, stmt.params)
    return [dict(zip(columns, row, strict=True)) for row in rows]
