"""Table rebuild for engines without ALTER COLUMN.

SQLite cannot rename-and-retype a column, change the primary key or (before
3.35) drop a column in place. The rebuild emulates all three:

    CREATE TABLE <name>_temp (<new definitions>)
    INSERT INTO <name>_temp (<new names>) SELECT <old names> FROM <name>
    DROP TABLE <name>
    ALTER TABLE <name>_temp RENAME TO <name>

The planners turn an introspected schema plus a requested change into the
new definitions and an old-to-new column name map. ``rebuild_table`` runs
the statements; the caller owns the surrounding transaction.
"""

import logging
from typing import Any

from usql.db.connection import execute, fetch_all
from usql.db.dialect import Dialect
from usql.db.introspection import TableInfo
from usql.errors import CannotDeleteLastColumn, ColumnNotFound
from usql.ops.schema import ColumnDef, create_table_sql

logger = logging.getLogger(__name__)

TEMP_SUFFIX = "_temp"


def user_indexes(conn: Any, dialect: Dialect, table: str) -> list[str]:
    """Names of the explicitly created indexes on a SQLite table."""
    rows = fetch_all(conn, f"PRAGMA index_list({dialect.quote(table)})")
    # columns: seq, name, unique, origin, partial
    return [row[1] for row in rows if row[3] == "c"]


def table_triggers(conn: Any, table: str) -> list[str]:
    """Names of the triggers attached to a SQLite table."""
    rows = fetch_all(
        conn,
        "SELECT name FROM sqlite_master WHERE type = 'trigger' AND tbl_name = ?",
        (table,),
    )
    return [row[0] for row in rows]


def plan_modify(
    schema: TableInfo,
    old_name: str,
    new_name: str,
    new_type: str,
    is_primary_key: bool,
) -> tuple[list[ColumnDef], dict[str, str]]:
    """Plan the rebuild for renaming/retyping one column.

    Every other column is reproduced verbatim. If ``is_primary_key`` is set
    the modified column becomes the only key; if it was the key and
    ``is_primary_key`` is not set, the table ends up without one.

    Returns:
        (new column definitions, old name -> new name map)

    Raises:
        ColumnNotFound: If ``old_name`` is not a column of the table.
    """
    target = schema.column_by_name(old_name)
    if target is None:
        raise ColumnNotFound(f"Column '{old_name}' not found in table '{schema.name}'")

    columns: list[ColumnDef] = []
    column_map: dict[str, str] = {}
    for col in schema.columns:
        definition = ColumnDef.from_column_info(col)
        if col is target:
            definition = definition.model_copy(
                update={
                    "name": new_name,
                    "type": new_type,
                    "primary_key": is_primary_key,
                    "auto_increment": None,
                }
            )
        elif is_primary_key:
            definition = definition.model_copy(
                update={"primary_key": False, "auto_increment": False}
            )
        columns.append(definition)
        column_map[col.name] = definition.name

    return columns, column_map


def plan_drop(schema: TableInfo, column: str) -> tuple[list[ColumnDef], dict[str, str]]:
    """Plan the rebuild for dropping one column.

    Raises:
        ColumnNotFound: If the column does not exist.
        CannotDeleteLastColumn: If it is the table's only column.
    """
    target = schema.column_by_name(column)
    if target is None:
        raise ColumnNotFound(f"Column '{column}' not found in table '{schema.name}'")
    if len(schema.columns) == 1:
        raise CannotDeleteLastColumn(
            f"Cannot delete '{column}': it is the only column of '{schema.name}'"
        )

    columns = [ColumnDef.from_column_info(col) for col in schema.columns if col is not target]
    column_map = {col.name: col.name for col in columns}
    return columns, column_map


def copy_rows(
    conn: Any, dialect: Dialect, source: str, target: str, column_map: dict[str, str]
) -> int:
    """Copy rows between tables, aligning columns positionally by the map.

    Returns:
        Number of rows copied, as reported by the driver.
    """
    old_names = list(column_map)
    new_names = [column_map[name] for name in old_names]
    return execute(
        conn,
        f"INSERT INTO {dialect.quote(target)} ({dialect.quote_all(new_names)}) "
        f"SELECT {dialect.quote_all(old_names)} FROM {dialect.quote(source)}",
    )


def rebuild_table(
    conn: Any,
    dialect: Dialect,
    table: str,
    columns: list[ColumnDef],
    column_map: dict[str, str],
) -> None:
    """Recreate a table with new column definitions, keeping its rows.

    Must run inside a transaction: a failure part-way leaves the temp table
    behind and the original dropped until the transaction is rolled back.
    Indexes and triggers on the old table are not recreated; a warning
    names them.

    Args:
        conn: Active connection with an open transaction.
        dialect: Dialect of the connection.
        table: Table to rebuild.
        columns: New column definitions in physical order.
        column_map: Old column name -> new column name for every column
            whose data is carried over. Columns absent from the map are
            not copied.
    """
    temp = f"{table}{TEMP_SUFFIX}"
    logger.info("Rebuilding table %s via %s", table, temp)
    if dialect.name == "sqlite":
        lost = user_indexes(conn, dialect, table) + table_triggers(conn, table)
        if lost:
            logger.warning(
                "Rebuilding %s drops its indexes and triggers: %s", table, ", ".join(lost)
            )

    execute(conn, create_table_sql(temp, columns, dialect))
    if column_map:
        copy_rows(conn, dialect, table, temp, column_map)
    execute(conn, f"DROP TABLE {dialect.quote(table)}")
    execute(conn, f"ALTER TABLE {dialect.quote(temp)} RENAME TO {dialect.quote(table)}")
