"""SQLite provider.

SQLite has no ALTER COLUMN, so renames, retypes, key changes and column
drops go through the table rebuild in ``usql.ops.rebuild``. The rebuild,
the introspection it is planned from and the logical type bookkeeping all
run in one transaction on one connection.
"""

import logging
import sqlite3
from typing import Any

from usql.codec import AssetResolver
from usql.db.connection import connect_sqlite, execute, sqlite_path, transaction
from usql.db.dialect import SQLITE
from usql.db.introspection import (
    ColumnInfo,
    TableInfo,
    apply_logical_types,
    list_sqlite_tables,
    sqlite_columns,
)
from usql.db.metadata import (
    clear_column_type,
    drop_table_types,
    get_logical_types,
    record_column_type,
)
from usql.errors import (
    ColumnNotFound,
    DuplicateValueViolation,
    SchemaIntrospectionFailure,
    SchemaModificationFailed,
    StatementFailed,
)
from usql.ops import query, rows
from usql.ops.query import Query, QueryResult, Search
from usql.ops.rebuild import plan_drop, plan_modify, rebuild_table
from usql.ops.rows import DeleteResult
from usql.ops.schema import (
    AddColumn,
    ColumnDef,
    CreateTable,
    ModifyColumn,
    transpile_add_column,
    transpile_create_table,
)
from usql.providers.base import wrap_errors
from usql.types import parse_declared_type

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (sqlite3.Error,)


class SQLiteProvider:
    """Provider for SQLite database files.

    Args:
        connection_string: A file path or ADO-style 'Data Source=...' string.
        resolver: Asset resolver for reference columns.
    """

    dialect = SQLITE

    def __init__(self, connection_string: str, resolver: AssetResolver | None = None):
        self.path = sqlite_path(connection_string)
        self.resolver = resolver

    def __repr__(self) -> str:
        return f"SQLiteProvider(path={str(self.path)!r})"

    def _schema(self, conn: sqlite3.Connection, table: str) -> TableInfo:
        with wrap_errors(SchemaIntrospectionFailure, f"Introspect {table}", _DRIVER_ERRORS):
            info = sqlite_columns(conn, self.dialect, table)
            return apply_logical_types(info, get_logical_types(conn, self.dialect, table))

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def list_tables(self) -> list[str]:
        with connect_sqlite(self.path) as conn:
            return list_sqlite_tables(conn)

    def get_columns(self, table: str) -> TableInfo:
        with connect_sqlite(self.path) as conn:
            return self._schema(conn, table)

    def get_primary_key_column(self, table: str) -> str | None:
        key = self.get_columns(table).primary_key
        return key.name if key else None

    def get_column_type(self, table: str, column: str) -> str:
        """Return the logical type of a column, as declared."""
        return self._column(self.get_columns(table), column).type

    def is_auto_increment(self, table: str, column: str) -> bool:
        return self._column(self.get_columns(table), column).auto_increment

    @staticmethod
    def _column(schema: TableInfo, column: str) -> ColumnInfo:
        col = schema.column_by_name(column)
        if col is None:
            raise ColumnNotFound(f"Column '{column}' not found in table '{schema.name}'")
        return col

    # -------------------------------------------------------------------------
    # DDL
    # -------------------------------------------------------------------------

    def create_table(
        self,
        name: str,
        columns: list[ColumnDef],
        primary_key_index: int | None = None,
    ) -> None:
        """Create a table and record the logical types of extended columns.

        Raises:
            SchemaModificationFailed: If the engine rejects the statement.
        """
        op = CreateTable(table=name, columns=columns, primary_key_index=primary_key_index)
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(SchemaModificationFailed, f"Create table {name}", _DRIVER_ERRORS),
            transaction(conn),
        ):
            execute(conn, transpile_create_table(op, self.dialect))
            # A table of the same name may have been dropped outside usql
            drop_table_types(conn, self.dialect, name)
            for col in op.columns:
                if col.declared.is_extended:
                    record_column_type(conn, self.dialect, name, col.name, col.declared)
        logger.info("Created table %s", name)

    def delete_table(self, name: str) -> None:
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(SchemaModificationFailed, f"Delete table {name}", _DRIVER_ERRORS),
            transaction(conn),
        ):
            execute(conn, f"DROP TABLE IF EXISTS {self.dialect.quote(name)}")
            drop_table_types(conn, self.dialect, name)
        logger.info("Deleted table %s", name)

    def clear_table(self, name: str) -> None:
        """Delete every row, keeping the table definition."""
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(StatementFailed, f"Clear table {name}", _DRIVER_ERRORS),
        ):
            execute(conn, f"DELETE FROM {self.dialect.quote(name)}")

    def add_column(self, table: str, name: str, type: str, nullable: bool = True) -> None:
        op = AddColumn(table=table, column=name, type=type, nullable=nullable)
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(SchemaModificationFailed, f"Add column {table}.{name}", _DRIVER_ERRORS),
            transaction(conn),
        ):
            execute(conn, transpile_add_column(op, self.dialect))
            record_column_type(conn, self.dialect, table, name, parse_declared_type(type))
        logger.info("Added column %s.%s %s", table, name, type)

    def modify_column(
        self,
        table: str,
        old_name: str,
        new_name: str,
        new_type: str,
        is_primary_key: bool = False,
    ) -> None:
        """Rename and/or retype a column and set its key status via rebuild.

        If ``is_primary_key`` is set the column becomes the only key. If the
        column was the key and ``is_primary_key`` is not set, the table is
        left without one.

        Raises:
            ColumnNotFound: If ``old_name`` does not exist.
            SchemaModificationFailed: If any rebuild step fails; the table
                is left exactly as it was.
        """
        op = ModifyColumn(
            table=table,
            old_name=old_name,
            new_name=new_name,
            new_type=new_type,
            is_primary_key=is_primary_key,
        )
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(SchemaModificationFailed, f"Modify column {table}.{old_name}", _DRIVER_ERRORS),
            transaction(conn),
        ):
            self._modify(conn, self._schema(conn, table), op)

    def _modify(self, conn: sqlite3.Connection, schema: TableInfo, op: ModifyColumn) -> None:
        columns, column_map = plan_modify(
            schema, op.old_name, op.new_name, op.new_type, op.is_primary_key
        )
        rebuild_table(conn, self.dialect, op.table, columns, column_map)
        clear_column_type(conn, self.dialect, op.table, op.old_name)
        record_column_type(
            conn, self.dialect, op.table, op.new_name, parse_declared_type(op.new_type)
        )
        logger.info(
            "Modified column %s.%s -> %s %s", op.table, op.old_name, op.new_name, op.new_type
        )

    def change_column_type(self, table: str, column: str, new_type: str) -> None:
        """Retype a column, keeping its name and key status."""
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(SchemaModificationFailed, f"Change type of {table}.{column}", _DRIVER_ERRORS),
            transaction(conn),
        ):
            schema = self._schema(conn, table)
            col = self._column(schema, column)
            op = ModifyColumn(
                table=table,
                old_name=col.name,
                new_name=col.name,
                new_type=new_type,
                is_primary_key=col.primary_key,
            )
            self._modify(conn, schema, op)

    def delete_column(self, table: str, name: str) -> None:
        """Drop a column via rebuild.

        Raises:
            ColumnNotFound: If the column does not exist.
            CannotDeleteLastColumn: If it is the table's only column.
            SchemaModificationFailed: If the rebuild fails.
        """
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(SchemaModificationFailed, f"Delete column {table}.{name}", _DRIVER_ERRORS),
            transaction(conn),
        ):
            columns, column_map = plan_drop(self._schema(conn, table), name)
            rebuild_table(conn, self.dialect, table, columns, column_map)
            clear_column_type(conn, self.dialect, table, name)
        logger.info("Deleted column %s.%s", table, name)

    def make_primary_key(self, table: str, name: str) -> None:
        """Make a column the table's only primary key.

        Raises:
            ColumnNotFound: If the column does not exist.
            DuplicateValueViolation: If the column holds duplicate values.
        """
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(SchemaModificationFailed, f"Make {table}.{name} primary key", _DRIVER_ERRORS),
            transaction(conn),
        ):
            schema = self._schema(conn, table)
            col = self._column(schema, name)
            duplicate = rows.find_duplicate(conn, self.dialect, table, col.name)
            if duplicate is not None:
                raise DuplicateValueViolation(
                    f"Column '{col.name}' of '{table}' holds duplicate value {duplicate!r}"
                )
            op = ModifyColumn(
                table=table,
                old_name=col.name,
                new_name=col.name,
                new_type=col.type or "BLOB",
                is_primary_key=True,
            )
            self._modify(conn, schema, op)

    def record_logical_type(self, table: str, column: str, type: str) -> None:
        """Record a logical type for an existing column without touching its data."""
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(SchemaModificationFailed, f"Record type of {table}.{column}", _DRIVER_ERRORS),
            transaction(conn),
        ):
            col = self._column(self._schema(conn, table), column)
            record_column_type(conn, self.dialect, table, col.name, parse_declared_type(type))

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def insert_row(self, table: str, row: dict[str, Any]) -> None:
        with connect_sqlite(self.path) as conn:
            schema = self._schema(conn, table)
            with wrap_errors(StatementFailed, f"Insert into {table}", _DRIVER_ERRORS):
                rows.insert_row(conn, self.dialect, schema, row, self.resolver)

    def update_cell_value(
        self, table: str, row: dict[str, Any], column: str, new_value: Any
    ) -> None:
        """Update one cell of the row identified by its primary key.

        Raises:
            NoPrimaryKey: If the table has no primary key; nothing is written.
        """
        with connect_sqlite(self.path) as conn:
            schema = self._schema(conn, table)
            with wrap_errors(StatementFailed, f"Update {table}.{column}", _DRIVER_ERRORS):
                rows.update_cell(
                    conn, self.dialect, schema, row, column, new_value, self.resolver
                )

    def delete_row(self, table: str, row: dict[str, Any]) -> DeleteResult:
        with connect_sqlite(self.path) as conn:
            schema = self._schema(conn, table)
            with wrap_errors(StatementFailed, f"Delete from {table}", _DRIVER_ERRORS):
                return rows.delete_row(conn, self.dialect, schema, row, self.resolver)

    def check_primary_key_exists(self, table: str, pk_column: str, value: Any) -> bool:
        with connect_sqlite(self.path) as conn:
            schema = self._schema(conn, table)
            with wrap_errors(StatementFailed, f"Key lookup in {table}", _DRIVER_ERRORS):
                return rows.key_exists(
                    conn, self.dialect, schema, pk_column, value, self.resolver
                )

    def select_rows(self, table: str, limit: int | None = None) -> list[dict[str, Any]]:
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(StatementFailed, f"Select from {table}", _DRIVER_ERRORS),
        ):
            return rows.select_rows(conn, self.dialect, table, limit)

    # -------------------------------------------------------------------------
    # Ad-hoc queries
    # -------------------------------------------------------------------------

    def run_query(self, sql: str, params: tuple[Any, ...] = ()) -> QueryResult:
        op = Query(sql=sql, params=list(params))
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(StatementFailed, "Query", _DRIVER_ERRORS),
        ):
            return query.execute(conn, op)

    def search(self, op: Search) -> QueryResult:
        with (
            connect_sqlite(self.path) as conn,
            wrap_errors(StatementFailed, f"Search {op.table}", _DRIVER_ERRORS),
        ):
            return query.execute(conn, op, self.dialect)
