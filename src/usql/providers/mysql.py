"""MySQL/MariaDB provider.

Column changes use native ALTER TABLE statements. MySQL commits DDL
implicitly, so a column modify, key moves included, is sent as a single
ALTER TABLE, which the server applies atomically. The surrounding
transaction covers the logical type bookkeeping.
"""

import logging
from typing import Any

from usql.codec import AssetResolver
from usql.db.connection import connect_mysql, execute, mysql_params, transaction
from usql.db.dialect import MYSQL
from usql.db.introspection import (
    ColumnInfo,
    TableInfo,
    apply_logical_types,
    list_mysql_tables,
    mysql_columns,
)
from usql.db.metadata import (
    clear_column_type,
    drop_table_types,
    get_logical_types,
    record_column_type,
)
from usql.errors import (
    CannotDeleteLastColumn,
    ColumnNotFound,
    DuplicateValueViolation,
    SchemaIntrospectionFailure,
    SchemaModificationFailed,
    StatementFailed,
)
from usql.ops import query, rows
from usql.ops.query import Query, QueryResult, Search
from usql.ops.rows import DeleteResult
from usql.ops.schema import (
    AddColumn,
    ColumnDef,
    CreateTable,
    DropColumn,
    ModifyColumn,
    change_column_clause,
    transpile_add_column,
    transpile_create_table,
    transpile_drop_column,
)
from usql.providers.base import wrap_errors
from usql.types import TypeKind, parse_declared_type

logger = logging.getLogger(__name__)


class MySQLProvider:
    """Provider for MySQL and MariaDB servers.

    Args:
        connection_string: 'mysql://user:pw@host/db' or an ADO-style
            'Server=...;Database=...;Uid=...;Pwd=...' string.
        resolver: Asset resolver for reference columns.
    """

    dialect = MYSQL

    def __init__(self, connection_string: str, resolver: AssetResolver | None = None):
        self.params = mysql_params(connection_string)
        self.resolver = resolver

    def __repr__(self) -> str:
        host = self.params.get("host")
        database = self.params.get("database")
        return f"MySQLProvider(host={host!r}, database={database!r})"

    def _schema(self, conn: Any, table: str) -> TableInfo:
        with wrap_errors(SchemaIntrospectionFailure, f"Introspect {table}"):
            info = mysql_columns(conn, self.dialect, table)
            return apply_logical_types(info, get_logical_types(conn, self.dialect, table))

    @staticmethod
    def _column(schema: TableInfo, column: str) -> ColumnInfo:
        col = schema.column_by_name(column)
        if col is None:
            raise ColumnNotFound(f"Column '{column}' not found in table '{schema.name}'")
        return col

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def list_tables(self) -> list[str]:
        with connect_mysql(self.params) as conn:
            return list_mysql_tables(conn)

    def get_columns(self, table: str) -> TableInfo:
        with connect_mysql(self.params) as conn:
            return self._schema(conn, table)

    def get_primary_key_column(self, table: str) -> str | None:
        key = self.get_columns(table).primary_key
        return key.name if key else None

    def get_column_type(self, table: str, column: str) -> str:
        return self._column(self.get_columns(table), column).type

    def is_auto_increment(self, table: str, column: str) -> bool:
        return self._column(self.get_columns(table), column).auto_increment

    # -------------------------------------------------------------------------
    # DDL
    # -------------------------------------------------------------------------

    def create_table(
        self,
        name: str,
        columns: list[ColumnDef],
        primary_key_index: int | None = None,
    ) -> None:
        op = CreateTable(table=name, columns=columns, primary_key_index=primary_key_index)
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(SchemaModificationFailed, f"Create table {name}"),
        ):
            execute(conn, transpile_create_table(op, self.dialect))
            with transaction(conn):
                drop_table_types(conn, self.dialect, name)
                for col in op.columns:
                    if col.declared.is_extended:
                        record_column_type(conn, self.dialect, name, col.name, col.declared)
        logger.info("Created table %s", name)

    def delete_table(self, name: str) -> None:
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(SchemaModificationFailed, f"Delete table {name}"),
        ):
            execute(conn, f"DROP TABLE IF EXISTS {self.dialect.quote(name)}")
            with transaction(conn):
                drop_table_types(conn, self.dialect, name)
        logger.info("Deleted table %s", name)

    def clear_table(self, name: str) -> None:
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(StatementFailed, f"Clear table {name}"),
        ):
            execute(conn, f"TRUNCATE TABLE {self.dialect.quote(name)}")

    def add_column(self, table: str, name: str, type: str, nullable: bool = True) -> None:
        op = AddColumn(table=table, column=name, type=type, nullable=nullable)
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(SchemaModificationFailed, f"Add column {table}.{name}"),
        ):
            execute(conn, transpile_add_column(op, self.dialect))
            with transaction(conn):
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
        """Rename and/or retype a column and set its key status.

        Everything is sent as one ALTER TABLE so MySQL applies it atomically.
        The current key is dropped when it moves to another column or is
        removed from this one; an AUTO_INCREMENT key that moves is stripped
        of the attribute in the same statement, since MySQL requires the
        attribute to sit on a key column.

        Raises:
            ColumnNotFound: If ``old_name`` does not exist.
            SchemaModificationFailed: If any statement fails.
        """
        op = ModifyColumn(
            table=table,
            old_name=old_name,
            new_name=new_name,
            new_type=new_type,
            is_primary_key=is_primary_key,
        )
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(SchemaModificationFailed, f"Modify column {table}.{old_name}"),
            transaction(conn),
        ):
            self._modify(conn, self._schema(conn, table), op)

    def _modify(self, conn: Any, schema: TableInfo, op: ModifyColumn) -> None:
        target = self._column(schema, op.old_name)
        key = schema.primary_key
        q_table = self.dialect.quote(op.table)

        clauses: list[str] = []
        key_moves = op.is_primary_key and key is not None and key is not target
        key_removed = not op.is_primary_key and key is target
        if key is not None and (key_moves or key_removed):
            if key_moves and key.auto_increment:
                clauses.append(
                    f"MODIFY COLUMN {self.dialect.quote(key.name)} {key.storage_type} NOT NULL"
                )
            clauses.append("DROP PRIMARY KEY")

        new_kind = parse_declared_type(op.new_type).kind
        keep_auto = (
            op.is_primary_key
            and new_kind == TypeKind.INTEGER
            and (target.auto_increment or not target.primary_key)
        )
        change = op.model_copy(update={"old_name": target.name})
        clauses.append(
            change_column_clause(
                change,
                self.dialect,
                add_primary_key=op.is_primary_key and key is not target,
                auto_increment=keep_auto,
                nullable=target.nullable,
            )
        )
        execute(conn, f"ALTER TABLE {q_table} {', '.join(clauses)}")
        clear_column_type(conn, self.dialect, op.table, target.name)
        record_column_type(
            conn, self.dialect, op.table, op.new_name, parse_declared_type(op.new_type)
        )
        logger.info(
            "Modified column %s.%s -> %s %s", op.table, target.name, op.new_name, op.new_type
        )

    def change_column_type(self, table: str, column: str, new_type: str) -> None:
        """Retype a column, keeping its name and key status."""
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(SchemaModificationFailed, f"Change type of {table}.{column}"),
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
        """Drop a column.

        Raises:
            ColumnNotFound: If the column does not exist.
            CannotDeleteLastColumn: If it is the table's only column.
        """
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(SchemaModificationFailed, f"Delete column {table}.{name}"),
        ):
            schema = self._schema(conn, table)
            col = self._column(schema, name)
            if len(schema.columns) == 1:
                raise CannotDeleteLastColumn(
                    f"Cannot delete '{col.name}': it is the only column of '{table}'"
                )
            op = DropColumn(table=table, column=col.name)
            execute(conn, transpile_drop_column(op, self.dialect))
            with transaction(conn):
                clear_column_type(conn, self.dialect, table, col.name)
        logger.info("Deleted column %s.%s", table, name)

    def make_primary_key(self, table: str, name: str) -> None:
        """Make a column the table's only primary key.

        Raises:
            ColumnNotFound: If the column does not exist.
            DuplicateValueViolation: If the column holds duplicate values.
        """
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(SchemaModificationFailed, f"Make {table}.{name} primary key"),
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
                new_type=col.type,
                is_primary_key=True,
            )
            self._modify(conn, schema, op)

    def record_logical_type(self, table: str, column: str, type: str) -> None:
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(SchemaModificationFailed, f"Record type of {table}.{column}"),
            transaction(conn),
        ):
            col = self._column(self._schema(conn, table), column)
            record_column_type(conn, self.dialect, table, col.name, parse_declared_type(type))

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def _commit(self, conn: Any) -> None:
        # mysql-connector does not autocommit by default
        conn.commit()

    def insert_row(self, table: str, row: dict[str, Any]) -> None:
        with connect_mysql(self.params) as conn:
            schema = self._schema(conn, table)
            with wrap_errors(StatementFailed, f"Insert into {table}"):
                rows.insert_row(conn, self.dialect, schema, row, self.resolver)
                self._commit(conn)

    def update_cell_value(
        self, table: str, row: dict[str, Any], column: str, new_value: Any
    ) -> None:
        with connect_mysql(self.params) as conn:
            schema = self._schema(conn, table)
            with wrap_errors(StatementFailed, f"Update {table}.{column}"):
                rows.update_cell(
                    conn, self.dialect, schema, row, column, new_value, self.resolver
                )
                self._commit(conn)

    def delete_row(self, table: str, row: dict[str, Any]) -> DeleteResult:
        with connect_mysql(self.params) as conn:
            schema = self._schema(conn, table)
            with wrap_errors(StatementFailed, f"Delete from {table}"):
                result = rows.delete_row(conn, self.dialect, schema, row, self.resolver)
                self._commit(conn)
                return result

    def check_primary_key_exists(self, table: str, pk_column: str, value: Any) -> bool:
        with connect_mysql(self.params) as conn:
            schema = self._schema(conn, table)
            with wrap_errors(StatementFailed, f"Key lookup in {table}"):
                return rows.key_exists(
                    conn, self.dialect, schema, pk_column, value, self.resolver
                )

    def select_rows(self, table: str, limit: int | None = None) -> list[dict[str, Any]]:
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(StatementFailed, f"Select from {table}"),
        ):
            return rows.select_rows(conn, self.dialect, table, limit)

    # -------------------------------------------------------------------------
    # Ad-hoc queries
    # -------------------------------------------------------------------------

    def run_query(self, sql: str, params: tuple[Any, ...] = ()) -> QueryResult:
        op = Query(sql=sql, params=list(params))
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(StatementFailed, "Query"),
        ):
            result = query.execute(conn, op)
            if not op.is_select:
                self._commit(conn)
            return result

    def search(self, op: Search) -> QueryResult:
        with (
            connect_mysql(self.params) as conn,
            wrap_errors(StatementFailed, f"Search {op.table}"),
        ):
            return query.execute(conn, op, self.dialect)
