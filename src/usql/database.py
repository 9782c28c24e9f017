"""Database facade and per-table row cache.

``Database`` pairs a provider with the list of tables it exposes and a
free-form SQL buffer. Every schema and row operation is delegated to the
provider unchanged. Table caches are snapshots: writes never patch them,
callers reload a table to see its new content.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from usql.codec import ValueDecodeFallback, decode_row, sniff_vector_kind
from usql.db.introspection import ColumnInfo, TableInfo
from usql.errors import TableNotFound
from usql.ops.query import QueryResult, Search, SearchFilter
from usql.ops.rows import DeleteResult
from usql.ops.schema import ColumnDef
from usql.providers.base import Provider
from usql.types import TypeKind

logger = logging.getLogger(__name__)

DEFAULT_SNIFF_SAMPLE_SIZE = 20


@dataclass
class Table:
    """Cached content of one table.

    Attributes:
        name: Table name.
        columns: Columns as of the last load.
        rows: Decoded rows as of the last load.
        decode_issues: Cells that could not be decoded during the last load.
    """

    name: str
    columns: list[ColumnInfo] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    decode_issues: list[ValueDecodeFallback] = field(default_factory=list)

    def load_content(self, provider: Provider, limit: int | None = None) -> None:
        """Clear the cache and repopulate it from the database.

        Cells that fail to decode are substituted and recorded in
        ``decode_issues``; loading never aborts on one bad cell.
        """
        self.columns = []
        self.rows = []
        self.decode_issues = []

        schema = provider.get_columns(self.name)
        types = schema.declared_types()
        raw_rows = provider.select_rows(self.name, limit)

        self.columns = list(schema.columns)
        self.rows = [
            decode_row(raw, types, provider.resolver, self.decode_issues.append)
            for raw in raw_rows
        ]
        if self.decode_issues:
            logger.warning(
                "Loaded %s with %d undecodable cell(s)", self.name, len(self.decode_issues)
            )

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]


class Database:
    """A named database reached through a provider.

    Args:
        name: Display name.
        provider: Engine provider that performs every operation.
        load: Populate ``tables`` immediately (default True).
    """

    def __init__(self, name: str, provider: Provider, load: bool = True):
        self.name = name
        self.provider = provider
        self.tables: list[Table] = []
        self.sql_query = ""
        if load:
            self.refresh_tables()

    def __repr__(self) -> str:
        return f"Database(name={self.name!r}, {len(self.tables)} tables)"

    # -------------------------------------------------------------------------
    # Table cache
    # -------------------------------------------------------------------------

    def refresh_tables(self) -> list[Table]:
        """Rebuild ``tables`` from the provider's table list.

        Row caches are dropped; load tables again to repopulate them.
        """
        self.tables = [Table(name) for name in self.provider.list_tables()]
        return self.tables

    def table_names(self) -> list[str]:
        return [table.name for table in self.tables]

    def table(self, name: str) -> Table:
        """Return the cached table by name.

        Raises:
            TableNotFound: If no such table was listed.
        """
        for table in self.tables:
            if table.name == name:
                return table
        raise TableNotFound(f"Table {name!r} is not loaded in database {self.name!r}")

    def load_table_content(self, name: str, limit: int | None = None) -> Table:
        """Reload one table's rows and return it."""
        table = self.table(name)
        table.load_content(self.provider, limit)
        return table

    # -------------------------------------------------------------------------
    # Delegated provider operations
    # -------------------------------------------------------------------------

    def get_columns(self, table: str) -> TableInfo:
        return self.provider.get_columns(table)

    def get_primary_key_column(self, table: str) -> str | None:
        return self.provider.get_primary_key_column(table)

    def get_column_type(self, table: str, column: str) -> str:
        return self.provider.get_column_type(table, column)

    def is_auto_increment(self, table: str, column: str) -> bool:
        return self.provider.is_auto_increment(table, column)

    def create_table(
        self, name: str, columns: list[ColumnDef], primary_key_index: int | None = None
    ) -> None:
        self.provider.create_table(name, columns, primary_key_index)

    def delete_table(self, name: str) -> None:
        self.provider.delete_table(name)

    def clear_table(self, name: str) -> None:
        self.provider.clear_table(name)

    def add_column(self, table: str, name: str, type: str, nullable: bool = True) -> None:
        self.provider.add_column(table, name, type, nullable)

    def modify_column(
        self,
        table: str,
        old_name: str,
        new_name: str,
        new_type: str,
        is_primary_key: bool = False,
    ) -> None:
        self.provider.modify_column(table, old_name, new_name, new_type, is_primary_key)

    def change_column_type(self, table: str, column: str, new_type: str) -> None:
        self.provider.change_column_type(table, column, new_type)

    def delete_column(self, table: str, name: str) -> None:
        self.provider.delete_column(table, name)

    def make_primary_key(self, table: str, name: str) -> None:
        self.provider.make_primary_key(table, name)

    def insert_row(self, table: str, row: dict[str, Any]) -> None:
        self.provider.insert_row(table, row)

    def update_cell_value(
        self, table: str, row: dict[str, Any], column: str, new_value: Any
    ) -> None:
        self.provider.update_cell_value(table, row, column, new_value)

    def delete_row(self, table: str, row: dict[str, Any]) -> DeleteResult:
        return self.provider.delete_row(table, row)

    def check_primary_key_exists(self, table: str, pk_column: str, value: Any) -> bool:
        return self.provider.check_primary_key_exists(table, pk_column, value)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def execute_query(self, sql: str | None = None) -> QueryResult:
        """Run ``sql``, or the ``sql_query`` buffer when none is given.

        Raises:
            ValueError: If there is nothing to run.
        """
        text = self.sql_query if sql is None else sql
        if not text.strip():
            raise ValueError("No SQL query to execute")
        return self.provider.run_query(text)

    def search(
        self,
        table: str,
        filters: list[SearchFilter] | None = None,
        limit: int | None = None,
    ) -> QueryResult:
        """Run a filtered SELECT over one table."""
        return self.provider.search(Search(table=table, filters=filters or [], limit=limit))

    # -------------------------------------------------------------------------
    # Migration
    # -------------------------------------------------------------------------

    def adopt_vector_columns(
        self, table: str, sample_size: int = DEFAULT_SNIFF_SAMPLE_SIZE
    ) -> dict[str, TypeKind]:
        """Record vector types for untyped TEXT columns that hold vectors.

        Meant for databases created before logical types were recorded. A
        column is adopted only when every non-empty sampled value parses as
        the same vector kind; anything inconclusive is left alone.

        Args:
            table: Table to inspect.
            sample_size: Maximum number of rows to sample.

        Returns:
            Mapping of adopted column names to their new kind.
        """
        schema = self.provider.get_columns(table)
        candidates = [
            col
            for col in schema.columns
            if col.declared.kind == TypeKind.TEXT and not col.primary_key
        ]
        if not candidates:
            return {}

        sample = self.provider.select_rows(table, sample_size)
        adopted: dict[str, TypeKind] = {}
        for col in candidates:
            values = [row[col.name] for row in sample if row.get(col.name)]
            kinds = {sniff_vector_kind(value) for value in values}
            if len(kinds) != 1 or None in kinds:
                continue
            kind = kinds.pop()
            self.provider.record_logical_type(table, col.name, kind.value)
            adopted[col.name] = kind
            logger.info("Adopted %s.%s as %s", table, col.name, kind.value)
        return adopted
