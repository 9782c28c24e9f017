"""Provider contract and factory.

A provider implements the uniform database operation contract for one
engine. Implementations are composed from the shared free functions in
``usql.db`` and ``usql.ops`` rather than inheriting from a base class;
``Provider`` only describes the shape callers rely on.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from enum import StrEnum
from typing import Any, Protocol

from usql.codec import AssetResolver
from usql.db.dialect import Dialect
from usql.db.introspection import TableInfo
from usql.errors import USQLError
from usql.ops.query import QueryResult, Search
from usql.ops.rows import DeleteResult
from usql.ops.schema import ColumnDef

logger = logging.getLogger(__name__)


class EngineKind(StrEnum):
    """Supported database engines."""

    SQLITE = "sqlite"
    MYSQL = "mysql"


class Provider(Protocol):
    """Uniform database operations implemented per engine.

    Every method opens a short-lived connection, performs its work and
    closes the connection before returning.
    """

    dialect: Dialect
    resolver: AssetResolver | None

    def list_tables(self) -> list[str]: ...

    def get_columns(self, table: str) -> TableInfo: ...

    def get_primary_key_column(self, table: str) -> str | None: ...

    def get_column_type(self, table: str, column: str) -> str: ...

    def is_auto_increment(self, table: str, column: str) -> bool: ...

    def create_table(
        self,
        name: str,
        columns: list[ColumnDef],
        primary_key_index: int | None = None,
    ) -> None: ...

    def delete_table(self, name: str) -> None: ...

    def clear_table(self, name: str) -> None: ...

    def add_column(self, table: str, name: str, type: str, nullable: bool = True) -> None: ...

    def modify_column(
        self,
        table: str,
        old_name: str,
        new_name: str,
        new_type: str,
        is_primary_key: bool = False,
    ) -> None: ...

    def change_column_type(self, table: str, column: str, new_type: str) -> None: ...

    def delete_column(self, table: str, name: str) -> None: ...

    def make_primary_key(self, table: str, name: str) -> None: ...

    def insert_row(self, table: str, row: dict[str, Any]) -> None: ...

    def update_cell_value(
        self, table: str, row: dict[str, Any], column: str, new_value: Any
    ) -> None: ...

    def delete_row(self, table: str, row: dict[str, Any]) -> DeleteResult: ...

    def check_primary_key_exists(self, table: str, pk_column: str, value: Any) -> bool: ...

    def select_rows(self, table: str, limit: int | None = None) -> list[dict[str, Any]]: ...

    def run_query(self, sql: str, params: tuple[Any, ...] = ()) -> QueryResult: ...

    def search(self, op: Search) -> QueryResult: ...

    def record_logical_type(self, table: str, column: str, type: str) -> None: ...


@contextmanager
def wrap_errors(
    error_cls: type[USQLError],
    action: str,
    driver_errors: tuple[type[BaseException], ...] = (Exception,),
) -> Generator[None]:
    """Translate driver errors raised in the block into ``error_cls``.

    usql errors and value errors from the codec propagate unchanged; the
    driver error is kept as ``__cause__``.

    Args:
        error_cls: usql error type to raise.
        action: Short description for the message (e.g. "Insert into t").
        driver_errors: Exception types to translate.
    """
    try:
        yield
    except (USQLError, ValueError):
        raise
    except driver_errors as e:
        logger.debug("%s failed", action, exc_info=True)
        raise error_cls(f"{action} failed: {e}") from e


def create_provider(
    engine: EngineKind | str,
    connection_string: str,
    resolver: AssetResolver | None = None,
) -> Provider:
    """Build the provider for an engine.

    Args:
        engine: Engine kind ('sqlite' or 'mysql').
        connection_string: Engine-specific connection string.
        resolver: Asset resolver for reference columns.

    Raises:
        ValueError: If the engine is unknown.
    """
    kind = EngineKind(engine)
    if kind == EngineKind.SQLITE:
        from usql.providers.sqlite import SQLiteProvider

        return SQLiteProvider(connection_string, resolver=resolver)

    from usql.providers.mysql import MySQLProvider

    return MySQLProvider(connection_string, resolver=resolver)
