"""Ad-hoc query operations with Pydantic models and executor.

Provides typed models for free-form SQL and filtered table search, and an
executor that runs them against an open connection and returns rows
together with column names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, overload

from pydantic import BaseModel, field_validator

from usql.db.connection import fetch_with_columns
from usql.db.dialect import Dialect

SearchOperator = Literal["=", "!=", "<>", "<", "<=", ">", ">=", "LIKE"]


@dataclass
class QueryResult:
    """Rows returned by a statement.

    Attributes:
        columns: Result column names (empty for statements without rows).
        rows: Result rows in engine order.
        rowcount: Affected row count reported by the driver (-1 if unknown).
    """

    columns: list[str] = field(default_factory=list)
    rows: list[tuple[Any, ...]] = field(default_factory=list)
    rowcount: int = -1

    def as_dicts(self) -> list[dict[str, Any]]:
        """Return rows as column -> value mappings."""
        return [dict(zip(self.columns, row, strict=True)) for row in self.rows]


class Query(BaseModel):
    """A free-form SQL statement with optional positional parameters.

    Attributes:
        sql: The SQL statement.
        params: Positional parameters for the statement (default empty).
    """

    sql: str
    params: list[Any] = []

    @field_validator("sql")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate that SQL is not blank."""
        if not v.strip():
            msg = "Query SQL cannot be empty"
            raise ValueError(msg)
        return v

    @property
    def is_select(self) -> bool:
        """True when the statement reads rows."""
        return self.sql.lstrip().upper().startswith(("SELECT", "WITH", "PRAGMA", "SHOW"))


class SearchFilter(BaseModel):
    """One ``column <operator> value`` condition. Blank values are ignored."""

    column: str
    operator: SearchOperator = "="
    value: str = ""

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, v: Any) -> Any:
        """Accept operators in any case ('like' -> 'LIKE')."""
        return v.strip().upper() if isinstance(v, str) else v


class Search(BaseModel):
    """A filtered SELECT over one table.

    Attributes:
        table: Table to search.
        filters: Conditions joined with AND.
        limit: Maximum number of rows, or None for all.
    """

    table: str
    filters: list[SearchFilter] = []
    limit: int | None = None

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v: int | None) -> int | None:
        """Validate limit is positive."""
        if v is not None and v <= 0:
            msg = "limit must be positive"
            raise ValueError(msg)
        return v


def search_sql(dialect: Dialect, op: Search) -> tuple[str, tuple[Any, ...]]:
    """Build the SQL and parameters for a Search."""
    conditions: list[str] = []
    params: list[Any] = []
    for flt in op.filters:
        if not flt.value:
            continue
        conditions.append(f"{dialect.quote(flt.column)} {flt.operator} {dialect.placeholder}")
        params.append(flt.value)

    sql = f"SELECT * FROM {dialect.quote(op.table)}"
    if conditions:
        sql += " WHERE " + " AND ".join(conditions)
    if op.limit is not None:
        sql += f" LIMIT {dialect.placeholder}"
        params.append(op.limit)
    return sql, tuple(params)


@overload
def execute(conn: Any, op: Query, dialect: Dialect | None = None) -> QueryResult: ...


@overload
def execute(conn: Any, op: Search, dialect: Dialect) -> QueryResult: ...


def execute(conn: Any, op: Query | Search, dialect: Dialect | None = None) -> QueryResult:
    """Execute a query operation and return its result.

    Args:
        conn: Active connection.
        op: The operation to execute (Query or Search).
        dialect: Dialect of the connection; required for Search.

    Returns:
        QueryResult with columns, rows and affected row count.
    """
    if isinstance(op, Query):
        return _execute_query(conn, op)
    if isinstance(op, Search):
        if dialect is None:
            msg = "Search requires a dialect"
            raise TypeError(msg)
        return _execute_search(conn, op, dialect)
    msg = f"Unknown operation type: {type(op)}"
    raise TypeError(msg)


def _execute_query(conn: Any, op: Query) -> QueryResult:
    """Execute a free-form statement."""
    columns, rows, rowcount = fetch_with_columns(conn, op.sql, tuple(op.params))
    return QueryResult(columns=columns, rows=list(rows), rowcount=rowcount)


def _execute_search(conn: Any, op: Search, dialect: Dialect) -> QueryResult:
    """Execute a filtered SELECT."""
    sql, params = search_sql(dialect, op)
    columns, rows, rowcount = fetch_with_columns(conn, sql, params)
    return QueryResult(columns=columns, rows=list(rows), rowcount=rowcount)
