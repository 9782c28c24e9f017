"""Tests for ad-hoc query and search operations."""

import sqlite3

import pytest
from pydantic import ValidationError

from usql.db.dialect import MYSQL, SQLITE
from usql.ops.query import (
    Query,
    QueryResult,
    Search,
    SearchFilter,
    execute,
    search_sql,
)


@pytest.fixture
def conn_with_table() -> sqlite3.Connection:
    """Create a connection with a test table."""
    conn = sqlite3.connect(":memory:")
    conn.execute("""
        CREATE TABLE units (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            hp INTEGER
        )
    """)
    conn.executemany(
        "INSERT INTO units (name, hp) VALUES (?, ?)",
        [("archer", 40), ("knight", 120), ("mage", 35)],
    )
    conn.commit()
    return conn


class TestQueryModel:
    """Tests for Query model validation."""

    def test_accepts_any_statement(self) -> None:
        """Free-form SQL is not restricted to SELECT."""
        assert Query(sql="DELETE FROM units").sql == "DELETE FROM units"

    def test_rejects_blank(self) -> None:
        """Blank SQL is rejected."""
        with pytest.raises(ValidationError, match="cannot be empty"):
            Query(sql="   ")

    @pytest.mark.parametrize(
        ("sql", "expected"),
        [
            ("SELECT 1", True),
            ("  with x as (select 1) select * from x", True),
            ("PRAGMA table_info(units)", True),
            ("UPDATE units SET hp = 1", False),
        ],
    )
    def test_is_select(self, sql: str, expected: bool) -> None:
        """Row-returning statements are recognised."""
        assert Query(sql=sql).is_select is expected


class TestSearchModel:
    """Tests for Search and SearchFilter validation."""

    def test_operator_case_insensitive(self) -> None:
        """Operators are normalised to upper case."""
        assert SearchFilter(column="name", operator="like", value="a%").operator == "LIKE"

    def test_rejects_unknown_operator(self) -> None:
        """Only whitelisted operators are accepted."""
        with pytest.raises(ValidationError):
            SearchFilter(column="name", operator="; DROP TABLE units; --", value="x")

    def test_rejects_non_positive_limit(self) -> None:
        """Limit must be positive."""
        with pytest.raises(ValidationError, match="positive"):
            Search(table="units", limit=0)


class TestSearchSql:
    """Tests for search_sql."""

    def test_no_filters(self) -> None:
        """Without filters the whole table is selected."""
        assert search_sql(SQLITE, Search(table="units")) == ('SELECT * FROM "units"', ())

    def test_blank_values_skipped(self) -> None:
        """Filters with empty values are ignored."""
        op = Search(
            table="units",
            filters=[
                SearchFilter(column="name", value=""),
                SearchFilter(column="hp", operator=">", value="50"),
            ],
        )
        assert search_sql(MYSQL, op) == ("SELECT * FROM `units` WHERE `hp` > %s", ("50",))

    def test_values_are_bound(self) -> None:
        """Values are parameters, never part of the SQL text."""
        op = Search(
            table="units",
            filters=[SearchFilter(column="name", value="x' OR '1'='1")],
            limit=5,
        )
        sql, params = search_sql(SQLITE, op)
        assert sql == 'SELECT * FROM "units" WHERE "name" = ? LIMIT ?'
        assert params == ("x' OR '1'='1", 5)


class TestExecute:
    """Tests for the executor."""

    def test_select(self, conn_with_table: sqlite3.Connection) -> None:
        """SELECT returns columns and rows."""
        result = execute(conn_with_table, Query(sql="SELECT name, hp FROM units ORDER BY id"))
        assert result.columns == ["name", "hp"]
        assert result.rows[0] == ("archer", 40)
        assert result.as_dicts()[1] == {"name": "knight", "hp": 120}

    def test_select_with_params(self, conn_with_table: sqlite3.Connection) -> None:
        """Positional parameters are bound."""
        result = execute(
            conn_with_table, Query(sql="SELECT name FROM units WHERE hp < ?", params=[40])
        )
        assert result.rows == [("mage",)]

    def test_dml_reports_rowcount(self, conn_with_table: sqlite3.Connection) -> None:
        """Statements without rows report affected rows."""
        result = execute(conn_with_table, Query(sql="UPDATE units SET hp = hp + 1"))
        assert result.columns == []
        assert result.rowcount == 3

    def test_search(self, conn_with_table: sqlite3.Connection) -> None:
        """Search runs a filtered SELECT."""
        op = Search(table="units", filters=[SearchFilter(column="name", operator="LIKE", value="%a%")])
        result = execute(conn_with_table, op, SQLITE)
        assert sorted(row[1] for row in result.rows) == ["archer", "mage"]

    def test_search_requires_dialect(self, conn_with_table: sqlite3.Connection) -> None:
        """Search cannot run without a dialect."""
        with pytest.raises(TypeError, match="dialect"):
            execute(conn_with_table, Search(table="units"))

    def test_unknown_operation(self, conn_with_table: sqlite3.Connection) -> None:
        """Unknown operation types are rejected."""
        with pytest.raises(TypeError, match="Unknown operation"):
            execute(conn_with_table, "SELECT 1")  # type: ignore[call-overload]


class TestQueryResult:
    """Tests for QueryResult."""

    def test_defaults(self) -> None:
        """An empty result has no columns and unknown rowcount."""
        result = QueryResult()
        assert result.columns == []
        assert result.rows == []
        assert result.rowcount == -1
