"""Tests for row statement builders and executors."""

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest

from usql.codec import Vector2
from usql.db.connection import connect_sqlite, execute, fetch_all
from usql.db.dialect import MYSQL, SQLITE
from usql.db.introspection import TableInfo, apply_logical_types, sqlite_columns
from usql.errors import ColumnNotFound, EmptyRowMatch, NoPrimaryKey
from usql.ops.rows import (
    DeleteResult,
    delete_matching_statement,
    delete_row,
    duplicate_values_statement,
    find_duplicate,
    insert_row,
    insert_statement,
    key_exists,
    select_all_statement,
    select_rows,
    update_cell,
    update_cell_statement,
)


@pytest.fixture
def conn(tmp_path: Path) -> Iterator[sqlite3.Connection]:
    """Open a database with a keyed table and a keyless table."""
    with connect_sqlite(tmp_path / "test.db") as conn:
        execute(
            conn,
            'CREATE TABLE "units" ("id" INTEGER, "name" TEXT, "pos" TEXT, '
            'PRIMARY KEY("id" AUTOINCREMENT))',
        )
        execute(conn, 'CREATE TABLE "log" ("msg" TEXT, "level" INTEGER)')
        yield conn


def _units(conn: sqlite3.Connection) -> TableInfo:
    return apply_logical_types(sqlite_columns(conn, SQLITE, "units"), {"pos": "Vector2"})


def _log(conn: sqlite3.Connection) -> TableInfo:
    return sqlite_columns(conn, SQLITE, "log")


class TestStatements:
    """Tests for the statement builders."""

    def test_insert(self) -> None:
        """INSERT binds one placeholder per column."""
        stmt = insert_statement(MYSQL, "t", {"a": 1, "b": "x"})
        assert stmt.sql == "INSERT INTO `t` (`a`, `b`) VALUES (%s, %s)"
        assert stmt.params == (1, "x")

    def test_insert_empty_row(self) -> None:
        """An empty row inserts defaults."""
        assert insert_statement(SQLITE, "t", {}).sql == 'INSERT INTO "t" DEFAULT VALUES'
        assert insert_statement(MYSQL, "t", {}).sql == "INSERT INTO `t` () VALUES ()"

    def test_update_cell(self) -> None:
        """UPDATE is anchored on the key."""
        stmt = update_cell_statement(SQLITE, "t", "name", "x", "id", 3)
        assert stmt.sql == 'UPDATE "t" SET "name" = ? WHERE "id" = ?'
        assert stmt.params == ("x", 3)

    def test_delete_matching_skips_nulls(self) -> None:
        """NULL values are left out of the predicate."""
        stmt = delete_matching_statement(SQLITE, "t", {"a": 1, "b": None, "c": "x"})
        assert stmt.sql == 'DELETE FROM "t" WHERE "a" = ? AND "c" = ?'
        assert stmt.params == (1, "x")

    def test_delete_matching_without_values(self) -> None:
        """A row with only NULLs has no usable predicate."""
        with pytest.raises(EmptyRowMatch):
            delete_matching_statement(SQLITE, "t", {"a": None})

    def test_duplicates(self) -> None:
        """Duplicate detection groups non-null values."""
        stmt = duplicate_values_statement(SQLITE, "t", "a")
        assert "GROUP BY \"a\" HAVING COUNT(*) > 1" in stmt.sql

    def test_select_limit_is_bound(self) -> None:
        """LIMIT is a parameter."""
        stmt = select_all_statement(MYSQL, "t", 10)
        assert stmt.sql == "SELECT * FROM `t` LIMIT %s"
        assert stmt.params == (10,)


class TestDeleteResult:
    """Tests for DeleteResult."""

    def test_ambiguous(self) -> None:
        """Only value-matched deletes of several rows are ambiguous."""
        assert DeleteResult(deleted=2, by_primary_key=False).ambiguous
        assert not DeleteResult(deleted=1, by_primary_key=False).ambiguous
        assert not DeleteResult(deleted=2, by_primary_key=True).ambiguous


class TestInsertRow:
    """Tests for insert_row."""

    def test_encodes_values(self, conn: sqlite3.Connection) -> None:
        """Vector values are stored as canonical JSON."""
        insert_row(conn, SQLITE, _units(conn), {"name": "archer", "pos": Vector2(1.5, 2.5)})
        assert fetch_all(conn, "SELECT id, pos FROM units") == [(1, '{"x":1.5,"y":2.5}')]

    def test_skips_unset_auto_increment_key(self, conn: sqlite3.Connection) -> None:
        """A None auto-increment key is assigned by the engine."""
        insert_row(conn, SQLITE, _units(conn), {"id": None, "name": "a"})
        insert_row(conn, SQLITE, _units(conn), {"id": None, "name": "b"})
        assert fetch_all(conn, "SELECT id FROM units ORDER BY id") == [(1,), (2,)]

    def test_explicit_key(self, conn: sqlite3.Connection) -> None:
        """A supplied key value is inserted."""
        insert_row(conn, SQLITE, _units(conn), {"id": 10, "name": "a"})
        assert fetch_all(conn, "SELECT id FROM units") == [(10,)]

    def test_unknown_column(self, conn: sqlite3.Connection) -> None:
        """Unknown columns raise ColumnNotFound before any write."""
        with pytest.raises(ColumnNotFound):
            insert_row(conn, SQLITE, _units(conn), {"nope": 1})
        assert fetch_all(conn, "SELECT COUNT(*) FROM units") == [(0,)]


class TestUpdateCell:
    """Tests for update_cell."""

    def test_updates_one_cell(self, conn: sqlite3.Connection) -> None:
        """The row is found by key; text input is coerced."""
        schema = _units(conn)
        insert_row(conn, SQLITE, schema, {"name": "a", "pos": Vector2(0, 0)})
        insert_row(conn, SQLITE, schema, {"name": "b", "pos": Vector2(0, 0)})
        update_cell(conn, SQLITE, schema, {"id": 2, "name": "b"}, "pos", "3,4")
        assert fetch_all(conn, "SELECT pos FROM units ORDER BY id") == [
            ('{"x":0.0,"y":0.0}',),
            ('{"x":3.0,"y":4.0}',),
        ]

    def test_no_primary_key(self, conn: sqlite3.Connection) -> None:
        """Tables without a key cannot be updated and nothing is written."""
        execute(conn, "INSERT INTO log VALUES ('hi', 1)")
        with pytest.raises(NoPrimaryKey):
            update_cell(conn, SQLITE, _log(conn), {"msg": "hi", "level": 1}, "level", 2)
        assert fetch_all(conn, "SELECT level FROM log") == [(1,)]

    def test_row_without_key_value(self, conn: sqlite3.Connection) -> None:
        """A row lacking its key value cannot anchor an update."""
        with pytest.raises(NoPrimaryKey):
            update_cell(conn, SQLITE, _units(conn), {"name": "a"}, "name", "b")


class TestDeleteRow:
    """Tests for delete_row."""

    def test_by_primary_key(self, conn: sqlite3.Connection) -> None:
        """Keyed tables delete by key only."""
        schema = _units(conn)
        insert_row(conn, SQLITE, schema, {"name": "same"})
        insert_row(conn, SQLITE, schema, {"name": "same"})
        result = delete_row(conn, SQLITE, schema, {"id": 1, "name": "same"})
        assert result == DeleteResult(deleted=1, by_primary_key=True)
        assert fetch_all(conn, "SELECT id FROM units") == [(2,)]

    def test_fallback_reports_ambiguity(self, conn: sqlite3.Connection) -> None:
        """Without a key, every matching row goes and the result says so."""
        execute(conn, "INSERT INTO log VALUES ('dup', 1), ('dup', 1), ('dup', 2)")
        result = delete_row(conn, SQLITE, _log(conn), {"msg": "dup", "level": 1})
        assert result.deleted == 2
        assert result.ambiguous
        assert fetch_all(conn, "SELECT msg, level FROM log") == [("dup", 2)]

    def test_fallback_never_deletes_non_matching(self, conn: sqlite3.Connection) -> None:
        """Rows that differ in any non-null value survive."""
        execute(conn, "INSERT INTO log VALUES ('a', 1), ('a', NULL), ('b', 1)")
        result = delete_row(conn, SQLITE, _log(conn), {"msg": "a", "level": 1})
        assert result == DeleteResult(deleted=1, by_primary_key=False)
        remaining = sorted(fetch_all(conn, "SELECT msg, level FROM log"), key=str)
        assert remaining == sorted([("a", None), ("b", 1)], key=str)

    def test_fallback_with_no_values(self, conn: sqlite3.Connection) -> None:
        """An all-NULL row is refused rather than deleting everything."""
        execute(conn, "INSERT INTO log VALUES ('a', 1)")
        with pytest.raises(EmptyRowMatch):
            delete_row(conn, SQLITE, _log(conn), {"msg": None, "level": None})
        assert fetch_all(conn, "SELECT COUNT(*) FROM log") == [(1,)]


class TestLookups:
    """Tests for key_exists, find_duplicate and select_rows."""

    def test_key_exists(self, conn: sqlite3.Connection) -> None:
        """Existence is checked with coerced values."""
        schema = _units(conn)
        insert_row(conn, SQLITE, schema, {"id": 5, "name": "a"})
        assert key_exists(conn, SQLITE, schema, "id", "5")
        assert not key_exists(conn, SQLITE, schema, "id", 6)

    def test_find_duplicate(self, conn: sqlite3.Connection) -> None:
        """A repeated non-null value is reported."""
        execute(conn, "INSERT INTO log VALUES ('a', NULL), ('b', NULL), ('c', 1)")
        assert find_duplicate(conn, SQLITE, "log", "msg") is None
        assert find_duplicate(conn, SQLITE, "log", "level") is None
        execute(conn, "INSERT INTO log VALUES ('a', 2)")
        assert find_duplicate(conn, SQLITE, "log", "msg") == "a"

    def test_select_rows(self, conn: sqlite3.Connection) -> None:
        """Rows are returned as mappings, optionally limited."""
        execute(conn, "INSERT INTO log VALUES ('a', 1), ('b', 2)")
        assert select_rows(conn, SQLITE, "log") == [
            {"msg": "a", "level": 1},
            {"msg": "b", "level": 2},
        ]
        assert len(select_rows(conn, SQLITE, "log", limit=1)) == 1
