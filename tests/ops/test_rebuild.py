"""Tests for the table rebuild planners and primitive."""

import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest

from usql.db.connection import connect_sqlite, execute, fetch_all, transaction
from usql.db.dialect import SQLITE
from usql.db.introspection import ColumnInfo, TableInfo, list_sqlite_tables, sqlite_columns
from usql.errors import CannotDeleteLastColumn, ColumnNotFound
from usql.ops.rebuild import plan_drop, plan_modify, rebuild_table


def _schema() -> TableInfo:
    return TableInfo(
        name="t",
        columns=[
            ColumnInfo(name="id", type="INTEGER", primary_key=True, auto_increment=True),
            ColumnInfo(name="pos", type="Vector2", storage_type="TEXT"),
            ColumnInfo(name="name", type="TEXT", nullable=False),
        ],
    )


@pytest.fixture
def conn(tmp_path: Path) -> Iterator[sqlite3.Connection]:
    """Open a database holding table t with two rows."""
    with connect_sqlite(tmp_path / "test.db") as conn:
        execute(
            conn,
            'CREATE TABLE "t" ("id" INTEGER, "pos" TEXT, "name" TEXT NOT NULL, '
            'PRIMARY KEY("id" AUTOINCREMENT))',
        )
        execute(conn, "INSERT INTO t (pos, name) VALUES ('{\"x\":1,\"y\":2}', 'a')")
        execute(conn, "INSERT INTO t (pos, name) VALUES (NULL, 'b')")
        yield conn


class TestPlanModify:
    """Tests for plan_modify."""

    def test_rename_keeps_other_columns(self) -> None:
        """Only the target column changes; the map carries every column."""
        columns, column_map = plan_modify(_schema(), "pos", "position", "Vector2", False)
        assert [col.name for col in columns] == ["id", "position", "name"]
        assert column_map == {"id": "id", "pos": "position", "name": "name"}
        assert columns[0].primary_key
        assert columns[2].nullable is False

    def test_other_columns_keep_storage_type(self) -> None:
        """Untouched extended columns are recreated with their storage type."""
        columns, _ = plan_modify(_schema(), "name", "label", "TEXT", False)
        assert columns[1].type == "TEXT"

    def test_new_key_clears_old_key(self) -> None:
        """Promoting a column leaves exactly one key."""
        columns, _ = plan_modify(_schema(), "name", "name", "TEXT", True)
        assert [col.primary_key for col in columns] == [False, False, True]
        assert not columns[0].is_auto_increment

    def test_unkeying_leaves_no_key(self) -> None:
        """Modifying the key without is_primary_key removes the key."""
        columns, _ = plan_modify(_schema(), "id", "id", "INTEGER", False)
        assert not any(col.primary_key for col in columns)

    def test_missing_column(self) -> None:
        """A missing column raises ColumnNotFound."""
        with pytest.raises(ColumnNotFound):
            plan_modify(_schema(), "nope", "x", "TEXT", False)


class TestPlanDrop:
    """Tests for plan_drop."""

    def test_drops_column(self) -> None:
        """The dropped column is absent from definitions and map."""
        columns, column_map = plan_drop(_schema(), "pos")
        assert [col.name for col in columns] == ["id", "name"]
        assert column_map == {"id": "id", "name": "name"}

    def test_last_column(self) -> None:
        """The only column of a table cannot be dropped."""
        schema = TableInfo(name="t", columns=[ColumnInfo(name="a", type="TEXT")])
        with pytest.raises(CannotDeleteLastColumn):
            plan_drop(schema, "a")

    def test_missing_column(self) -> None:
        """A missing column raises ColumnNotFound."""
        with pytest.raises(ColumnNotFound):
            plan_drop(_schema(), "nope")


class TestRebuildTable:
    """Tests for rebuild_table on SQLite."""

    def test_rename_preserves_rows(self, conn: sqlite3.Connection) -> None:
        """Rows are carried over under the new column name."""
        columns, column_map = plan_modify(
            sqlite_columns(conn, SQLITE, "t"), "pos", "position", "TEXT", False
        )
        with transaction(conn):
            rebuild_table(conn, SQLITE, "t", columns, column_map)

        info = sqlite_columns(conn, SQLITE, "t")
        assert info.column_names == ["id", "position", "name"]
        assert info.primary_key is not None and info.primary_key.auto_increment
        assert fetch_all(conn, "SELECT id, position, name FROM t ORDER BY id") == [
            (1, '{"x":1,"y":2}', "a"),
            (2, None, "b"),
        ]
        assert list_sqlite_tables(conn) == ["t"]

    def test_failure_rolls_back(self, conn: sqlite3.Connection) -> None:
        """A failed copy leaves the original table and no temp table."""
        columns, column_map = plan_drop(sqlite_columns(conn, SQLITE, "t"), "pos")
        with (
            patch(
                "usql.ops.rebuild.copy_rows",
                side_effect=sqlite3.OperationalError("disk I/O error"),
            ),
            pytest.raises(sqlite3.OperationalError),
            transaction(conn),
        ):
            rebuild_table(conn, SQLITE, "t", columns, column_map)

        assert list_sqlite_tables(conn) == ["t"]
        assert sqlite_columns(conn, SQLITE, "t").column_names == ["id", "pos", "name"]
        assert fetch_all(conn, "SELECT COUNT(*) FROM t") == [(2,)]

    def test_warns_about_dropped_indexes(
        self, conn: sqlite3.Connection, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Indexes and triggers lost by the rebuild are named in a warning."""
        execute(conn, 'CREATE INDEX "idx_name" ON t(name)')
        execute(
            conn,
            "CREATE TRIGGER trg_touch AFTER UPDATE ON t BEGIN SELECT 1; END",
        )
        columns, column_map = plan_modify(
            sqlite_columns(conn, SQLITE, "t"), "pos", "position", "TEXT", False
        )
        with caplog.at_level(logging.WARNING, logger="usql.ops.rebuild"), transaction(conn):
            rebuild_table(conn, SQLITE, "t", columns, column_map)

        assert "idx_name" in caplog.text
        assert "trg_touch" in caplog.text

    def test_no_warning_without_indexes(
        self, conn: sqlite3.Connection, caplog: pytest.LogCaptureFixture
    ) -> None:
        """The key's automatic index does not trigger the warning."""
        columns, column_map = plan_modify(
            sqlite_columns(conn, SQLITE, "t"), "pos", "position", "TEXT", False
        )
        with caplog.at_level(logging.WARNING, logger="usql.ops.rebuild"), transaction(conn):
            rebuild_table(conn, SQLITE, "t", columns, column_map)

        assert caplog.records == []
