"""Tests for the usql CLI."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from usql.cli import cli
from usql.codec import AssetRef, Vector2
from usql.db.connection import connect_sqlite, execute
from usql.ops.schema import ColumnDef
from usql.providers.sqlite import SQLiteProvider


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_usql_home(tmp_path: Path) -> Path:
    """Create a temporary USQL_HOME directory."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def game_db(tmp_path: Path) -> Path:
    """Create a database with a 'units' table holding two rows."""
    path = tmp_path / "game.db"
    provider = SQLiteProvider(str(path))
    provider.create_table(
        "units",
        [
            ColumnDef(name="id", type="INTEGER"),
            ColumnDef(name="name", type="TEXT"),
            ColumnDef(name="pos", type="Vector2"),
        ],
        primary_key_index=0,
    )
    provider.insert_row("units", {"name": "archer", "pos": Vector2(1.5, 2.5)})
    provider.insert_row("units", {"name": "knight", "pos": Vector2(3, 4)})
    return path


def _invoke(runner: CliRunner, home: Path, *args: str):
    return runner.invoke(cli, list(args), env={"USQL_HOME": str(home)})


class TestCLIHelp:
    """Test CLI help output."""

    def test_main_help(self, runner: CliRunner) -> None:
        """Main command shows help."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "usql" in result.output
        for command in ("tables", "columns", "rows", "query", "shell", "adopt-types"):
            assert command in result.output

    def test_query_help(self, runner: CliRunner) -> None:
        """Query command has help."""
        result = runner.invoke(cli, ["query", "--help"])
        assert result.exit_code == 0
        assert "SQL" in result.output


class TestConfiguration:
    """Test engine and connection selection."""

    def test_default_database_in_home(self, runner: CliRunner, temp_usql_home: Path) -> None:
        """Without a connection the home database is used."""
        result = _invoke(runner, temp_usql_home, "tables")
        assert result.exit_code == 0
        assert "No user tables found" in result.output
        assert (temp_usql_home / "usql.db").exists()

    def test_connection_from_config_file(
        self, runner: CliRunner, temp_usql_home: Path, game_db: Path
    ) -> None:
        """The config file supplies the connection."""
        (temp_usql_home / "config.toml").write_text(f'connection = "{game_db.as_posix()}"\n')
        result = _invoke(runner, temp_usql_home, "tables")
        assert result.exit_code == 0
        assert "units" in result.output

    def test_mysql_without_connection(self, runner: CliRunner, temp_usql_home: Path) -> None:
        """MySQL needs a connection string."""
        result = _invoke(runner, temp_usql_home, "--engine", "mysql", "tables")
        assert result.exit_code == 1
        assert "connection string is required" in result.output

    def test_invalid_log_level(self, runner: CliRunner, temp_usql_home: Path) -> None:
        """Bad overrides fail before any command runs."""
        result = _invoke(runner, temp_usql_home, "--log-level", "loud", "tables")
        assert result.exit_code == 1
        assert "Error" in result.output


class TestSchemaCommands:
    """Test usql tables and usql columns."""

    def test_tables(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """Tables are listed without the metadata table."""
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "tables")
        assert result.exit_code == 0
        assert result.output.split() == ["units"]

    def test_columns(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """Columns show logical and storage types."""
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "columns", "units")
        assert result.exit_code == 0
        assert "pos" in result.output
        assert "Vector2" in result.output
        assert "PK AI" in result.output

    def test_columns_missing_table(
        self, runner: CliRunner, temp_usql_home: Path, game_db: Path
    ) -> None:
        """Unknown tables exit with status 1."""
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "columns", "nope")
        assert result.exit_code == 1
        assert "Error" in result.output


class TestRowsCommand:
    """Test usql rows."""

    def test_rows_decoded(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """Vectors are shown in display form."""
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "rows", "units")
        assert result.exit_code == 0
        assert "archer" in result.output
        assert "(1.5, 2.5)" in result.output

    def test_rows_limit(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """--limit caps the rows shown."""
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "rows", "units", "-n", "1")
        assert result.exit_code == 0
        assert "archer" in result.output
        assert "knight" not in result.output

    def test_rows_empty(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """Empty tables say so."""
        SQLiteProvider(str(game_db)).clear_table("units")
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "rows", "units")
        assert result.exit_code == 0
        assert "No rows" in result.output

    def test_rows_decode_warning(
        self, runner: CliRunner, temp_usql_home: Path, game_db: Path
    ) -> None:
        """Undecodable cells are shown with a warning."""
        with connect_sqlite(game_db) as conn:
            execute(conn, "UPDATE units SET pos = 'garbage' WHERE id = 2")
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "rows", "units")
        assert result.exit_code == 0
        assert "Warning: pos" in result.output

    def test_asset_path_shown_literally(
        self, runner: CliRunner, temp_usql_home: Path, game_db: Path
    ) -> None:
        """Asset paths containing brackets are not read as markup."""
        provider = SQLiteProvider(str(game_db))
        provider.create_table(
            "art",
            [ColumnDef(name="id", type="INTEGER"), ColumnDef(name="icon", type="SpriteRef")],
            primary_key_index=0,
        )
        provider.insert_row("art", {"icon": AssetRef("[b]hero.png")})
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "rows", "art")
        assert result.exit_code == 0
        assert "[b]hero.png" in result.output

    def test_rows_missing_table(
        self, runner: CliRunner, temp_usql_home: Path, game_db: Path
    ) -> None:
        """Unknown tables exit with status 1."""
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "rows", "nope")
        assert result.exit_code == 1
        assert "Error" in result.output


class TestQueryCommand:
    """Test usql query."""

    def test_select(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """SELECT results are rendered as a table."""
        result = _invoke(
            runner, temp_usql_home, "-c", str(game_db), "query", "SELECT name FROM units"
        )
        assert result.exit_code == 0
        assert "archer" in result.output
        assert "knight" in result.output

    def test_no_results(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """Empty result sets say so."""
        result = _invoke(
            runner,
            temp_usql_home,
            "-c",
            str(game_db),
            "query",
            "SELECT name FROM units WHERE id > 100",
        )
        assert result.exit_code == 0
        assert "No results" in result.output

    def test_write(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """Writes report the affected row count."""
        result = _invoke(
            runner,
            temp_usql_home,
            "-c",
            str(game_db),
            "query",
            "UPDATE units SET name = 'mage' WHERE id = 1",
        )
        assert result.exit_code == 0
        assert "1 row(s) affected" in result.output

    def test_invalid_sql(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """Engine errors exit with status 1."""
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "query", "SELEC 1")
        assert result.exit_code == 1
        assert "Error" in result.output


class TestAdoptTypesCommand:
    """Test usql adopt-types."""

    def test_adopts_vectors(self, runner: CliRunner, temp_usql_home: Path, tmp_path: Path) -> None:
        """Legacy vector columns are reported as adopted."""
        path = tmp_path / "legacy.db"
        with connect_sqlite(path) as conn:
            execute(conn, "CREATE TABLE spawn (id INTEGER PRIMARY KEY, pos TEXT)")
            execute(conn, "INSERT INTO spawn (pos) VALUES ('1,2'), ('3,4')")

        result = _invoke(runner, temp_usql_home, "-c", str(path), "adopt-types", "spawn")
        assert result.exit_code == 0
        assert "pos: Vector2" in result.output

    def test_nothing_to_adopt(self, runner: CliRunner, temp_usql_home: Path, game_db: Path) -> None:
        """Typed tables have nothing to adopt."""
        result = _invoke(runner, temp_usql_home, "-c", str(game_db), "adopt-types", "units")
        assert result.exit_code == 0
        assert "No vector columns detected" in result.output


class TestShellCommand:
    """Test usql shell with a scripted prompt."""

    def _run(
        self, runner: CliRunner, home: Path, db: Path, lines: list[object]
    ) -> tuple[int, str]:
        session = MagicMock()
        session.prompt.side_effect = lines
        with patch("usql.cli.PromptSession", return_value=session):
            result = _invoke(runner, home, "-c", str(db), "shell")
        return result.exit_code, result.output

    def test_runs_sql_and_dot_commands(
        self, runner: CliRunner, temp_usql_home: Path, game_db: Path
    ) -> None:
        """Dot commands inspect the schema; other lines run as SQL."""
        code, output = self._run(
            runner,
            temp_usql_home,
            game_db,
            [".tables", ".columns units", "SELECT name FROM units", "exit"],
        )
        assert code == 0
        assert "Vector2" in output
        assert "knight" in output
        assert "Goodbye" in output

    def test_errors_do_not_end_the_session(
        self, runner: CliRunner, temp_usql_home: Path, game_db: Path
    ) -> None:
        """A failing statement is reported and the loop continues."""
        code, output = self._run(
            runner, temp_usql_home, game_db, ["SELEC 1", "", "SELECT 42", EOFError()]
        )
        assert code == 0
        assert "Error" in output
        assert "42" in output
        assert "Goodbye" in output
