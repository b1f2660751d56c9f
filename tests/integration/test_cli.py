"""
Integration tests for the commslog CLI.

Tests cover:
- add / list / find / delete / clear / info against a real database file
- JSON output
- Error reporting and exit codes
"""

import json
from pathlib import Path

import pytest
from rich.console import Console
from typer.testing import CliRunner

from commslog import __version__
from commslog.cli import app


runner = CliRunner()


def _add(db: Path, *args: str) -> dict:
    result = runner.invoke(app, ["add", *args, "--db", str(db), "--json"])
    assert result.exit_code == 0, result.stdout
    return json.loads(result.stdout)


class TestVersion:
    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestAddAndList:
    """Tests for `commslog add` and `commslog list`."""

    def test_add_allocates_id(self, temp_db_path: Path) -> None:
        record = _add(
            temp_db_path,
            "Telephony",
            "--type", "missed",
            "--tel", "+34600000000",
            "--tel", "+34600000001",
            "--contact", "alice",
            "--timestamp", "1000",
        )
        assert len(record["id"]) == 36
        assert record["service"] == "Telephony"
        assert record["timestamp"] == 1000
        assert record["tel"] == ["+34600000000", "+34600000001"]
        assert record["contactId"] == ["alice"]

    def test_list_json(self, temp_db_path: Path) -> None:
        first = _add(temp_db_path, "Telephony", "--timestamp", "1000")
        second = _add(temp_db_path, "SMS", "--timestamp", "2000")

        result = runner.invoke(app, ["list", "--db", str(temp_db_path), "--json"])
        assert result.exit_code == 0
        ids = {record["id"] for record in json.loads(result.stdout)}
        assert ids == {first["id"], second["id"]}

    def test_list_table(self, temp_db_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("commslog.cli.console", Console(width=200))
        _add(temp_db_path, "Telephony", "--title", "Call from Ana")
        result = runner.invoke(app, ["list", "--db", str(temp_db_path)])
        assert result.exit_code == 0
        assert "Telephony" in result.stdout

    def test_list_empty(self, temp_db_path: Path) -> None:
        result = runner.invoke(app, ["list", "--db", str(temp_db_path)])
        assert result.exit_code == 0
        assert "No entries found" in result.stdout


class TestFind:
    """Tests for `commslog find`."""

    def test_find_by_time(self, temp_db_path: Path) -> None:
        _add(temp_db_path, "Telephony", "--timestamp", "1000")
        late = _add(temp_db_path, "Telephony", "--timestamp", "2000")

        result = runner.invoke(
            app, ["find", "--from", "1500", "--db", str(temp_db_path), "--json"]
        )
        assert result.exit_code == 0
        assert [r["id"] for r in json.loads(result.stdout)] == [late["id"]]

    def test_find_ascending(self, temp_db_path: Path) -> None:
        early = _add(temp_db_path, "SMS", "--timestamp", "1000")
        late = _add(temp_db_path, "SMS", "--timestamp", "2000")

        result = runner.invoke(
            app, ["find", "--service", "SMS", "--asc", "--db", str(temp_db_path), "--json"]
        )
        assert result.exit_code == 0
        assert [r["id"] for r in json.loads(result.stdout)] == [early["id"], late["id"]]

    def test_find_without_filter_fails(self, temp_db_path: Path) -> None:
        result = runner.invoke(app, ["find", "--db", str(temp_db_path), "--json"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] is True
        assert data["error_type"] == "UnrecognizedFilterError"


class TestDeleteAndClear:
    def test_delete(self, temp_db_path: Path) -> None:
        record = _add(temp_db_path, "Telephony")
        result = runner.invoke(app, ["delete", record["id"], "--db", str(temp_db_path)])
        assert result.exit_code == 0

        listed = runner.invoke(app, ["list", "--db", str(temp_db_path), "--json"])
        assert json.loads(listed.stdout) == []

    def test_delete_unknown_id(self, temp_db_path: Path) -> None:
        result = runner.invoke(app, ["delete", "nope", "--db", str(temp_db_path)])
        assert result.exit_code == 0

    def test_clear_with_filter(self, temp_db_path: Path) -> None:
        _add(temp_db_path, "Telephony")
        kept = _add(temp_db_path, "SMS")

        result = runner.invoke(
            app,
            ["clear", "--service", "Telephony", "--yes", "--db", str(temp_db_path), "--json"],
        )
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"deleted": 1}

        listed = runner.invoke(app, ["list", "--db", str(temp_db_path), "--json"])
        assert [r["id"] for r in json.loads(listed.stdout)] == [kept["id"]]

    def test_clear_all_asks_for_confirmation(self, temp_db_path: Path) -> None:
        _add(temp_db_path, "Telephony")
        result = runner.invoke(app, ["clear", "--db", str(temp_db_path)], input="n\n")
        assert result.exit_code != 0

        info = runner.invoke(app, ["info", "--db", str(temp_db_path), "--json"])
        assert json.loads(info.stdout)["entries"] == 1

    def test_clear_all(self, temp_db_path: Path) -> None:
        _add(temp_db_path, "Telephony")
        _add(temp_db_path, "SMS")
        result = runner.invoke(app, ["clear", "--yes", "--db", str(temp_db_path)])
        assert result.exit_code == 0
        assert "Deleted 2 entries" in result.stdout


class TestInfo:
    def test_info_with_config(self, temp_dir: Path) -> None:
        config_path = temp_dir / "commslog.yaml"
        db_path = temp_dir / "calls.db"
        config_path.write_text(f"db_path: {db_path}\nversion: 3\n")

        result = runner.invoke(app, ["info", "--config", str(config_path), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data == {"db_path": str(db_path), "version": 3, "entries": 0}

    def test_unopenable_database(self, temp_dir: Path) -> None:
        bad = temp_dir / "missing" / "calls.db"
        result = runner.invoke(app, ["info", "--db", str(bad), "--json"])
        assert result.exit_code == 1
        assert "StorageConnectionError" in result.stdout
