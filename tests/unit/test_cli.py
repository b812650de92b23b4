"""
Unit tests for the global state admin CLI.

Tests cover:
- Hex argument parsing
- get/put/delete/batch-get/seek against a local database file
- JSON output
- Error exit codes
"""

import json
import os
import tempfile

import pytest

from fleetstate.globalstate.engine import SqliteEngine
from fleetstate.globalstate.tools.cli import build_parser, main


@pytest.fixture
def db_path():
    """SQLite database with a few keys."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "global_state.db")
        engine = SqliteEngine(path)
        engine.open()
        with engine.update() as txn:
            txn.set(b"\x06\x01", b"\x01")
            txn.set(b"\x06\x02", b"\x01")
            txn.set(b"\x07\x01", b"\x01")
        engine.close()
        yield path


def run_cli(capsys, *argv):
    main(list(argv))
    return capsys.readouterr().out.strip()


class TestParser:
    """Tests for argument parsing."""

    def test_target_required(self):
        """One of --db or --remote is required."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["get", "01"])

    def test_hex_arguments(self):
        """Keys are parsed from hex."""
        args = build_parser().parse_args(["--db", "x.db", "put", "0a0b", ""])
        assert args.key == b"\x0a\x0b"
        assert args.value == b""

    def test_invalid_hex(self):
        """Non-hex keys are rejected by the parser."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--db", "x.db", "get", "zz"])


class TestCommands:
    """Tests for commands against a local database file."""

    def test_get(self, db_path, capsys):
        """get prints the value as hex."""
        assert run_cli(capsys, "--db", db_path, "get", "0601") == "01"

    def test_put_then_get(self, db_path, capsys):
        """put writes through to the database file."""
        assert run_cli(capsys, "--db", db_path, "put", "0001", "cafe") == "OK"
        assert run_cli(capsys, "--db", db_path, "get", "0001") == "cafe"

    def test_delete(self, db_path, capsys):
        """delete removes the key."""
        run_cli(capsys, "--db", db_path, "delete", "0601")
        assert run_cli(capsys, "--db", db_path, "get", "0601") == ""

    def test_batch_get(self, db_path, capsys):
        """batch-get prints one line per requested key."""
        out = run_cli(capsys, "--db", db_path, "batch-get", "0601", "0999")
        assert out.splitlines() == ["0601 01", "0999"]

    def test_seek(self, db_path, capsys):
        """seek defaults the prefix to the start key."""
        out = run_cli(capsys, "--db", db_path, "seek", "--start", "06", "--max-key-len", "1")
        assert out.splitlines() == ["0601", "0602"]

    def test_seek_reverse_json(self, db_path, capsys):
        """JSON output includes values when requested."""
        out = run_cli(
            capsys,
            "--db", db_path,
            "--format", "json",
            "seek", "--start", "06", "--reverse", "--values", "--limit", "1",
        )
        assert json.loads(out) == [{"key": "0602", "value": "01"}]

    def test_missing_database(self, capsys):
        """A missing database file exits non-zero."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--db", "/nonexistent/global_state.db", "get", "01"])
        assert exc_info.value.code == 1
        assert "does not exist" in capsys.readouterr().err

    def test_not_a_database(self, capsys):
        """A file that isn't SQLite exits non-zero with an error line."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "notes.txt")
            with open(path, "wb") as f:
                f.write(b"this is not a sqlite database, just some text " * 50)

            with pytest.raises(SystemExit) as exc_info:
                main(["--db", path, "get", "01"])

        assert exc_info.value.code == 1
        assert capsys.readouterr().err.startswith("Error: ")
