"""Tests for matchdb fields commands."""

import json

from tests.cli.conftest import invoke


def _fields(runner, db):
    result = invoke(runner, ["--json", "fields", "list"], db)
    assert result.exit_code == 0
    return {row["name"]: row for row in json.loads(result.output)}


def test_list(runner, seeded_db):
    result = invoke(runner, ["fields", "list"], seeded_db)
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].split() == ["name", "kind", "type"]
    assert any(line.split() == ["status", "normal", "INTEGER"] for line in lines)


def test_list_empty(runner, cli_db):
    assert invoke(runner, ["fields", "add", "tmp"], cli_db).exit_code == 0
    assert invoke(runner, ["fields", "remove", "tmp"], cli_db).exit_code == 0
    result = invoke(runner, ["fields", "list"], cli_db)
    assert result.exit_code == 0
    assert "No fields." in result.output


def test_add_creates_database(runner, cli_db):
    result = invoke(runner, ["fields", "add", "Comment", "--type", "text"], cli_db)
    assert result.exit_code == 0
    assert "Added field comment (TEXT)" in result.output
    assert _fields(runner, cli_db)["comment"]["type"] == "TEXT"


def test_add_with_default(runner, seeded_db):
    result = invoke(runner, ["fields", "add", "volume", "-d", "2.5", "--index"], seeded_db)
    assert result.exit_code == 0
    shown = invoke(runner, ["--json", "get", "3", "volume"], seeded_db)
    assert json.loads(shown.output)["volume"] == 2.5


def test_add_existing(runner, seeded_db):
    result = invoke(runner, ["fields", "add", "error"], seeded_db)
    assert result.exit_code == 4
    assert "Cannot add field error" in result.output


def test_add_bad_type(runner, seeded_db):
    result = invoke(runner, ["fields", "add", "blob_field", "--type", "BLOB"], seeded_db)
    assert result.exit_code == 2


def test_add_meta(runner, seeded_db):
    result = invoke(
        runner,
        [
            "fields",
            "add-meta",
            "quality",
            "SELECT match_id, overlap - error AS quality FROM overlap JOIN error USING (match_id)",
        ],
        seeded_db,
    )
    assert result.exit_code == 0
    assert _fields(runner, seeded_db)["quality"]["kind"] == "meta"


def test_add_meta_bad_columns(runner, seeded_db):
    result = invoke(
        runner, ["fields", "add-meta", "quality", "SELECT match_id FROM error"], seeded_db
    )
    assert result.exit_code == 4
    assert "quality" not in _fields(runner, seeded_db)


def test_remove(runner, seeded_db):
    result = invoke(runner, ["fields", "remove", "overlap"], seeded_db)
    assert result.exit_code == 0
    assert "overlap" not in _fields(runner, seeded_db)


def test_remove_unknown(runner, seeded_db):
    result = invoke(runner, ["fields", "remove", "nope"], seeded_db)
    assert result.exit_code == 4
