"""Tests for the corta CLI."""

import json

import pytest
from typer.testing import CliRunner

from corta import cli
from corta.cli import app

runner = CliRunner()


@pytest.fixture
def invoke(tmp_path, monkeypatch):
    """Run the CLI against a store in tmp_path."""
    monkeypatch.setenv("CORTA_SYNC_BATCH_DELAY", "0")
    store = tmp_path / "store"

    def _invoke(*args):
        return runner.invoke(app, ["--store", str(store), "--user", "cli-user", *args])

    return _invoke


def test_add_and_status(invoke):
    result = invoke("add", "Ideas", "first thought")
    assert result.exit_code == 0
    page_id = result.stdout.strip()

    result = invoke("status", "--json")
    assert result.exit_code == 0
    info = json.loads(result.stdout)
    assert info["pages"] == 1
    assert info["sync"]["never"] == 1
    assert page_id


def test_sync_then_mark(invoke):
    page_id = invoke("add", "Ideas", "first thought").stdout.strip()

    result = invoke("sync")
    assert result.exit_code == 0
    assert "Synced 1 of 1 page(s) in 1 batch(es)" in result.stdout

    result = invoke("mark", page_id)
    assert result.exit_code == 0
    assert result.stdout.strip() == f"{page_id}: no"

    result = invoke("sync")
    assert result.exit_code == 0, result.output
    assert "Synced 1 of 1 page(s)" in result.stdout

    info = json.loads(invoke("status", "--json").stdout)
    assert info["sync"]["yes"] == 1
    assert info["mappings"] == 1


def test_search_finds_page_synced_in_earlier_run(invoke):
    invoke("add", "Garden", "tomatoes and basil")
    assert invoke("sync").exit_code == 0

    result = invoke("search", "basil")

    assert result.exit_code == 0
    assert "Garden" in result.stdout


def test_add_under_missing_parent(invoke):
    result = invoke("add", "Child", "text", "--parent", "missing")
    assert result.exit_code == 1
    assert "Parent page not found" in result.output


def test_folder_is_not_eligible(invoke):
    folder_id = invoke("add", "Projects", "--folder").stdout.strip()
    invoke("add", "Plan", "x", "--parent", folder_id)

    info = json.loads(invoke("status", "--json").stdout)

    assert info["pages"] == 2
    assert info["not_eligible"] == 1


def test_summarize_without_generator(invoke):
    page_id = invoke("add", "Ideas", "text").stdout.strip()

    result = invoke("summarize", page_id)

    assert result.exit_code == 1
    assert "No text generator configured" in result.output


def test_summarize_missing_page(invoke):
    result = invoke("summarize", "missing")
    assert result.exit_code == 1
    assert "Page not found" in result.output


def test_search_empty_index(invoke):
    result = invoke("search", "anything")
    assert result.exit_code == 0
    assert result.stdout == ""


def test_main_logs_unexpected_errors(monkeypatch, tmp_path, capsys):
    def broken():
        raise RuntimeError("unexpected")

    monkeypatch.setenv("CORTA_STORE_PATH", str(tmp_path))
    monkeypatch.setattr(cli, "app", broken)

    with pytest.raises(SystemExit) as exc_info:
        cli.main()

    assert exc_info.value.code == 1
    assert "Error: unexpected" in capsys.readouterr().err
    assert "RuntimeError: unexpected" in (tmp_path / "corta-errors.log").read_text()
