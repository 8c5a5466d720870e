"""
Tests for the couchquery command line, run against the in-memory store.
"""

import pytest
from typer.testing import CliRunner

from couchquery import cli
from couchquery.config import CouchQueryConfig
from couchquery.database import Database

from conftest import InMemoryCouch, seed


@pytest.fixture
def store():
    return seed(InMemoryCouch("0.9.0"))


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config():
    config = CouchQueryConfig()
    config.connection.database = "people"
    return config


@pytest.fixture(autouse=True)
def fake_database(monkeypatch, store):
    monkeypatch.setattr(cli, "open_database", lambda config: Database.open(store, version=config.connection.version))


def invoke(runner, config, *args):
    return runner.invoke(cli.app, list(args), obj=config)


class TestInfo:
    def test_shows_capabilities(self, runner, config):
        result = invoke(runner, config, "info")
        assert result.exit_code == 0
        assert "multi_key" in result.output

    def test_pinned_version(self, runner, config):
        result = invoke(runner, config, "--store-version", "0.8.1", "info")
        assert result.exit_code == 0
        assert "_slow_view" in result.output


class TestFind:
    """find command."""

    def test_find_with_condition(self, runner, config):
        result = invoke(runner, config, "find", "Person", "--where", "name=Alice", "--json")
        assert result.exit_code == 0
        assert "Alice" in result.output
        assert "Bob" not in result.output

    def test_find_with_range(self, runner, config):
        result = invoke(runner, config, "find", "Person", "-w", "age=20..30", "--json")
        assert result.exit_code == 0
        assert "Carol" in result.output
        assert "Bob" not in result.output

    def test_find_with_discrete_set(self, runner, config, store):
        result = invoke(runner, config, "find", "Person", "-w", "grade=9,11", "--json")
        assert result.exit_code == 0
        assert "Alice" in result.output
        assert "Bob" in result.output
        assert "Dave" not in result.output
        assert store.view_queries[-1][1]["keys"] == [[9], [11]]

    def test_find_creates_view(self, runner, config, store):
        invoke(runner, config, "find", "Person", "-w", "name=Alice")
        assert "find_by_name" in store.documents["_design/person"]["views"]

    def test_find_without_results(self, runner, config):
        result = invoke(runner, config, "find", "Person", "-w", "name=Zed")
        assert result.exit_code == 0
        assert "No documents found" in result.output

    def test_bad_condition(self, runner, config):
        result = invoke(runner, config, "find", "Person", "-w", "name")
        assert result.exit_code == 1
        assert "Invalid input" in result.output

    def test_raw_output(self, runner, config):
        result = invoke(runner, config, "find", "Person", "-w", "name=Bob", "--raw")
        assert result.exit_code == 0
        assert '"id": "p2"' in result.output

    def test_missing_database(self, runner, monkeypatch):
        monkeypatch.setattr(cli, "open_database", Database.from_config)
        result = invoke(runner, CouchQueryConfig(), "find", "Person")
        assert result.exit_code == 1
        assert "No database configured" in result.output


class TestCount:
    def test_count(self, runner, config):
        result = invoke(runner, config, "count", "Person", "-w", "age=20..30")
        assert result.exit_code == 0
        assert result.output.strip().splitlines()[-1] == "3"

    def test_count_with_limit(self, runner, config):
        result = invoke(runner, config, "count", "Person", "--limit", "2")
        assert result.output.strip().splitlines()[-1] == "2"


class TestDesign:
    """design sub-commands."""

    def test_show_without_design_document(self, runner, config):
        result = invoke(runner, config, "design", "show", "Person")
        assert result.exit_code == 1

    def test_show_lists_views(self, runner, config):
        invoke(runner, config, "find", "Person", "-w", "name=Alice")
        result = invoke(runner, config, "design", "show", "Person")
        assert result.exit_code == 0
        assert "find_by_name" in result.output

    def test_export_then_import_into_other_entity(self, runner, config, store, tmp_path):
        # Given: A design document with one view
        invoke(runner, config, "find", "Person", "-w", "name=Alice")
        path = tmp_path / "person.yaml"

        # When: Exporting it and importing it for another entity type
        export = invoke(runner, config, "design", "export", "Person", str(path))
        imported = invoke(runner, config, "design", "import", "Pet", str(path))

        # Then: The view is added to the other design document
        assert export.exit_code == 0
        assert imported.exit_code == 0
        assert "Added 1 of 1 views" in imported.output
        assert "find_by_name" in store.documents["_design/pet"]["views"]

    def test_import_missing_file(self, runner, config, tmp_path):
        result = invoke(runner, config, "design", "import", "Person", str(tmp_path / "nope.yaml"))
        assert result.exit_code == 1
        assert "File not found" in result.output


class TestConfigCommands:
    def test_show_masks_password(self, runner, config):
        config.connection.password = "hunter2"
        result = invoke(runner, config, "config", "show")
        assert result.exit_code == 0
        assert "hunter2" not in result.output
        assert "***" in result.output

    def test_init_writes_file_once(self, runner, config, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        first = invoke(runner, config, "config", "init")
        second = invoke(runner, config, "config", "init")

        assert first.exit_code == 0
        assert (tmp_path / "couchquery" / "config.json").exists()
        assert second.exit_code == 1
