"""Tests for the maintenance command line."""

import io
import logging

import pytest

from inknote.main import main, parse_args, print_tree
from inknote.models.db_models import init_db
from inknote.models.schema import EntityKind
from inknote.storage.object_store import ObjectStore


@pytest.fixture
def db_path(tmp_path, test_config, builder_for):
    """A file database with one notebook, two categories and three notes."""
    path = tmp_path / "cli.db"
    engine = init_db(f"sqlite:///{path}")
    build = builder_for(ObjectStore(engine))
    notebook_id = build.notebook("Work")
    a = build.category(notebook_id, "Alpha", 5.0)
    b = build.category(notebook_id, "Beta", 7.5)
    build.note(notebook_id, a, "one", 1.0)
    build.note(notebook_id, b, "two", 1.25)
    build.note(notebook_id, a, "three", 9.0)
    engine.dispose()
    return path


@pytest.fixture(autouse=True)
def _restore_logging():
    """Drop handlers main() attaches to the package logger."""
    logger = logging.getLogger("inknote")
    handlers, level = list(logger.handlers), logger.level
    yield
    for handler in logger.handlers[:]:
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


def run(db_path, tmp_path, *command):
    return main([
        "--database-path", str(db_path), "--log-dir", str(tmp_path / "logs"), *command
    ])


class TestParseArgs:
    """Tests for argument parsing."""

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_normalize_options(self):
        args = parse_args(["--log-level", "DEBUG", "normalize-orders", "--notebook-id", "nb"])
        assert args.command == "normalize-orders"
        assert args.notebook_id == "nb"
        assert args.log_level == "DEBUG"


class TestCommands:
    """Tests for the tree and normalize-orders commands."""

    def test_tree(self, db_path, tmp_path, capsys):
        assert run(db_path, tmp_path, "tree") == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("Work [")
        assert [line.split()[-1] for line in lines[1:]] == [
            "Alpha", "one", "three", "Beta", "two"
        ]

    def test_normalize_orders(self, db_path, tmp_path, capsys):
        assert run(db_path, tmp_path, "normalize-orders") == 0
        assert "Renumbered 2 categories and 3 notes" in capsys.readouterr().out

        store = ObjectStore(init_db(f"sqlite:///{db_path}"))
        orders = sorted(n.order for n in store.all(EntityKind.NOTE))
        assert orders == [1000.0, 2000.0, 3000.0]
        store.engine.dispose()

    def test_normalize_unknown_notebook_changes_nothing(self, db_path, tmp_path, capsys):
        assert run(db_path, tmp_path, "normalize-orders", "--notebook-id", "missing") == 0
        assert "Renumbered 0 categories and 0 notes" in capsys.readouterr().out

    def test_print_tree_counts_notes(self, build):
        notebook_id = build.notebook("Solo")
        build.note(notebook_id, build.category(notebook_id, "C", 1.0), "n", 1.0)
        out = io.StringIO()
        assert print_tree(build.store, out) == 1
        assert "Solo" in out.getvalue()
