"""Common test fixtures for inknote."""

import tempfile
from pathlib import Path

import pytest

from inknote.config import config
from inknote.controller import NotebookController
from inknote.events import EventHub, EventType
from inknote.models.db_models import init_db
from inknote.models.schema import EntityKind, LinkRequest
from inknote.observability import metrics
from inknote.scheduling import ManualScheduler
from inknote.storage.attachment_io import LocalAttachmentIO
from inknote.storage.object_store import ObjectStore
from inknote.storage.state_store import StateStore


class RecordingEventHub(EventHub):
    """EventHub that remembers every emitted event."""

    def __init__(self):
        super().__init__()
        self.emitted = []

    def emit(self, event, payload=None):
        self.emitted.append((EventType(event), payload))
        super().emit(event, payload)

    def of(self, event):
        """Payloads emitted for one event type, in order."""
        return [payload for kind, payload in self.emitted if kind == event]

    def clear(self):
        self.emitted.clear()


class StoreBuilder:
    """Creates linked records directly in a store."""

    def __init__(self, store):
        self.store = store

    def notebook(self, title="Work"):
        return self.store.create(EntityKind.NOTEBOOK, {"title": title})

    def category(self, notebook_id, title, order):
        return self.store.create(
            EntityKind.CATEGORY,
            {"title": title, "order": order},
            links=[LinkRequest(kind=EntityKind.NOTEBOOK, field="categories", id=notebook_id)],
        )

    def note(self, notebook_id, category_id, title, order, content=""):
        return self.store.create(
            EntityKind.NOTE,
            {"title": title, "content": content or f"# {title}\n", "order": order},
            links=[
                LinkRequest(kind=EntityKind.CATEGORY, field="notes", id=category_id),
                LinkRequest(kind=EntityKind.NOTEBOOK, field="notes", id=notebook_id),
            ],
        )

    def orders(self, kind, notebook_id):
        """(title, order) pairs of a notebook's siblings in order."""
        records = self.store.results(kind).filtered(notebook_id=notebook_id).sorted("order")
        return [(record.title, record.order) for record in records]

    def titles(self, kind, notebook_id):
        return [title for title, _ in self.orders(kind, notebook_id)]


@pytest.fixture
def temp_dirs():
    """Create temporary directories for state and database."""
    with tempfile.TemporaryDirectory() as data_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(data_dir), Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    data_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "base_dir", data_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_inknote.db")
    monkeypatch.setattr(config, "state_path", data_dir / "state.json")
    monkeypatch.setattr(config, "attachments_dir", data_dir / "attachments")
    monkeypatch.setattr(config, "in_memory_db", True)
    yield config


@pytest.fixture
def engine():
    """In-memory SQLite engine with the schema created."""
    engine = init_db("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return ObjectStore(engine)


@pytest.fixture
def build(store):
    return StoreBuilder(store)


@pytest.fixture
def builder_for():
    """Wrap any store, such as a file-backed one, in a StoreBuilder."""
    return StoreBuilder


@pytest.fixture
def events():
    return RecordingEventHub()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def state_store(temp_dirs):
    data_dir, _ = temp_dirs
    return StateStore(data_dir / "state.json")


@pytest.fixture
def attachment_io(temp_dirs):
    data_dir, _ = temp_dirs
    return LocalAttachmentIO(data_dir / "attachments")


@pytest.fixture
def controller(test_config, store, events, scheduler, state_store, attachment_io):
    """A controller on an in-memory store with a manual clock."""
    controller = NotebookController(
        store=store,
        events=events,
        scheduler=scheduler,
        state_store=state_store,
        attachment_io=attachment_io,
        settings=test_config,
    )
    yield controller
    controller.projection.stop()


@pytest.fixture
def notebook(controller, events):
    """An open notebook "Work" with one category holding one note."""
    notebook_id = controller.create_notebook("Work")
    controller.switch_current_notebook(notebook_id)
    note_id = controller.new_note(title="First", content="# First\n")
    events.clear()
    return {
        "notebook_id": notebook_id,
        "note_id": note_id,
        "category_id": controller.snapshot.current_note.category_id,
    }


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
