"""Tests for the object store, live results and change notifications."""

import pytest

from inknote.exceptions import (ErrorCode, NoteNotFoundError, StorageError,
                                ValidationError)
from inknote.models.schema import EntityKind, LinkRequest


def make_notebook(store, title="Work"):
    return store.create(EntityKind.NOTEBOOK, {"title": title})


def make_category(store, notebook_id, title, order):
    return store.create(
        EntityKind.CATEGORY,
        {"title": title, "order": order},
        links=[LinkRequest(kind=EntityKind.NOTEBOOK, field="categories", id=notebook_id)],
    )


def make_note(store, notebook_id, category_id, title, order, content=""):
    return store.create(
        EntityKind.NOTE,
        {"title": title, "content": content, "order": order},
        links=[
            LinkRequest(kind=EntityKind.CATEGORY, field="notes", id=category_id),
            LinkRequest(kind=EntityKind.NOTEBOOK, field="notes", id=notebook_id),
        ],
    )


class TestCreateAndLinks:
    """Tests for create-with-links and reverse links."""

    def test_create_resolves_links(self, store):
        nb = make_notebook(store)
        cat = make_category(store, nb, "Inbox", 1000.0)
        note = make_note(store, nb, cat, "Hello", 1000.0)

        record = store.require(EntityKind.NOTE, note)
        assert record.notebook_id == nb
        assert record.category_id == cat
        assert store.require(EntityKind.CATEGORY, cat).note_ids == [note]
        assert store.require(EntityKind.CATEGORY, cat).notebook_id == nb

    def test_link_to_wrong_field_is_rejected(self, store):
        nb = make_notebook(store)
        with pytest.raises(StorageError) as exc_info:
            store.create(
                EntityKind.NOTE,
                {"title": "x", "order": 1.0},
                links=[LinkRequest(kind=EntityKind.NOTEBOOK, field="categories", id=nb)],
            )
        assert exc_info.value.code == ErrorCode.STORAGE_INVALID_LINK
        assert store.all(EntityKind.NOTE) == []

    def test_link_to_missing_record_rolls_back(self, store):
        with pytest.raises(NoteNotFoundError):
            store.create(
                EntityKind.ATTACHMENT,
                {"filename": "a.png"},
                links=[LinkRequest(kind=EntityKind.NOTE, field="attachments", id="missing")],
            )
        assert store.all(EntityKind.ATTACHMENT) == []

    def test_reverse_link_add_and_remove(self, store):
        nb = make_notebook(store)
        a = make_category(store, nb, "A", 1000.0)
        b = make_category(store, nb, "B", 2000.0)
        note = make_note(store, nb, a, "n", 1000.0)

        store.add_reverse_link(
            EntityKind.NOTE, note, [LinkRequest(kind=EntityKind.CATEGORY, field="notes", id=b)]
        )
        store.remove_reverse_link(
            EntityKind.NOTE, note, [LinkRequest(kind=EntityKind.CATEGORY, field="notes", id=a)]
        )
        assert store.require(EntityKind.NOTE, note).category_id == b
        assert store.require(EntityKind.CATEGORY, a).note_ids == []
        assert store.require(EntityKind.CATEGORY, b).note_ids == [note]

    def test_unknown_field_is_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create(EntityKind.NOTEBOOK, {"title": "x", "colour": "red"})


class TestUpdateAndDelete:
    """Tests for update and delete."""

    def test_update_single_and_batch(self, store):
        nb = make_notebook(store)
        cat = make_category(store, nb, "A", 1000.0)
        n1 = make_note(store, nb, cat, "one", 1000.0)
        n2 = make_note(store, nb, cat, "two", 2000.0)

        store.update(EntityKind.NOTE, {"id": n1, "title": "uno"})
        store.update(EntityKind.NOTE, [{"id": n1, "order": 5.0}, {"id": n2, "order": 6.0}])

        assert store.require(EntityKind.NOTE, n1).title == "uno"
        assert [n.order for n in store.results(EntityKind.NOTE).sorted("order")] == [5.0, 6.0]

    def test_update_missing_record_raises(self, store):
        with pytest.raises(NoteNotFoundError):
            store.update(EntityKind.NOTE, {"id": "missing", "title": "x"})

    def test_update_without_id_raises(self, store):
        with pytest.raises(ValidationError):
            store.update(EntityKind.NOTE, {"title": "x"})

    def test_delete_note_clears_category_link(self, store):
        nb = make_notebook(store)
        cat = make_category(store, nb, "A", 1000.0)
        note = make_note(store, nb, cat, "n", 1000.0)

        with store.transaction():
            store.delete(EntityKind.NOTE, note)
            assert store.require(EntityKind.CATEGORY, cat).note_ids == []

        assert store.get(EntityKind.NOTE, note) is None
        assert store.require(EntityKind.CATEGORY, cat).note_ids == []


class TestTransactions:
    """Tests for transaction grouping and notifications."""

    def test_one_notification_per_kind_per_transaction(self, store):
        nb = make_notebook(store)
        received = []
        store.results(EntityKind.CATEGORY).subscribe(received.append)

        with store.transaction():
            make_category(store, nb, "A", 1000.0)
            make_category(store, nb, "B", 2000.0)

        assert len(received) == 1
        assert len(received[0].inserted) == 2

    def test_failed_transaction_rolls_back_and_notifies_nobody(self, store):
        nb = make_notebook(store)
        received = []
        store.results(EntityKind.CATEGORY).subscribe(received.append)
        callbacks = []

        with pytest.raises(RuntimeError):
            with store.transaction():
                make_category(store, nb, "A", 1000.0)
                store.after_commit(lambda: callbacks.append("ran"))
                raise RuntimeError("boom")

        assert store.all(EntityKind.CATEGORY) == []
        assert received == []
        assert callbacks == []

    def test_after_commit_outside_transaction_runs_now(self, store):
        calls = []
        store.after_commit(lambda: calls.append(1))
        assert calls == [1]

    def test_after_commit_runs_after_listeners(self, store):
        nb = make_notebook(store)
        order = []
        store.results(EntityKind.CATEGORY).subscribe(lambda changes: order.append("listener"))
        with store.transaction():
            make_category(store, nb, "A", 1000.0)
            store.after_commit(lambda: order.append("callback"))
            assert order == []
        assert order == ["listener", "callback"]

    def test_failing_listener_does_not_break_commit(self, store):
        def broken(changes):
            raise ValueError("listener bug")

        store.results(EntityKind.NOTEBOOK).subscribe(broken)
        nb = make_notebook(store)
        assert store.get(EntityKind.NOTEBOOK, nb) is not None

    def test_unsubscribe(self, store):
        received = []
        results = store.results(EntityKind.NOTEBOOK)
        token = results.subscribe(received.append)
        make_notebook(store, "A")
        results.unsubscribe(token)
        make_notebook(store, "B")
        assert len(received) == 1


class TestLiveResults:
    """Tests for filtered/sorted views."""

    def test_views_reflect_current_state(self, store):
        nb = make_notebook(store)
        results = store.results(EntityKind.CATEGORY).filtered(notebook_id=nb).sorted("order")
        assert len(results) == 0
        make_category(store, nb, "B", 2000.0)
        make_category(store, nb, "A", 1000.0)
        assert [c.title for c in results] == ["A", "B"]
        assert results.first().title == "A"
        assert results[1].title == "B"

    def test_predicate_and_descending(self, store):
        nb = make_notebook(store)
        for i, title in enumerate(["x", "y", "z"]):
            make_category(store, nb, title, float(i))
        view = (
            store.results(EntityKind.CATEGORY)
            .filtered(lambda c: c.order > 0)
            .sorted("order", descending=True)
        )
        assert [c.title for c in view] == ["z", "y"]

    def test_filters_scope_by_notebook(self, store):
        work = make_notebook(store, "Work")
        home = make_notebook(store, "Home")
        make_category(store, work, "Inbox", 1000.0)
        make_category(store, home, "Inbox", 1000.0)
        assert len(store.results(EntityKind.CATEGORY).filtered(notebook_id=home, title="Inbox")) == 1
