"""The UI snapshot and the engine that keeps it in step with the store.

Store notifications are coalesced through a trailing-edge throttle on the
render window: a burst of commits inside one window produces exactly one
rebuild, at the end of the window. Navigation (switching notebook or note),
layout and in-progress content bypass the throttle and apply at once.
"""
import logging
from typing import Any, Dict, List, Optional

from inknote.config import config
from inknote.exceptions import NotebookNotFoundError, ValidationError
from inknote.models.schema import (CategoryView, EntityKind, Layout, Note,
                                   NotebookSummary, NotebookView, UISnapshot,
                                   VersionsView, VersionSummary)
from inknote.observability import timed_operation
from inknote.scheduling import Scheduler, Throttle
from inknote.services.rebalancer import order_key
from inknote.storage.live_results import ChangeSet
from inknote.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

WATCHED_KINDS = (EntityKind.NOTEBOOK, EntityKind.CATEGORY, EntityKind.NOTE)


class ProjectionEngine:
    """Sole writer of the ``UISnapshot``.

    Readers use ``snapshot``; every change goes through a method of this
    class, which replaces the snapshot with an updated copy.
    """

    def __init__(
        self,
        store: ObjectStore,
        scheduler: Scheduler,
        interval: Optional[float] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self._throttle = Throttle(
            scheduler,
            config.render_interval if interval is None else interval,
            leading=False,
            name="projection",
        )
        self._snapshot = UISnapshot()
        self._tokens: Dict[EntityKind, int] = {}
        self.rebuild_count = 0

    @property
    def snapshot(self) -> UISnapshot:
        return self._snapshot

    def _commit(self, **changes: Any) -> UISnapshot:
        self._snapshot = self._snapshot.model_copy(update=changes)
        return self._snapshot

    # =========================================================================
    # Store change path
    # =========================================================================

    def start(self) -> None:
        """Watch the notebook, category and note result sets and build once."""
        if self._tokens:
            return
        for kind in WATCHED_KINDS:
            self._tokens[kind] = self.store.results(kind).subscribe(self._on_change)
        self.rebuild()
        logger.info("Projection engine started")

    def stop(self) -> None:
        for kind, token in self._tokens.items():
            self.store.results(kind).unsubscribe(token)
        self._tokens.clear()
        self._throttle.cancel()

    @property
    def running(self) -> bool:
        return bool(self._tokens)

    def _on_change(self, change_set: ChangeSet) -> None:
        logger.debug(
            f"{change_set.kind.value} changed: +{len(change_set.inserted)} "
            f"~{len(change_set.modified)} -{len(change_set.deleted)}"
        )
        self.request_rebuild()

    def request_rebuild(self) -> None:
        """Schedule a rebuild at the end of the current render window."""
        self._throttle(self.rebuild)

    def rebuild_pending(self) -> bool:
        return self._throttle.pending()

    def flush(self) -> int:
        """Run a pending rebuild now."""
        return self._throttle.flush()

    def rebuild(self) -> UISnapshot:
        """Recompute the store-derived slices of the snapshot.

        Layout, versions and the editor content of a surviving current note
        are left as they are.
        """
        with timed_operation("rebuild_snapshot") as op:
            snapshot = self._snapshot
            notebook_list = [
                NotebookSummary(id=nb.id, title=nb.title)
                for nb in self.store.results(EntityKind.NOTEBOOK).sorted(
                    lambda nb: (nb.created_at, nb.id)
                )
            ]

            current_notebook = None
            if snapshot.current_notebook is not None:
                current_notebook = self._notebook_view(snapshot.current_notebook.id)

            current_note = None
            content = ""
            if snapshot.current_note is not None and current_notebook is not None:
                current_note = current_notebook.find_note(snapshot.current_note.id)
                if current_note is not None:
                    content = snapshot.current_note_content

            self._commit(
                notebook_list=notebook_list,
                current_notebook=current_notebook,
                current_note=current_note,
                current_note_content=content,
                search_results=self._search_results(snapshot.search_query),
            )
            self.rebuild_count += 1
            op["notebooks"] = len(notebook_list)
        return self._snapshot

    def _notebook_view(self, notebook_id: str) -> Optional[NotebookView]:
        notebook = self.store.get(EntityKind.NOTEBOOK, notebook_id)
        if notebook is None:
            return None
        notes = (
            self.store.results(EntityKind.NOTE)
            .filtered(notebook_id=notebook_id)
            .sorted(order_key)
            .to_list()
        )
        categories = [
            CategoryView(id=c.id, title=c.title, order=c.order)
            for c in self.store.results(EntityKind.CATEGORY)
            .filtered(notebook_id=notebook_id)
            .sorted(order_key)
        ]
        return NotebookView(
            id=notebook.id,
            title=notebook.title,
            categories=_group_notes(categories, notes),
            notes=notes,
        )

    def _search_results(self, query: Optional[str]) -> List[Note]:
        if not query:
            return []
        needle = query.lower()
        return [
            note
            for note in self.store.results(EntityKind.NOTE).sorted(order_key)
            if needle in note.title.lower() or needle in note.content.lower()
        ]

    # =========================================================================
    # Synchronous updates
    # =========================================================================

    def switch_current_notebook(self, notebook_id: str) -> NotebookView:
        """Select a notebook. A current note from another notebook is dropped."""
        view = self._notebook_view(notebook_id)
        if view is None:
            raise NotebookNotFoundError(notebook_id)
        current_note = self._snapshot.current_note
        if current_note is not None and view.find_note(current_note.id) is None:
            self._commit(current_notebook=view, current_note=None, current_note_content="")
        else:
            self._commit(current_notebook=view)
        return view

    def switch_current_note(self, note_id: str) -> Note:
        """Select a note, loading its notebook if another one is current."""
        note = self.store.require(EntityKind.NOTE, note_id)
        current_notebook = self._snapshot.current_notebook
        if current_notebook is None or current_notebook.id != note.notebook_id:
            current_notebook = self._notebook_view(note.notebook_id) if note.notebook_id else None
        self._commit(
            current_notebook=current_notebook,
            current_note=note,
            current_note_content=note.content,
        )
        return note

    def exit_notebook(self) -> None:
        self._commit(current_notebook=None, current_note=None, current_note_content="")

    def clear_current_note(self) -> None:
        self._commit(current_note=None, current_note_content="")

    def set_current_note_content(self, content: str) -> None:
        self._commit(current_note_content=content)

    def patch_record(self, kind: EntityKind, entity_id: str, fields: Dict[str, Any]) -> None:
        """Apply a just-written field change without waiting for a rebuild."""
        kind = EntityKind(kind)
        snapshot = self._snapshot
        view = snapshot.current_notebook

        if kind == EntityKind.NOTE:
            fields = {k: v for k, v in fields.items() if k in Note.model_fields and k != "id"}
            if not fields:
                return
            changes: Dict[str, Any] = {
                "search_results": _patch(snapshot.search_results, entity_id, fields),
            }
            if snapshot.current_note is not None and snapshot.current_note.id == entity_id:
                changes["current_note"] = snapshot.current_note.model_copy(update=fields)
            if view is not None:
                notes = _patch(view.notes, entity_id, fields)
                if "order" in fields:
                    notes.sort(key=order_key)
                changes["current_notebook"] = view.model_copy(update={
                    "notes": notes,
                    "categories": _group_notes(view.categories, notes),
                })
            self._commit(**changes)

        elif kind == EntityKind.CATEGORY and view is not None:
            fields = {k: v for k, v in fields.items() if k in ("title", "order")}
            if not fields:
                return
            categories = _patch(view.categories, entity_id, fields)
            if "order" in fields:
                categories.sort(key=order_key)
            self._commit(current_notebook=view.model_copy(update={"categories": categories}))

        elif kind == EntityKind.NOTEBOOK and "title" in fields:
            title = fields["title"]
            changes = {"notebook_list": _patch(snapshot.notebook_list, entity_id, {"title": title})}
            if view is not None and view.id == entity_id:
                changes["current_notebook"] = view.model_copy(update={"title": title})
            self._commit(**changes)

    def search(self, keyword: Optional[str]) -> List[Note]:
        """Set the active query; an empty keyword clears it."""
        query = keyword or None
        results = self._search_results(query)
        self._commit(search_query=query, search_results=results)
        return results

    def set_layout(self, component: str, value: bool) -> Layout:
        if component not in Layout.model_fields:
            raise ValidationError(f"Unknown layout component '{component}'", field="component", value=component)
        layout = self._snapshot.layout.model_copy(update={component: bool(value)})
        self._commit(layout=layout)
        return layout

    def show_versions(self, note_id: str) -> List[VersionSummary]:
        """List versions recorded for a note, newest first."""
        summaries: List[VersionSummary] = []
        if self.store.get(EntityKind.NOTE, note_id) is not None:
            seen = set()
            versions = (
                self.store.results(EntityKind.VERSION)
                .filtered(lambda v: note_id in v.note_ids)
                .sorted("created_at", descending=True)
            )
            for version in versions:
                if version.id in seen:
                    continue
                seen.add(version.id)
                summaries.append(VersionSummary(
                    id=version.id, message=version.message, created_at=version.created_at
                ))
        self._commit(versions=self._snapshot.versions.model_copy(update={"list": summaries}))
        return summaries

    def set_version_content(self, content: str) -> None:
        self._commit(
            versions=self._snapshot.versions.model_copy(update={"current_content": content})
        )

    def clear_versions(self) -> None:
        self._commit(versions=VersionsView())


def _patch(items: List, entity_id: str, fields: Dict[str, Any]) -> List:
    return [item.model_copy(update=fields) if item.id == entity_id else item for item in items]


def _group_notes(categories: List[CategoryView], notes: List[Note]) -> List[CategoryView]:
    return [
        category.model_copy(update={"notes": [n for n in notes if n.category_id == category.id]})
        for category in categories
    ]
