"""User-facing operations on notebooks, categories and notes.

Every mutation writes the store inside one transaction; its domain events
and snapshot patches are queued with ``after_commit`` so a failing
mutation emits nothing. Live note edits are throttled per note on the
persist window.
"""
import logging
from typing import Any, Dict, Optional, Union

from inknote.config import InknoteConfig, config
from inknote.events import EventHub, EventType, event_hub
from inknote.exceptions import (ErrorCode, NoteNotFoundError, OrderError,
                                ValidationError)
from inknote.models.schema import (Direction, EntityKind, Layout, LinkRequest,
                                   Note, NotebookView, OperationResult,
                                   UISnapshot)
from inknote.observability import timed_operation, traced
from inknote.scheduling import ManualScheduler, Scheduler, Throttle
from inknote.services.heading import parse_heading
from inknote.services.link_service import LinkService, category_link
from inknote.services.ordering import get_order_number
from inknote.services.projection import ProjectionEngine
from inknote.services.rebalancer import OrderRebalancer
from inknote.storage.attachment_io import AttachmentIO, LocalAttachmentIO
from inknote.storage.object_store import ObjectStore
from inknote.storage.state_store import StateStore

logger = logging.getLogger(__name__)

LAST_STATE_KEY = "last_state"
NO_VERSION_CONTENT = "No content changes in this version"

# Note fields a caller may set through new_note/update_note
_NOTE_FIELDS = {"id", "title", "content", "order", "local_version", "remote_version"}


class NotebookController:
    """Composes store, links, ordering and projection into user operations.

    Args:
        store: Object store; a SQLite store from config when omitted.
        events: Event hub; the process-wide hub when omitted.
        scheduler: Timer source for both throttles. The default manual
            scheduler only runs deferred work on ``flush_pending``.
        state_store: Last-open notebook/note record.
        attachment_io: File storage for attachments.
        settings: Configuration; the global config when omitted.
    """

    def __init__(
        self,
        store: Optional[ObjectStore] = None,
        events: Optional[EventHub] = None,
        scheduler: Optional[Scheduler] = None,
        state_store: Optional[StateStore] = None,
        attachment_io: Optional[AttachmentIO] = None,
        settings: Optional[InknoteConfig] = None,
    ):
        self.settings = settings or config
        self.store = store or ObjectStore()
        self.events = events or event_hub
        self.scheduler = scheduler or ManualScheduler()
        self.state = state_store or StateStore(self.settings.get_state_path())
        self._attachment_io = attachment_io

        self.projection = ProjectionEngine(
            self.store, self.scheduler, self.settings.render_interval
        )
        self.rebalancer = OrderRebalancer(
            self.store, self.events, self.projection, self.settings.order_step
        )
        self.links = LinkService(
            self.store, self.events, self.rebalancer, self.settings.order_step
        )
        self._persist = Throttle(
            self.scheduler, self.settings.persist_interval, leading=True, name="persist"
        )
        self.projection.start()

    @property
    def snapshot(self) -> UISnapshot:
        return self.projection.snapshot

    @property
    def attachment_io(self) -> AttachmentIO:
        if self._attachment_io is None:
            self._attachment_io = LocalAttachmentIO(self.settings.get_attachments_dir())
        return self._attachment_io

    def flush_pending(self) -> int:
        """Run throttled note writes and the pending rebuild now."""
        ran = self._persist.flush()
        if self.projection.rebuild_pending():
            ran += self.projection.flush()
        return ran

    def close(self) -> None:
        self.flush_pending()
        if self.projection.running:
            self.projection.stop()
        logger.info("Notebook controller closed")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _emit_after_commit(self, event: EventType, payload: Any) -> None:
        self.store.after_commit(lambda: self.events.emit(event, payload))

    def _patch_after_commit(self, kind: EntityKind, entity_id: str, fields: Dict[str, Any]) -> None:
        self.store.after_commit(
            lambda: self.projection.patch_record(kind, entity_id, fields)
        )

    def _require_notebook(self) -> NotebookView:
        notebook = self.snapshot.current_notebook
        if notebook is None:
            raise ValidationError(
                "No notebook is selected", code=ErrorCode.NOTEBOOK_NOT_SELECTED
            )
        return notebook

    def _require_current_note(self) -> Note:
        note = self.snapshot.current_note
        if note is None:
            raise ValidationError("No note is selected", field="note_id")
        return note

    def _save_state(self) -> None:
        snapshot = self.snapshot
        self.state.set(LAST_STATE_KEY, {
            "notebook_id": snapshot.current_notebook.id if snapshot.current_notebook else None,
            "note_id": snapshot.current_note.id if snapshot.current_note else None,
        })

    # =========================================================================
    # Notebooks and navigation
    # =========================================================================

    def create_notebook(self, title: str) -> str:
        with timed_operation("create_notebook", title=title) as op:
            if not title or not title.strip():
                raise ValidationError("Notebook title cannot be empty", field="title")
            with self.store.transaction():
                notebook_id = self.store.create(EntityKind.NOTEBOOK, {"title": title})
                self._emit_after_commit(
                    EventType.NOTEBOOK_CREATED, {"id": notebook_id, "title": title}
                )
            op["notebook_id"] = notebook_id
            return notebook_id

    def switch_current_notebook(self, notebook_id: str, note_id: Optional[str] = None) -> None:
        """Open a notebook, selecting ``note_id`` or else its first note."""
        with timed_operation("switch_current_notebook", notebook_id=notebook_id):
            view = self.projection.switch_current_notebook(notebook_id)
            if note_id is not None and view.find_note(note_id) is None:
                raise NoteNotFoundError(note_id)
            if note_id is None and view.notes:
                note_id = view.notes[0].id
            if note_id is None:
                self.projection.clear_current_note()
                self._save_state()
            else:
                self.switch_current_note(note_id)

    def switch_current_note(self, note_id: str) -> None:
        with timed_operation("switch_current_note", note_id=note_id):
            self.projection.switch_current_note(note_id)
            self._save_state()

    def exit_notebook(self) -> None:
        self.projection.exit_notebook()

    def recover_last_state(self) -> bool:
        """Reopen the notebook and note that were open last.

        Returns:
            Whether a notebook was reopened.
        """
        last_state = self.state.get(LAST_STATE_KEY)
        if not last_state or not last_state.get("notebook_id"):
            logger.debug("Nothing to recover")
            return False
        notebook_id = last_state["notebook_id"]
        if self.store.get(EntityKind.NOTEBOOK, notebook_id) is None:
            logger.warning(f"Last notebook {notebook_id} no longer exists")
            return False
        note_id = last_state.get("note_id")
        if note_id:
            note = self.store.get(EntityKind.NOTE, note_id)
            if note is None or note.notebook_id != notebook_id:
                note_id = None
        self.switch_current_notebook(notebook_id, note_id)
        logger.info(f"Recovered last state: notebook={notebook_id} note={note_id}")
        return True

    # =========================================================================
    # Notes
    # =========================================================================

    def new_note(self, **fields: Any) -> str:
        """Create a note right after the current one and select it.

        The note joins the current note's category; in an empty notebook a
        default category is created first.
        """
        with timed_operation("new_note") as op:
            notebook = self._require_notebook()
            unknown = set(fields) - _NOTE_FIELDS
            if unknown:
                raise ValidationError(
                    f"Unknown note field(s): {', '.join(sorted(unknown))}",
                    field=sorted(unknown)[0],
                    code=ErrorCode.NOTE_VALIDATION_FAILED,
                )
            current = self.snapshot.current_note
            title = self.settings.default_note_title
            data: Dict[str, Any] = {
                "title": title,
                "content": f"# {title}\n\n",
                "local_version": 1,
                "remote_version": 0,
            }
            data.update(fields)

            order = data.get("order")
            if order is None:
                if current is not None:
                    larger = [n.order for n in notebook.notes if n.order > current.order]
                    order = get_order_number(
                        current.order, min(larger) if larger else None, self.settings.order_step
                    )
                else:
                    orders = [n.order for n in notebook.notes]
                    order = get_order_number(
                        max(orders) if orders else None, None, self.settings.order_step
                    )
                    if order is None:
                        raise OrderError(
                            "No order value left after the last note",
                            code=ErrorCode.ORDER_REBALANCE_EXHAUSTED,
                        )
                data["order"] = order if order is not None else current.order

            with self.store.transaction():
                category_id = self._category_for_new_note(notebook, current)
                note_id = self.store.create(
                    EntityKind.NOTE,
                    data,
                    links=[
                        category_link(category_id),
                        LinkRequest(kind=EntityKind.NOTEBOOK, field="notes", id=notebook.id),
                    ],
                )
                self._emit_after_commit(EventType.NOTE_CREATED, {"id": note_id, **data})
                if order is None:
                    self.rebalancer.move(EntityKind.NOTE, note_id, current.id, Direction.DOWN)

            self.projection.rebuild()
            self.switch_current_note(note_id)
            op["note_id"] = note_id
            return note_id

    def _category_for_new_note(self, notebook: NotebookView, current: Optional[Note]) -> str:
        if current is not None and current.category_id:
            return current.category_id
        first = (
            self.store.results(EntityKind.CATEGORY)
            .filtered(notebook_id=notebook.id)
            .sorted("order")
            .first()
        )
        if first is not None:
            return first.id
        return self.links.create_category(notebook.id, self.settings.default_category_title)

    def update_note(self, data: Dict[str, Any], is_editing_heading: bool = False) -> None:
        """Throttled note update for live editing.

        The first call of a burst writes at once; later calls inside the
        persist window collapse into one trailing write of the newest data.
        """
        data = dict(data)
        if not data.get("id"):
            data["id"] = self._require_current_note().id
        self._persist(
            lambda: self.update_note_now(data, is_editing_heading), key=data["id"]
        )

    def update_note_now(self, data: Dict[str, Any], is_editing_heading: bool = False) -> bool:
        """Write a note update immediately.

        The first line of new content sets the title and, for a
        ``category\\title`` heading, the category. Nothing is written and
        nothing emitted when neither content nor any other field changed.

        Returns:
            Whether anything was written.
        """
        data = dict(data)
        if not data.get("id"):
            data["id"] = self._require_current_note().id
        note_id = data["id"]

        with timed_operation("update_note", note_id=note_id) as op:
            unknown = set(data) - _NOTE_FIELDS
            if unknown:
                raise ValidationError(
                    f"Unknown note field(s): {', '.join(sorted(unknown))}",
                    field=sorted(unknown)[0],
                    code=ErrorCode.NOTE_VALIDATION_FAILED,
                )
            stored = self.store.require(EntityKind.NOTE, note_id)
            content = data.get("content")
            snapshot = self.snapshot
            is_current = snapshot.current_note is not None and snapshot.current_note.id == note_id

            with self.store.transaction():
                if content and not is_editing_heading:
                    category_title, data["title"] = parse_heading(
                        content, self.settings.untitled_title
                    )
                    if category_title:
                        self.update_note_category_by_title(note_id, category_title)

                current_content = snapshot.current_note_content if is_current else stored.content
                content_changed = content is not None and content != current_content
                note_changed = any(
                    key not in ("id", "content") and value != getattr(stored, key)
                    for key, value in data.items()
                )
                if not content_changed and not note_changed:
                    op["skipped"] = True
                    return False

                self.store.update(EntityKind.NOTE, data)
                if content_changed:
                    self._emit_after_commit(EventType.NOTE_CONTENT_CHANGED, data)
                if note_changed:
                    self._emit_after_commit(EventType.NOTE_CHANGED, data)
                self._patch_after_commit(EntityKind.NOTE, note_id, data)
                if is_current and content is not None:
                    self.store.after_commit(
                        lambda: self.projection.set_current_note_content(content)
                    )

            op["content_changed"] = content_changed
            op["note_changed"] = note_changed
            return True

    def delete_note(self, note_id: str) -> None:
        """Delete a note; its category goes too if this empties it.

        Deleting the current note selects the notebook's first remaining
        note, or clears the selection when none is left.
        """
        with timed_operation("delete_note", note_id=note_id) as op:
            note = self.store.require(EntityKind.NOTE, note_id)
            current = self.snapshot.current_note
            was_current = current is not None and current.id == note_id
            self._persist.cancel(note_id)

            with self.store.transaction():
                self.store.delete(EntityKind.NOTE, note_id)
                self._emit_after_commit(EventType.NOTE_DELETED, note_id)
                if note.category_id:
                    op["category_deleted"] = self.links.delete_empty_category(note.category_id)

            snapshot = self.projection.rebuild()
            if was_current:
                remaining = snapshot.current_notebook.notes if snapshot.current_notebook else []
                if remaining:
                    self.switch_current_note(remaining[0].id)
                else:
                    self.projection.clear_current_note()
                    self._save_state()
                op["switched"] = True

    # =========================================================================
    # Categories
    # =========================================================================

    def create_category(self, title: str, after_category_id: Optional[str] = None) -> str:
        """Create a category after ``after_category_id`` or the current note's."""
        with timed_operation("create_category", title=title) as op:
            notebook = self._require_notebook()
            if after_category_id is None and self.snapshot.current_note is not None:
                after_category_id = self.snapshot.current_note.category_id
            category_id = self.links.create_category(notebook.id, title, after_category_id)
            self.projection.rebuild()
            op["category_id"] = category_id
            return category_id

    @traced("delete_category")
    def delete_category(self, category_id: str) -> OperationResult:
        return self.links.delete_category(category_id)

    def rename_category(self, category_id: str, title: str) -> bool:
        """Rename a category. An empty title is ignored."""
        if not title:
            return False
        with timed_operation("rename_category", category_id=category_id):
            self.store.require(EntityKind.CATEGORY, category_id)
            data = {"id": category_id, "title": title}
            with self.store.transaction():
                self.store.update(EntityKind.CATEGORY, data)
                self._emit_after_commit(EventType.CATEGORY_CHANGED, data)
                self._patch_after_commit(EntityKind.CATEGORY, category_id, {"title": title})
            return True

    def update_note_category_by_title(self, note_id: str, title: str) -> Optional[str]:
        """File a note under the notebook's category called ``title``.

        The category is created right after the note's current one when
        the notebook has none by that title.

        Returns:
            The note's category ID afterwards, or None for an empty title.
        """
        if not title:
            return None
        note = self.store.require(EntityKind.NOTE, note_id)
        if note.category_id:
            current = self.store.get(EntityKind.CATEGORY, note.category_id)
            if current is not None and current.title == title:
                return current.id
        with timed_operation("update_note_category_by_title", note_id=note_id) as op:
            with self.store.transaction():
                category_id, created = self.links.resolve_category(
                    note.notebook_id, title, note.category_id
                )
                self.update_note_category(note_id, category_id)
            op["created"] = created
            return category_id

    def update_note_category(self, note_id: str, category_id: str) -> bool:
        with timed_operation("update_note_category", note_id=note_id, category_id=category_id):
            with self.store.transaction():
                moved = self.links.relink(note_id, category_id)
                if moved:
                    self._emit_after_commit(
                        EventType.NOTE_CHANGED, {"id": note_id, "category_id": category_id}
                    )
                    self._patch_after_commit(
                        EntityKind.NOTE, note_id, {"category_id": category_id}
                    )
                    self.store.after_commit(self.projection.rebuild)
            return moved

    # =========================================================================
    # Ordering
    # =========================================================================

    def update_order(
        self, kind: Union[EntityKind, str], entity_id: str, compare_id: str, direction: str
    ) -> float:
        with timed_operation("update_order", kind=kind, entity_id=entity_id, direction=direction):
            return self.rebalancer.move(kind, entity_id, compare_id, direction)

    def update_note_order(self, note_id: str, compare_note_id: str, direction: str) -> float:
        return self.update_order(EntityKind.NOTE, note_id, compare_note_id, direction)

    def update_category_order(
        self, category_id: str, compare_category_id: str, direction: str
    ) -> float:
        return self.update_order(EntityKind.CATEGORY, category_id, compare_category_id, direction)

    @traced("normalize_all_note_order")
    def normalize_all_note_order(self) -> int:
        return self.rebalancer.normalize(EntityKind.NOTE)

    @traced("normalize_all_category_order")
    def normalize_all_category_order(self) -> int:
        return self.rebalancer.normalize(EntityKind.CATEGORY)

    # =========================================================================
    # Presentation state
    # =========================================================================

    def switch_layout(self, component: str, value: Optional[bool] = None) -> Layout:
        """Show or hide a pane; toggles when ``value`` is None."""
        if value is None:
            value = not getattr(self.snapshot.layout, component, False)
        return self.projection.set_layout(component, value)

    @traced("search")
    def search(self, keyword: Optional[str]):
        return self.projection.search(keyword)

    def show_versions(self, note_id: str):
        with timed_operation("show_versions", note_id=note_id):
            return self.projection.show_versions(note_id)

    def hide_versions(self) -> None:
        self.projection.clear_versions()

    def show_version_content(self, version_id: str, note_id: str) -> str:
        record = (
            self.store.results(EntityKind.VERSION_NOTE_CONTENT)
            .filtered(version_id=version_id, note_id=note_id)
            .first()
        )
        content = record.content if record is not None else NO_VERSION_CONTENT
        self.projection.set_version_content(content)
        return content

    # =========================================================================
    # Attachments
    # =========================================================================

    def create_attachment(
        self, source: str = "file", path: Optional[str] = None, ext: Optional[str] = None
    ) -> Union[Dict[str, str], bool]:
        """Store a file and attach it to the current note.

        Args:
            source: ``"file"`` or ``"clipboard"``.
            path: Source path for ``"file"``.
            ext: Extension override for the stored file.

        Returns:
            ``{"id", "filename", "ext"}``, or False when nothing was stored.
        """
        with timed_operation("create_attachment", source=source) as op:
            note = self._require_current_note()
            io = self.attachment_io
            if source == "clipboard":
                file_path = io.save_image_from_clipboard()
                filename = io.get_file_name(file_path) if file_path else ""
            elif source == "file":
                if not path:
                    raise ValidationError("A file attachment needs a path", field="path")
                file_path = io.save_image(path, ext)
                filename = io.get_file_name(path)
            else:
                raise ValidationError(
                    f"Unknown attachment source '{source}'", field="source", value=source
                )
            if not file_path:
                op["stored"] = False
                return False

            file_ext = io.get_file_ext(file_path)
            attachment_id = self.store.create(
                EntityKind.ATTACHMENT,
                {
                    "filename": filename,
                    "ext": file_ext,
                    "size": io.get_file_size(file_path),
                    "local_path": file_path,
                    "remote_path": "",
                },
                links=[LinkRequest(kind=EntityKind.NOTE, field="attachments", id=note.id)],
            )
            op["attachment_id"] = attachment_id
            return {"id": attachment_id, "filename": filename, "ext": file_ext}
