"""Object store with transactional writes and change notifications.

All writes of one ``transaction()`` block share a session and commit
together; listeners are notified once per kind after the commit, on the
calling thread. A failed transaction rolls back and notifies nobody.
"""
import datetime
import itertools
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inknote.exceptions import (CategoryNotFoundError, ErrorCode,
                                NotebookNotFoundError, NoteNotFoundError,
                                NotFoundError, StorageError, ValidationError)
from inknote.models.db_models import (DBAttachment, DBCategory, DBNote,
                                      DBNotebook, DBVersion,
                                      DBVersionNoteContent,
                                      get_session_factory, init_db)
from inknote.models.schema import (Attachment, Category, EntityKind,
                                   LinkRequest, Note, Notebook, Version,
                                   VersionNoteContent, ensure_timezone_aware,
                                   generate_id)
from inknote.storage.live_results import ChangeSet, Listener, LiveResults

logger = logging.getLogger(__name__)

_DB_CLASSES = {
    EntityKind.NOTEBOOK: DBNotebook,
    EntityKind.CATEGORY: DBCategory,
    EntityKind.NOTE: DBNote,
    EntityKind.ATTACHMENT: DBAttachment,
    EntityKind.VERSION: DBVersion,
    EntityKind.VERSION_NOTE_CONTENT: DBVersionNoteContent,
}

# Writable scalar columns per kind
_COLUMNS = {
    EntityKind.NOTEBOOK: {"id", "title", "created_at", "updated_at"},
    EntityKind.CATEGORY: {"id", "title", "order", "created_at", "updated_at"},
    EntityKind.NOTE: {
        "id", "title", "content", "order", "local_version", "remote_version",
        "created_at", "updated_at",
    },
    EntityKind.ATTACHMENT: {
        "id", "filename", "ext", "size", "local_path", "remote_path",
        "created_at", "updated_at",
    },
    EntityKind.VERSION: {"id", "message", "created_at"},
    EntityKind.VERSION_NOTE_CONTENT: {"id", "version_id", "note_id", "content"},
}

# (related kind, relationship field) -> kind of record the field holds
_LINK_FIELDS = {
    (EntityKind.NOTEBOOK, "categories"): EntityKind.CATEGORY,
    (EntityKind.NOTEBOOK, "notes"): EntityKind.NOTE,
    (EntityKind.CATEGORY, "notes"): EntityKind.NOTE,
    (EntityKind.NOTE, "attachments"): EntityKind.ATTACHMENT,
    (EntityKind.NOTE, "versions"): EntityKind.VERSION,
}

_NOT_FOUND = {
    EntityKind.NOTEBOOK: NotebookNotFoundError,
    EntityKind.CATEGORY: CategoryNotFoundError,
    EntityKind.NOTE: NoteNotFoundError,
}


def not_found(kind: EntityKind, entity_id: str) -> NotFoundError:
    """Build the not-found error matching an entity kind."""
    error_cls = _NOT_FOUND.get(kind)
    if error_cls is None:
        return NotFoundError(entity_id, f"{kind.value} with ID '{entity_id}' not found")
    return error_cls(entity_id)


@dataclass
class _Transaction:
    session: Session
    changes: Dict[EntityKind, ChangeSet] = field(default_factory=dict)
    callbacks: List[Callable[[], None]] = field(default_factory=list)

    def record(self, kind: EntityKind, change: str, entity_id: str) -> None:
        if kind not in self.changes:
            self.changes[kind] = ChangeSet(kind=kind)
        self.changes[kind].record(change, entity_id)


class ObjectStore:
    """SQLite-backed store exposing live result sets per entity kind."""

    def __init__(self, engine=None):
        """Initialize the store.

        Args:
            engine: SQLAlchemy engine. If None, one is created from config.
        """
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        self._listeners: Dict[EntityKind, Dict[int, Listener]] = {}
        self._tokens = itertools.count(1)
        self._txn: Optional[_Transaction] = None
        logger.info("ObjectStore initialized")

    # =========================================================================
    # Notifications
    # =========================================================================

    def results(self, kind: EntityKind) -> LiveResults:
        """Live view over every record of ``kind``."""
        return LiveResults(self, EntityKind(kind))

    def add_listener(self, kind: EntityKind, listener: Listener) -> int:
        token = next(self._tokens)
        self._listeners.setdefault(kind, {})[token] = listener
        return token

    def remove_listener(self, kind: EntityKind, token: int) -> None:
        self._listeners.get(kind, {}).pop(token, None)

    def _notify(self, changes: Dict[EntityKind, ChangeSet]) -> None:
        for kind, change_set in changes.items():
            if not change_set:
                continue
            for listener in list(self._listeners.get(kind, {}).values()):
                try:
                    listener(change_set)
                except Exception as e:
                    logger.error(
                        f"Change listener for {kind.value} failed: {e}", exc_info=True
                    )

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def transaction(self):
        """Group writes into one commit and one notification batch.

        Nested calls join the outermost transaction.
        """
        if self._txn is not None:
            yield self._txn.session
            return

        session = self.session_factory()
        txn = _Transaction(session=session)
        self._txn = txn
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(
                "Store transaction failed",
                operation="commit",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            self._txn = None
            session.close()
        self._notify(txn.changes)
        for callback in txn.callbacks:
            callback()

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the current transaction commits.

        Outside a transaction the callback runs immediately; on rollback it
        is dropped.
        """
        if self._txn is None:
            callback()
        else:
            self._txn.callbacks.append(callback)

    @contextmanager
    def _reading(self):
        if self._txn is not None:
            yield self._txn.session
        else:
            with self.session_factory() as session:
                yield session

    # =========================================================================
    # Reads
    # =========================================================================

    def all(self, kind: EntityKind) -> List[BaseModel]:
        """Every record of ``kind`` as detached models."""
        db_cls = _DB_CLASSES[kind]
        with self._reading() as session:
            rows = session.scalars(select(db_cls)).all()
            return [self._to_model(kind, row) for row in rows]

    def get(self, kind: EntityKind, entity_id: str) -> Optional[BaseModel]:
        """Get one record by ID, or None."""
        with self._reading() as session:
            row = session.get(_DB_CLASSES[kind], entity_id)
            if row is None:
                return None
            return self._to_model(kind, row)

    def require(self, kind: EntityKind, entity_id: str) -> BaseModel:
        """Get one record by ID, raising the kind's not-found error."""
        record = self.get(kind, entity_id)
        if record is None:
            raise not_found(kind, entity_id)
        return record

    # =========================================================================
    # Writes
    # =========================================================================

    def create(
        self,
        kind: EntityKind,
        data: Union[Dict[str, Any], BaseModel],
        links: Optional[Iterable[LinkRequest]] = None,
    ) -> str:
        """Create a record and resolve its link requests atomically.

        Args:
            kind: Kind of the new record.
            data: Column values (a dict or a model); ``id`` is generated
                when absent.
            links: Requests to append the new record to relationship
                fields of existing records.

        Returns:
            ID of the created record.
        """
        values = self._columns(kind, data, partial=False)
        values.setdefault("id", generate_id())
        with self.transaction() as session:
            row = _DB_CLASSES[kind](**values)
            session.add(row)
            self._txn.record(kind, "inserted", row.id)
            for link in links or ():
                self._link(session, row, kind, link, add=True)
            session.flush()
            logger.debug(f"Created {kind.value} {row.id}")
            return row.id

    def update(
        self,
        kind: EntityKind,
        data: Union[Dict[str, Any], List[Dict[str, Any]]],
    ) -> None:
        """Update fields of one record or a batch, matched by ``id``."""
        batch = data if isinstance(data, list) else [data]
        with self.transaction() as session:
            for item in batch:
                values = self._columns(kind, item, partial=True)
                entity_id = values.pop("id", None)
                if not entity_id:
                    raise ValidationError("Update requires an id", field="id")
                row = session.get(_DB_CLASSES[kind], entity_id)
                if row is None:
                    raise not_found(kind, entity_id)
                if "updated_at" in _COLUMNS[kind] and "updated_at" not in values:
                    values["updated_at"] = datetime.datetime.now(datetime.timezone.utc)
                for name, value in values.items():
                    setattr(row, name, value)
                self._txn.record(kind, "modified", entity_id)
            session.flush()

    def delete(self, kind: EntityKind, entity_id: str) -> None:
        """Delete a record by ID."""
        with self.transaction() as session:
            row = session.get(_DB_CLASSES[kind], entity_id)
            if row is None:
                raise not_found(kind, entity_id)
            # Rows on the other side of a many-to-many keep the deleted row
            # in their loaded collections until expired.
            stale = []
            if kind == EntityKind.NOTE:
                stale = list(row.categories) + list(row.versions)
                for category in row.categories:
                    self._txn.record(EntityKind.CATEGORY, "modified", category.id)
                if row.notebook_id:
                    self._txn.record(EntityKind.NOTEBOOK, "modified", row.notebook_id)
            elif kind == EntityKind.CATEGORY:
                stale = list(row.notes)
                if row.notebook_id:
                    self._txn.record(EntityKind.NOTEBOOK, "modified", row.notebook_id)
            session.delete(row)
            self._txn.record(kind, "deleted", entity_id)
            session.flush()
            for other in stale:
                session.expire(other)
            logger.debug(f"Deleted {kind.value} {entity_id}")

    def add_reverse_link(
        self, kind: EntityKind, entity_id: str, links: Iterable[LinkRequest]
    ) -> None:
        """Append an existing record to relationship fields of other records."""
        self._relink(kind, entity_id, links, add=True)

    def remove_reverse_link(
        self, kind: EntityKind, entity_id: str, links: Iterable[LinkRequest]
    ) -> None:
        """Remove an existing record from relationship fields of other records."""
        self._relink(kind, entity_id, links, add=False)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _relink(
        self, kind: EntityKind, entity_id: str, links: Iterable[LinkRequest], add: bool
    ) -> None:
        with self.transaction() as session:
            row = session.get(_DB_CLASSES[kind], entity_id)
            if row is None:
                raise not_found(kind, entity_id)
            for link in links:
                self._link(session, row, kind, link, add=add)
            self._txn.record(kind, "modified", entity_id)
            session.flush()

    def _link(
        self, session: Session, row: Any, kind: EntityKind, link: LinkRequest, add: bool
    ) -> None:
        held_kind = _LINK_FIELDS.get((link.kind, link.field))
        if held_kind != kind:
            raise StorageError(
                f"{link.kind.value}.{link.field} cannot hold a {kind.value}",
                operation="link",
                kind=kind.value,
                code=ErrorCode.STORAGE_INVALID_LINK,
            )
        parent = session.get(_DB_CLASSES[link.kind], link.id)
        if parent is None:
            raise not_found(link.kind, link.id)
        collection = getattr(parent, link.field)
        if add and row not in collection:
            collection.append(row)
        elif not add and row in collection:
            collection.remove(row)
        self._txn.record(link.kind, "modified", link.id)

    @staticmethod
    def _columns(
        kind: EntityKind, data: Union[Dict[str, Any], BaseModel], partial: bool
    ) -> Dict[str, Any]:
        if isinstance(data, BaseModel):
            values = data.model_dump()
            values = {k: v for k, v in values.items() if k in _COLUMNS[kind]}
        else:
            values = dict(data)
            unknown = set(values) - _COLUMNS[kind]
            if unknown:
                raise ValidationError(
                    f"Unknown {kind.value} field(s): {', '.join(sorted(unknown))}",
                    field=sorted(unknown)[0],
                )
        if not partial:
            values = {k: v for k, v in values.items() if v is not None}
        return values

    @staticmethod
    def _to_model(kind: EntityKind, row: Any) -> BaseModel:
        if kind == EntityKind.NOTEBOOK:
            return Notebook(
                id=row.id,
                title=row.title,
                created_at=ensure_timezone_aware(row.created_at),
                updated_at=ensure_timezone_aware(row.updated_at),
            )
        if kind == EntityKind.CATEGORY:
            return Category(
                id=row.id,
                title=row.title,
                order=row.order,
                notebook_id=row.notebook_id,
                note_ids=[note.id for note in row.notes],
                created_at=ensure_timezone_aware(row.created_at),
                updated_at=ensure_timezone_aware(row.updated_at),
            )
        if kind == EntityKind.NOTE:
            return Note(
                id=row.id,
                title=row.title,
                content=row.content,
                order=row.order,
                notebook_id=row.notebook_id,
                category_id=row.categories[0].id if row.categories else None,
                local_version=row.local_version,
                remote_version=row.remote_version,
                created_at=ensure_timezone_aware(row.created_at),
                updated_at=ensure_timezone_aware(row.updated_at),
            )
        if kind == EntityKind.ATTACHMENT:
            return Attachment(
                id=row.id,
                filename=row.filename,
                ext=row.ext,
                size=row.size,
                local_path=row.local_path,
                remote_path=row.remote_path,
                note_id=row.note_id,
                created_at=ensure_timezone_aware(row.created_at),
                updated_at=ensure_timezone_aware(row.updated_at),
            )
        if kind == EntityKind.VERSION:
            return Version(
                id=row.id,
                message=row.message,
                note_ids=[note.id for note in row.notes],
                created_at=ensure_timezone_aware(row.created_at),
            )
        return VersionNoteContent(
            id=row.id,
            version_id=row.version_id,
            note_id=row.note_id,
            content=row.content,
        )
