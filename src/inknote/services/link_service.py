"""Note/category links.

A note's category is stored only as the reverse link ``Category.notes``.
Categories live only while they hold notes: a relink that empties the old
category deletes it. Explicit deletion of a category that still holds
notes is refused, not raised.
"""
import logging
from typing import Optional, Tuple

from inknote.events import EventHub, EventType
from inknote.exceptions import (CategoryNotFoundError, ErrorCode, LinkError,
                                OrderError, ValidationError)
from inknote.models.schema import (Direction, EntityKind, LinkRequest,
                                   OperationResult)
from inknote.services.ordering import ORDER_STEP, get_order_number
from inknote.services.rebalancer import OrderRebalancer, order_key
from inknote.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

CATEGORY_NOT_EMPTY_MESSAGE = "This category still contains notes and cannot be deleted"


def category_link(category_id: str) -> LinkRequest:
    return LinkRequest(kind=EntityKind.CATEGORY, field="notes", id=category_id)


class LinkService:
    """Maintains ``Category.notes`` and the lifetime of categories."""

    def __init__(
        self,
        store: ObjectStore,
        events: EventHub,
        rebalancer: Optional[OrderRebalancer] = None,
        step: float = ORDER_STEP,
    ):
        self.store = store
        self.events = events
        self.rebalancer = rebalancer or OrderRebalancer(store, events, step=step)
        self.step = step

    def relink(
        self,
        note_id: str,
        new_category_id: str,
        old_category_id: Optional[str] = None,
    ) -> bool:
        """Move a note into ``new_category_id``.

        The old category defaults to the note's current one and is deleted
        when the move leaves it empty.

        Returns:
            False when the note already is in ``new_category_id``.

        Raises:
            LinkError: ``old_category_id`` is not the note's category, or
                the new category belongs to another notebook.
        """
        note = self.store.require(EntityKind.NOTE, note_id)
        category = self.store.require(EntityKind.CATEGORY, new_category_id)
        if old_category_id is None:
            old_category_id = note.category_id
        elif old_category_id != note.category_id:
            raise LinkError(
                "Note is not in the given old category",
                note_id=note_id,
                category_id=old_category_id,
            )
        if new_category_id == old_category_id:
            return False
        if category.notebook_id != note.notebook_id:
            raise LinkError(
                "Category belongs to another notebook",
                note_id=note_id,
                category_id=new_category_id,
            )

        with self.store.transaction():
            self.store.add_reverse_link(
                EntityKind.NOTE, note_id, [category_link(new_category_id)]
            )
            if old_category_id:
                self.store.remove_reverse_link(
                    EntityKind.NOTE, note_id, [category_link(old_category_id)]
                )
                self.delete_empty_category(old_category_id)
        logger.info(f"Relinked note {note_id}: {old_category_id} -> {new_category_id}")
        return True

    def delete_empty_category(self, category_id: str) -> bool:
        """Delete a category if it exists and holds no notes."""
        category = self.store.get(EntityKind.CATEGORY, category_id)
        if category is None or category.note_ids:
            return False
        with self.store.transaction():
            self.store.delete(EntityKind.CATEGORY, category_id)
            self.store.after_commit(
                lambda: self.events.emit(EventType.CATEGORY_DELETED, category_id)
            )
        logger.info(f"Deleted empty category {category_id}")
        return True

    def find_category(self, notebook_id: str, title: str):
        return (
            self.store.results(EntityKind.CATEGORY)
            .filtered(notebook_id=notebook_id, title=title)
            .sorted(order_key)
            .first()
        )

    def resolve_category(
        self,
        notebook_id: str,
        title: str,
        after_category_id: Optional[str] = None,
    ) -> Tuple[str, bool]:
        """Find a category of the notebook by title, creating it if absent.

        Returns:
            ``(category_id, created)``.
        """
        existing = self.find_category(notebook_id, title)
        if existing is not None:
            return existing.id, False
        return self.create_category(notebook_id, title, after_category_id), True

    def create_category(
        self,
        notebook_id: str,
        title: str,
        after_category_id: Optional[str] = None,
    ) -> str:
        """Create a category right after ``after_category_id``.

        Without a reference category it is appended after the last one.
        """
        if not title or not title.strip():
            raise ValidationError("Category title cannot be empty", field="title")
        self.store.require(EntityKind.NOTEBOOK, notebook_id)
        orders = [
            c.order for c in self.store.results(EntityKind.CATEGORY).filtered(
                notebook_id=notebook_id
            )
        ]

        after = None
        if after_category_id:
            after = self.store.get(EntityKind.CATEGORY, after_category_id)
            if after is None:
                raise CategoryNotFoundError(after_category_id)
            larger = [order for order in orders if order > after.order]
            order = get_order_number(after.order, min(larger) if larger else None, self.step)
        else:
            order = get_order_number(max(orders) if orders else None, None, self.step)
        if order is None and after is None:
            raise OrderError(
                "No order value left after the last category",
                code=ErrorCode.ORDER_REBALANCE_EXHAUSTED,
            )

        with self.store.transaction():
            category_id = self.store.create(
                EntityKind.CATEGORY,
                {"title": title, "order": order if order is not None else after.order},
                links=[LinkRequest(kind=EntityKind.NOTEBOOK, field="categories", id=notebook_id)],
            )
            self.store.after_commit(lambda: self._emit_created(category_id))
            if order is None:
                self.rebalancer.move(
                    EntityKind.CATEGORY, category_id, after.id, Direction.DOWN
                )
        logger.info(f"Created category {category_id} '{title}' in notebook {notebook_id}")
        return category_id

    def _emit_created(self, category_id: str) -> None:
        category = self.store.get(EntityKind.CATEGORY, category_id)
        if category is not None:
            self.events.emit(EventType.CATEGORY_CREATED, category.model_dump())

    def delete_category(self, category_id: str) -> OperationResult:
        """Delete a category on user request; refused while it holds notes."""
        category = self.store.get(EntityKind.CATEGORY, category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        if category.note_ids:
            logger.info(f"Refused to delete non-empty category {category_id}")
            return OperationResult(ok=False, message=CATEGORY_NOT_EMPTY_MESSAGE)
        with self.store.transaction():
            self.store.delete(EntityKind.CATEGORY, category_id)
            self.store.after_commit(
                lambda: self.events.emit(EventType.CATEGORY_DELETED, category_id)
            )
        return OperationResult(ok=True)
