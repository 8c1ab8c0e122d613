"""Moving notes and categories among their siblings.

A move asks the allocator for an order value between the comparison item
and its neighbour. When the two are adjacent at float precision a
neighbour is first pushed further down, which cascades until some item
reaches a free gap (at worst the last sibling, which always has room).
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from inknote.events import EventHub, EventType
from inknote.exceptions import ErrorCode, OrderError
from inknote.models.schema import Direction, EntityKind
from inknote.services.ordering import (ORDER_STEP, get_order_number,
                                       normalize_order_list)
from inknote.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

_ORDERED_KINDS = {
    EntityKind.NOTE: EventType.NOTE_CHANGED,
    EntityKind.CATEGORY: EventType.CATEGORY_CHANGED,
}


def order_key(record) -> Tuple[float, str]:
    """Sort key for siblings; ties on order fall back to ID."""
    return (record.order, record.id)


class OrderRebalancer:
    """Places an item before or after a comparison sibling."""

    def __init__(
        self,
        store: ObjectStore,
        events: EventHub,
        projection=None,
        step: float = ORDER_STEP,
    ):
        self.store = store
        self.events = events
        self.projection = projection
        self.step = step

    def move(
        self,
        kind: EntityKind,
        entity_id: str,
        compare_id: str,
        direction: str,
    ) -> float:
        """Move ``entity_id`` just before (up) or after (down) ``compare_id``.

        All writes of the move, displaced neighbours included, commit in one
        transaction.

        Returns:
            The new order of ``entity_id``.

        Raises:
            OrderError: Unknown direction, self-reference, unsupported kind,
                or a cascade longer than the sibling list.
            NotFoundError: Either ID does not resolve.
        """
        kind = self._check_kind(kind)
        direction = self._check_direction(direction, entity_id)
        if entity_id == compare_id:
            raise OrderError(
                "Cannot move an item relative to itself",
                entity_id=entity_id,
                direction=direction.value,
                code=ErrorCode.ORDER_SELF_REFERENCE,
            )
        self.store.require(kind, compare_id)

        with self.store.transaction():
            target = self.store.require(kind, entity_id)
            sibling_count = len(self._siblings(kind, target.notebook_id))
            pending: List[Tuple[str, str, Direction]] = [(entity_id, compare_id, direction)]
            placed: Dict[str, float] = {}

            while pending:
                if len(pending) > sibling_count + 1:
                    raise OrderError(
                        f"Rebalance did not converge within {sibling_count} siblings",
                        entity_id=entity_id,
                        direction=direction.value,
                        code=ErrorCode.ORDER_REBALANCE_EXHAUSTED,
                    )
                item_id, item_compare_id, item_direction = pending[-1]
                siblings = self._siblings(kind, target.notebook_id)
                compare = self._find(siblings, kind, item_compare_id)
                lower, upper = self._bounds(siblings, compare, item_direction)
                value = get_order_number(lower, upper, self.step)

                if value is None:
                    displaced = self._displaced(siblings, compare, item_direction)
                    logger.debug(
                        f"No room for {kind.value} {item_id} between {lower} and {upper}; "
                        f"displacing {displaced.id}"
                    )
                    pending.append((displaced.id, displaced.id, Direction.DOWN))
                    continue

                pending.pop()
                self._place(kind, item_id, value)
                placed[item_id] = value

        logger.info(
            f"Moved {kind.value} {entity_id} {direction.value} of {compare_id} "
            f"({len(placed)} write(s))"
        )
        return placed[entity_id]

    def normalize(self, kind: EntityKind, notebook_id: Optional[str] = None) -> int:
        """Renumber every sibling list of ``kind`` evenly.

        Relative order is preserved. Only records whose order actually
        changes are written.

        Returns:
            Number of records rewritten.
        """
        kind = self._check_kind(kind)
        groups = defaultdict(list)
        for record in self.store.all(kind):
            if notebook_id is None or record.notebook_id == notebook_id:
                groups[record.notebook_id].append(record)

        updates = []
        for records in groups.values():
            records.sort(key=order_key)
            for record, order in zip(records, normalize_order_list(len(records), self.step)):
                if record.order != order:
                    updates.append({"id": record.id, "order": order})

        if not updates:
            return 0
        event = _ORDERED_KINDS[kind]
        with self.store.transaction():
            self.store.update(kind, updates)
            for item in updates:
                self.store.after_commit(lambda payload=item: self.events.emit(event, payload))
        if self.projection is not None:
            self.projection.request_rebuild()
        logger.info(f"Normalized {len(updates)} {kind.value} order(s)")
        return len(updates)

    def _place(self, kind: EntityKind, entity_id: str, order: float) -> None:
        payload = {"id": entity_id, "order": order}
        self.store.update(kind, payload)
        self.store.after_commit(lambda: self.events.emit(_ORDERED_KINDS[kind], payload))
        if self.projection is not None:
            self.store.after_commit(
                lambda: self.projection.patch_record(kind, entity_id, {"order": order})
            )

    def _siblings(self, kind: EntityKind, notebook_id: Optional[str]) -> List:
        return (
            self.store.results(kind)
            .filtered(notebook_id=notebook_id)
            .sorted(order_key)
            .to_list()
        )

    @staticmethod
    def _find(siblings: List, kind: EntityKind, entity_id: str):
        for sibling in siblings:
            if sibling.id == entity_id:
                return sibling
        raise OrderError(
            f"{kind.value} '{entity_id}' is not a sibling of the moved item",
            entity_id=entity_id,
            code=ErrorCode.ORDER_INVALID_DIRECTION,
        )

    @staticmethod
    def _bounds(
        siblings: List, compare, direction: Direction
    ) -> Tuple[Optional[float], Optional[float]]:
        if direction == Direction.UP:
            smaller = [s.order for s in siblings if s.order < compare.order]
            return (max(smaller) if smaller else None), compare.order
        larger = [s.order for s in siblings if s.order > compare.order]
        return compare.order, (min(larger) if larger else None)

    @staticmethod
    def _displaced(siblings: List, compare, direction: Direction):
        if direction == Direction.UP:
            return compare
        after = [s for s in siblings if s.order > compare.order]
        if not after:
            raise OrderError(
                f"No room after order {compare.order}",
                entity_id=compare.id,
                direction=direction.value,
                code=ErrorCode.ORDER_REBALANCE_EXHAUSTED,
            )
        return after[0]

    @staticmethod
    def _check_kind(kind) -> EntityKind:
        try:
            kind = EntityKind(kind)
        except ValueError:
            raise OrderError(
                f"Unknown entity kind {kind!r}", code=ErrorCode.INVALID_ENTITY_KIND
            ) from None
        if kind not in _ORDERED_KINDS:
            raise OrderError(
                f"{kind.value} records are not ordered",
                code=ErrorCode.INVALID_ENTITY_KIND,
            )
        return kind

    @staticmethod
    def _check_direction(direction, entity_id: str) -> Direction:
        try:
            return Direction(direction)
        except ValueError:
            raise OrderError(
                f"Direction must be 'up' or 'down', got {direction!r}",
                entity_id=entity_id,
                direction=direction,
            ) from None
