"""Live, change-notifying result views over the object store."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (TYPE_CHECKING, Any, Callable, Iterator, List, Optional,
                    Set, Tuple, Union)

from pydantic import BaseModel

from inknote.models.schema import EntityKind

if TYPE_CHECKING:
    from inknote.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

SortKey = Union[str, Callable[[Any], Any]]
Predicate = Callable[[Any], bool]


@dataclass
class ChangeSet:
    """IDs touched by one committed transaction, for one entity kind."""

    kind: EntityKind
    inserted: Set[str] = field(default_factory=set)
    modified: Set[str] = field(default_factory=set)
    deleted: Set[str] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.inserted or self.modified or self.deleted)

    def record(self, change: str, entity_id: str) -> None:
        """Record a change, folding repeated touches of the same ID."""
        if change == "inserted":
            self.inserted.add(entity_id)
        elif change == "deleted":
            if entity_id in self.inserted:
                self.inserted.discard(entity_id)
            else:
                self.deleted.add(entity_id)
            self.modified.discard(entity_id)
        elif entity_id not in self.inserted and entity_id not in self.deleted:
            self.modified.add(entity_id)


Listener = Callable[[ChangeSet], None]


class LiveResults:
    """A re-evaluating view over every record of one kind.

    The view holds no data: each iteration reads the store's current state
    and applies the view's predicates and sort. Listeners registered through
    ``subscribe`` fire after every committed transaction that touched the
    kind, with the ``ChangeSet`` of that transaction.
    """

    def __init__(
        self,
        store: "ObjectStore",
        kind: EntityKind,
        predicates: Tuple[Predicate, ...] = (),
        sort: Optional[Tuple[SortKey, bool]] = None,
    ):
        self._store = store
        self.kind = kind
        self._predicates = predicates
        self._sort = sort

    def filtered(self, predicate: Optional[Predicate] = None, **equals: Any) -> "LiveResults":
        """Narrow the view by a predicate and/or field equality.

        Example:
            store.results(EntityKind.CATEGORY).filtered(notebook_id=nb_id, title="Work")
        """
        predicates = list(self._predicates)
        if predicate is not None:
            predicates.append(predicate)
        for name, expected in equals.items():
            predicates.append(
                lambda record, _n=name, _e=expected: getattr(record, _n) == _e
            )
        return LiveResults(self._store, self.kind, tuple(predicates), self._sort)

    def sorted(self, key: SortKey, descending: bool = False) -> "LiveResults":
        """Return a view sorted by a field name or key function (stable)."""
        return LiveResults(self._store, self.kind, self._predicates, (key, descending))

    def subscribe(self, listener: Listener) -> int:
        """Register a change listener for this view's kind.

        Returns:
            A token for ``unsubscribe``.
        """
        return self._store.add_listener(self.kind, listener)

    def unsubscribe(self, token: int) -> None:
        self._store.remove_listener(self.kind, token)

    def to_list(self) -> List[BaseModel]:
        records = [
            record for record in self._store.all(self.kind)
            if all(predicate(record) for predicate in self._predicates)
        ]
        if self._sort is not None:
            key, descending = self._sort
            key_fn = key if callable(key) else (lambda record, _k=key: getattr(record, _k))
            records.sort(key=key_fn, reverse=descending)
        return records

    def first(self) -> Optional[BaseModel]:
        records = self.to_list()
        return records[0] if records else None

    def __iter__(self) -> Iterator[BaseModel]:
        return iter(self.to_list())

    def __len__(self) -> int:
        return len(self.to_list())

    def __getitem__(self, index: int) -> BaseModel:
        return self.to_list()[index]

    def __repr__(self) -> str:
        return f"<LiveResults(kind='{self.kind.value}', filters={len(self._predicates)})>"
