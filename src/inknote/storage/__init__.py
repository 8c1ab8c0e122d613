"""Storage layer for inknote."""

from inknote.storage.live_results import ChangeSet, LiveResults
from inknote.storage.object_store import ObjectStore

__all__ = [
    "ChangeSet",
    "LiveResults",
    "ObjectStore",
]
