"""
inknote - hierarchical notebooks, categories and notes.

The package keeps notebooks, categories and notes in an object store with
live, change-notifying queries and projects that store into a single
UI-facing snapshot. Items are ordered with fractional order values so a
reorder touches only the moved item (and, rarely, a neighbor).

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("inknote")
except PackageNotFoundError:
    __version__ = "0.3.0"
