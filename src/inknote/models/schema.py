"""Data models for inknote."""

import datetime
import itertools
import os
import threading
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Treat naive datetimes read back from SQLite as UTC."""
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


_id_lock = threading.Lock()
_id_counter = itertools.count((os.getpid() * 7) % 10_000)


def generate_id() -> str:
    """Generate a sortable, unique identifier.

    Returns:
        A string in format "YYYYMMDDTHHMMSSssssss-cccc": the UTC timestamp
        with microseconds, followed by a 4-digit rolling counter so that
        IDs created within the same microsecond stay distinct.
    """
    with _id_lock:
        now = utc_now()
        counter = next(_id_counter) % 10_000
    return f"{now.strftime('%Y%m%dT%H%M%S')}{now.microsecond:06d}-{counter:04d}"


class EntityKind(str, Enum):
    """Kinds of records held by the object store."""

    NOTEBOOK = "Notebook"
    CATEGORY = "Category"
    NOTE = "Note"
    ATTACHMENT = "Attachment"
    VERSION = "Version"
    VERSION_NOTE_CONTENT = "VersionNoteContent"


class Direction(str, Enum):
    """Where an item lands relative to the item it is compared with."""

    UP = "up"  # before the comparison item
    DOWN = "down"  # after the comparison item


class LinkRequest(BaseModel):
    """Request to link a record into ``<kind>.<field>`` of record ``id``."""

    kind: EntityKind = Field(..., description="Kind of the related record")
    field: str = Field(..., description="Relationship field on the related record")
    id: str = Field(..., description="ID of the related record")

    model_config = {"frozen": True}


class Notebook(BaseModel):
    """A notebook; owns categories and notes."""

    id: str = Field(default_factory=generate_id)
    title: str = Field(..., description="Title of the notebook")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Notebook title cannot be empty")
        return v


class Category(BaseModel):
    """A category inside a notebook, holding a reverse-linked set of notes."""

    id: str = Field(default_factory=generate_id)
    title: str = Field(..., description="Title of the category")
    order: float = Field(..., description="Fractional position among siblings")
    notebook_id: Optional[str] = Field(default=None)
    note_ids: List[str] = Field(default_factory=list)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class Note(BaseModel):
    """A note.

    ``category_id`` is the forward side of the category relation; it is
    derived from the category's reverse-linked note set.
    """

    id: str = Field(default_factory=generate_id)
    title: str = Field(default="", description="Title, usually derived from content")
    content: str = Field(default="", description="Raw note text")
    order: float = Field(..., description="Fractional position among siblings")
    notebook_id: Optional[str] = Field(default=None)
    category_id: Optional[str] = Field(default=None)
    local_version: int = Field(default=1)
    remote_version: int = Field(default=0)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class Attachment(BaseModel):
    """A stored file referenced by a note."""

    id: str = Field(default_factory=generate_id)
    filename: str
    ext: str = ""
    size: int = 0
    local_path: str = ""
    remote_path: str = ""
    note_id: Optional[str] = None
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class Version(BaseModel):
    """A recorded version; recording itself happens outside the core."""

    id: str = Field(default_factory=generate_id)
    message: str = ""
    note_ids: List[str] = Field(default_factory=list)
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"extra": "forbid"}


class VersionNoteContent(BaseModel):
    """Content of one note as of one version."""

    id: str = Field(default_factory=generate_id)
    version_id: str
    note_id: str
    content: str = ""

    model_config = {"extra": "forbid"}


# ---------------------------------------------------------------------------
# Snapshot views
# ---------------------------------------------------------------------------


class NotebookSummary(BaseModel):
    """Lightweight notebook listing entry."""

    id: str
    title: str


class CategoryView(BaseModel):
    """A category with its notes in order."""

    id: str
    title: str
    order: float
    notes: List[Note] = Field(default_factory=list)


class NotebookView(BaseModel):
    """The current notebook: ordered categories and the flat ordered notes."""

    id: str
    title: str
    categories: List[CategoryView] = Field(default_factory=list)
    notes: List[Note] = Field(default_factory=list)

    def find_note(self, note_id: str) -> Optional[Note]:
        for note in self.notes:
            if note.id == note_id:
                return note
        return None

    def find_category(self, category_id: str) -> Optional[CategoryView]:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None


class VersionSummary(BaseModel):
    id: str
    message: str
    created_at: datetime.datetime


class VersionsView(BaseModel):
    list: List[VersionSummary] = Field(default_factory=list)
    current_content: str = ""


class Layout(BaseModel):
    """Visibility flags of the main panes."""

    sidebar: bool = True
    editor: bool = True
    preview: bool = True

    model_config = {"validate_assignment": True, "extra": "forbid"}


class UISnapshot(BaseModel):
    """Everything presentation code reads.

    Derived from the store by the projection engine; never written back.
    """

    notebook_list: List[NotebookSummary] = Field(default_factory=list)
    current_notebook: Optional[NotebookView] = None
    current_note: Optional[Note] = None
    current_note_content: str = ""
    search_query: Optional[str] = None
    search_results: List[Note] = Field(default_factory=list)
    versions: VersionsView = Field(default_factory=VersionsView)
    layout: Layout = Field(default_factory=Layout)


@dataclass
class OperationResult:
    """Outcome of an operation the user may be refused.

    Attributes:
        ok: Whether the operation was carried out.
        message: Human-readable explanation, set on refusal.
    """

    ok: bool
    message: str = ""

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "message": self.message}
