"""SQLAlchemy database models for inknote."""
import datetime

from sqlalchemy import (Column, DateTime, Float, ForeignKey, Integer, String,
                        Table, Text, create_engine, event)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from inknote.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# Reverse link: Category.notes. The note's category is whichever
# category row links it.
category_notes = Table(
    "category_notes",
    Base.metadata,
    Column("category_id", String(64), ForeignKey("categories.id"), primary_key=True),
    Column("note_id", String(64), ForeignKey("notes.id"), primary_key=True),
)

note_versions = Table(
    "note_versions",
    Base.metadata,
    Column("note_id", String(64), ForeignKey("notes.id"), primary_key=True),
    Column("version_id", String(64), ForeignKey("versions.id"), primary_key=True),
)


class DBNotebook(Base):
    """Database model for a notebook."""
    __tablename__ = "notebooks"
    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False)

    categories = relationship("DBCategory", back_populates="notebook")
    notes = relationship("DBNote", back_populates="notebook")

    def __repr__(self) -> str:
        return f"<Notebook(id='{self.id}', title='{self.title}')>"


class DBCategory(Base):
    """Database model for a category."""
    __tablename__ = "categories"
    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False, index=True)
    order = Column(Float, nullable=False, index=True)
    notebook_id = Column(String(64), ForeignKey("notebooks.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False)

    notebook = relationship("DBNotebook", back_populates="categories")
    notes = relationship("DBNote", secondary=category_notes, back_populates="categories")

    def __repr__(self) -> str:
        return f"<Category(id='{self.id}', title='{self.title}', order={self.order})>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False, default="")
    content = Column(Text, nullable=False, default="")
    order = Column(Float, nullable=False, index=True)
    notebook_id = Column(String(64), ForeignKey("notebooks.id"), nullable=True, index=True)
    local_version = Column(Integer, nullable=False, default=1)
    remote_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False)

    notebook = relationship("DBNotebook", back_populates="notes")
    categories = relationship("DBCategory", secondary=category_notes, back_populates="notes")
    attachments = relationship(
        "DBAttachment",
        back_populates="note",
        cascade="all, delete-orphan"
    )
    versions = relationship("DBVersion", secondary=note_versions, back_populates="notes")

    def __repr__(self) -> str:
        return f"<Note(id='{self.id}', title='{self.title}', order={self.order})>"


class DBAttachment(Base):
    """Database model for an attachment."""
    __tablename__ = "attachments"
    id = Column(String(64), primary_key=True)
    filename = Column(String(255), nullable=False)
    ext = Column(String(32), nullable=False, default="")
    size = Column(Integer, nullable=False, default=0)
    local_path = Column(Text, nullable=False, default="")
    remote_path = Column(Text, nullable=False, default="")
    note_id = Column(String(64), ForeignKey("notes.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, nullable=False)

    note = relationship("DBNote", back_populates="attachments")


class DBVersion(Base):
    """Database model for a recorded version."""
    __tablename__ = "versions"
    id = Column(String(64), primary_key=True)
    message = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=_now, nullable=False)

    notes = relationship("DBNote", secondary=note_versions, back_populates="versions")


class DBVersionNoteContent(Base):
    """Content of a note at a given version."""
    __tablename__ = "version_note_contents"
    id = Column(String(64), primary_key=True)
    version_id = Column(String(64), nullable=False, index=True)
    note_id = Column(String(64), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")


def init_db(url=None):
    """Create the engine and schema.

    File databases get WAL journaling; in-memory databases share one
    connection so every session sees the same data.
    """
    url = url or config.get_db_url()
    if url in ("sqlite://", "sqlite:///:memory:"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(url, pool_pre_ping=True)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
