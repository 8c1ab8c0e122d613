"""Configuration module for inknote."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from inknote import __version__
from inknote.exceptions import ConfigurationError

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the notebooks database
_USER_ENV = Path.home() / ".inknote" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class InknoteConfig(BaseModel):
    """Configuration for the notebook core."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("INKNOTE_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("INKNOTE_DATABASE_PATH", "data/db/inknote.db")
        )
    )
    # When True, the store lives in an in-memory SQLite database
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("INKNOTE_IN_MEMORY_DB", "false")
    )
    # Last-open notebook/note record
    state_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("INKNOTE_STATE_PATH", "data/state.json")
        )
    )
    attachments_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("INKNOTE_ATTACHMENTS_DIR", "data/attachments")
        )
    )
    # Coalescing windows (milliseconds). The render window is the short
    # projection rebuild throttle; the persist window throttles live edits.
    render_interval_ms: int = Field(
        default_factory=lambda: int(os.getenv("INKNOTE_RENDER_INTERVAL_MS", "16"))
    )
    persist_interval_ms: int = Field(
        default_factory=lambda: int(os.getenv("INKNOTE_PERSIST_INTERVAL_MS", "500"))
    )
    # Stride between neighbouring order values
    order_step: float = Field(
        default_factory=lambda: float(os.getenv("INKNOTE_ORDER_STEP", "1000"))
    )
    default_note_title: str = Field(
        default=os.getenv("INKNOTE_DEFAULT_NOTE_TITLE", "New note")
    )
    default_category_title: str = Field(
        default=os.getenv("INKNOTE_DEFAULT_CATEGORY_TITLE", "Inbox")
    )
    untitled_title: str = Field(default=os.getenv("INKNOTE_UNTITLED_TITLE", "Untitled"))
    version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_intervals(self) -> "InknoteConfig":
        """Keep the two coalescing windows sane and distinct."""
        if self.render_interval_ms < 0:
            raise ValueError("render_interval_ms must be >= 0")
        if self.persist_interval_ms < self.render_interval_ms:
            raise ValueError(
                "persist_interval_ms must not be shorter than render_interval_ms"
            )
        if self.order_step <= 0:
            raise ValueError("order_step must be > 0")
        return self

    @property
    def render_interval(self) -> float:
        """Render window in seconds."""
        return self.render_interval_ms / 1000.0

    @property
    def persist_interval(self) -> float:
        """Persist window in seconds."""
        return self.persist_interval_ms / 1000.0

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite://"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_state_path(self) -> Path:
        return self.get_absolute_path(self.state_path)

    def get_attachments_dir(self) -> Path:
        """Absolute attachments directory, created on demand."""
        path = self.get_absolute_path(self.attachments_dir)
        if path.exists() and not path.is_dir():
            raise ConfigurationError(
                f"Attachments path is not a directory: {path}", config_key="attachments_dir"
            )
        path.mkdir(parents=True, exist_ok=True)
        return path


# Create a global config instance
config = InknoteConfig()
