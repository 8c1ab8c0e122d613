"""Attachment file storage.

The core only records what the storage returns (path, size, extension)
against a note. Files are content addressed by SHA-256 with a two-level
fanout under the attachments directory.
"""
import hashlib
import logging
import shutil
from pathlib import Path
from typing import Optional, Protocol, Union

logger = logging.getLogger(__name__)

FANOUT1 = 2
FANOUT2 = 2


class AttachmentIO(Protocol):
    """What the controller needs from attachment storage."""

    def save_image(self, path: str, ext: Optional[str] = None) -> str: ...

    def save_image_from_clipboard(self) -> str: ...

    def get_file_name(self, path: str) -> str: ...

    def get_file_ext(self, path: str) -> str: ...

    def get_file_size(self, path: str) -> int: ...


def sha256_file(src_path: Union[str, Path]) -> str:
    h = hashlib.sha256()
    with open(src_path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class LocalAttachmentIO:
    """Stores attachment files below a local directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def build_path(self, digest: str, ext: str) -> Path:
        return self.root / digest[:FANOUT1] / digest[FANOUT1:FANOUT1 + FANOUT2] / f"{digest}.{ext}"

    def save_image(self, path: str, ext: Optional[str] = None) -> str:
        """Copy ``path`` into storage.

        Returns:
            The stored path, or an empty string when the source is missing.
        """
        src = Path(path)
        if not src.is_file():
            logger.warning(f"Attachment source not found: {src.name}")
            return ""
        ext = (ext or src.suffix.lstrip(".") or "bin").lower().lstrip(".")
        dest = self.build_path(sha256_file(src), ext)
        if not dest.exists():
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dest)
        return str(dest)

    def save_image_from_clipboard(self) -> str:
        # No clipboard access without a UI toolkit
        logger.info("Clipboard capture is not available in local storage")
        return ""

    def get_file_name(self, path: str) -> str:
        return Path(path).name

    def get_file_ext(self, path: str) -> str:
        return Path(path).suffix.lstrip(".")

    def get_file_size(self, path: str) -> int:
        return Path(path).stat().st_size
