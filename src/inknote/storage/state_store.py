"""Small persisted key-value record (last open notebook/note, ...)."""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class StateStore:
    """JSON file holding a flat key-value record.

    Reads are served from memory; every ``set`` rewrites the file through a
    temp file so a crash never leaves a half-written record.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self._path = Path(path) if path else None
        self._data: Dict[str, Any] = {}
        self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _load(self) -> bool:
        if self._path is None or not self._path.exists():
            return False
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to load state from {self._path}: {e}")
            return False
        if isinstance(data, dict):
            self._data = data
        return True

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._save()

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self._path.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        temp_file.replace(self._path)
