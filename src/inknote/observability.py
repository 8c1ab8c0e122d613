"""Logging setup and operation timing for inknote.

Controller operations and snapshot rebuilds run inside ``timed_operation``,
which logs a debug line per run and feeds the in-memory ``metrics``.
"""
import functools
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".inknote" / "logs"
LOG_FILE_NAME = "inknote.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Keyword arguments of traced methods that identify what they act on
TRACED_KWARGS = ("note_id", "category_id", "notebook_id", "query")

F = TypeVar('F', bound=Callable[..., Any])


def _is_console_handler(handler: logging.Handler) -> bool:
    return type(handler) is logging.StreamHandler


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Send the ``inknote`` logger hierarchy to a rotating log file.

    Calling it again only adjusts the level; handlers are added once.

    Args:
        log_dir: Directory for ``inknote.log``. Defaults to ~/.inknote/logs/
        level: Level for the package logger and its handlers
        max_bytes: Size at which the log file is rotated
        backup_count: Number of rotated files to keep
        console: Also write to stderr

    Returns:
        The log directory.
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("inknote")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    wanted = []
    if not any(isinstance(h, RotatingFileHandler) for h in package_logger.handlers):
        wanted.append(RotatingFileHandler(
            log_path / LOG_FILE_NAME,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ))
    if console and not any(_is_console_handler(h) for h in package_logger.handlers):
        wanted.append(logging.StreamHandler())
    for handler in wanted:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    for handler in package_logger.handlers:
        handler.setLevel(level)

    package_logger.info(f"Logging to {log_path / LOG_FILE_NAME} at level {logging.getLevelName(level)}")
    return log_path


@dataclass
class OperationStats:
    """Running totals for one operation name."""
    count: int = 0
    errors: int = 0
    total_ms: float = 0.0
    fastest_ms: Optional[float] = None
    slowest_ms: float = 0.0
    last_error: Optional[str] = None

    def add(self, duration_ms: float, error: Optional[str]) -> None:
        self.count += 1
        self.total_ms += duration_ms
        if self.fastest_ms is None or duration_ms < self.fastest_ms:
            self.fastest_ms = duration_ms
        self.slowest_ms = max(self.slowest_ms, duration_ms)
        if error is not None:
            self.errors += 1
            self.last_error = error

    def as_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'success_count': self.count - self.errors,
            'error_count': self.errors,
            'avg_duration_ms': round(self.total_ms / self.count, 2) if self.count else 0,
            'min_duration_ms': round(self.fastest_ms or 0.0, 2),
            'max_duration_ms': round(self.slowest_ms, 2),
            'last_error': self.last_error,
        }


class MetricsCollector:
    """In-memory timings of controller operations and snapshot rebuilds."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        if not success and error is None:
            error = "unknown error"
        with self._lock:
            self._stats.setdefault(operation, OperationStats()).add(
                duration_ms, None if success else error
            )

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation counts and durations, keyed by operation name."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block and record it under ``operation``.

    Yields a dict the block can fill with result details; they are
    appended to the debug line logged when the block ends. Exceptions
    are recorded and re-raised.

    Example:
        with timed_operation('delete_note', note_id=note_id) as op:
            op['switched'] = True
    """
    run_id = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {'correlation_id': run_id}
    started = time.perf_counter()
    error = None
    try:
        yield details
    except Exception as exc:
        error = str(exc) or type(exc).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, duration_ms, error is None, error)
        if logger.isEnabledFor(logging.DEBUG):
            described = {**context, **details}
            described.pop('correlation_id', None)
            outcome = 'ok' if error is None else f'failed: {error}'
            fields = ' '.join(f'{k}={v}' for k, v in described.items())
            logger.debug(f"[{run_id}] {operation} {outcome} in {duration_ms:.2f}ms {fields}".rstrip())


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run the decorated function inside ``timed_operation``.

    Identifying keyword arguments (note, category or notebook id, search
    query) are logged with the run, as is the size of a returned list.
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {k: kwargs[k] for k in TRACED_KWARGS if k in kwargs}
            with timed_operation(name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, dict)):
                    op['result_count'] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
