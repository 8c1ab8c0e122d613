"""Custom exceptions for inknote.

Provides a structured exception hierarchy with error codes and
machine-readable error information. User-facing refusals (such as deleting
a non-empty category) are not exceptions; they are returned as
``OperationResult`` values by the controller.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002

    # Category errors (2xxx)
    CATEGORY_NOT_FOUND = 2001
    CATEGORY_NOT_EMPTY = 2002

    # Notebook errors (3xxx)
    NOTEBOOK_NOT_FOUND = 3001
    NOTEBOOK_NOT_SELECTED = 3002

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_INVALID_LINK = 4004

    # Order errors (5xxx)
    ORDER_INVALID_DIRECTION = 5001
    ORDER_SELF_REFERENCE = 5002
    ORDER_REBALANCE_EXHAUSTED = 5003

    # Link errors (55xx)
    LINK_INVALID = 5501

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_ENTITY_KIND = 7002


class InknoteError(Exception):
    """Base exception for all inknote errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(InknoteError):
    """Raised when an entity identity does not resolve."""

    kind = "Entity"
    default_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, entity_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{self.kind} with ID '{entity_id}' not found",
            code=self.default_code,
            details={"id": entity_id}
        )
        self.entity_id = entity_id


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    kind = "Note"
    default_code = ErrorCode.NOTE_NOT_FOUND


class CategoryNotFoundError(NotFoundError):
    """Raised when a category cannot be found."""

    kind = "Category"
    default_code = ErrorCode.CATEGORY_NOT_FOUND


class NotebookNotFoundError(NotFoundError):
    """Raised when a notebook cannot be found."""

    kind = "Notebook"
    default_code = ErrorCode.NOTEBOOK_NOT_FOUND


class OrderError(InknoteError):
    """Raised when a reorder request violates its preconditions."""

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        direction: Optional[str] = None,
        code: ErrorCode = ErrorCode.ORDER_INVALID_DIRECTION
    ):
        details = {}
        if entity_id:
            details["id"] = entity_id
        if direction is not None:
            details["direction"] = str(direction)[:20]

        super().__init__(message, code=code, details=details)
        self.entity_id = entity_id
        self.direction = direction


class LinkError(InknoteError):
    """Raised for note/category link errors."""

    def __init__(
        self,
        message: str,
        note_id: Optional[str] = None,
        category_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.LINK_INVALID
    ):
        details = {}
        if note_id:
            details["note_id"] = note_id
        if category_id:
            details["category_id"] = category_id

        super().__init__(message, code=code, details=details)
        self.note_id = note_id
        self.category_id = category_id


class StorageError(InknoteError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        kind: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if kind:
            details["kind"] = kind
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.kind = kind
        self.original_error = original_error


class ConfigurationError(InknoteError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class ValidationError(InknoteError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
