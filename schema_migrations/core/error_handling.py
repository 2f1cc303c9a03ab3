"""
Error hierarchy for schema migrations.

This module provides hierarchical error classification for every failure the
migration subsystem can surface: validation, lookup, state, cluster I/O,
backup and concurrency errors. Nothing here retries; callers own retry policy.
"""

import time
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels for classification and handling."""

    CRITICAL = auto()  # Cluster state may be inconsistent
    HIGH = auto()  # Operation failed, state intact
    MEDIUM = auto()  # Recoverable by the caller
    LOW = auto()  # Rejected input


class ErrorCategory(Enum):
    """Error categories for classification and routing."""

    SYSTEM = auto()
    CLUSTER = auto()  # Failed calls to the search cluster
    VALIDATION = auto()  # Schema validation errors
    LOOKUP = auto()  # Missing history entries
    STATE = auto()  # Illegal history state transitions
    BACKUP = auto()
    CONCURRENCY = auto()  # Index lease contention
    CONFIGURATION = auto()


class BaseError(Exception):
    """Base exception class with enhanced error information."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        """
        Initialize base error with comprehensive metadata.

        Args:
            message: Human-readable error message
            severity: Error severity level
            category: Error category for classification
            error_code: Unique error code for tracking
            context: Additional context information
            recoverable: Whether the caller may retry
        """
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.error_code = error_code or self._generate_error_code()
        self.context = context or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

    def _generate_error_code(self) -> str:
        """Generate unique error code based on category and timestamp."""
        timestamp = int(time.time() * 1000) % 100000
        return f"{self.category.name[:3]}-{self.severity.name[:3]}-{timestamp}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.name,
            "category": self.category.name,
            "context": self.context,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(BaseError):
    """Declared schema uses a field type the cluster does not support."""

    def __init__(
        self, message: str, field: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            context=context,
            recoverable=False,
            **kwargs,
        )


class NotFoundError(BaseError):
    """A migration history entry does not exist."""

    def __init__(self, migration_id: str, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        context["migration_id"] = migration_id
        super().__init__(
            f"Migration {migration_id} not found",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.LOOKUP,
            context=context,
            recoverable=False,
            **kwargs,
        )
        self.migration_id = migration_id


class AlreadyRolledBackError(BaseError):
    """Rollback requested for a migration that already carries a rollback record."""

    def __init__(self, migration_id: str, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        context["migration_id"] = migration_id
        super().__init__(
            f"Migration {migration_id} has already been rolled back",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.STATE,
            context=context,
            recoverable=False,
            **kwargs,
        )
        self.migration_id = migration_id


class NoBackupAvailableError(BaseError):
    """Rollback requested for a migration that recorded no backup index."""

    def __init__(self, migration_id: str, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        context["migration_id"] = migration_id
        super().__init__(
            f"No backup found for migration {migration_id}",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.STATE,
            context=context,
            recoverable=False,
            **kwargs,
        )
        self.migration_id = migration_id


class ClusterIOError(BaseError):
    """A call to the search cluster failed, timeouts included."""

    def __init__(
        self,
        message: str,
        operation: str,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        context["operation"] = operation
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(
            message,
            severity=kwargs.pop("severity", ErrorSeverity.HIGH),
            category=ErrorCategory.CLUSTER,
            context=context,
            **kwargs,
        )
        self.operation = operation
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


class BackupFailedError(BaseError):
    """Backup could not be completed; the migration is aborted before any destructive step."""

    def __init__(self, message: str, index_name: str, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        context["index_name"] = index_name
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.BACKUP,
            context=context,
            **kwargs,
        )
        self.index_name = index_name


class MigrationLockedError(BaseError):
    """Another migration currently holds the lease on the target index."""

    def __init__(self, index_name: str, holder: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        context["index_name"] = index_name
        if holder:
            context["holder"] = holder
        message = f"Index {index_name} is locked by another migration"
        if holder:
            message += f" ({holder})"
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONCURRENCY,
            context=context,
            **kwargs,
        )
        self.index_name = index_name
        self.holder = holder


class ConfigurationError(BaseError):
    """Configuration errors."""

    def __init__(self, message: str, config_key: str, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        context["config_key"] = config_key
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
            context=context,
            recoverable=False,
            **kwargs,
        )
