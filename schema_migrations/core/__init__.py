"""Cluster access and error types."""

from .cluster import ClusterClient
from .error_handling import (
    AlreadyRolledBackError,
    BackupFailedError,
    BaseError,
    ClusterIOError,
    ConfigurationError,
    ErrorCategory,
    ErrorSeverity,
    MigrationLockedError,
    NoBackupAvailableError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "ClusterClient",
    "AlreadyRolledBackError",
    "BackupFailedError",
    "BaseError",
    "ClusterIOError",
    "ConfigurationError",
    "ErrorCategory",
    "ErrorSeverity",
    "MigrationLockedError",
    "NoBackupAvailableError",
    "NotFoundError",
    "ValidationError",
]
