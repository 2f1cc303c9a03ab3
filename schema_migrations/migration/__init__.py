"""Schema migration planning, execution, history and rollback."""

from .backup_manager import BackupManager
from .history_store import MigrationHistoryStore
from .index_lock import IndexLease
from .models import (
    DRY_RUN_ID,
    SUPPORTED_FIELD_TYPES,
    ChangeKind,
    FieldChange,
    FieldSpec,
    MigrationHistoryEntry,
    MigrationOptions,
    MigrationPlan,
    MigrationResult,
    RecoveryOutcome,
    RecoveryRecord,
    RollbackRecord,
    SchemaDescriptor,
)
from .orchestrator import MigrationOrchestrator, create_orchestrator
from .reindex_executor import ReindexExecutor
from .schema_differ import diff

__all__ = [
    "BackupManager",
    "MigrationHistoryStore",
    "IndexLease",
    "DRY_RUN_ID",
    "SUPPORTED_FIELD_TYPES",
    "ChangeKind",
    "FieldChange",
    "FieldSpec",
    "MigrationHistoryEntry",
    "MigrationOptions",
    "MigrationPlan",
    "MigrationResult",
    "RecoveryOutcome",
    "RecoveryRecord",
    "RollbackRecord",
    "SchemaDescriptor",
    "MigrationOrchestrator",
    "create_orchestrator",
    "ReindexExecutor",
    "diff",
]
