"""
Schema migrations for OpenSearch indices.

Quick Start:
    from schema_migrations import (
        ClusterClient,
        MigrationOptions,
        MigrationOrchestrator,
        SchemaDescriptor,
    )

    schema = SchemaDescriptor.from_dict(
        "products",
        {
            "name": {"type": "keyword"},
            "description": {"type": "text", "analyzer": "english"},
        },
    )
    orchestrator = MigrationOrchestrator(ClusterClient(client), schema)

    plan = await orchestrator.plan_migration()
    result = await orchestrator.migrate(MigrationOptions(backup=True))
    await orchestrator.rollback(result.migration_id)
"""

from .core import (
    AlreadyRolledBackError,
    BackupFailedError,
    ClusterClient,
    ClusterIOError,
    MigrationLockedError,
    NoBackupAvailableError,
    NotFoundError,
    ValidationError,
)
from .migration import (
    FieldSpec,
    MigrationHistoryEntry,
    MigrationOptions,
    MigrationOrchestrator,
    MigrationPlan,
    MigrationResult,
    SchemaDescriptor,
    create_orchestrator,
)

__version__ = "0.1.0"

__all__ = [
    "AlreadyRolledBackError",
    "BackupFailedError",
    "ClusterClient",
    "ClusterIOError",
    "MigrationLockedError",
    "NoBackupAvailableError",
    "NotFoundError",
    "ValidationError",
    "FieldSpec",
    "MigrationHistoryEntry",
    "MigrationOptions",
    "MigrationOrchestrator",
    "MigrationPlan",
    "MigrationResult",
    "SchemaDescriptor",
    "create_orchestrator",
]
