"""
Migration orchestration: plan, execute and roll back schema changes.

A migration runs plan -> validate -> (backup) -> apply -> record. A failed
migration is recorded, then restored from its backup when one was taken;
the outcome of that restore is stored on the history entry and the original
error is re-raised. Rollback restores a recorded backup on request.
"""

import time
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings

from ..core.cluster import ClusterClient
from ..core.error_handling import (
    AlreadyRolledBackError,
    NoBackupAvailableError,
    NotFoundError,
    ValidationError,
)
from .backup_manager import BackupManager
from .history_store import MigrationHistoryStore
from .index_lock import IndexLease
from .models import (
    DRY_RUN_ID,
    SUPPORTED_FIELD_TYPES,
    MigrationHistoryEntry,
    MigrationOptions,
    MigrationPlan,
    MigrationResult,
    RecoveryOutcome,
    RecoveryRecord,
    RollbackRecord,
    SchemaDescriptor,
    time_value_seconds,
)
from .reindex_executor import ReindexExecutor
from .schema_differ import diff

logger = get_logger(__name__)

# Blocking cluster waits under one migration lease: backup, reindex, restore
MIGRATION_BLOCKING_STEPS = 3
ROLLBACK_BLOCKING_STEPS = 1
LEASE_MARGIN = timedelta(minutes=10)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _as_document(record: Any) -> Dict[str, Any]:
    return record.model_dump(by_alias=True, mode="json", exclude_none=True)


class MigrationOrchestrator:
    """Drives schema migrations for one declared schema."""

    def __init__(
        self,
        cluster: ClusterClient,
        schema: SchemaDescriptor,
        history: Optional[MigrationHistoryStore] = None,
        backups: Optional[BackupManager] = None,
        executor: Optional[ReindexExecutor] = None,
        lease: Optional[IndexLease] = None,
        config: Optional[Settings] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            cluster: Cluster client
            schema: Declared schema of the target index
            history: History store, built from cluster when omitted
            backups: Backup manager, built from cluster when omitted
            executor: Reindex executor, built from cluster when omitted
            lease: Index lease, built from cluster when omitted
            config: Settings, defaults to the global settings
        """
        self.cluster = cluster
        self.schema = schema
        self.config = config or default_settings
        self.history = history or MigrationHistoryStore(cluster, self.config)
        self.backups = backups or BackupManager(cluster, self.config)
        self.executor = executor or ReindexExecutor(cluster, self.config)
        self.lease = lease or IndexLease(cluster, self.config)

    @property
    def index_name(self) -> str:
        return self.schema.index_name

    async def plan_migration(self) -> MigrationPlan:
        """Diff the declared schema against the mapping currently on the cluster."""
        live_mapping: Dict[str, Dict[str, Any]] = {}
        if await self.cluster.index_exists(self.index_name):
            live_mapping = await self.cluster.get_mapping(self.index_name)
        return diff(self.index_name, live_mapping, self.schema)

    def validate_schema(self) -> None:
        """
        Raises:
            ValidationError: For the first field with an unsupported type
        """
        for path, field_type in self.schema.iter_field_types():
            if field_type not in SUPPORTED_FIELD_TYPES:
                raise ValidationError(
                    f'Invalid field type "{field_type}" for field "{path}"', field=path
                )

    async def migrate(self, options: Optional[MigrationOptions] = None) -> MigrationResult:
        """
        Execute the migration for the declared schema.

        Args:
            options: Execution options (dry run, backup, timeout, wait mode)

        Returns:
            The recorded history entry, or an unrecorded result for dry runs

        Raises:
            ValidationError: Unsupported field type, before any index is touched
            MigrationLockedError: Another migration holds the index
            BackupFailedError: Backup aborted the migration
            ClusterIOError: A cluster call failed while applying the change
        """
        options = options or MigrationOptions()

        if options.dry_run:
            plan = await self.plan_migration()
            logger.info(
                "Dry run",
                index=self.index_name,
                added=plan.added_fields,
                modified=plan.modified_fields,
                deleted=plan.deleted_fields,
            )
            return MigrationResult(success=True, migration_id=DRY_RUN_ID, duration_ms=0, plan=plan)

        migration_id = str(uuid4())
        timeout = options.timeout or self.config.default_timeout
        started = time.monotonic()
        plan = await self.plan_migration()

        try:
            self.validate_schema()
        except ValidationError as e:
            await self._record_failure(migration_id, plan, started, e, None, timeout)
            raise

        lease_ttl = self._lease_ttl(timeout, MIGRATION_BLOCKING_STEPS)
        async with self.lease.hold(self.index_name, migration_id, lease_ttl):
            # Re-plan under the lease; the mapping may have moved while we waited
            plan = await self.plan_migration()
            logger.info(
                "Starting migration",
                migration_id=migration_id,
                index=self.index_name,
                requires_reindex=plan.requires_reindex,
                backup=options.backup,
            )

            backup_index: Optional[str] = None
            try:
                if not await self.cluster.index_exists(self.index_name):
                    await self.executor.create_index(self.schema)
                else:
                    if options.backup:
                        backup_index = await self.backups.backup(
                            self.index_name, migration_id, timeout
                        )
                    if plan.requires_reindex:
                        await self.executor.reindex_apply(
                            self.index_name,
                            migration_id,
                            self.schema,
                            timeout=timeout,
                            wait_for_completion=options.wait_for_completion,
                        )
                    else:
                        await self.executor.apply_additive(self.index_name, plan, self.schema)
            except Exception as e:
                await self._record_failure(migration_id, plan, started, e, backup_index, timeout)
                raise

            entry = MigrationHistoryEntry(
                success=True,
                migration_id=migration_id,
                duration_ms=_elapsed_ms(started),
                plan=plan,
                backup_index_name=backup_index,
            )
            await self.history.record(entry)

        logger.info(
            "Migration completed",
            migration_id=migration_id,
            index=self.index_name,
            duration_ms=entry.duration_ms,
            backup_index=backup_index,
        )
        return entry

    async def rollback(self, migration_id: str) -> MigrationResult:
        """
        Restore the index a migration changed from that migration's backup.

        Raises:
            NotFoundError: No history entry for migration_id
            AlreadyRolledBackError: The entry already carries a rollback record
            NoBackupAvailableError: The migration took no backup
            ClusterIOError: The restore failed; the failure is recorded
        """
        entry = await self.history.get(migration_id)
        if entry is None:
            raise NotFoundError(migration_id)
        if entry.rolled_back is not None:
            raise AlreadyRolledBackError(migration_id)
        if not entry.backup_index_name:
            raise NoBackupAvailableError(migration_id)

        index_name = entry.plan.index_name
        backup_index = entry.backup_index_name
        started = time.monotonic()
        logger.info("Rolling back migration", migration_id=migration_id, index=index_name)

        timeout = self.config.default_timeout
        lease_ttl = self._lease_ttl(timeout, ROLLBACK_BLOCKING_STEPS)
        async with self.lease.hold(index_name, f"rollback-{migration_id}", lease_ttl):
            try:
                await self.backups.restore(backup_index, index_name, timeout)
            except Exception as e:
                logger.error("Rollback failed", migration_id=migration_id, error=str(e))
                record = RollbackRecord(success=False, error_message=str(e))
                try:
                    await self.history.update(migration_id, {"rolledBack": _as_document(record)})
                except Exception as update_error:
                    logger.error(
                        "Could not record failed rollback",
                        migration_id=migration_id,
                        error=str(update_error),
                    )
                raise

            record = RollbackRecord(success=True)
            try:
                await self.backups.delete_backup(backup_index)
            except Exception as e:
                logger.warning(
                    "Backup left in place after rollback", backup_index=backup_index, error=str(e)
                )
                record = RollbackRecord(
                    success=True,
                    error_message=f"Backup index {backup_index} could not be deleted: {e}",
                )
            await self.history.update(migration_id, {"rolledBack": _as_document(record)})

        logger.info("Rollback completed", migration_id=migration_id, index=index_name)
        return MigrationResult(
            success=True,
            migration_id=migration_id,
            duration_ms=_elapsed_ms(started),
            plan=entry.plan,
        )

    async def get_migration_history(self, limit: Optional[int] = None) -> List[MigrationHistoryEntry]:
        return await self.history.list(limit)

    def _lease_ttl(self, timeout: str, blocking_steps: int) -> timedelta:
        """Lease lifetime that outlasts every blocking cluster wait under it."""
        needed = timedelta(seconds=blocking_steps * time_value_seconds(timeout)) + LEASE_MARGIN
        return max(needed, timedelta(seconds=self.config.lock_ttl_seconds))

    async def _record_failure(
        self,
        migration_id: str,
        plan: MigrationPlan,
        started: float,
        error: Exception,
        backup_index: Optional[str],
        timeout: str,
    ) -> None:
        """Run the recovery step and record the failed attempt.

        Never raises: the caller re-raises the original error.
        """
        logger.error(
            "Migration failed",
            migration_id=migration_id,
            index=self.index_name,
            error=str(error),
            error_type=type(error).__name__,
        )
        recovery = await self._recover(migration_id, backup_index, timeout)
        entry = MigrationHistoryEntry(
            success=False,
            migration_id=migration_id,
            duration_ms=_elapsed_ms(started),
            plan=plan,
            backup_index_name=backup_index,
            error_message=str(error),
            recovery=recovery,
        )
        try:
            await self.history.record(entry)
        except Exception as e:
            logger.error("Could not record failed migration", migration_id=migration_id, error=str(e))

    async def _recover(
        self, migration_id: str, backup_index: Optional[str], timeout: str
    ) -> RecoveryRecord:
        """Best-effort restore from backup after a failed migration. Not retried."""
        if backup_index is None:
            return RecoveryRecord(outcome=RecoveryOutcome.SKIPPED_NO_BACKUP)

        try:
            await self.backups.restore(backup_index, self.index_name, timeout)
            await self.executor.discard_temp_index(self.index_name, migration_id)
        except Exception as e:
            logger.error(
                "Automatic restore failed",
                migration_id=migration_id,
                backup_index=backup_index,
                error=str(e),
            )
            return RecoveryRecord(outcome=RecoveryOutcome.FAILED, error_message=str(e))

        logger.info("Index restored from backup", migration_id=migration_id, backup_index=backup_index)
        return RecoveryRecord(outcome=RecoveryOutcome.SUCCEEDED)


def create_orchestrator(
    schema: SchemaDescriptor, config: Optional[Settings] = None
) -> MigrationOrchestrator:
    """Build an orchestrator with a cluster client created from settings."""
    config = config or default_settings
    return MigrationOrchestrator(ClusterClient.from_settings(config), schema, config=config)
