"""
Backup manager for schema migrations.
Snapshots an index into a backup index and restores from it.
"""

from typing import Optional

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings

from ..core.cluster import ClusterClient
from ..core.error_handling import BackupFailedError, ClusterIOError

logger = get_logger(__name__)


def backup_index_name(index_name: str, migration_id: str) -> str:
    return f"{index_name}_backup_{migration_id}"


class BackupManager:
    """Manages backup indices used for rollback."""

    def __init__(self, cluster: ClusterClient, config: Optional[Settings] = None):
        """Initialize backup manager.

        Args:
            cluster: Cluster client
            config: Settings, defaults to the global settings
        """
        self.cluster = cluster
        self.config = config or default_settings

    async def backup(
        self, index_name: str, migration_id: str, timeout: Optional[str] = None
    ) -> str:
        """Copy an index's mapping and documents into a new backup index.

        Blocks until the copy is confirmed complete.

        Args:
            index_name: Index (or alias) to back up
            migration_id: Migration the backup belongs to
            timeout: Cluster-side wait timeout, defaults to settings.default_timeout

        Returns:
            Backup index name

        Raises:
            BackupFailedError: If any step fails; no backup index is left behind
        """
        timeout = timeout or self.config.default_timeout
        backup_index = backup_index_name(index_name, migration_id)
        logger.info("Creating backup", index=index_name, backup_index=backup_index)

        created = False
        try:
            mapping = await self.cluster.get_mapping(index_name)
            await self.cluster.create_index(backup_index, mapping)
            created = True
            await self.cluster.reindex(
                index_name, backup_index, wait_for_completion=True, timeout=timeout, refresh=True
            )
        except ClusterIOError as e:
            logger.error("Backup failed", index=index_name, backup_index=backup_index, error=str(e))
            if created:
                await self._discard(backup_index)
            raise BackupFailedError(
                f"Backup of {index_name} failed: {e.message}", index_name=index_name
            ) from e

        logger.info("Backup created", index=index_name, backup_index=backup_index)
        return backup_index

    async def restore(
        self, backup_index: str, index_name: str, timeout: Optional[str] = None
    ) -> None:
        """Replace whatever answers to index_name with the contents of a backup.

        The name is recreated as a concrete index with the backup's mapping, then
        the backup's documents are copied in.

        Args:
            backup_index: Backup index to restore from
            index_name: Index (or alias) name to restore
            timeout: Cluster-side wait timeout

        Raises:
            ClusterIOError: If any step fails
        """
        timeout = timeout or self.config.default_timeout
        logger.info("Restoring from backup", index=index_name, backup_index=backup_index)

        mapping = await self.cluster.get_mapping(backup_index)
        for concrete in await self.cluster.resolve_indices(index_name):
            await self.cluster.delete_index(concrete)

        await self.cluster.create_index(index_name, mapping)
        await self.cluster.reindex(
            backup_index, index_name, wait_for_completion=True, timeout=timeout, refresh=True
        )
        logger.info("Restore completed", index=index_name, backup_index=backup_index)

    async def delete_backup(self, backup_index: str) -> None:
        await self.cluster.delete_index(backup_index)
        logger.info("Backup deleted", backup_index=backup_index)

    async def _discard(self, backup_index: str) -> None:
        """Best-effort removal of a partial backup."""
        try:
            await self.cluster.delete_index(backup_index)
        except ClusterIOError as e:
            logger.warning(
                "Could not remove partial backup", backup_index=backup_index, error=str(e)
            )
