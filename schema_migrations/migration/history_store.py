"""Migration history persisted in a reserved system index."""

from typing import Any, Dict, List, Optional

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings

from ..core.cluster import ClusterClient
from ..core.error_handling import ClusterIOError, NotFoundError
from .models import MigrationHistoryEntry

logger = get_logger(__name__)

HISTORY_MAPPING: Dict[str, Any] = {
    "migrationId": {"type": "keyword"},
    "timestamp": {"type": "date"},
    "success": {"type": "boolean"},
    "durationMs": {"type": "long"},
    "plan": {"type": "object", "enabled": False},
    "backupIndexName": {"type": "keyword"},
    "errorMessage": {"type": "text"},
    "rolledBack": {
        "type": "object",
        "properties": {
            "timestamp": {"type": "date"},
            "success": {"type": "boolean"},
            "errorMessage": {"type": "text"},
        },
    },
    "recovery": {
        "type": "object",
        "properties": {
            "outcome": {"type": "keyword"},
            "timestamp": {"type": "date"},
            "errorMessage": {"type": "text"},
        },
    },
}


class MigrationHistoryStore:
    """Append/update log of migration attempts, one document per migration id."""

    def __init__(self, cluster: ClusterClient, config: Optional[Settings] = None):
        """Initialize history store.

        Args:
            cluster: Cluster client
            config: Settings, defaults to the global settings
        """
        self.cluster = cluster
        self.config = config or default_settings
        self.index = self.config.migration_index
        self._index_ready = False

    async def record(self, entry: MigrationHistoryEntry) -> None:
        """Upsert an entry keyed by its migration id.

        Creates the history index with its fixed mapping before the first
        write; a cluster that auto-creates indices would otherwise map it
        dynamically.
        """
        await self._ensure_index()
        await self.cluster.index_document(self.index, entry.migration_id, entry.to_document())

        logger.debug(
            "Migration recorded",
            migration_id=entry.migration_id,
            success=entry.success,
        )

    async def update(self, migration_id: str, partial: Dict[str, Any]) -> None:
        """Merge a partial document into an existing entry.

        Args:
            migration_id: Entry to update
            partial: camelCase keys and JSON-ready values

        Raises:
            NotFoundError: If no entry exists for migration_id
        """
        try:
            await self.cluster.update_document(self.index, migration_id, partial)
        except ClusterIOError as e:
            if e.is_not_found:
                raise NotFoundError(migration_id) from e
            raise

    async def get(self, migration_id: str) -> Optional[MigrationHistoryEntry]:
        hit = await self.cluster.get_document(self.index, migration_id)
        if hit is None or not hit.get("found", True):
            return None
        return MigrationHistoryEntry.from_document(hit["_source"])

    async def list(self, limit: Optional[int] = None) -> List[MigrationHistoryEntry]:
        """Entries sorted by timestamp, newest first."""
        if limit is None:
            limit = self.config.history_limit
        try:
            hits = await self.cluster.search(
                self.index, sort=[{"timestamp": {"order": "desc"}}], size=limit
            )
        except ClusterIOError as e:
            if e.is_not_found:
                return []
            raise
        return [MigrationHistoryEntry.from_document(hit["_source"]) for hit in hits]

    async def _ensure_index(self) -> None:
        if self._index_ready:
            return
        if not await self.cluster.index_exists(self.index):
            logger.info("Creating migration history index", index=self.index)
            await self.cluster.ensure_index(self.index, HISTORY_MAPPING)
        self._index_ready = True
