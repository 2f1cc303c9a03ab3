"""Per-index lease held in the cluster while a migration or rollback runs."""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, Optional

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings

from ..core.cluster import ClusterClient
from ..core.error_handling import ClusterIOError, MigrationLockedError

logger = get_logger(__name__)

LOCK_MAPPING: Dict[str, Any] = {
    "owner": {"type": "keyword"},
    "acquiredAt": {"type": "date"},
    "expiresAt": {"type": "date"},
}


class IndexLease:
    """Exclusive, expiring lease on an index name.

    A lease is a document in the lock index whose id is the index name. It is
    written with create-only semantics, so only one holder can exist; an
    expired lease is taken over with a sequence-number guarded delete.
    """

    def __init__(self, cluster: ClusterClient, config: Optional[Settings] = None):
        self.cluster = cluster
        self.config = config or default_settings
        self.index = self.config.lock_index
        self.ttl = timedelta(seconds=self.config.lock_ttl_seconds)
        self._index_ready = False

    @asynccontextmanager
    async def hold(
        self, index_name: str, owner: str, ttl: Optional[timedelta] = None
    ) -> AsyncIterator[None]:
        """Hold the lease on index_name for the duration of the block.

        Args:
            index_name: Index to lock
            owner: Lease holder, usually the migration id
            ttl: Lease lifetime; must outlast every blocking step of the block.
                Defaults to settings.lock_ttl_seconds
        """
        await self.acquire(index_name, owner, ttl)
        try:
            yield
        finally:
            try:
                await self.release(index_name, owner)
            except ClusterIOError as e:
                # The lease expires on its own after the TTL
                logger.error("Lease release failed", index=index_name, owner=owner, error=str(e))

    async def acquire(
        self, index_name: str, owner: str, ttl: Optional[timedelta] = None
    ) -> None:
        """
        Take the lease on index_name.

        Raises:
            MigrationLockedError: If another owner holds an unexpired lease
        """
        if await self._try_create(index_name, owner, ttl):
            logger.debug("Lease acquired", index=index_name, owner=owner)
            return

        hit = await self.cluster.get_document(self.index, index_name)
        if hit is None:
            # Released between our write and the read
            if await self._try_create(index_name, owner, ttl):
                return
            raise MigrationLockedError(index_name)

        holder = hit["_source"].get("owner")
        expires_at = datetime.fromisoformat(hit["_source"]["expiresAt"])
        if expires_at > datetime.now(timezone.utc):
            raise MigrationLockedError(index_name, holder=holder)

        logger.warning("Taking over expired lease", index=index_name, holder=holder, owner=owner)
        try:
            await self.cluster.delete_document(
                self.index,
                index_name,
                if_seq_no=hit["_seq_no"],
                if_primary_term=hit["_primary_term"],
            )
        except ClusterIOError as e:
            if e.is_conflict or e.is_not_found:
                raise MigrationLockedError(index_name, holder=holder) from e
            raise
        if not await self._try_create(index_name, owner, ttl):
            raise MigrationLockedError(index_name)

    async def release(self, index_name: str, owner: str) -> None:
        hit = await self.cluster.get_document(self.index, index_name)
        if hit is None or hit["_source"].get("owner") != owner:
            logger.warning("Lease no longer held", index=index_name, owner=owner)
            return
        try:
            await self.cluster.delete_document(
                self.index,
                index_name,
                if_seq_no=hit["_seq_no"],
                if_primary_term=hit["_primary_term"],
            )
        except ClusterIOError as e:
            if not (e.is_conflict or e.is_not_found):
                raise
            logger.warning("Lease changed hands before release", index=index_name, owner=owner)
            return
        logger.debug("Lease released", index=index_name, owner=owner)

    async def _try_create(
        self, index_name: str, owner: str, ttl: Optional[timedelta] = None
    ) -> bool:
        now = datetime.now(timezone.utc)
        document = {
            "owner": owner,
            "acquiredAt": now.isoformat(),
            "expiresAt": (now + (ttl or self.ttl)).isoformat(),
        }
        try:
            await self._create(index_name, document)
        except ClusterIOError as e:
            if e.is_conflict:
                return False
            raise
        return True

    async def _create(self, index_name: str, document: Dict[str, Any]) -> None:
        if not self._index_ready:
            if not await self.cluster.index_exists(self.index):
                logger.info("Creating lock index", index=self.index)
                await self.cluster.ensure_index(self.index, LOCK_MAPPING)
            self._index_ready = True
        await self.cluster.create_document(self.index, index_name, document)
