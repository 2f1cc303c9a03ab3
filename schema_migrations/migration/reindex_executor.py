"""
Mapping changes applied to a live index.

Additive changes go through a single put-mapping call. Anything else is
applied by building a new index, copying the data into it and cutting the
aliases over.
"""

from typing import Optional

from config.logging_config import get_logger
from config.settings import Settings, settings as default_settings

from ..core.cluster import ClusterClient
from ..core.error_handling import ClusterIOError
from .models import MigrationPlan, SchemaDescriptor

logger = get_logger(__name__)


def temp_index_name(index_name: str, migration_id: str) -> str:
    return f"{index_name}_new_{migration_id}"


class ReindexExecutor:
    """Applies migration plans to the cluster."""

    def __init__(self, cluster: ClusterClient, config: Optional[Settings] = None):
        self.cluster = cluster
        self.config = config or default_settings

    async def create_index(self, schema: SchemaDescriptor) -> None:
        """Create a missing index straight from the declared schema."""
        await self.cluster.create_index(
            schema.index_name, schema.properties(), schema.index_settings() or None
        )
        logger.info("Index created from schema", index=schema.index_name)

    async def apply_additive(self, index_name: str, plan: MigrationPlan, schema: SchemaDescriptor) -> None:
        """Add new fields in place. No reindex, no downtime."""
        declared = schema.properties()
        properties = {field: declared[field] for field in plan.added_fields}
        if not properties:
            logger.info("No mapping changes to apply", index=index_name)
            return
        await self.cluster.put_mapping(index_name, properties)
        logger.info("Mapping updated in place", index=index_name, added=plan.added_fields)

    async def reindex_apply(
        self,
        index_name: str,
        migration_id: str,
        schema: SchemaDescriptor,
        timeout: Optional[str] = None,
        wait_for_completion: bool = True,
    ) -> str:
        """
        Rebuild an index under the declared schema and cut over to it.

        Steps run strictly in order, each awaited before the next:
        create the temporary index, copy the data, swap the cutover alias in
        one request, delete the original index, then alias the original name
        to the new index.

        Args:
            index_name: Index (or alias from an earlier cutover) to migrate
            migration_id: Migration id, used to name the temporary index
            schema: Declared schema
            timeout: Cluster-side reindex timeout
            wait_for_completion: Block on the reindex request itself rather
                than on the reindex task

        Returns:
            Name of the new concrete index

        Raises:
            ClusterIOError: If any step fails
        """
        timeout = timeout or self.config.default_timeout
        alias = self.config.cutover_alias
        temp_index = temp_index_name(index_name, migration_id)

        sources = await self.cluster.resolve_indices(index_name)
        if len(sources) != 1:
            raise ClusterIOError(
                f"{index_name} must resolve to exactly one index, found {sources}",
                operation="resolve-index",
            )
        source = sources[0]

        logger.info("Creating temporary index", index=index_name, temp_index=temp_index)
        await self.cluster.create_index(
            temp_index, schema.properties(), schema.index_settings() or None
        )

        try:
            await self.cluster.reindex(
                index_name,
                temp_index,
                wait_for_completion=wait_for_completion,
                timeout=timeout,
                refresh=True,
            )
            logger.info("Data copied", index=index_name, temp_index=temp_index)

            actions = []
            if await self.cluster.alias_exists(alias, index=source):
                actions.append({"remove": {"index": source, "alias": alias}})
            actions.append({"add": {"index": temp_index, "alias": alias}})
            await self.cluster.update_aliases(actions)
        except ClusterIOError:
            await self._discard(temp_index)
            raise

        logger.info("Alias switched", alias=alias, temp_index=temp_index)

        await self.cluster.delete_index(source)
        await self.cluster.put_alias(temp_index, index_name)
        logger.info("Reindex cutover completed", index=index_name, new_index=temp_index)
        return temp_index

    async def discard_temp_index(self, index_name: str, migration_id: str) -> None:
        """Remove the temporary index of a migration if it is still around."""
        temp_index = temp_index_name(index_name, migration_id)
        if await self.cluster.index_exists(temp_index):
            await self._discard(temp_index)

    async def _discard(self, temp_index: str) -> None:
        try:
            await self.cluster.delete_index(temp_index)
        except ClusterIOError as e:
            logger.warning("Could not remove temporary index", temp_index=temp_index, error=str(e))
