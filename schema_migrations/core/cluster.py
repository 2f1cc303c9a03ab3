"""OpenSearch cluster access for schema migrations."""

from typing import Any, Awaitable, Callable, Dict, List, Optional

from opensearchpy import AsyncOpenSearch
from opensearchpy.exceptions import OpenSearchException

from config.logging_config import get_logger
from config.settings import Settings

from .error_handling import ClusterIOError, ConfigurationError

logger = get_logger(__name__)


class ClusterClient:
    """Wraps an AsyncOpenSearch handle with the calls the migration subsystem needs.

    Every transport failure is re-raised as ClusterIOError carrying the
    operation name and HTTP status, so callers never see driver exceptions.
    """

    def __init__(self, client: AsyncOpenSearch):
        """
        Args:
            client: Connected AsyncOpenSearch instance
        """
        self.client = client

    @classmethod
    def from_settings(cls, config: Settings) -> "ClusterClient":
        """Build a client from connection settings."""
        if not config.hosts:
            raise ConfigurationError("At least one cluster host is required", config_key="hosts")

        http_auth = None
        if config.username:
            http_auth = (config.username, config.password or "")

        client = AsyncOpenSearch(
            hosts=config.hosts,
            http_auth=http_auth,
            verify_certs=config.verify_certs,
            timeout=config.request_timeout_seconds,
        )
        logger.info("Cluster client created", hosts=config.hosts)
        return cls(client)

    async def close(self) -> None:
        await self.client.close()

    async def _call(self, operation: str, func: Callable[..., Awaitable[Any]], **kwargs: Any) -> Any:
        try:
            return await func(**kwargs)
        except OpenSearchException as e:
            status = getattr(e, "status_code", None)
            if not isinstance(status, int):
                status = None
            logger.debug("Cluster call failed", operation=operation, status_code=status, error=str(e))
            raise ClusterIOError(
                f"{operation} failed: {e}", operation=operation, status_code=status
            ) from e

    # Index management

    async def index_exists(self, index: str) -> bool:
        return bool(await self._call("index-exists", self.client.indices.exists, index=index))

    async def alias_exists(self, name: str, index: Optional[str] = None) -> bool:
        kwargs: Dict[str, Any] = {"name": name}
        if index is not None:
            kwargs["index"] = index
        return bool(await self._call("alias-exists", self.client.indices.exists_alias, **kwargs))

    async def resolve_indices(self, name: str) -> List[str]:
        """
        Resolve a name to the concrete indices behind it.

        Args:
            name: Index or alias name

        Returns:
            Sorted concrete index names, empty if nothing answers to the name
        """
        if await self.alias_exists(name):
            response = await self._call("get-alias", self.client.indices.get_alias, name=name)
            return sorted(response.keys())
        if await self.index_exists(name):
            return [name]
        return []

    async def get_mapping(self, index: str) -> Dict[str, Dict[str, Any]]:
        """
        Get the field mapping currently stored for an index or alias.

        The response is keyed by concrete index name, which differs from the
        requested name once the name is an alias.

        Args:
            index: Index or alias name

        Returns:
            Mapping of field name to its mapping entry
        """
        response = await self._call("get-mapping", self.client.indices.get_mapping, index=index)
        if len(response) != 1:
            raise ClusterIOError(
                f"get-mapping for {index} resolved to {len(response)} indices",
                operation="get-mapping",
            )
        body = next(iter(response.values()))
        return body.get("mappings", {}).get("properties", {}) or {}

    async def create_index(
        self,
        index: str,
        properties: Dict[str, Any],
        index_settings: Optional[Dict[str, Any]] = None,
    ) -> None:
        body: Dict[str, Any] = {"mappings": {"properties": properties}}
        if index_settings:
            body["settings"] = index_settings
        await self._call("create-index", self.client.indices.create, index=index, body=body)
        logger.debug("Index created", index=index, fields=len(properties))

    async def ensure_index(self, index: str, properties: Dict[str, Any]) -> None:
        """Create an index unless it exists, tolerating a concurrent creator."""
        try:
            await self.create_index(index, properties)
        except ClusterIOError:
            if not await self.index_exists(index):
                raise
            logger.debug("Index created concurrently", index=index)

    async def delete_index(self, index: str) -> None:
        await self._call("delete-index", self.client.indices.delete, index=index)
        logger.debug("Index deleted", index=index)

    async def put_mapping(self, index: str, properties: Dict[str, Any]) -> None:
        await self._call(
            "put-mapping",
            self.client.indices.put_mapping,
            index=index,
            body={"properties": properties},
        )

    async def update_aliases(self, actions: List[Dict[str, Any]]) -> None:
        """Apply all alias actions in a single atomic request."""
        await self._call(
            "update-aliases", self.client.indices.update_aliases, body={"actions": actions}
        )

    async def put_alias(self, index: str, name: str) -> None:
        await self._call("put-alias", self.client.indices.put_alias, index=index, name=name)

    # Data movement

    async def reindex(
        self,
        source: str,
        dest: str,
        wait_for_completion: bool = True,
        timeout: str = "1h",
        refresh: bool = True,
    ) -> Dict[str, Any]:
        """
        Copy all documents from one index into another and wait for the copy.

        When wait_for_completion is False the copy runs as a cluster task and
        this call waits on the task instead, so either way it returns only
        after the copy finished.

        Args:
            source: Source index or alias
            dest: Destination index
            wait_for_completion: Block the reindex request itself
            timeout: Cluster-side wait timeout (e.g. "1h")
            refresh: Refresh the destination when done

        Returns:
            Reindex response body

        Raises:
            ClusterIOError: On transport errors, timeouts, or document failures
        """
        response = await self._call(
            "reindex",
            self.client.reindex,
            body={"source": {"index": source}, "dest": {"index": dest}},
            wait_for_completion=wait_for_completion,
            timeout=timeout,
            refresh=refresh,
        )

        if not wait_for_completion:
            response = await self.wait_for_task(response["task"], timeout=timeout)

        if response.get("timed_out"):
            raise ClusterIOError(
                f"reindex {source} -> {dest} timed out after {timeout}",
                operation="reindex",
            )
        failures = response.get("failures") or []
        if failures:
            raise ClusterIOError(
                f"reindex {source} -> {dest} reported {len(failures)} failures: {failures[0]}",
                operation="reindex",
            )

        logger.debug(
            "Reindex completed",
            source=source,
            dest=dest,
            total=response.get("total"),
            created=response.get("created"),
        )
        return response

    async def wait_for_task(self, task_id: str, timeout: str = "1h") -> Dict[str, Any]:
        """Block on a cluster task and return its response body."""
        result = await self._call(
            "task-wait",
            self.client.tasks.get,
            task_id=task_id,
            wait_for_completion=True,
            timeout=timeout,
        )
        if not result.get("completed"):
            raise ClusterIOError(f"task {task_id} did not complete within {timeout}", operation="task-wait")
        if result.get("error"):
            raise ClusterIOError(f"task {task_id} failed: {result['error']}", operation="task-wait")
        return result.get("response", {})

    # Documents

    async def index_document(
        self, index: str, doc_id: str, body: Dict[str, Any], refresh: bool = True
    ) -> None:
        await self._call(
            "index-document", self.client.index, index=index, id=doc_id, body=body, refresh=refresh
        )

    async def create_document(
        self, index: str, doc_id: str, body: Dict[str, Any], refresh: bool = True
    ) -> None:
        """Write a document only if its id is free; a taken id raises with status 409."""
        await self._call(
            "create-document", self.client.create, index=index, id=doc_id, body=body, refresh=refresh
        )

    async def get_document(self, index: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a document hit (with _source, _seq_no, _primary_term), or None."""
        try:
            return await self._call("get-document", self.client.get, index=index, id=doc_id)
        except ClusterIOError as e:
            if e.is_not_found:
                return None
            raise

    async def update_document(
        self, index: str, doc_id: str, partial: Dict[str, Any], refresh: bool = True
    ) -> None:
        """Merge a partial document; values travel as data, never as script source."""
        await self._call(
            "update-document",
            self.client.update,
            index=index,
            id=doc_id,
            body={"doc": partial},
            refresh=refresh,
        )

    async def delete_document(
        self,
        index: str,
        doc_id: str,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        refresh: bool = True,
    ) -> None:
        kwargs: Dict[str, Any] = {"index": index, "id": doc_id, "refresh": refresh}
        if if_seq_no is not None:
            kwargs["if_seq_no"] = if_seq_no
            kwargs["if_primary_term"] = if_primary_term
        await self._call("delete-document", self.client.delete, **kwargs)

    async def search(
        self,
        index: str,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[List[Dict[str, Any]]] = None,
        size: int = 10,
    ) -> List[Dict[str, Any]]:
        """Run a search and return the raw hits."""
        body: Dict[str, Any] = {"query": query or {"match_all": {}}, "size": size}
        if sort:
            body["sort"] = sort
        response = await self._call("search", self.client.search, index=index, body=body)
        return response["hits"]["hits"]
