"""Tests for the cluster client wrapper."""

import pytest
from opensearchpy import AsyncOpenSearch
from opensearchpy.exceptions import ConnectionError as OpenSearchConnectionError
from opensearchpy.exceptions import RequestError

from config.settings import Settings
from schema_migrations.core.cluster import ClusterClient
from schema_migrations.core.error_handling import ClusterIOError, ConfigurationError


class TestErrorTranslation:
    """Driver exceptions never escape the client."""

    @pytest.mark.asyncio
    async def test_status_code_carried(self, cluster, fake_os):
        fake_os.fail_on("indices.create", RequestError(400, "resource_already_exists_exception", {}))

        with pytest.raises(ClusterIOError) as exc_info:
            await cluster.create_index("people", {"name": {"type": "keyword"}})

        assert exc_info.value.operation == "create-index"
        assert exc_info.value.status_code == 400
        assert isinstance(exc_info.value.__cause__, RequestError)

    @pytest.mark.asyncio
    async def test_connection_error_has_no_status(self, cluster, fake_os):
        fake_os.fail_on("indices.get_mapping", OpenSearchConnectionError("N/A", "connection refused", None))

        with pytest.raises(ClusterIOError) as exc_info:
            await cluster.get_mapping("people")

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_missing_document_is_none(self, cluster, seeded):
        assert await cluster.get_document("people", "404") is None

    @pytest.mark.asyncio
    async def test_create_document_conflict(self, cluster, seeded):
        with pytest.raises(ClusterIOError) as exc_info:
            await cluster.create_document("people", "1", {"name": "Grace"})

        assert exc_info.value.is_conflict


class TestIndexResolution:
    """Index names and aliases."""

    @pytest.mark.asyncio
    async def test_resolve_concrete_index(self, cluster, seeded):
        assert await cluster.resolve_indices("people") == ["people"]

    @pytest.mark.asyncio
    async def test_resolve_alias(self, cluster, fake_os):
        fake_os.seed("people_new_1", {"name": {"type": "keyword"}})
        fake_os.store["people_new_1"].aliases.add("people")

        assert await cluster.resolve_indices("people") == ["people_new_1"]

    @pytest.mark.asyncio
    async def test_resolve_missing(self, cluster):
        assert await cluster.resolve_indices("people") == []

    @pytest.mark.asyncio
    async def test_get_mapping_through_alias(self, cluster, fake_os):
        fake_os.seed("people_new_1", {"name": {"type": "text"}})
        fake_os.store["people_new_1"].aliases.add("people")

        assert await cluster.get_mapping("people") == {"name": {"type": "text"}}

    @pytest.mark.asyncio
    async def test_get_mapping_rejects_multiple_indices(self, cluster, fake_os):
        for name in ("logs-1", "logs-2"):
            fake_os.seed(name, {"level": {"type": "keyword"}})
            fake_os.store[name].aliases.add("logs")

        with pytest.raises(ClusterIOError):
            await cluster.get_mapping("logs")

    @pytest.mark.asyncio
    async def test_ensure_index_tolerates_existing(self, cluster, fake_os):
        fake_os.seed(".test-migrations", {"migrationId": {"type": "keyword"}})

        await cluster.ensure_index(".test-migrations", {"migrationId": {"type": "keyword"}})

        assert ".test-migrations" in fake_os.store

    @pytest.mark.asyncio
    async def test_ensure_index_propagates_real_failures(self, cluster, fake_os):
        fake_os.fail_on("indices.create")

        with pytest.raises(ClusterIOError):
            await cluster.ensure_index(".test-migrations", {})


class TestReindex:
    """Data copies."""

    @pytest.mark.asyncio
    async def test_reindex_waits(self, cluster, seeded):
        response = await cluster.reindex("people", "people_copy")

        assert response["created"] == 2
        assert len(seeded.docs("people_copy")) == 2

    @pytest.mark.asyncio
    async def test_reindex_as_task(self, cluster, seeded):
        response = await cluster.reindex("people", "people_copy", wait_for_completion=False)

        assert response["created"] == 2
        assert "tasks.get" in [op for op, _ in seeded.calls]

    @pytest.mark.asyncio
    async def test_reindex_failures_raise(self, cluster, seeded, monkeypatch):
        async def partial_reindex(**kwargs):
            return {"timed_out": False, "total": 2, "created": 1, "failures": [{"id": "2"}]}

        monkeypatch.setattr(seeded, "reindex", partial_reindex)

        with pytest.raises(ClusterIOError, match="1 failures"):
            await cluster.reindex("people", "people_copy")

    @pytest.mark.asyncio
    async def test_reindex_timeout_raises(self, cluster, seeded, monkeypatch):
        async def slow_reindex(**kwargs):
            return {"timed_out": True, "failures": []}

        monkeypatch.setattr(seeded, "reindex", slow_reindex)

        with pytest.raises(ClusterIOError, match="timed out"):
            await cluster.reindex("people", "people_copy", timeout="1s")

    @pytest.mark.asyncio
    async def test_incomplete_task_raises(self, cluster, seeded, monkeypatch):
        async def pending(**kwargs):
            return {"completed": False}

        monkeypatch.setattr(seeded.tasks, "get", pending)

        with pytest.raises(ClusterIOError) as exc_info:
            await cluster.reindex("people", "people_copy", wait_for_completion=False)

        assert exc_info.value.operation == "task-wait"


class TestFromSettings:
    def test_requires_hosts(self, tmp_path):
        config = Settings(hosts=[], log_dir=tmp_path)

        with pytest.raises(ConfigurationError):
            ClusterClient.from_settings(config)

    @pytest.mark.asyncio
    async def test_builds_async_client(self, config):
        client = ClusterClient.from_settings(
            config.model_copy(update={"username": "admin", "password": "secret"})
        )

        assert isinstance(client.client, AsyncOpenSearch)
        await client.close()
