"""Shared fixtures: an in-memory stand-in for the AsyncOpenSearch API surface."""

import copy
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from opensearchpy.exceptions import ConflictError, NotFoundError, RequestError, TransportError

from config.settings import Settings
from schema_migrations.core.cluster import ClusterClient
from schema_migrations.migration.models import SchemaDescriptor

MUTATING_CALLS = {
    "indices.create",
    "indices.delete",
    "indices.put_mapping",
    "indices.update_aliases",
    "indices.put_alias",
    "reindex",
    "index",
    "create",
    "update",
    "delete",
}


class FakeIndex:
    def __init__(self, properties: Dict[str, Any], settings: Optional[Dict[str, Any]] = None):
        self.properties = copy.deepcopy(properties)
        self.settings = copy.deepcopy(settings or {})
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.aliases: set = set()


def _deep_merge(target: Dict[str, Any], partial: Dict[str, Any]) -> None:
    for key, value in partial.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeIndicesClient:
    def __init__(self, cluster: "FakeOpenSearch"):
        self.cluster = cluster

    async def exists(self, index):
        self.cluster.record("indices.exists", index=index)
        return bool(self.cluster.resolve(index, missing_ok=True))

    async def exists_alias(self, name, index=None):
        self.cluster.record("indices.exists_alias", name=name, index=index)
        candidates = self.cluster.resolve(index, missing_ok=True) if index else list(self.cluster.store)
        return any(name in self.cluster.store[c].aliases for c in candidates)

    async def get_alias(self, name):
        self.cluster.record("indices.get_alias", name=name)
        found = {
            concrete: {"aliases": {name: {}}}
            for concrete, idx in self.cluster.store.items()
            if name in idx.aliases
        }
        if not found:
            raise NotFoundError(404, "aliases_not_found_exception", {"error": f"alias [{name}] missing"})
        return found

    async def get_mapping(self, index):
        self.cluster.record("indices.get_mapping", index=index)
        return {
            concrete: {"mappings": {"properties": copy.deepcopy(self.cluster.store[concrete].properties)}}
            for concrete in self.cluster.resolve(index)
        }

    async def create(self, index, body=None):
        self.cluster.record("indices.create", index=index, body=body)
        if self.cluster.resolve(index, missing_ok=True):
            raise RequestError(400, "resource_already_exists_exception", {"index": index})
        body = body or {}
        self.cluster.store[index] = FakeIndex(
            body.get("mappings", {}).get("properties", {}), body.get("settings")
        )
        return {"acknowledged": True, "index": index}

    async def delete(self, index):
        self.cluster.record("indices.delete", index=index)
        if index not in self.cluster.store:
            if self.cluster.resolve(index, missing_ok=True):
                raise RequestError(
                    400,
                    "illegal_argument_exception",
                    {"error": f"The provided expression [{index}] matches an alias"},
                )
            raise NotFoundError(404, "index_not_found_exception", {"index": index})
        del self.cluster.store[index]
        return {"acknowledged": True}

    async def put_mapping(self, index, body):
        self.cluster.record("indices.put_mapping", index=index, body=body)
        for concrete in self.cluster.resolve(index):
            properties = self.cluster.store[concrete].properties
            for name, entry in body["properties"].items():
                if name in properties and properties[name].get("type") != entry.get("type"):
                    raise RequestError(400, "illegal_argument_exception", {"field": name})
                properties[name] = copy.deepcopy(entry)
        return {"acknowledged": True}

    async def update_aliases(self, body):
        self.cluster.record("indices.update_aliases", body=body)
        actions = body["actions"]
        for action in actions:
            (kind, spec), = action.items()
            concretes = self.cluster.resolve(spec["index"])
            if kind == "remove" and not any(spec["alias"] in self.cluster.store[c].aliases for c in concretes):
                raise NotFoundError(404, "aliases_not_found_exception", spec)
        for action in actions:
            (kind, spec), = action.items()
            for concrete in self.cluster.resolve(spec["index"]):
                if kind == "add":
                    self.cluster.store[concrete].aliases.add(spec["alias"])
                else:
                    self.cluster.store[concrete].aliases.discard(spec["alias"])
        return {"acknowledged": True}

    async def put_alias(self, index, name):
        self.cluster.record("indices.put_alias", index=index, name=name)
        if name in self.cluster.store:
            raise RequestError(400, "invalid_alias_name_exception", {"name": name})
        for concrete in self.cluster.resolve(index):
            self.cluster.store[concrete].aliases.add(name)
        return {"acknowledged": True}


class FakeTasksClient:
    def __init__(self, cluster: "FakeOpenSearch"):
        self.cluster = cluster

    async def get(self, task_id, wait_for_completion=False, timeout=None):
        self.cluster.record("tasks.get", task_id=task_id)
        return {"completed": True, "response": self.cluster.task_results[task_id]}


class FakeOpenSearch:
    """Implements the subset of AsyncOpenSearch used by ClusterClient.

    Failures are injected with fail_on(); every call is recorded in calls.
    """

    def __init__(self):
        self.store: Dict[str, FakeIndex] = {}
        self.task_results: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._failures: List[Tuple[str, Callable[[Dict[str, Any]], bool], Exception]] = []
        self._seq_no = 0
        self.indices = FakeIndicesClient(self)
        self.tasks = FakeTasksClient(self)

    # Test helpers

    def fail_on(self, operation: str, error: Optional[Exception] = None, when=None) -> None:
        """Make the next matching call raise error (a 500 TransportError by default)."""
        error = error or TransportError(500, "internal_server_error", {"operation": operation})
        self._failures.append((operation, when or (lambda kwargs: True), error))

    def record(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        for i, (op, predicate, error) in enumerate(self._failures):
            if op == operation and predicate(kwargs):
                del self._failures[i]
                raise error

    def mutating_calls(self) -> List[str]:
        return [op for op, _ in self.calls if op in MUTATING_CALLS]

    def user_index_mutations(self) -> List[Tuple[str, Dict[str, Any]]]:
        """Mutating calls that touched anything but a dot-prefixed system index."""
        return [
            (op, kwargs)
            for op, kwargs in self.calls
            if op in MUTATING_CALLS and not str(kwargs.get("index", "")).startswith(".")
        ]

    def resolve(self, name: str, missing_ok: bool = False) -> List[str]:
        if name in self.store:
            return [name]
        concretes = sorted(c for c, idx in self.store.items() if name in idx.aliases)
        if not concretes and not missing_ok:
            raise NotFoundError(404, "index_not_found_exception", {"index": name})
        return concretes

    def _auto_create(self, index: str) -> List[str]:
        """Document writes create a missing index with a dynamic, empty mapping."""
        if not self.resolve(index, missing_ok=True):
            self.store[index] = FakeIndex({})
        return self.resolve(index)

    def seed(self, index: str, properties: Dict[str, Any], docs: Optional[List[Dict[str, Any]]] = None) -> None:
        self.store[index] = FakeIndex(properties)
        for i, doc in enumerate(docs or []):
            self._write(index, str(i + 1), doc)

    def docs(self, name: str) -> List[Dict[str, Any]]:
        return [d["_source"] for c in self.resolve(name) for d in self.store[c].docs.values()]

    def properties(self, name: str) -> Dict[str, Any]:
        (concrete,) = self.resolve(name)
        return self.store[concrete].properties

    def _write(self, index: str, doc_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self._seq_no += 1
        doc = {"_source": copy.deepcopy(body), "_seq_no": self._seq_no, "_primary_term": 1}
        self.store[index].docs[doc_id] = doc
        return doc

    def _doc(self, index: str, doc_id: str) -> Tuple[str, Dict[str, Any]]:
        (concrete,) = self.resolve(index)
        doc = self.store[concrete].docs.get(doc_id)
        if doc is None:
            raise NotFoundError(404, "document_missing_exception", {"id": doc_id})
        return concrete, doc

    # Document and data APIs

    async def reindex(self, body, wait_for_completion=True, timeout=None, refresh=None):
        self.record("reindex", body=body, wait_for_completion=wait_for_completion, timeout=timeout)
        source, dest = body["source"]["index"], body["dest"]["index"]
        sources = self.resolve(source)
        if not self.resolve(dest, missing_ok=True):
            self.store[dest] = FakeIndex({})
        (dest_concrete,) = self.resolve(dest)
        created = updated = 0
        for concrete in sources:
            for doc_id, doc in self.store[concrete].docs.items():
                if doc_id in self.store[dest_concrete].docs:
                    updated += 1
                else:
                    created += 1
                self._write(dest_concrete, doc_id, doc["_source"])
        response = {
            "took": 1,
            "timed_out": False,
            "total": created + updated,
            "created": created,
            "updated": updated,
            "failures": [],
        }
        if not wait_for_completion:
            task_id = f"node-1:{len(self.task_results) + 1}"
            self.task_results[task_id] = response
            return {"task": task_id}
        return response

    async def index(self, index, id, body, refresh=None):
        self.record("index", index=index, id=id, body=body)
        (concrete,) = self._auto_create(index)
        self._write(concrete, id, body)
        return {"_id": id, "result": "created"}

    async def create(self, index, id, body, refresh=None):
        self.record("create", index=index, id=id, body=body)
        (concrete,) = self._auto_create(index)
        if id in self.store[concrete].docs:
            raise ConflictError(409, "version_conflict_engine_exception", {"id": id})
        self._write(concrete, id, body)
        return {"_id": id, "result": "created"}

    async def get(self, index, id):
        self.record("get", index=index, id=id)
        concrete, doc = self._doc(index, id)
        return {"_index": concrete, "_id": id, "found": True, **copy.deepcopy(doc)}

    async def update(self, index, id, body, refresh=None):
        self.record("update", index=index, id=id, body=body)
        concrete, doc = self._doc(index, id)
        source = copy.deepcopy(doc["_source"])
        _deep_merge(source, body["doc"])
        self._write(concrete, id, source)
        return {"_id": id, "result": "updated"}

    async def delete(self, index, id, if_seq_no=None, if_primary_term=None, refresh=None):
        self.record("delete", index=index, id=id, if_seq_no=if_seq_no)
        concrete, doc = self._doc(index, id)
        if if_seq_no is not None and (doc["_seq_no"], doc["_primary_term"]) != (if_seq_no, if_primary_term):
            raise ConflictError(409, "version_conflict_engine_exception", {"id": id})
        del self.store[concrete].docs[id]
        return {"_id": id, "result": "deleted"}

    async def search(self, index, body=None):
        self.record("search", index=index, body=body)
        body = body or {}
        hits = [
            {"_index": c, "_id": doc_id, "_source": copy.deepcopy(doc["_source"])}
            for c in self.resolve(index)
            for doc_id, doc in self.store[c].docs.items()
        ]
        for clause in reversed(body.get("sort", [])):
            (field, spec), = clause.items()
            hits.sort(key=lambda h: h["_source"].get(field) or "", reverse=spec.get("order") == "desc")
        return {"hits": {"total": {"value": len(hits)}, "hits": hits[: body.get("size", 10)]}}

    async def close(self):
        self.record("close")


@pytest.fixture
def fake_os():
    """In-memory cluster state."""
    return FakeOpenSearch()


@pytest.fixture
def cluster(fake_os):
    """ClusterClient over the in-memory cluster."""
    return ClusterClient(fake_os)


@pytest.fixture
def config(tmp_path):
    """Settings independent of the environment."""
    return Settings(
        hosts=["http://localhost:9200"],
        migration_index=".test-migrations",
        lock_index=".test-migrations-locks",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def people_schema():
    """Declared schema matching the seeded people index."""
    return SchemaDescriptor.from_dict(
        "people",
        {
            "name": {"type": "keyword", "required": True},
            "age": {"type": "integer"},
        },
    )


@pytest.fixture
def seeded(fake_os):
    """People index with name:keyword, age:integer and two documents."""
    fake_os.seed(
        "people",
        {"name": {"type": "keyword"}, "age": {"type": "integer"}},
        [{"name": "Ada", "age": 36}, {"name": "Alan", "age": 41}],
    )
    return fake_os
