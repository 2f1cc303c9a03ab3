"""
Data models for schema migrations.

This module defines:
- Declared schemas (FieldSpec, SchemaDescriptor) handed over by the caller
- Migration plans computed by the schema differ
- Migration results and the history entries persisted for them

Persisted models serialize with camelCase keys, the shape stored in the
migration history index.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

SUPPORTED_FIELD_TYPES = frozenset(
    {
        "text",
        "keyword",
        "long",
        "integer",
        "short",
        "byte",
        "double",
        "float",
        "date",
        "boolean",
        "binary",
        "object",
        "nested",
    }
)

STRUCTURAL_KEYS = ("type", "properties", "fields")

DRY_RUN_ID = "dry-run"

# Cluster time units, in seconds
TIME_UNITS = {
    "d": 86400.0,
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "micros": 1e-6,
    "nanos": 1e-9,
}
_TIME_VALUE = re.compile(r"^(\d+)(d|h|ms|m|s|micros|nanos)$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def time_value_seconds(value: str) -> float:
    """Convert a cluster time value such as "30m" or "1h" to seconds.

    Raises:
        ValueError: If the value is not a whole number followed by a known unit
    """
    match = _TIME_VALUE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time value {value!r}, expected e.g. 30s, 10m or 1h")
    return int(match.group(1)) * TIME_UNITS[match.group(2)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# Declared schema

class FieldSpec(_CamelModel):
    """A declared field: type, engine options and optional substructure."""

    type: str
    properties: Optional[Dict[str, "FieldSpec"]] = None
    fields: Optional[Dict[str, Dict[str, Any]]] = None  # multi-fields
    required: bool = False
    default: Any = None
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("options")
    @classmethod
    def validate_options(cls, v):
        """Structural keys have their own attributes."""
        clashes = sorted(set(v) & set(STRUCTURAL_KEYS))
        if clashes:
            raise ValueError(f"Options may not set structural keys: {clashes}")
        return v

    @classmethod
    def from_dict(cls, definition: Dict[str, Any]) -> "FieldSpec":
        """Build from a flat definition such as {"type": "text", "analyzer": "english"}."""
        definition = dict(definition)
        properties = definition.pop("properties", None)
        return cls(
            type=definition.pop("type"),
            properties=(
                {name: cls.from_dict(sub) for name, sub in properties.items()}
                if properties is not None
                else None
            ),
            fields=definition.pop("fields", None),
            required=definition.pop("required", False),
            default=definition.pop("default", None),
            options=definition,
        )

    def to_mapping(self) -> Dict[str, Any]:
        """Render the engine mapping for this field, dropping client-only attributes."""
        mapping: Dict[str, Any] = {"type": self.type}
        mapping.update(self.options)
        if self.properties is not None:
            mapping["properties"] = {
                name: spec.to_mapping() for name, spec in self.properties.items()
            }
        if self.fields is not None:
            mapping["fields"] = {name: dict(sub) for name, sub in self.fields.items()}
        return mapping


FieldSpec.model_rebuild()


class SchemaDescriptor(_CamelModel):
    """Normalized declared schema for one index."""

    index_name: str
    fields: Dict[str, FieldSpec]
    number_of_shards: Optional[int] = None
    number_of_replicas: Optional[int] = None

    @classmethod
    def from_dict(
        cls, index_name: str, fields: Dict[str, Dict[str, Any]], **index_options: Any
    ) -> "SchemaDescriptor":
        return cls(
            index_name=index_name,
            fields={name: FieldSpec.from_dict(definition) for name, definition in fields.items()},
            **index_options,
        )

    def properties(self) -> Dict[str, Any]:
        """Mapping properties for every declared field."""
        return {name: spec.to_mapping() for name, spec in self.fields.items()}

    def index_settings(self) -> Dict[str, Any]:
        settings: Dict[str, Any] = {}
        if self.number_of_shards is not None:
            settings["number_of_shards"] = self.number_of_shards
        if self.number_of_replicas is not None:
            settings["number_of_replicas"] = self.number_of_replicas
        return settings

    def iter_field_types(self) -> Iterator[Tuple[str, str]]:
        """Yield (dotted path, type) for every declared field, nested ones included."""
        stack: List[Tuple[str, Dict[str, FieldSpec]]] = [("", self.fields)]
        while stack:
            prefix, fields = stack.pop()
            for name, spec in fields.items():
                path = f"{prefix}{name}"
                yield path, spec.type
                if spec.properties:
                    stack.append((f"{path}.", spec.properties))


# Plans

class ChangeKind(str, Enum):
    """Kind of change to a single field."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class FieldChange(_CamelModel):
    """Change detail for one field. The kind is stored under the key "type"."""

    change_kind: ChangeKind = Field(alias="type")
    old_type: Optional[str] = None
    new_type: Optional[str] = None
    old_options: Optional[Dict[str, Any]] = None
    new_options: Optional[Dict[str, Any]] = None


class MigrationPlan(_CamelModel):
    """Difference between the live mapping and the declared schema."""

    index_name: str
    added_fields: List[str] = Field(default_factory=list)
    modified_fields: List[str] = Field(default_factory=list)
    deleted_fields: List[str] = Field(default_factory=list)
    requires_reindex: bool = False
    estimated_duration: str = "1-2 minutes"
    details: Dict[str, FieldChange] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_reindex_flag(self):
        """Only modified or deleted fields require a reindex."""
        expected = bool(self.modified_fields or self.deleted_fields)
        if self.requires_reindex != expected:
            raise ValueError(
                f"requires_reindex must be {expected} for this set of changes"
            )
        return self

    @property
    def has_changes(self) -> bool:
        return bool(self.added_fields or self.modified_fields or self.deleted_fields)


# Results and history

class MigrationOptions(BaseModel):
    """Execution options for a migration."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    dry_run: bool = False
    backup: bool = False
    timeout: Optional[str] = None  # falls back to settings.default_timeout
    wait_for_completion: bool = True

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v):
        if v is not None:
            time_value_seconds(v)
        return v


class MigrationResult(_CamelModel):
    """Outcome of one migration or rollback attempt."""

    success: bool
    migration_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    duration_ms: int = 0
    plan: MigrationPlan
    backup_index_name: Optional[str] = None
    error_message: Optional[str] = None


class RollbackRecord(_CamelModel):
    timestamp: datetime = Field(default_factory=utcnow)
    success: bool
    error_message: Optional[str] = None


class RecoveryOutcome(str, Enum):
    """Outcome of the automatic restore after a failed migration."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_NO_BACKUP = "skipped_no_backup"


class RecoveryRecord(_CamelModel):
    outcome: RecoveryOutcome
    timestamp: datetime = Field(default_factory=utcnow)
    error_message: Optional[str] = None


class MigrationHistoryEntry(MigrationResult):
    """Persisted audit record of one migration attempt."""

    rolled_back: Optional[RollbackRecord] = None
    recovery: Optional[RecoveryRecord] = None

    @classmethod
    def from_document(cls, source: Dict[str, Any]) -> "MigrationHistoryEntry":
        return cls.model_validate(source)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
