"""
Schema comparison between the live index mapping and a declared schema.

Pure functions only: no cluster access, deterministic for given inputs.
"""

from typing import Any, Dict, Optional

from .models import FieldChange, ChangeKind, MigrationPlan, SchemaDescriptor

NO_REINDEX_ESTIMATE = "1-2 minutes"
REINDEX_ESTIMATE = "5-10 minutes"


def _live_type(entry: Dict[str, Any]) -> Optional[str]:
    """The engine omits "type" for object fields that only carry properties."""
    if "type" in entry:
        return entry["type"]
    if "properties" in entry:
        return "object"
    return None


def _normalize(mapping: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Normalize a properties block so declared and live renderings compare equal."""
    if mapping is None:
        return None
    normalized = {}
    for name, entry in mapping.items():
        entry = dict(entry)
        if entry.get("type") == "object" and "properties" in entry:
            del entry["type"]
        if "properties" in entry:
            entry["properties"] = _normalize(entry["properties"])
        normalized[name] = entry
    return normalized


def _structure_differs(live: Dict[str, Any], declared: Dict[str, Any]) -> bool:
    if _normalize(live.get("properties")) != _normalize(declared.get("properties")):
        return True
    return live.get("fields") != declared.get("fields")


def diff(
    index_name: str,
    live_mapping: Dict[str, Dict[str, Any]],
    schema: SchemaDescriptor,
) -> MigrationPlan:
    """
    Compare the live mapping against the declared schema.

    Unsupported declared types are not rejected here; type validation happens
    at execution time so planning always succeeds.

    Args:
        index_name: Index the plan targets
        live_mapping: Field name to mapping entry, as stored on the cluster
        schema: Declared schema

    Returns:
        Migration plan
    """
    live_mapping = live_mapping or {}
    declared = schema.properties()

    added = [name for name in declared if name not in live_mapping]
    deleted = [name for name in live_mapping if name not in declared]
    modified = [
        name
        for name in declared
        if name in live_mapping
        and (
            _live_type(live_mapping[name]) != declared[name]["type"]
            or _structure_differs(live_mapping[name], declared[name])
        )
    ]

    details: Dict[str, FieldChange] = {}
    for name in added:
        details[name] = FieldChange(
            change_kind=ChangeKind.ADDED,
            new_type=declared[name]["type"],
            new_options=declared[name],
        )
    for name in modified:
        details[name] = FieldChange(
            change_kind=ChangeKind.MODIFIED,
            old_type=_live_type(live_mapping[name]),
            new_type=declared[name]["type"],
            old_options=dict(live_mapping[name]),
            new_options=declared[name],
        )
    for name in deleted:
        details[name] = FieldChange(
            change_kind=ChangeKind.DELETED,
            old_type=_live_type(live_mapping[name]),
            old_options=dict(live_mapping[name]),
        )

    requires_reindex = bool(modified or deleted)
    return MigrationPlan(
        index_name=index_name,
        added_fields=added,
        modified_fields=modified,
        deleted_fields=deleted,
        requires_reindex=requires_reindex,
        estimated_duration=REINDEX_ESTIMATE if requires_reindex else NO_REINDEX_ESTIMATE,
        details=details,
    )
