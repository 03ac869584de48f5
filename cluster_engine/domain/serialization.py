"""
Snapshot Serialization

Plain-dict snapshots of the fact store for storage collaborators, plus
JSON helpers with a strict encoder.

RULES:
1. Timestamps are ISO 8601 strings (UTC).
2. Enums use their .value.
3. Sets become sorted lists.
4. Import rebuilds records exactly; it does not validate or repair.
   Callers run ``repair`` after a bulk import.
5. Import checks field types; anything else raises SnapshotFormatError.
"""

import json
from dataclasses import asdict
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..contracts.base import (
    Timestamp, FactRole, Confidence, RelationshipType
)
from ..contracts.entities import Fact, Cluster, Relationship
from ..store import FactStore


FORMAT_VERSION = "1.0"


class SnapshotFormatError(ValueError):
    """Raised when a snapshot payload cannot be rebuilt into entities."""


class StrictSnapshotEncoder(json.JSONEncoder):
    """JSON encoder that refuses anything it cannot render losslessly."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Timestamp):
            return obj.to_iso()
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if hasattr(obj, "__dataclass_fields__"):
            return asdict(obj)

        return super().default(obj)


# =============================================================================
# ENTITY <-> DICT
# =============================================================================

def _iso(timestamp: Optional[Timestamp]) -> Optional[str]:
    return timestamp.to_iso() if timestamp is not None else None


def _timestamp(value: Optional[str]) -> Optional[Timestamp]:
    return Timestamp.from_iso(value) if value else None


_REQUIRED = object()


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise SnapshotFormatError(f"{what} must be an object, got {type(data).__name__}")
    return data


def _field(data: Mapping[str, Any], key: str, expected: Any, default: Any = _REQUIRED) -> Any:
    """Read ``key`` and check its type; a None default makes the field nullable."""
    if default is _REQUIRED:
        if key not in data:
            raise SnapshotFormatError(f"Missing field '{key}'")
        value = data[key]
    else:
        value = data.get(key, default)
        if value is None and default is None:
            return None

    types = expected if isinstance(expected, tuple) else (expected,)
    # bool is an int subclass
    if (isinstance(value, bool) and bool not in types) or not isinstance(value, types):
        names = " or ".join(t.__name__ for t in types)
        raise SnapshotFormatError(
            f"Field '{key}' must be {names}, got {type(value).__name__}"
        )
    return value


def fact_to_dict(fact: Fact) -> Dict[str, Any]:
    return {
        "id": fact.fact_id,
        "value": fact.value,
        "cluster_id": fact.cluster_id,
        "role": fact.role.value,
        "confidence": fact.confidence.value,
        "update_count": fact.update_count,
        "last_updated_at": _iso(fact.last_updated_at),
        "is_active": fact.is_active,
        "created_at": _iso(fact.created_at),
    }


def fact_from_dict(data: Dict[str, Any]) -> Fact:
    data = _mapping(data, "Fact")
    return Fact(
        fact_id=_field(data, "id", int),
        value=_field(data, "value", str),
        cluster_id=_field(data, "cluster_id", str, None),
        role=FactRole(_field(data, "role", str, FactRole.STANDALONE.value)),
        confidence=Confidence(_field(data, "confidence", str, Confidence.MEDIUM.value)),
        update_count=_field(data, "update_count", int, 0),
        last_updated_at=_timestamp(_field(data, "last_updated_at", str, None)),
        is_active=_field(data, "is_active", bool, True),
        created_at=_timestamp(_field(data, "created_at", str, None)),
    )


def relationship_to_dict(relationship: Relationship) -> Dict[str, Any]:
    return {
        "id": relationship.relationship_id,
        "cluster_id": relationship.cluster_id,
        "source_fact_id": relationship.source_fact_id,
        "target_fact_id": relationship.target_fact_id,
        "relationship_type": relationship.relationship_type.value,
        "calculation_rule": relationship.calculation_rule,
        "dependency_order": relationship.dependency_order,
        "reference_fact_id": relationship.reference_fact_id,
        "anchor_value": relationship.anchor_value,
    }


def relationship_from_dict(data: Dict[str, Any], cluster_id: str) -> Relationship:
    data = _mapping(data, "Relationship")
    return Relationship(
        relationship_id=_field(data, "id", str),
        cluster_id=_field(data, "cluster_id", str, cluster_id),
        source_fact_id=_field(data, "source_fact_id", int),
        target_fact_id=_field(data, "target_fact_id", int),
        relationship_type=RelationshipType(_field(data, "relationship_type", str)),
        calculation_rule=_field(data, "calculation_rule", str, ""),
        dependency_order=_field(data, "dependency_order", int, 1),
        reference_fact_id=_field(data, "reference_fact_id", int, None),
        anchor_value=_field(data, "anchor_value", str, None),
    )


def cluster_to_dict(cluster: Cluster) -> Dict[str, Any]:
    return {
        "id": cluster.cluster_id,
        "name": cluster.name,
        "cluster_type": cluster.cluster_type,
        "semantic_rule": cluster.semantic_rule,
        "fact_ids": list(cluster.fact_ids),
        "relationships": [relationship_to_dict(r) for r in cluster.relationships],
        "is_active": cluster.is_active,
        "created_at": _iso(cluster.created_at),
    }


def cluster_from_dict(data: Dict[str, Any]) -> Cluster:
    data = _mapping(data, "Cluster")
    cluster_id = _field(data, "id", str)
    fact_ids = _field(data, "fact_ids", list, [])
    for fact_id in fact_ids:
        if isinstance(fact_id, bool) or not isinstance(fact_id, int):
            raise SnapshotFormatError(f"Cluster {cluster_id} lists a non-integer fact id")
    return Cluster(
        cluster_id=cluster_id,
        name=_field(data, "name", str),
        cluster_type=_field(data, "cluster_type", str),
        semantic_rule=_field(data, "semantic_rule", str, ""),
        fact_ids=tuple(fact_ids),
        relationships=tuple(
            relationship_from_dict(r, cluster_id)
            for r in _field(data, "relationships", list, [])
        ),
        is_active=_field(data, "is_active", bool, True),
        created_at=_timestamp(_field(data, "created_at", str, None)),
    )


# =============================================================================
# SNAPSHOTS
# =============================================================================

def export_snapshot(store: FactStore, exported_at: Optional[Timestamp] = None) -> Dict[str, Any]:
    """Plain-dict snapshot of every fact and cluster in the store."""
    facts = store.all_facts()
    clusters = store.all_clusters()
    return {
        "metadata": {
            "exported_at": (exported_at or Timestamp.now()).to_iso(),
            "format_version": FORMAT_VERSION,
            "total_facts": len(facts),
            "total_clusters": len(clusters),
        },
        "facts": [fact_to_dict(f) for f in facts],
        "clusters": [cluster_to_dict(c) for c in clusters],
    }


def import_snapshot(data: Dict[str, Any]) -> FactStore:
    """
    Rebuild a FactStore from ``export_snapshot`` output.

    Id counters are moved past the highest imported ids so new records
    never collide with imported ones.
    """
    try:
        data = _mapping(data, "Snapshot")
        facts = [fact_from_dict(f) for f in _field(data, "facts", list, [])]
        clusters = [cluster_from_dict(c) for c in _field(data, "clusters", list, [])]
    except (KeyError, TypeError, ValueError) as exc:
        raise SnapshotFormatError(f"Malformed snapshot: {exc}") from exc

    store = FactStore()
    for fact in facts:
        store.upsert(fact)
    for cluster in clusters:
        store.upsert_cluster(cluster)

    store.advance_counters(
        fact_id=max((f.fact_id for f in facts), default=0),
        cluster_number=_max_suffix((c.cluster_id for c in clusters), FactStore.CLUSTER_PREFIX),
        relationship_number=_max_suffix(
            (r.relationship_id for c in clusters for r in c.relationships),
            FactStore.RELATIONSHIP_PREFIX
        ),
    )
    return store


def _max_suffix(identifiers, prefix: str) -> int:
    numbers: List[int] = []
    for identifier in identifiers:
        if identifier.startswith(prefix) and identifier[len(prefix):].isdigit():
            numbers.append(int(identifier[len(prefix):]))
    return max(numbers, default=0)


def dumps(snapshot: Dict[str, Any], indent: Optional[int] = 2) -> str:
    return json.dumps(snapshot, cls=StrictSnapshotEncoder, indent=indent, sort_keys=True)


def loads(text: str) -> Dict[str, Any]:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise SnapshotFormatError(f"Snapshot is not valid JSON: {exc}") from exc
