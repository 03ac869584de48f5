"""
Entity Contracts

Fact, Cluster and Relationship records plus the strict input types a
text-analysis collaborator must use to propose a new cluster.

OWNERSHIP:
==========
- Facts and Clusters are owned by the FactStore (keyed by id)
- Relationships are owned by their Cluster (``Cluster.relationships``)
- All cross references are plain ids, never object references

Records are frozen. A "mutation" writes a new version of the record
into the store via ``dataclasses.replace``; only the lifecycle manager
and the propagation engine do that.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .base import (
    FactId, ClusterId, RelationshipId, Timestamp,
    FactRole, Confidence, RelationshipType
)


# =============================================================================
# STORED ENTITIES
# =============================================================================

@dataclass(frozen=True)
class Fact:
    """A single tracked value inside a document."""
    fact_id: FactId
    value: str
    cluster_id: Optional[ClusterId] = None
    role: FactRole = FactRole.STANDALONE
    confidence: Confidence = Confidence.MEDIUM
    update_count: int = 0
    last_updated_at: Optional[Timestamp] = None
    is_active: bool = True
    created_at: Optional[Timestamp] = None

    @property
    def is_primary(self) -> bool:
        return self.role == FactRole.PRIMARY


@dataclass(frozen=True)
class Relationship:
    """
    Directed, typed dependency edge from a source fact to a target fact.

    ``reference_fact_id`` is only read by COMPARISON edges (the fact the
    comparison is measured against). ``anchor_value`` is the frozen
    "from" snapshot of a REFERENCE_POINT edge, None until first use.
    """
    relationship_id: RelationshipId
    cluster_id: ClusterId
    source_fact_id: FactId
    target_fact_id: FactId
    relationship_type: RelationshipType
    calculation_rule: str = ""
    dependency_order: int = 1
    reference_fact_id: Optional[FactId] = None
    anchor_value: Optional[str] = None

    @property
    def is_self_loop(self) -> bool:
        return self.source_fact_id == self.target_fact_id

    def endpoint_ids(self) -> Tuple[FactId, ...]:
        """Every fact id this edge reads or writes."""
        if self.reference_fact_id is None:
            return (self.source_fact_id, self.target_fact_id)
        return (self.source_fact_id, self.target_fact_id, self.reference_fact_id)


@dataclass(frozen=True)
class Cluster:
    """
    A named group of facts that must stay mutually consistent.

    INVARIANTS (checked by ClusterLifecycleManager.validate):
    - I1: exactly one PRIMARY member unless fact_ids is empty
    - I2: relationships form no directed cycle
    - I3: relationships only reference member fact ids
    """
    cluster_id: ClusterId
    name: str
    cluster_type: str
    semantic_rule: str
    fact_ids: Tuple[FactId, ...] = field(default_factory=tuple)
    relationships: Tuple[Relationship, ...] = field(default_factory=tuple)
    is_active: bool = True
    created_at: Optional[Timestamp] = None

    def __post_init__(self):
        if len(set(self.fact_ids)) != len(self.fact_ids):
            raise ValueError("Cluster fact_ids must not contain duplicates")

    def has_member(self, fact_id: FactId) -> bool:
        return fact_id in self.fact_ids

    def get_relationship(self, relationship_id: RelationshipId) -> Optional[Relationship]:
        for relationship in self.relationships:
            if relationship.relationship_id == relationship_id:
                return relationship
        return None


# =============================================================================
# PROPOSED BATCH (strict input boundary)
# =============================================================================

@dataclass(frozen=True)
class ProposedFact:
    """
    A fact proposed by text analysis, addressed by a batch-local ``ref``.

    Only PRIMARY and DEPENDENT roles can be proposed.
    """
    ref: str
    value: str
    role: FactRole = FactRole.DEPENDENT
    confidence: Confidence = Confidence.MEDIUM
    is_active: bool = True

    def __post_init__(self):
        if not self.ref or not isinstance(self.ref, str):
            raise ValueError("ProposedFact ref must be a non-empty string")
        if not isinstance(self.value, str):
            raise ValueError("ProposedFact value must be a string")
        if self.role not in (FactRole.PRIMARY, FactRole.DEPENDENT):
            raise ValueError("ProposedFact role must be PRIMARY or DEPENDENT")


@dataclass(frozen=True)
class ProposedRelationship:
    """A relationship between two proposed facts, by batch-local refs."""
    source_ref: str
    target_ref: str
    relationship_type: RelationshipType
    calculation_rule: str = ""
    dependency_order: int = 1
    reference_ref: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.relationship_type, RelationshipType):
            raise ValueError("relationship_type must be a RelationshipType")


@dataclass(frozen=True)
class ProposedBatch:
    """Facts plus relationships submitted together for ``create``."""
    facts: Tuple[ProposedFact, ...]
    relationships: Tuple[ProposedRelationship, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ClusterMetadata:
    """Descriptive cluster fields. ``semantic_rule`` is never executed."""
    name: Optional[str] = None
    cluster_type: Optional[str] = None
    semantic_rule: Optional[str] = None
    is_active: bool = True
