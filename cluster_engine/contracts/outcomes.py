"""
Operation Outcome Contracts

Immutable reports returned (inside a Result) by lifecycle, propagation
and health operations. They are the only way callers learn what an
operation changed.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from .base import (
    FactId, ClusterId, RelationshipId, Timestamp, ErrorCode
)
from .entities import Cluster, Fact


# =============================================================================
# FACT STORE / LIFECYCLE
# =============================================================================

@dataclass(frozen=True)
class FactRemoval:
    """
    What the FactStore removed.

    ``orphaned_primary`` is set when the removed fact was the sole
    primary of its cluster, so the lifecycle manager can trigger repair.
    """
    fact: Optional[Fact]
    cluster_id: Optional[ClusterId] = None
    orphaned_primary: bool = False


@dataclass(frozen=True)
class FactRemovalReport:
    """Outcome of detaching a fact from its cluster."""
    fact_id: FactId
    cluster_id: Optional[ClusterId]
    cluster_deleted: bool = False
    removed_relationship_ids: Tuple[RelationshipId, ...] = field(default_factory=tuple)
    primary_removed: bool = False


@dataclass(frozen=True)
class ClusterDeletion:
    """Outcome of deleting a cluster."""
    cluster: Cluster
    affected_fact_ids: Tuple[FactId, ...]
    facts_kept: bool


@dataclass(frozen=True)
class MergeReport:
    """Outcome of merging a secondary cluster into a primary cluster."""
    cluster: Cluster
    removed_cluster_id: ClusterId
    moved_fact_ids: Tuple[FactId, ...]
    demoted_fact_ids: Tuple[FactId, ...] = field(default_factory=tuple)
    diagnostics: Tuple[str, ...] = field(default_factory=tuple)


class RepairActionType(Enum):
    """Corrective actions ``repair`` can take."""
    RESYNCED_MEMBERSHIP = "resynced_membership"
    PROMOTED_PRIMARY = "promoted_primary"
    DEMOTED_PRIMARY = "demoted_primary"
    DROPPED_RELATIONSHIP = "dropped_relationship"
    DELETED_EMPTY_CLUSTER = "deleted_empty_cluster"


@dataclass(frozen=True)
class RepairAction:
    action: RepairActionType
    description: str
    fact_ids: Tuple[FactId, ...] = field(default_factory=tuple)
    relationship_ids: Tuple[RelationshipId, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RepairReport:
    """Corrective actions taken; empty for an already valid cluster."""
    cluster_id: ClusterId
    actions: Tuple[RepairAction, ...] = field(default_factory=tuple)
    cluster: Optional[Cluster] = None

    @property
    def repair_count(self) -> int:
        return len(self.actions)


# =============================================================================
# PROPAGATION
# =============================================================================

@dataclass(frozen=True)
class EdgeFailure:
    """A relationship whose recomputation failed; its target is unchanged."""
    fact_id: FactId
    relationship_id: RelationshipId
    code: ErrorCode
    reason: str


@dataclass(frozen=True)
class SkippedEdge:
    """A relationship not evaluated because its source was not recomputed."""
    fact_id: FactId
    relationship_id: RelationshipId
    source_fact_id: FactId


@dataclass(frozen=True)
class PropagationResult:
    """
    Dependents recomputed by one propagation.

    A non-empty ``failures`` tuple is still a successful call: callers
    decide whether partial propagation is acceptable. Targets listed in
    ``skipped`` kept their old value and may now be stale.
    """
    cluster_id: ClusterId
    primary_fact_id: FactId
    previous_primary_value: str
    new_primary_value: str
    updated: Tuple[FactId, ...] = field(default_factory=tuple)
    failures: Tuple[EdgeFailure, ...] = field(default_factory=tuple)
    skipped: Tuple[SkippedEdge, ...] = field(default_factory=tuple)

    @property
    def is_complete(self) -> bool:
        return not self.failures and not self.skipped


# =============================================================================
# HEALTH
# =============================================================================

@dataclass(frozen=True)
class HealthScore:
    """
    Diagnostic score in 0..100 with the penalty applied per signal.
    """
    cluster_id: ClusterId
    value: int
    penalties: Tuple[Tuple[str, float], ...] = field(default_factory=tuple)

    def penalty(self, signal: str) -> float:
        for name, amount in self.penalties:
            if name == signal:
                return amount
        return 0.0


class ConfidenceSummary(Enum):
    """Average confidence of a cluster's members."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClusterStats:
    """Read-only statistics for reporting collaborators."""
    cluster_id: ClusterId
    total_facts: int
    active_facts: int
    inactive_facts: int
    primary_fact_id: Optional[FactId]
    dependent_facts: int
    relationship_count: int
    component_count: int
    last_updated_at: Optional[Timestamp]
    average_confidence: ConfidenceSummary
    health: HealthScore

