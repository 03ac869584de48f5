"""
Engine Orchestration Module

This module provides the single entry point collaborators use. It wires
the store, lifecycle manager, propagation engine and health scorer
together and serialises every operation.

DESIGN PRINCIPLES:
==================
1. Components communicate ONLY through contracts
2. The engine orchestrates without adding rules of its own
3. Every operation, accepted or rejected, is recorded in the audit log
4. One lock guards all state; no operation is visible half-done
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional
import logging
import threading

from .contracts.base import (
    FactId, ClusterId, RelationshipId, Result, Violation,
    FactRole, Confidence, RelationshipType
)
from .contracts.entities import Fact, Cluster, ProposedBatch, ClusterMetadata
from .core import ClusterLifecycleManager, LifecycleConfig
from .core.topology import RelationshipGraph
from .domain.serialization import export_snapshot, import_snapshot
from .health import HealthScorer, HealthScorerConfig
from .observability import AuditEventType, AuditLog, AuditLogEntry, ObservabilityConfig
from .propagation import PropagationEngine, PropagationConfig
from .store import FactStore
from .temporal.clock import LogicalClock


logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Unified configuration for the whole engine."""
    lifecycle: LifecycleConfig = None
    propagation: PropagationConfig = None
    health: HealthScorerConfig = None
    observability: ObservabilityConfig = None
    clock: LogicalClock = None

    def __post_init__(self):
        self.lifecycle = self.lifecycle or LifecycleConfig()
        self.propagation = self.propagation or PropagationConfig()
        self.health = self.health or HealthScorerConfig()
        self.observability = self.observability or ObservabilityConfig()
        self.clock = self.clock or LogicalClock.live()


class ClusterConsistencyEngine:
    """
    Unified facade of the Semantic Cluster Consistency Engine.

    COMPONENT FLOW:
    ===============
    1. Text analysis proposes a batch -> create (validated, all-or-nothing)
    2. Structural edits -> lifecycle manager
    3. New primary values -> propagation engine
    4. Diagnostics -> health scorer (read only)
    5. Every call -> audit log

    Calls are synchronous and serialised on a re-entrant lock.
    """

    def __init__(self, config: Optional[EngineConfig] = None, store: Optional[FactStore] = None):
        self._config = config or EngineConfig()
        self._clock = self._config.clock
        self._lock = threading.RLock()
        self._graph = RelationshipGraph()
        self._audit = AuditLog(self._config.observability, now=self._clock.now)
        self._wire(store or FactStore())

    def _wire(self, store: FactStore) -> None:
        self._store = store
        self._lifecycle = ClusterLifecycleManager(
            store, self._graph, self._config.lifecycle, self._clock
        )
        self._propagation = PropagationEngine(
            store, self._lifecycle, self._config.propagation, self._clock
        )
        self._health = HealthScorer(store, self._graph, self._config.health)

    # =========================================================================
    # FACTS
    # =========================================================================

    def register_fact(
        self,
        value: str,
        confidence: Confidence = Confidence.MEDIUM,
        is_active: bool = True
    ) -> Fact:
        with self._lock:
            fact = self._lifecycle.register_fact(value, confidence, is_active)
            self._audit.record(AuditEventType.LIFECYCLE, "register_fact",
                               str(fact.fact_id), "fact")
            return fact

    def add_fact(self, cluster_id: ClusterId, fact_id: FactId,
                 role: FactRole = FactRole.DEPENDENT) -> Result:
        with self._lock:
            result = self._lifecycle.add_fact(cluster_id, fact_id, role)
            return self._audited(result, AuditEventType.LIFECYCLE, "add_fact",
                                 cluster_id, "cluster", fact_id=fact_id, role=role.value)

    def remove_fact(self, fact_id: FactId) -> Result:
        with self._lock:
            result = self._lifecycle.remove_fact(fact_id)
            return self._audited(result, AuditEventType.LIFECYCLE, "remove_fact",
                                 str(fact_id), "fact")

    def delete_fact(self, fact_id: FactId) -> Result:
        with self._lock:
            result = self._lifecycle.delete_fact(fact_id)
            return self._audited(result, AuditEventType.LIFECYCLE, "delete_fact",
                                 str(fact_id), "fact")

    def get_fact(self, fact_id: FactId) -> Optional[Fact]:
        with self._lock:
            return self._store.get(fact_id)

    # =========================================================================
    # CLUSTERS
    # =========================================================================

    def create(self, batch: ProposedBatch, metadata: Optional[ClusterMetadata] = None) -> Result:
        with self._lock:
            result = self._lifecycle.create(batch, metadata)
            entity_id = result.value.cluster_id if result.is_success else None
            return self._audited(result, AuditEventType.LIFECYCLE, "create",
                                 entity_id, "cluster", fact_count=len(batch.facts))

    def get(self, cluster_id: ClusterId) -> Optional[Cluster]:
        with self._lock:
            return self._store.get_cluster(cluster_id)

    get_cluster = get

    def list_clusters(self) -> List[Cluster]:
        with self._lock:
            return self._store.all_clusters()

    def update_cluster(
        self,
        cluster_id: ClusterId,
        name: Optional[str] = None,
        cluster_type: Optional[str] = None,
        semantic_rule: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> Result:
        with self._lock:
            result = self._lifecycle.update_cluster(
                cluster_id, name, cluster_type, semantic_rule, is_active
            )
            return self._audited(result, AuditEventType.LIFECYCLE, "update_cluster",
                                 cluster_id, "cluster")

    def delete_cluster(self, cluster_id: ClusterId, keep_facts: bool = True) -> Result:
        with self._lock:
            result = self._lifecycle.delete_cluster(cluster_id, keep_facts)
            return self._audited(result, AuditEventType.LIFECYCLE, "delete_cluster",
                                 cluster_id, "cluster", keep_facts=keep_facts)

    def merge_clusters(self, primary_id: ClusterId, secondary_id: ClusterId) -> Result:
        with self._lock:
            result = self._lifecycle.merge_clusters(primary_id, secondary_id)
            return self._audited(result, AuditEventType.LIFECYCLE, "merge_clusters",
                                 primary_id, "cluster", secondary_id=secondary_id)

    def repair(self, cluster_id: ClusterId) -> Result:
        with self._lock:
            result = self._lifecycle.repair(cluster_id)
            metadata = {}
            if result.is_success:
                metadata["repair_count"] = result.value.repair_count
            return self._audited(result, AuditEventType.REPAIR, "repair",
                                 cluster_id, "cluster", **metadata)

    def validate(self, cluster_id: ClusterId) -> List[Violation]:
        with self._lock:
            return list(self._lifecycle.validate(cluster_id))

    # =========================================================================
    # RELATIONSHIPS
    # =========================================================================

    def add_relationship(
        self,
        cluster_id: ClusterId,
        source_fact_id: FactId,
        target_fact_id: FactId,
        relationship_type: RelationshipType,
        calculation_rule: str = "",
        dependency_order: int = 1,
        reference_fact_id: Optional[FactId] = None
    ) -> Result:
        with self._lock:
            result = self._lifecycle.add_relationship(
                cluster_id, source_fact_id, target_fact_id, relationship_type,
                calculation_rule, dependency_order, reference_fact_id
            )
            return self._audited(result, AuditEventType.RELATIONSHIP, "add_relationship",
                                 cluster_id, "cluster",
                                 source_fact_id=source_fact_id, target_fact_id=target_fact_id)

    def update_relationship(
        self,
        cluster_id: ClusterId,
        relationship_id: RelationshipId,
        relationship_type: Optional[RelationshipType] = None,
        calculation_rule: Optional[str] = None,
        dependency_order: Optional[int] = None,
        reference_fact_id: Optional[FactId] = None
    ) -> Result:
        with self._lock:
            result = self._lifecycle.update_relationship(
                cluster_id, relationship_id, relationship_type,
                calculation_rule, dependency_order, reference_fact_id
            )
            return self._audited(result, AuditEventType.RELATIONSHIP, "update_relationship",
                                 relationship_id, "relationship", cluster_id=cluster_id)

    def delete_relationship(self, cluster_id: ClusterId, relationship_id: RelationshipId) -> Result:
        with self._lock:
            result = self._lifecycle.delete_relationship(cluster_id, relationship_id)
            return self._audited(result, AuditEventType.RELATIONSHIP, "delete_relationship",
                                 relationship_id, "relationship", cluster_id=cluster_id)

    def reset_reference_point(self, cluster_id: ClusterId, relationship_id: RelationshipId) -> Result:
        with self._lock:
            result = self._lifecycle.reset_reference_point(cluster_id, relationship_id)
            return self._audited(result, AuditEventType.RELATIONSHIP, "reset_reference_point",
                                 relationship_id, "relationship", cluster_id=cluster_id)

    # =========================================================================
    # PROPAGATION & HEALTH
    # =========================================================================

    def propagate(self, cluster_id: ClusterId, new_primary_value: str) -> Result:
        with self._lock:
            result = self._propagation.propagate(cluster_id, new_primary_value)
            metadata = {}
            if result.is_success:
                metadata["updated"] = len(result.value.updated)
                metadata["failures"] = len(result.value.failures)
                metadata["skipped"] = len(result.value.skipped)
            return self._audited(result, AuditEventType.PROPAGATION, "propagate",
                                 cluster_id, "cluster", **metadata)

    def score(self, cluster_id: ClusterId, stale: Optional[Mapping[FactId, bool]] = None) -> Result:
        with self._lock:
            return self._health.score(cluster_id, stale)

    def stats(self, cluster_id: ClusterId, stale: Optional[Mapping[FactId, bool]] = None) -> Result:
        with self._lock:
            return self._health.stats(cluster_id, stale)

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def export_state(self) -> Dict[str, Any]:
        with self._lock:
            snapshot = export_snapshot(self._store, self._clock.now())
            self._audit.record(AuditEventType.SNAPSHOT, "export",
                               total_facts=snapshot["metadata"]["total_facts"],
                               total_clusters=snapshot["metadata"]["total_clusters"])
            return snapshot

    def import_state(self, snapshot: Dict[str, Any]) -> None:
        """
        Replace all state with a snapshot.

        Raises SnapshotFormatError for malformed payloads, leaving the
        current state in place. No repair is run.
        """
        with self._lock:
            store = import_snapshot(snapshot)
            self._wire(store)
            self._audit.record(AuditEventType.SNAPSHOT, "import",
                               total_facts=store.fact_count,
                               total_clusters=store.cluster_count)
            logger.info("Imported snapshot: %d facts, %d clusters",
                        store.fact_count, store.cluster_count)

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================

    def audit_log(
        self,
        event_type: Optional[AuditEventType] = None,
        action: Optional[str] = None,
        entity_id: Optional[str] = None
    ) -> List[AuditLogEntry]:
        with self._lock:
            return self._audit.get_entries(event_type, action, entity_id)

    def _audited(
        self,
        result: Result,
        event_type: AuditEventType,
        action: str,
        entity_id: Optional[str],
        entity_type: str,
        **metadata: object
    ) -> Result:
        if result.is_failure:
            self._audit.record(AuditEventType.REJECTED, action, entity_id, entity_type,
                               code=result.error.code.name, **metadata)
        else:
            self._audit.record(event_type, action, entity_id, entity_type, **metadata)
        return result
