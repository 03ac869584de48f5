"""
Propagation Engine

RESPONSIBILITY: Recompute dependent facts after a primary value change
ALLOWED INPUTS: Cluster id and the new primary value
OUTPUTS: PropagationResult (updated ids, per-edge failures, skipped edges)

WHAT THIS COMPONENT MUST NOT DO:
================================
- Run against an inactive or structurally invalid cluster
- Change cluster membership, roles or relationship endpoints
- Retry failed edges
- Fetch values from anywhere

BOUNDARY ENFORCEMENT:
=====================
- Structural problems abort the whole call before anything is written
- Per-edge failures leave only their own target untouched
- All recomputed values are committed together after the pass
"""

from __future__ import annotations
from dataclasses import replace
from typing import Dict, List, Optional, Set
import logging

from ..contracts.base import FactId, ClusterId, Error, ErrorCode, Result, id_sort_key
from ..contracts.entities import Relationship
from ..contracts.outcomes import EdgeFailure, PropagationResult, SkippedEdge
from ..core import ClusterLifecycleManager
from ..store import FactStore
from ..temporal.clock import LogicalClock
from .calculators import (
    PropagationConfig, EdgeInput, EdgeOutcome, calculate, parse_number
)


logger = logging.getLogger(__name__)


class PropagationEngine:
    """
    Topological recomputation of one cluster.

    Facts are visited in dependency order. For each fact its incoming
    edges are applied in (dependency_order, relationship id) order; an
    edge only fires when its source is the primary or a fact already
    recomputed cleanly in this pass.
    """

    def __init__(
        self,
        store: FactStore,
        lifecycle: ClusterLifecycleManager,
        config: Optional[PropagationConfig] = None,
        clock: Optional[LogicalClock] = None
    ):
        self._store = store
        self._lifecycle = lifecycle
        self._config = config or PropagationConfig()
        self._clock = clock or LogicalClock.live()

    def propagate(self, cluster_id: ClusterId, new_primary_value: str) -> Result:
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found",
                              cluster_id=cluster_id)
        if not cluster.is_active:
            return self._fail(ErrorCode.INACTIVE_CLUSTER, f"{cluster_id} is inactive",
                              cluster_id=cluster_id)

        violations = self._lifecycle.validate(cluster_id)
        if violations:
            return self._fail(ErrorCode.INVALID_CLUSTER,
                              f"{cluster_id} fails validation; run repair first",
                              cluster_id=cluster_id,
                              violations=",".join(v.code.name for v in violations))

        ordered = self._lifecycle.propagation_order(cluster)
        if ordered.is_failure:
            return ordered

        members = self._lifecycle.member_facts(cluster)
        primary = next((f for f in members if f.is_primary), None)
        if primary is None:
            # Empty clusters pass validation but have nothing to propagate from
            return self._fail(ErrorCode.INVALID_CLUSTER,
                              f"{cluster_id} has no primary fact",
                              cluster_id=cluster_id,
                              violations=ErrorCode.MISSING_PRIMARY.name)
        start_values: Dict[FactId, str] = {f.fact_id: f.value for f in members}
        current: Dict[FactId, str] = dict(start_values)
        current[primary.fact_id] = new_primary_value

        incoming: Dict[FactId, List[Relationship]] = {}
        for relationship in cluster.relationships:
            incoming.setdefault(relationship.target_fact_id, []).append(relationship)
        for edges in incoming.values():
            edges.sort(key=lambda r: (r.dependency_order, id_sort_key(r.relationship_id)))

        resolved: Set[FactId] = {primary.fact_id}
        updated: List[FactId] = []
        failures: List[EdgeFailure] = []
        skipped: List[SkippedEdge] = []
        anchors: Dict[str, Relationship] = {}

        for fact_id in ordered.value:
            if fact_id == primary.fact_id:
                continue

            succeeded = 0
            failed = False
            changed = False
            for relationship in incoming.get(fact_id, []):
                source_id = relationship.source_fact_id
                if source_id not in resolved:
                    logger.debug("Skipped %s: source %s not recomputed in this pass",
                                 relationship.relationship_id, source_id)
                    skipped.append(SkippedEdge(
                        fact_id=fact_id,
                        relationship_id=relationship.relationship_id,
                        source_fact_id=source_id
                    ))
                    continue

                edge = EdgeInput(
                    source_old=start_values[source_id],
                    source_new=current[source_id],
                    target_value=current[fact_id],
                    reference_value=(start_values.get(relationship.reference_fact_id)
                                     if relationship.reference_fact_id is not None else None),
                    anchor_value=relationship.anchor_value
                )
                outcome = calculate(relationship.relationship_type, edge, self._config)
                if outcome.is_failure:
                    failed = True
                    failures.append(EdgeFailure(
                        fact_id=fact_id,
                        relationship_id=relationship.relationship_id,
                        code=outcome.error.code,
                        reason=outcome.error.message
                    ))
                    logger.warning("Edge %s failed for fact %s: %s",
                                   relationship.relationship_id, fact_id, outcome.error.message)
                    continue

                succeeded += 1
                result: EdgeOutcome = outcome.value
                if result.anchor_value != relationship.anchor_value:
                    anchors[relationship.relationship_id] = replace(
                        relationship, anchor_value=result.anchor_value
                    )
                if result.value is not None:
                    current[fact_id] = result.value
                    changed = True

            if succeeded and not failed:
                resolved.add(fact_id)
            if changed:
                updated.append(fact_id)

        # Commit
        now = self._clock.now()
        self._store.upsert(replace(
            primary,
            value=new_primary_value,
            update_count=primary.update_count + 1,
            last_updated_at=now
        ))
        for fact_id in updated:
            fact = self._store.get(fact_id)
            self._store.upsert(replace(
                fact,
                value=current[fact_id],
                update_count=fact.update_count + 1,
                last_updated_at=now
            ))
        for relationship in anchors.values():
            self._lifecycle.store_relationship(relationship)

        logger.info("Propagated %s: %d updated, %d failed, %d skipped",
                    cluster_id, len(updated), len(failures), len(skipped))
        return Result.success(PropagationResult(
            cluster_id=cluster_id,
            primary_fact_id=primary.fact_id,
            previous_primary_value=primary.value,
            new_primary_value=new_primary_value,
            updated=tuple(updated),
            failures=tuple(failures),
            skipped=tuple(skipped)
        ))

    def _fail(self, code: ErrorCode, message: str, **context: object) -> Result:
        logger.warning("Propagation rejected (%s): %s", code.name, message)
        return Result.failure(Error.create(code, message, **context))


__all__ = [
    "PropagationEngine", "PropagationConfig", "EdgeInput", "EdgeOutcome",
    "calculate", "parse_number",
]
