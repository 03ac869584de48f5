"""
Health Scorer

RESPONSIBILITY: Diagnostic 0..100 score and statistics for a cluster
ALLOWED INPUTS: Cluster id, caller-supplied staleness per fact
OUTPUTS: HealthScore, ClusterStats

WHAT THIS COMPONENT MUST NOT DO:
================================
- Mutate anything (pure function of current state)
- Decide staleness itself (no wall-clock reads)
- Fail on an invariant-violating cluster (it is scored, not rejected)
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional
import logging

from ..contracts.base import FactId, ClusterId, Error, ErrorCode, Result, Confidence
from ..contracts.entities import Cluster, Fact
from ..contracts.outcomes import HealthScore, ClusterStats, ConfidenceSummary
from ..core.topology import RelationshipGraph
from ..store import FactStore


logger = logging.getLogger(__name__)


CONFIDENCE_WEIGHTS: Dict[Confidence, int] = {
    Confidence.HIGH: 3,
    Confidence.MEDIUM: 2,
    Confidence.LOW: 1,
}


@dataclass
class HealthScorerConfig:
    """Maximum penalty per signal."""
    primary_violation_penalty: float = 30.0
    stale_penalty: float = 25.0
    low_confidence_penalty: float = 20.0
    unconnected_penalty: float = 15.0


class HealthScorer:
    """
    Starts at 100 and subtracts weighted penalties:

    - primary: flat, when the cluster has zero or several primaries
    - stale: scaled by stale active facts over members
    - low_confidence: scaled by LOW confidence facts over members
    - unconnected: flat, two or more members but no relationships
    """

    def __init__(
        self,
        store: FactStore,
        graph: Optional[RelationshipGraph] = None,
        config: Optional[HealthScorerConfig] = None
    ):
        self._store = store
        self._graph = graph or RelationshipGraph()
        self._config = config or HealthScorerConfig()

    def score(self, cluster_id: ClusterId, stale: Optional[Mapping[FactId, bool]] = None) -> Result:
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return Result.failure(Error.create(
                ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found", cluster_id=cluster_id
            ))
        return Result.success(self._score(cluster, self._members(cluster), stale or {}))

    def stats(self, cluster_id: ClusterId, stale: Optional[Mapping[FactId, bool]] = None) -> Result:
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return Result.failure(Error.create(
                ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found", cluster_id=cluster_id
            ))

        members = self._members(cluster)
        primaries = [f for f in members if f.is_primary]
        active = [f for f in members if f.is_active]
        stamps = [f.last_updated_at for f in members if f.last_updated_at is not None]

        return Result.success(ClusterStats(
            cluster_id=cluster_id,
            total_facts=len(members),
            active_facts=len(active),
            inactive_facts=len(members) - len(active),
            primary_fact_id=primaries[0].fact_id if primaries else None,
            dependent_facts=len(members) - len(primaries),
            relationship_count=len(cluster.relationships),
            component_count=self._graph.component_count(cluster.relationships, cluster.fact_ids),
            last_updated_at=max(stamps, key=lambda t: t.value) if stamps else None,
            average_confidence=average_confidence(members),
            health=self._score(cluster, members, stale or {})
        ))

    def _members(self, cluster: Cluster) -> List[Fact]:
        facts = (self._store.get(fact_id) for fact_id in cluster.fact_ids)
        return [f for f in facts if f is not None]

    def _score(self, cluster: Cluster, members: List[Fact], stale: Mapping[FactId, bool]) -> HealthScore:
        config = self._config
        penalties = []

        primary_count = sum(1 for f in members if f.is_primary)
        if members and primary_count != 1:
            penalties.append(("primary", config.primary_violation_penalty))

        if members:
            stale_active = sum(1 for f in members if f.is_active and stale.get(f.fact_id, False))
            if stale_active:
                penalties.append(("stale", config.stale_penalty * stale_active / len(members)))

            low = sum(1 for f in members if f.confidence == Confidence.LOW)
            if low:
                penalties.append(("low_confidence", config.low_confidence_penalty * low / len(members)))

        if len(members) >= 2 and not cluster.relationships:
            penalties.append(("unconnected", config.unconnected_penalty))

        value = max(0, round(100 - sum(amount for _, amount in penalties)))
        logger.debug("Scored %s at %d", cluster.cluster_id, value)
        return HealthScore(cluster_id=cluster.cluster_id, value=value, penalties=tuple(penalties))


def average_confidence(facts: List[Fact]) -> ConfidenceSummary:
    """Mean of HIGH=3 / MEDIUM=2 / LOW=1, bucketed at 2.5, 1.5 and 0.5."""
    if not facts:
        return ConfidenceSummary.UNKNOWN
    mean = sum(CONFIDENCE_WEIGHTS[f.confidence] for f in facts) / len(facts)
    if mean >= 2.5:
        return ConfidenceSummary.HIGH
    if mean >= 1.5:
        return ConfidenceSummary.MEDIUM
    if mean >= 0.5:
        return ConfidenceSummary.LOW
    return ConfidenceSummary.UNKNOWN


__all__ = ["HealthScorer", "HealthScorerConfig", "CONFIDENCE_WEIGHTS", "average_confidence"]
