"""
Fact Store

RESPONSIBILITY: Canonical keyed collection of Fact and Cluster records
ALLOWED INPUTS: Complete Fact / Cluster records
OUTPUTS: Lookups, membership listings, removal reports

WHAT THIS COMPONENT MUST NOT DO:
================================
- Validate cluster invariants (lifecycle manager's job)
- Keep Fact.cluster_id and Cluster.fact_ids in sync
- Recompute values

BOUNDARY ENFORCEMENT:
=====================
- Entities are stored in arenas keyed by id (id -> record)
- Cross references are ids only, so nothing here owns anything else
- Ids are handed out by monotonically increasing counters, never reused
"""

from __future__ import annotations
from typing import Dict, List, Optional
import logging

from ..contracts.base import FactId, ClusterId, id_sort_key
from ..contracts.entities import Fact, Cluster
from ..contracts.outcomes import FactRemoval


logger = logging.getLogger(__name__)


class FactStore:
    """
    In-memory arena of facts and clusters.

    Relationships are owned by their cluster record, so deleting a
    cluster drops its relationships with it.
    """

    CLUSTER_PREFIX = "cluster_"
    RELATIONSHIP_PREFIX = "rel_"

    def __init__(self):
        self._facts: Dict[FactId, Fact] = {}
        self._clusters: Dict[ClusterId, Cluster] = {}
        self._fact_counter: int = 0
        self._cluster_counter: int = 0
        self._relationship_counter: int = 0

    # =========================================================================
    # ID ALLOCATION
    # =========================================================================

    def next_fact_id(self) -> FactId:
        self._fact_counter += 1
        return self._fact_counter

    def next_cluster_id(self) -> ClusterId:
        self._cluster_counter += 1
        return f"{self.CLUSTER_PREFIX}{self._cluster_counter}"

    def next_relationship_id(self) -> str:
        self._relationship_counter += 1
        return f"{self.RELATIONSHIP_PREFIX}{self._relationship_counter}"

    def advance_counters(
        self,
        fact_id: int = 0,
        cluster_number: int = 0,
        relationship_number: int = 0
    ) -> None:
        """
        Move counters past externally created ids (snapshot import).

        Counters never move backwards.
        """
        self._fact_counter = max(self._fact_counter, fact_id)
        self._cluster_counter = max(self._cluster_counter, cluster_number)
        self._relationship_counter = max(self._relationship_counter, relationship_number)

    # =========================================================================
    # FACTS
    # =========================================================================

    def get(self, fact_id: FactId) -> Optional[Fact]:
        return self._facts.get(fact_id)

    def upsert(self, fact: Fact) -> None:
        self._facts[fact.fact_id] = fact

    def remove(self, fact_id: FactId) -> FactRemoval:
        """
        Remove a fact record.

        Reports when the fact was the only primary of its cluster; the
        store itself enforces nothing. The lifecycle manager detaches a
        fact before removing it, so its callers see the same signal as
        ``FactRemovalReport.primary_removed`` and this flag only fires for
        direct store users.
        """
        fact = self._facts.pop(fact_id, None)
        if fact is None:
            return FactRemoval(fact=None)

        orphaned = False
        if fact.cluster_id is not None and fact.is_primary:
            remaining_primaries = [
                f for f in self.all_in_cluster(fact.cluster_id) if f.is_primary
            ]
            orphaned = not remaining_primaries
            if orphaned:
                logger.debug(
                    "Removed fact %s was the sole primary of %s",
                    fact_id, fact.cluster_id
                )

        return FactRemoval(fact=fact, cluster_id=fact.cluster_id, orphaned_primary=orphaned)

    def all_in_cluster(self, cluster_id: ClusterId) -> List[Fact]:
        """Facts whose ``cluster_id`` points at the cluster, ordered by id."""
        return sorted(
            (f for f in self._facts.values() if f.cluster_id == cluster_id),
            key=lambda f: f.fact_id
        )

    def all_facts(self) -> List[Fact]:
        return sorted(self._facts.values(), key=lambda f: f.fact_id)

    # =========================================================================
    # CLUSTERS
    # =========================================================================

    def get_cluster(self, cluster_id: ClusterId) -> Optional[Cluster]:
        return self._clusters.get(cluster_id)

    def upsert_cluster(self, cluster: Cluster) -> None:
        self._clusters[cluster.cluster_id] = cluster

    def remove_cluster(self, cluster_id: ClusterId) -> Optional[Cluster]:
        return self._clusters.pop(cluster_id, None)

    def all_clusters(self) -> List[Cluster]:
        return [self._clusters[key] for key in sorted(self._clusters, key=id_sort_key)]

    @property
    def fact_count(self) -> int:
        return len(self._facts)

    @property
    def cluster_count(self) -> int:
        return len(self._clusters)

