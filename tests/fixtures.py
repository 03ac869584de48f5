"""
Test Fixtures

Explicit, deterministic builders shared by the test modules.
No random generation here; property tests draw their own inputs.
"""

from datetime import datetime, timezone
from typing import Dict, Tuple

from cluster_engine.contracts import (
    Cluster, ProposedBatch, ProposedFact, ProposedRelationship,
    FactRole, Confidence, RelationshipType,
)
from cluster_engine.core import ClusterLifecycleManager
from cluster_engine.engine import ClusterConsistencyEngine, EngineConfig
from cluster_engine.propagation import PropagationEngine
from cluster_engine.store import FactStore
from cluster_engine.temporal import LogicalClock


# =============================================================================
# FIXED TIMESTAMPS (deterministic)
# =============================================================================

EPOCH = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


def fixed_clock() -> LogicalClock:
    return LogicalClock.fixed(EPOCH)


# =============================================================================
# COMPONENT BUILDERS
# =============================================================================

def make_lifecycle() -> Tuple[FactStore, ClusterLifecycleManager]:
    store = FactStore()
    return store, ClusterLifecycleManager(store, clock=fixed_clock())


def make_propagation() -> Tuple[FactStore, ClusterLifecycleManager, PropagationEngine]:
    store = FactStore()
    clock = fixed_clock()
    lifecycle = ClusterLifecycleManager(store, clock=clock)
    return store, lifecycle, PropagationEngine(store, lifecycle, clock=clock)


def make_engine(**overrides) -> ClusterConsistencyEngine:
    overrides.setdefault("clock", fixed_clock())
    return ClusterConsistencyEngine(EngineConfig(**overrides))


def ids_by_ref(batch: ProposedBatch, cluster: Cluster) -> Dict[str, int]:
    """Map batch refs to the fact ids ``create`` allocated (batch order)."""
    return dict(zip((f.ref for f in batch.facts), cluster.fact_ids))


# =============================================================================
# BATCHES
# =============================================================================

def primary(ref: str, value: str, confidence: Confidence = Confidence.MEDIUM) -> ProposedFact:
    return ProposedFact(ref=ref, value=value, role=FactRole.PRIMARY, confidence=confidence)


def dependent(ref: str, value: str, confidence: Confidence = Confidence.MEDIUM) -> ProposedFact:
    return ProposedFact(ref=ref, value=value, role=FactRole.DEPENDENT, confidence=confidence)


def edge(source: str, target: str, relationship_type: RelationshipType,
         order: int = 1, reference: str = None) -> ProposedRelationship:
    return ProposedRelationship(
        source_ref=source,
        target_ref=target,
        relationship_type=relationship_type,
        dependency_order=order,
        reference_ref=reference,
    )


def stock_batch(price: str = "$257.75") -> ProposedBatch:
    """Share price driving a percentage change and a direction word."""
    return ProposedBatch(
        facts=(
            primary("price", price),
            dependent("change", "2.1%"),
            dependent("trend", "down"),
        ),
        relationships=(
            edge("price", "change", RelationshipType.PERCENTAGE_CHANGE),
            edge("price", "trend", RelationshipType.DIRECTION, order=2),
        ),
    )


def chain_batch() -> ProposedBatch:
    """P -> D1 -> D2."""
    return ProposedBatch(
        facts=(
            primary("p", "100"),
            dependent("d1", "5.0%"),
            dependent("d2", "down"),
        ),
        relationships=(
            edge("p", "d1", RelationshipType.PERCENTAGE_CHANGE),
            edge("d1", "d2", RelationshipType.DIRECTION),
        ),
    )


def weather_batch() -> ProposedBatch:
    """Today's high compared against yesterday's."""
    return ProposedBatch(
        facts=(
            primary("today", "72 degrees"),
            dependent("yesterday", "75 degrees"),
            dependent("comparison", "3 degrees cooler"),
        ),
        relationships=(
            edge("today", "comparison", RelationshipType.COMPARISON, reference="yesterday"),
        ),
    )


def single_batch(value: str = "42") -> ProposedBatch:
    return ProposedBatch(facts=(primary("only", value),))
