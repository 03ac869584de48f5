"""
Semantic Cluster Consistency Engine

This package keeps groups of interdependent document facts ("pulses")
structurally valid and mutually consistent. Components communicate only
through explicit contracts, never through shared mutable state.

COMPONENT STRUCTURE:
====================

1. FACT STORE (store/)
   - Responsibility: Keyed arena of Fact and Cluster records, id allocation
   - MUST NOT: Validate invariants or keep memberships in sync

2. RELATIONSHIP GRAPH (core/topology.py)
   - Responsibility: Cycle detection, topological ordering, components
   - MUST NOT: Mutate anything or interpret relationship types

3. CLUSTER LIFECYCLE MANAGER (core/)
   - Responsibility: create / add / remove / merge / repair / validate
   - MUST NOT: Recompute values or leave partial changes behind

4. PROPAGATION ENGINE (propagation/)
   - Responsibility: Recompute dependents after a primary value change
   - MUST NOT: Run against an inactive or invalid cluster

5. HEALTH SCORER (health/)
   - Responsibility: 0..100 diagnostic score and statistics
   - MUST NOT: Mutate state or read the wall clock

6. OBSERVABILITY & AUDIT (observability/)
   - Responsibility: Append-only audit trail of every engine call
   - MUST NOT: Modify engine behavior

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: entity records are frozen and replaced, not edited
- Explicit errors: every failure is a Result carrying an Error code
- All-or-nothing: a rejected operation changes nothing
- Deterministic: injected clock, stable tie-breaks everywhere
"""

from .engine import ClusterConsistencyEngine, EngineConfig

__all__ = ["ClusterConsistencyEngine", "EngineConfig"]
