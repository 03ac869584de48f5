"""
Contracts Module

This module defines the explicit data types that form the contracts
between engine components and collaborators. All inter-component
communication MUST use these contracts.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. All operations report explicit error states (Result / Error)
3. Entities reference each other by id, never by object reference
4. All timestamps use UTC and are never mutated
"""

from .base import (
    FactId, ClusterId, RelationshipId,
    ErrorCode, Error, Result, Violation, Timestamp,
    FactRole, Confidence, RelationshipType,
    VALIDATION_CODES, PROPAGATION_CODES, id_sort_key,
)
from .entities import (
    Fact, Cluster, Relationship,
    ProposedFact, ProposedRelationship, ProposedBatch, ClusterMetadata,
)
from .outcomes import (
    FactRemoval, FactRemovalReport, ClusterDeletion, MergeReport,
    RepairActionType, RepairAction, RepairReport,
    EdgeFailure, SkippedEdge, PropagationResult,
    HealthScore, ConfidenceSummary, ClusterStats,
)

__all__ = [
    "FactId", "ClusterId", "RelationshipId",
    "ErrorCode", "Error", "Result", "Violation", "Timestamp",
    "FactRole", "Confidence", "RelationshipType",
    "VALIDATION_CODES", "PROPAGATION_CODES", "id_sort_key",
    "Fact", "Cluster", "Relationship",
    "ProposedFact", "ProposedRelationship", "ProposedBatch", "ClusterMetadata",
    "FactRemoval", "FactRemovalReport", "ClusterDeletion", "MergeReport",
    "RepairActionType", "RepairAction", "RepairReport",
    "EdgeFailure", "SkippedEdge", "PropagationResult",
    "HealthScore", "ConfidenceSummary", "ClusterStats",
]
