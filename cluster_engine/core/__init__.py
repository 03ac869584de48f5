"""
Cluster Lifecycle Manager

RESPONSIBILITY: Create, update, delete, merge, repair and validate clusters
ALLOWED INPUTS: ProposedBatch from text analysis, ids and roles from callers
OUTPUTS: Result values wrapping Cluster / Relationship / report contracts

WHAT THIS COMPONENT MUST NOT DO:
================================
- Recompute fact values (propagation engine's job)
- Score cluster health
- Silently repair invariant violations outside ``repair``
- Leave a partially applied change behind on failure

BOUNDARY ENFORCEMENT:
=====================
- The ONLY writer of Fact.cluster_id / Fact.role and Cluster.fact_ids,
  so the two membership views cannot drift through public operations
- Every operation validates first and commits last (all-or-nothing)
- Every failure is an explicit Error with the offending ids as context
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple
import logging

from ..contracts.base import (
    FactId, ClusterId, RelationshipId, Error, ErrorCode, Result, Violation,
    FactRole, Confidence, RelationshipType
)
from ..contracts.entities import (
    Fact, Cluster, Relationship, ProposedBatch, ClusterMetadata
)
from ..contracts.outcomes import (
    FactRemovalReport, ClusterDeletion, MergeReport,
    RepairAction, RepairActionType, RepairReport
)
from ..store import FactStore
from ..temporal.clock import LogicalClock
from .topology import RelationshipGraph, GraphEdge, CycleError


logger = logging.getLogger(__name__)


@dataclass
class LifecycleConfig:
    """Defaults applied to clusters created without explicit metadata."""
    default_name: str = "Unnamed Cluster"
    default_type: str = "mathematical"
    default_semantic_rule: str = "Related pulse points that update together"
    merge_rule_separator: str = " | Merged with: "


class ClusterLifecycleManager:
    """
    Owns every structural mutation of clusters and their memberships.

    GUARANTEES:
    ===========
    1. A cluster returned by a successful operation passes ``validate``
       (except after removing a primary, which is reported, not hidden)
    2. A failed operation changes nothing
    3. Fact ids, cluster ids and relationship ids are never reused
    """

    def __init__(
        self,
        store: FactStore,
        graph: Optional[RelationshipGraph] = None,
        config: Optional[LifecycleConfig] = None,
        clock: Optional[LogicalClock] = None
    ):
        self._store = store
        self._graph = graph or RelationshipGraph()
        self._config = config or LifecycleConfig()
        self._clock = clock or LogicalClock.live()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def get_cluster(self, cluster_id: ClusterId) -> Optional[Cluster]:
        return self._store.get_cluster(cluster_id)

    def get_fact(self, fact_id: FactId) -> Optional[Fact]:
        return self._store.get(fact_id)

    def member_facts(self, cluster: Cluster) -> List[Fact]:
        """Existing member records in ``fact_ids`` order."""
        facts = []
        for fact_id in cluster.fact_ids:
            fact = self._store.get(fact_id)
            if fact is not None:
                facts.append(fact)
        return facts

    # =========================================================================
    # FACTS
    # =========================================================================

    def register_fact(
        self,
        value: str,
        confidence: Confidence = Confidence.MEDIUM,
        is_active: bool = True
    ) -> Fact:
        """Add a standalone fact that ``add_fact`` can later attach."""
        fact = Fact(
            fact_id=self._store.next_fact_id(),
            value=value,
            confidence=confidence,
            is_active=is_active,
            created_at=self._clock.now()
        )
        self._store.upsert(fact)
        logger.debug("Registered standalone fact %s", fact.fact_id)
        return fact

    def add_fact(
        self,
        cluster_id: ClusterId,
        fact_id: FactId,
        role: FactRole = FactRole.DEPENDENT
    ) -> Result:
        """
        Insert a fact into a cluster's membership.

        A new PRIMARY always wins: the current primary is demoted to
        DEPENDENT. A fact attached elsewhere is detached from its old
        cluster first, unless it is that cluster's only primary and
        other members would stay behind.
        """
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found",
                              cluster_id=cluster_id)
        fact = self._store.get(fact_id)
        if fact is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Fact {fact_id} not found",
                              fact_id=fact_id)
        if role not in (FactRole.PRIMARY, FactRole.DEPENDENT):
            return self._fail(ErrorCode.INVALID_ROLE,
                              f"Role {role.value} cannot be assigned inside a cluster",
                              fact_id=fact_id, role=role.value)

        if role == FactRole.DEPENDENT and fact.cluster_id == cluster_id and fact.is_primary:
            other_primaries = [
                f for f in self.member_facts(cluster)
                if f.is_primary and f.fact_id != fact_id
            ]
            if not other_primaries:
                return self._fail(ErrorCode.MISSING_PRIMARY,
                                  f"Demoting fact {fact_id} would leave {cluster_id} without a primary",
                                  cluster_id=cluster_id, fact_id=fact_id)

        if fact.cluster_id is not None and fact.cluster_id != cluster_id and fact.is_primary:
            previous = self._store.get_cluster(fact.cluster_id)
            if previous is not None:
                left_behind = [
                    f for f in self.member_facts(previous) if f.fact_id != fact_id
                ]
                if left_behind and not any(f.is_primary for f in left_behind):
                    return self._fail(ErrorCode.MISSING_PRIMARY,
                                      f"Moving fact {fact_id} would leave {previous.cluster_id} "
                                      f"without a primary",
                                      cluster_id=previous.cluster_id, fact_id=fact_id)

        if fact.cluster_id is not None and fact.cluster_id != cluster_id:
            self._detach(fact)
            fact = self._store.get(fact_id)

        if role == FactRole.PRIMARY:
            for member in self.member_facts(cluster):
                if member.is_primary and member.fact_id != fact_id:
                    self._store.upsert(replace(member, role=FactRole.DEPENDENT))
                    logger.debug("Demoted fact %s in %s (new primary %s)",
                                 member.fact_id, cluster_id, fact_id)

        fact_ids = cluster.fact_ids
        if fact_id not in fact_ids:
            fact_ids = fact_ids + (fact_id,)

        self._store.upsert(replace(fact, cluster_id=cluster_id, role=role))
        updated = replace(cluster, fact_ids=fact_ids)
        self._store.upsert_cluster(updated)
        logger.debug("Added fact %s to %s as %s", fact_id, cluster_id, role.value)
        return Result.success(updated)

    def remove_fact(self, fact_id: FactId) -> Result:
        """
        Detach a fact from its cluster.

        Relationships touching the fact are deleted and an emptied
        cluster is deleted. Removing the primary is reported through
        ``FactRemovalReport.primary_removed``; run ``repair`` afterwards.
        """
        fact = self._store.get(fact_id)
        if fact is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Fact {fact_id} not found",
                              fact_id=fact_id)
        if fact.cluster_id is None:
            return Result.success(FactRemovalReport(fact_id=fact_id, cluster_id=None))
        return Result.success(self._detach(fact))

    def delete_fact(self, fact_id: FactId) -> Result:
        """Detach a fact and drop it from the store entirely."""
        result = self.remove_fact(fact_id)
        if result.is_success:
            self._store.remove(fact_id)
            logger.debug("Deleted fact %s", fact_id)
        return result

    # =========================================================================
    # CLUSTERS
    # =========================================================================

    def create(self, batch: ProposedBatch, metadata: Optional[ClusterMetadata] = None) -> Result:
        """
        Validate a proposed batch and commit it as a new cluster.

        Nothing is allocated or stored unless every check passes.
        """
        metadata = metadata or ClusterMetadata()
        name = metadata.name if metadata.name is not None else self._config.default_name
        cluster_type = (metadata.cluster_type if metadata.cluster_type is not None
                        else self._config.default_type)
        semantic_rule = (metadata.semantic_rule if metadata.semantic_rule is not None
                         else self._config.default_semantic_rule)

        metadata_error = self._check_metadata(name, cluster_type)
        if metadata_error is not None:
            return metadata_error

        refs = [f.ref for f in batch.facts]
        duplicates = sorted({r for r in refs if refs.count(r) > 1})
        if duplicates:
            return self._fail(ErrorCode.DUPLICATE_REFERENCE,
                              f"Duplicate fact refs in batch: {', '.join(duplicates)}",
                              refs=",".join(duplicates))

        primaries = [f.ref for f in batch.facts if f.role == FactRole.PRIMARY]
        if not primaries:
            return self._fail(ErrorCode.MISSING_PRIMARY,
                              "Cluster must have one primary fact",
                              fact_count=len(refs))
        if len(primaries) > 1:
            return self._fail(ErrorCode.MULTIPLE_PRIMARIES,
                              "Cluster cannot have multiple primary facts",
                              refs=",".join(primaries))

        known = set(refs)
        edges = []
        for index, proposed in enumerate(batch.relationships):
            endpoints = (proposed.source_ref, proposed.target_ref, proposed.reference_ref)
            missing = [r for r in endpoints if r is not None and r not in known]
            if missing:
                return self._fail(ErrorCode.DANGLING_RELATIONSHIP,
                                  f"Relationship {index} references unknown facts: {', '.join(missing)}",
                                  relationship_index=index, refs=",".join(missing))
            if proposed.source_ref == proposed.target_ref:
                return self._fail(ErrorCode.SELF_LOOP,
                                  f"Fact {proposed.source_ref} cannot have a relationship with itself",
                                  relationship_index=index, ref=proposed.source_ref)
            edges.append(GraphEdge(
                f"proposed_{index}", proposed.source_ref,
                proposed.target_ref, proposed.dependency_order
            ))

        cycle = self._graph.find_cycle(edges, refs)
        if cycle is not None:
            return self._fail(ErrorCode.CYCLE_DETECTED,
                              "Circular dependency detected in relationships",
                              cycle=" -> ".join(cycle))

        # Commit
        now = self._clock.now()
        cluster_id = self._store.next_cluster_id()
        ids: Dict[str, FactId] = {}
        for proposed in batch.facts:
            ids[proposed.ref] = self._store.next_fact_id()

        relationships = tuple(
            Relationship(
                relationship_id=self._store.next_relationship_id(),
                cluster_id=cluster_id,
                source_fact_id=ids[proposed.source_ref],
                target_fact_id=ids[proposed.target_ref],
                relationship_type=proposed.relationship_type,
                calculation_rule=proposed.calculation_rule,
                dependency_order=proposed.dependency_order,
                reference_fact_id=(ids[proposed.reference_ref]
                                   if proposed.reference_ref is not None else None)
            )
            for proposed in batch.relationships
        )

        for proposed in batch.facts:
            self._store.upsert(Fact(
                fact_id=ids[proposed.ref],
                value=proposed.value,
                cluster_id=cluster_id,
                role=proposed.role,
                confidence=proposed.confidence,
                is_active=proposed.is_active,
                created_at=now
            ))

        cluster = Cluster(
            cluster_id=cluster_id,
            name=name,
            cluster_type=cluster_type,
            semantic_rule=semantic_rule,
            fact_ids=tuple(ids[r] for r in refs),
            relationships=relationships,
            is_active=metadata.is_active,
            created_at=now
        )
        self._store.upsert_cluster(cluster)
        logger.info("Created %s '%s' with %d facts and %d relationships",
                    cluster_id, name, len(cluster.fact_ids), len(relationships))
        return Result.success(cluster)

    def update_cluster(
        self,
        cluster_id: ClusterId,
        name: Optional[str] = None,
        cluster_type: Optional[str] = None,
        semantic_rule: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> Result:
        """Update descriptive fields; membership is never touched here."""
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found",
                              cluster_id=cluster_id)

        updated = replace(
            cluster,
            name=cluster.name if name is None else name,
            cluster_type=cluster.cluster_type if cluster_type is None else cluster_type,
            semantic_rule=cluster.semantic_rule if semantic_rule is None else semantic_rule,
            is_active=cluster.is_active if is_active is None else is_active
        )
        metadata_error = self._check_metadata(updated.name, updated.cluster_type)
        if metadata_error is not None:
            return metadata_error

        self._store.upsert_cluster(updated)
        return Result.success(updated)

    def delete_cluster(self, cluster_id: ClusterId, keep_facts: bool = True) -> Result:
        """
        Delete a cluster and its relationships.

        With ``keep_facts`` members become standalone facts, otherwise
        they are removed from the store as well.
        """
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found",
                              cluster_id=cluster_id)

        affected = self._membership_union(cluster)
        for fact_id in affected:
            fact = self._store.get(fact_id)
            if fact is None:
                continue
            if keep_facts:
                self._store.upsert(replace(fact, cluster_id=None, role=FactRole.STANDALONE))
            else:
                self._store.remove(fact_id)

        self._store.remove_cluster(cluster_id)
        logger.info("Deleted %s (%d facts %s)", cluster_id, len(affected),
                    "kept" if keep_facts else "removed")
        return Result.success(ClusterDeletion(
            cluster=cluster,
            affected_fact_ids=affected,
            facts_kept=keep_facts
        ))

    def merge_clusters(self, primary_id: ClusterId, secondary_id: ClusterId) -> Result:
        """
        Move every fact and relationship of ``secondary_id`` into
        ``primary_id`` and delete the secondary.

        The secondary's primary fact is demoted to DEPENDENT (its value
        is kept) so the merged cluster keeps a single primary.
        """
        if primary_id == secondary_id:
            return self._fail(ErrorCode.SELF_MERGE, f"Cannot merge {primary_id} into itself",
                              cluster_id=primary_id)

        target = self._store.get_cluster(primary_id)
        source = self._store.get_cluster(secondary_id)
        missing = [cid for cid, c in ((primary_id, target), (secondary_id, source)) if c is None]
        if missing:
            return self._fail(ErrorCode.UNKNOWN_ID,
                              f"Cluster(s) not found: {', '.join(missing)}",
                              cluster_ids=",".join(missing))

        target_primaries = [f.fact_id for f in self.member_facts(target) if f.is_primary]
        moving = [self._store.get(fid) for fid in self._membership_union(source)]
        moving = [f for f in moving if f is not None]
        source_primaries = sorted(f.fact_id for f in moving if f.is_primary)

        # The target's primary wins; without one, the lowest secondary primary does
        keep = set(target_primaries[:1]) if target_primaries else set(source_primaries[:1])
        demoted = [fid for fid in source_primaries if fid not in keep]

        diagnostics = []
        for fact in moving:
            role = fact.role
            if fact.fact_id in demoted:
                role = FactRole.DEPENDENT
                diagnostics.append(
                    f"Fact {fact.fact_id} demoted to dependent while merging "
                    f"{secondary_id} into {primary_id}; value {fact.value!r} preserved"
                )
            elif role == FactRole.STANDALONE:
                role = FactRole.DEPENDENT
            self._store.upsert(replace(fact, cluster_id=primary_id, role=role))

        moved_ids = tuple(f.fact_id for f in moving if f.fact_id not in target.fact_ids)
        merged = replace(
            target,
            fact_ids=target.fact_ids + moved_ids,
            relationships=target.relationships + tuple(
                replace(r, cluster_id=primary_id) for r in source.relationships
            ),
            semantic_rule=f"{target.semantic_rule}{self._config.merge_rule_separator}"
                          f"{source.semantic_rule}"
        )
        self._store.remove_cluster(secondary_id)
        self._store.upsert_cluster(merged)

        for note in diagnostics:
            logger.warning(note)
        logger.info("Merged %s into %s (%d facts moved)", secondary_id, primary_id, len(moved_ids))
        return Result.success(MergeReport(
            cluster=merged,
            removed_cluster_id=secondary_id,
            moved_fact_ids=moved_ids,
            demoted_fact_ids=tuple(demoted),
            diagnostics=tuple(diagnostics)
        ))

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
        """
        Add a directed edge after checking membership and acyclicity.

        The cycle check runs on the hypothetical edge set, so a rejected
        edge is never stored.
        """
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found",
                              cluster_id=cluster_id)
        if source_fact_id == target_fact_id:
            return self._fail(ErrorCode.SELF_LOOP,
                              f"Fact {source_fact_id} cannot have a relationship with itself",
                              fact_id=source_fact_id)

        endpoints = (source_fact_id, target_fact_id, reference_fact_id)
        outside = [str(i) for i in endpoints if i is not None and not cluster.has_member(i)]
        if outside:
            return self._fail(ErrorCode.DANGLING_RELATIONSHIP,
                              f"Facts not in {cluster_id}: {', '.join(outside)}",
                              cluster_id=cluster_id, fact_ids=",".join(outside))

        candidate = cluster.relationships + (
            GraphEdge("pending", source_fact_id, target_fact_id, dependency_order),
        )
        cycle = self._graph.find_cycle(candidate, cluster.fact_ids)
        if cycle is not None:
            return self._fail(ErrorCode.CYCLE_DETECTED,
                              f"Relationship {source_fact_id} -> {target_fact_id} would create a cycle",
                              cluster_id=cluster_id,
                              cycle=" -> ".join(str(n) for n in cycle))

        relationship = Relationship(
            relationship_id=self._store.next_relationship_id(),
            cluster_id=cluster_id,
            source_fact_id=source_fact_id,
            target_fact_id=target_fact_id,
            relationship_type=relationship_type,
            calculation_rule=calculation_rule,
            dependency_order=dependency_order,
            reference_fact_id=reference_fact_id
        )
        self._store.upsert_cluster(replace(
            cluster, relationships=cluster.relationships + (relationship,)
        ))
        logger.debug("Added %s %s -> %s in %s", relationship.relationship_id,
                     source_fact_id, target_fact_id, cluster_id)
        return Result.success(relationship)

    def update_relationship(
        self,
        cluster_id: ClusterId,
        relationship_id: RelationshipId,
        relationship_type: Optional[RelationshipType] = None,
        calculation_rule: Optional[str] = None,
        dependency_order: Optional[int] = None,
        reference_fact_id: Optional[FactId] = None
    ) -> Result:
        """Update an edge's rule fields. Endpoints are immutable."""
        found = self._find_relationship(cluster_id, relationship_id)
        if found.is_failure:
            return found
        cluster, relationship = found.value

        if reference_fact_id is not None and not cluster.has_member(reference_fact_id):
            return self._fail(ErrorCode.DANGLING_RELATIONSHIP,
                              f"Fact {reference_fact_id} not in {cluster_id}",
                              cluster_id=cluster_id, fact_id=reference_fact_id)

        updated = replace(
            relationship,
            relationship_type=(relationship.relationship_type if relationship_type is None
                               else relationship_type),
            calculation_rule=(relationship.calculation_rule if calculation_rule is None
                              else calculation_rule),
            dependency_order=(relationship.dependency_order if dependency_order is None
                              else dependency_order),
            reference_fact_id=(relationship.reference_fact_id if reference_fact_id is None
                               else reference_fact_id)
        )
        self._replace_relationship(cluster, updated)
        return Result.success(updated)

    def delete_relationship(self, cluster_id: ClusterId, relationship_id: RelationshipId) -> Result:
        found = self._find_relationship(cluster_id, relationship_id)
        if found.is_failure:
            return found
        cluster, relationship = found.value

        self._store.upsert_cluster(replace(
            cluster,
            relationships=tuple(
                r for r in cluster.relationships if r.relationship_id != relationship_id
            )
        ))
        logger.debug("Deleted %s from %s", relationship_id, cluster_id)
        return Result.success(relationship)

    def reset_reference_point(self, cluster_id: ClusterId, relationship_id: RelationshipId) -> Result:
        """Clear a REFERENCE_POINT anchor so the next propagation re-freezes it."""
        found = self._find_relationship(cluster_id, relationship_id)
        if found.is_failure:
            return found
        cluster, relationship = found.value

        updated = replace(relationship, anchor_value=None)
        self._replace_relationship(cluster, updated)
        return Result.success(updated)

    def store_relationship(self, relationship: Relationship) -> None:
        """
        Write back a relationship whose runtime state changed.

        Only the propagation engine calls this (reference anchors).
        """
        cluster = self._store.get_cluster(relationship.cluster_id)
        if cluster is not None:
            self._replace_relationship(cluster, relationship)

    # =========================================================================
    # VALIDATION & REPAIR
    # =========================================================================

    def validate(self, cluster_id: ClusterId) -> Tuple[Violation, ...]:
        """
        Read-only check of membership sync and invariants I1-I3.

        Returns an empty tuple iff the cluster is structurally valid.
        """
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return (Violation(ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found"),)

        violations: List[Violation] = []
        members: List[Fact] = []
        for fact_id in cluster.fact_ids:
            fact = self._store.get(fact_id)
            if fact is None:
                violations.append(Violation(
                    ErrorCode.UNKNOWN_ID, f"Member fact {fact_id} does not exist",
                    fact_ids=(fact_id,)
                ))
                continue
            members.append(fact)
            if fact.cluster_id != cluster_id or fact.role == FactRole.STANDALONE:
                violations.append(Violation(
                    ErrorCode.MEMBERSHIP_MISMATCH,
                    f"Fact {fact_id} is listed in {cluster_id} but points at "
                    f"{fact.cluster_id} as {fact.role.value}",
                    fact_ids=(fact_id,)
                ))

        unlisted = tuple(
            f.fact_id for f in self._store.all_in_cluster(cluster_id)
            if not cluster.has_member(f.fact_id)
        )
        if unlisted:
            violations.append(Violation(
                ErrorCode.MEMBERSHIP_MISMATCH,
                f"Facts point at {cluster_id} without being listed",
                fact_ids=unlisted
            ))

        primaries = tuple(f.fact_id for f in members if f.is_primary)
        if cluster.fact_ids and not primaries:
            violations.append(Violation(
                ErrorCode.MISSING_PRIMARY, f"{cluster_id} has no primary fact"
            ))
        elif len(primaries) > 1:
            violations.append(Violation(
                ErrorCode.MULTIPLE_PRIMARIES,
                f"{cluster_id} has {len(primaries)} primary facts",
                fact_ids=primaries
            ))

        acyclic_candidates = []
        for relationship in cluster.relationships:
            if relationship.is_self_loop:
                violations.append(Violation(
                    ErrorCode.SELF_LOOP,
                    f"{relationship.relationship_id} points fact "
                    f"{relationship.source_fact_id} at itself",
                    fact_ids=(relationship.source_fact_id,),
                    relationship_ids=(relationship.relationship_id,)
                ))
                continue
            outside = tuple(i for i in relationship.endpoint_ids() if not cluster.has_member(i))
            if outside:
                violations.append(Violation(
                    ErrorCode.DANGLING_RELATIONSHIP,
                    f"{relationship.relationship_id} references non-member facts",
                    fact_ids=outside,
                    relationship_ids=(relationship.relationship_id,)
                ))
            acyclic_candidates.append(relationship)

        cycle = self._graph.find_cycle(acyclic_candidates, cluster.fact_ids)
        if cycle is not None:
            steps = set(zip(cycle, cycle[1:]))
            violations.append(Violation(
                ErrorCode.CYCLE_DETECTED,
                f"Circular dependency in {cluster_id}",
                fact_ids=cycle[:-1],
                relationship_ids=tuple(
                    r.relationship_id for r in acyclic_candidates
                    if (r.source_fact_id, r.target_fact_id) in steps
                )
            ))

        return tuple(violations)

    def repair(self, cluster_id: ClusterId) -> Result:
        """
        Idempotent self-healing pass.

        Resyncs membership, restores a single primary (lowest id wins)
        and drops relationships that are self loops or reach outside the
        cluster. Cycles are reported by ``validate`` but left alone.
        """
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found",
                              cluster_id=cluster_id)

        actions: List[RepairAction] = []

        # 1. Membership: listed facts must point back, pointing facts must be listed
        synced: List[FactId] = []
        for fact_id in cluster.fact_ids:
            fact = self._store.get(fact_id)
            if fact is not None and fact.cluster_id == cluster_id:
                synced.append(fact_id)
        for fact in self._store.all_in_cluster(cluster_id):
            if fact.fact_id not in synced:
                synced.append(fact.fact_id)

        restored_roles = []
        for fact_id in synced:
            fact = self._store.get(fact_id)
            if fact.role == FactRole.STANDALONE:
                self._store.upsert(replace(fact, role=FactRole.DEPENDENT))
                restored_roles.append(fact_id)

        changed = tuple(
            sorted(set(synced).symmetric_difference(cluster.fact_ids))
        ) + tuple(restored_roles)
        if changed:
            actions.append(RepairAction(
                RepairActionType.RESYNCED_MEMBERSHIP,
                "Resynced cluster membership with fact records",
                fact_ids=changed
            ))

        # 2. Single primary, lowest id first
        members = sorted((self._store.get(i) for i in synced), key=lambda f: f.fact_id)
        primaries = [f for f in members if f.is_primary]
        if members and not primaries:
            promoted = members[0]
            self._store.upsert(replace(promoted, role=FactRole.PRIMARY))
            actions.append(RepairAction(
                RepairActionType.PROMOTED_PRIMARY,
                f"Set fact {promoted.fact_id} as primary",
                fact_ids=(promoted.fact_id,)
            ))
        elif len(primaries) > 1:
            for extra in primaries[1:]:
                self._store.upsert(replace(extra, role=FactRole.DEPENDENT))
            actions.append(RepairAction(
                RepairActionType.DEMOTED_PRIMARY,
                f"Fixed multiple primary facts, kept {primaries[0].fact_id}",
                fact_ids=tuple(f.fact_id for f in primaries[1:])
            ))

        # 3. Closure
        member_set = set(synced)
        kept = tuple(
            r for r in cluster.relationships
            if not r.is_self_loop and all(i in member_set for i in r.endpoint_ids())
        )
        dropped = tuple(
            r.relationship_id for r in cluster.relationships if r not in kept
        )
        if dropped:
            actions.append(RepairAction(
                RepairActionType.DROPPED_RELATIONSHIP,
                "Removed invalid relationships",
                relationship_ids=dropped
            ))

        repaired: Optional[Cluster] = replace(cluster, fact_ids=tuple(synced), relationships=kept)
        if not synced:
            self._store.remove_cluster(cluster_id)
            repaired = None
            actions.append(RepairAction(
                RepairActionType.DELETED_EMPTY_CLUSTER,
                f"Deleted {cluster_id}: no member facts remain"
            ))
        else:
            self._store.upsert_cluster(repaired)

        if actions:
            logger.info("Repaired %s: %s", cluster_id,
                        ", ".join(a.action.value for a in actions))
        return Result.success(RepairReport(
            cluster_id=cluster_id,
            actions=tuple(actions),
            cluster=repaired
        ))

    def propagation_order(self, cluster: Cluster) -> Result:
        """Topological order of the cluster's facts, or CYCLE_DETECTED."""
        try:
            order = self._graph.topological_order(cluster.relationships, cluster.fact_ids)
        except CycleError as exc:
            return self._fail(ErrorCode.CYCLE_DETECTED, str(exc),
                              cluster_id=cluster.cluster_id,
                              cycle=" -> ".join(str(n) for n in exc.cycle))
        return Result.success(order)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _fail(self, code: ErrorCode, message: str, **context: object) -> Result:
        logger.warning("Rejected (%s): %s", code.name, message)
        return Result.failure(Error.create(code, message, **context))

    def _check_metadata(self, name: str, cluster_type: str) -> Optional[Result]:
        if not name or not name.strip():
            return self._fail(ErrorCode.INVALID_METADATA, "Cluster name is required")
        if not cluster_type or not cluster_type.strip():
            return self._fail(ErrorCode.INVALID_METADATA, "Cluster type is required")
        return None

    def _membership_union(self, cluster: Cluster) -> Tuple[FactId, ...]:
        """Listed members followed by facts that point at the cluster unlisted."""
        union = list(cluster.fact_ids)
        for fact in self._store.all_in_cluster(cluster.cluster_id):
            if fact.fact_id not in union:
                union.append(fact.fact_id)
        return tuple(union)

    def _detach(self, fact: Fact) -> FactRemovalReport:
        cluster_id = fact.cluster_id
        self._store.upsert(replace(fact, cluster_id=None, role=FactRole.STANDALONE))

        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return FactRemovalReport(fact_id=fact.fact_id, cluster_id=cluster_id)

        remaining = tuple(i for i in cluster.fact_ids if i != fact.fact_id)
        kept = tuple(r for r in cluster.relationships if fact.fact_id not in r.endpoint_ids())
        removed = tuple(
            r.relationship_id for r in cluster.relationships if fact.fact_id in r.endpoint_ids()
        )
        primary_removed = fact.is_primary and not any(
            f.is_primary for f in (self._store.get(i) for i in remaining) if f is not None
        )

        deleted = not remaining
        if deleted:
            self._store.remove_cluster(cluster_id)
            logger.info("Deleted %s: last fact %s removed", cluster_id, fact.fact_id)
        else:
            self._store.upsert_cluster(replace(cluster, fact_ids=remaining, relationships=kept))
            if primary_removed:
                logger.warning("Primary fact %s removed from %s; cluster needs repair",
                               fact.fact_id, cluster_id)

        return FactRemovalReport(
            fact_id=fact.fact_id,
            cluster_id=cluster_id,
            cluster_deleted=deleted,
            removed_relationship_ids=removed,
            primary_removed=primary_removed and not deleted
        )

    def _find_relationship(self, cluster_id: ClusterId, relationship_id: RelationshipId) -> Result:
        cluster = self._store.get_cluster(cluster_id)
        if cluster is None:
            return self._fail(ErrorCode.UNKNOWN_ID, f"Cluster {cluster_id} not found",
                              cluster_id=cluster_id)
        relationship = cluster.get_relationship(relationship_id)
        if relationship is None:
            return self._fail(ErrorCode.UNKNOWN_ID,
                              f"Relationship {relationship_id} not found in {cluster_id}",
                              cluster_id=cluster_id, relationship_id=relationship_id)
        return Result.success((cluster, relationship))

    def _replace_relationship(self, cluster: Cluster, relationship: Relationship) -> None:
        self._store.upsert_cluster(replace(
            cluster,
            relationships=tuple(
                relationship if r.relationship_id == relationship.relationship_id else r
                for r in cluster.relationships
            )
        ))
