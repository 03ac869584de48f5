"""
Cluster Lifecycle Manager Tests

AXIOM UNDER TEST:
=================
Every public operation either leaves the cluster valid or fails with an
explicit error and changes nothing.
"""

from dataclasses import replace

import pytest

from cluster_engine.contracts import (
    ClusterMetadata, ErrorCode, Fact, FactRole, ProposedBatch,
    ProposedFact, ProposedRelationship, Relationship, RelationshipType,
    RepairActionType, Timestamp,
)

from .fixtures import (
    EPOCH, make_lifecycle, ids_by_ref, stock_batch, chain_batch,
    single_batch, primary, dependent, edge,
)


@pytest.fixture
def lifecycle():
    return make_lifecycle()


def codes(violations):
    return [v.code for v in violations]


# =============================================================================
# CREATE
# =============================================================================

class TestCreate:

    def test_create_commits_facts_and_relationships(self, lifecycle):
        store, manager = lifecycle
        batch = stock_batch()

        result = manager.create(batch, ClusterMetadata(name="ACME price"))

        assert result.is_success
        cluster = result.value
        ids = ids_by_ref(batch, cluster)
        assert cluster.cluster_id == "cluster_1"
        assert cluster.name == "ACME price"
        assert cluster.fact_ids == (1, 2, 3)
        assert [r.relationship_id for r in cluster.relationships] == ["rel_1", "rel_2"]
        assert cluster.relationships[0].source_fact_id == ids["price"]
        assert cluster.relationships[0].target_fact_id == ids["change"]
        assert store.get(ids["price"]).role == FactRole.PRIMARY
        assert store.get(ids["trend"]).cluster_id == "cluster_1"
        assert cluster.created_at == Timestamp(EPOCH)
        assert manager.validate("cluster_1") == ()

    def test_defaults_apply_without_metadata(self, lifecycle):
        _, manager = lifecycle

        cluster = manager.create(single_batch()).value

        assert cluster.name == "Unnamed Cluster"
        assert cluster.cluster_type == "mathematical"
        assert cluster.semantic_rule == "Related pulse points that update together"

    def test_zero_primaries_rejected(self, lifecycle):
        store, manager = lifecycle
        batch = ProposedBatch(facts=(dependent("a", "1"), dependent("b", "2")))

        result = manager.create(batch)

        assert result.error.code == ErrorCode.MISSING_PRIMARY
        assert store.fact_count == 0
        assert store.cluster_count == 0

    def test_empty_batch_rejected(self, lifecycle):
        _, manager = lifecycle

        assert manager.create(ProposedBatch(facts=())).error.code == ErrorCode.MISSING_PRIMARY

    def test_two_primaries_rejected(self, lifecycle):
        _, manager = lifecycle
        batch = ProposedBatch(facts=(primary("a", "1"), primary("b", "2")))

        result = manager.create(batch)

        assert result.error.code == ErrorCode.MULTIPLE_PRIMARIES
        assert result.error.is_validation

    def test_dangling_relationship_rejected(self, lifecycle):
        _, manager = lifecycle
        batch = ProposedBatch(
            facts=(primary("a", "1"),),
            relationships=(edge("a", "ghost", RelationshipType.DIRECTION),),
        )

        result = manager.create(batch)

        assert result.error.code == ErrorCode.DANGLING_RELATIONSHIP
        assert result.error.context_value("refs") == "ghost"

    def test_self_loop_rejected(self, lifecycle):
        _, manager = lifecycle
        batch = ProposedBatch(
            facts=(primary("a", "1"),),
            relationships=(edge("a", "a", RelationshipType.DIRECTION),),
        )

        assert manager.create(batch).error.code == ErrorCode.SELF_LOOP

    def test_cycle_rejected(self, lifecycle):
        store, manager = lifecycle
        batch = ProposedBatch(
            facts=(primary("p", "1"), dependent("d", "2")),
            relationships=(
                edge("p", "d", RelationshipType.DIRECTION),
                edge("d", "p", RelationshipType.DIRECTION),
            ),
        )

        result = manager.create(batch)

        assert result.error.code == ErrorCode.CYCLE_DETECTED
        assert store.fact_count == 0

    def test_duplicate_refs_rejected(self, lifecycle):
        _, manager = lifecycle
        batch = ProposedBatch(facts=(primary("a", "1"), dependent("a", "2")))

        assert manager.create(batch).error.code == ErrorCode.DUPLICATE_REFERENCE

    def test_blank_name_rejected(self, lifecycle):
        _, manager = lifecycle

        result = manager.create(single_batch(), ClusterMetadata(name="  "))

        assert result.error.code == ErrorCode.INVALID_METADATA

    def test_rejection_does_not_consume_ids(self, lifecycle):
        _, manager = lifecycle
        manager.create(ProposedBatch(facts=(dependent("a", "1"),)))

        cluster = manager.create(single_batch()).value

        assert cluster.cluster_id == "cluster_1"
        assert cluster.fact_ids == (1,)

    def test_standalone_role_cannot_be_proposed(self):
        with pytest.raises(ValueError):
            ProposedFact(ref="a", value="1", role=FactRole.STANDALONE)

    def test_untyped_relationship_cannot_be_proposed(self):
        with pytest.raises(ValueError):
            ProposedRelationship(source_ref="a", target_ref="b", relationship_type="direction")


# =============================================================================
# MEMBERSHIP
# =============================================================================

class TestAddFact:

    def test_add_standalone_fact_as_dependent(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(single_batch()).value
        fact = manager.register_fact("7 days")

        result = manager.add_fact(cluster.cluster_id, fact.fact_id)

        assert result.is_success
        assert result.value.fact_ids == (1, fact.fact_id)
        assert store.get(fact.fact_id).cluster_id == cluster.cluster_id
        assert store.get(fact.fact_id).role == FactRole.DEPENDENT
        assert manager.validate(cluster.cluster_id) == ()

    def test_new_primary_demotes_current_primary(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(single_batch()).value
        fact = manager.register_fact("100")

        manager.add_fact(cluster.cluster_id, fact.fact_id, FactRole.PRIMARY)

        assert store.get(fact.fact_id).role == FactRole.PRIMARY
        assert store.get(1).role == FactRole.DEPENDENT
        assert manager.validate(cluster.cluster_id) == ()

    def test_fact_moves_out_of_previous_cluster(self, lifecycle):
        store, manager = lifecycle
        first = manager.create(stock_batch()).value
        second = manager.create(single_batch()).value

        result = manager.add_fact(second.cluster_id, 3)

        assert result.is_success
        assert store.get_cluster(first.cluster_id).fact_ids == (1, 2)
        assert [r.relationship_id for r in store.get_cluster(first.cluster_id).relationships] == ["rel_1"]
        assert store.get(3).cluster_id == second.cluster_id
        assert manager.validate(first.cluster_id) == ()
        assert manager.validate(second.cluster_id) == ()

    def test_moving_sole_primary_out_rejected(self, lifecycle):
        store, manager = lifecycle
        first = manager.create(stock_batch()).value
        second = manager.create(single_batch()).value

        for role in (FactRole.DEPENDENT, FactRole.PRIMARY):
            result = manager.add_fact(second.cluster_id, 1, role)

            assert result.error.code == ErrorCode.MISSING_PRIMARY
            assert result.error.context_value("cluster_id") == first.cluster_id

        assert store.get(1).cluster_id == first.cluster_id
        assert store.get(1).role == FactRole.PRIMARY
        assert store.get_cluster(first.cluster_id) == first
        assert store.get_cluster(second.cluster_id) == second
        assert manager.validate(first.cluster_id) == ()

    def test_moving_primary_of_single_fact_cluster(self, lifecycle):
        store, manager = lifecycle
        first = manager.create(single_batch("1")).value
        second = manager.create(stock_batch()).value

        result = manager.add_fact(second.cluster_id, 1)

        assert result.is_success
        assert manager.get_cluster(first.cluster_id) is None
        assert store.get(1).role == FactRole.DEPENDENT
        assert manager.validate(second.cluster_id) == ()

    def test_unknown_ids(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(single_batch()).value

        assert manager.add_fact("cluster_99", 1).error.code == ErrorCode.UNKNOWN_ID
        assert manager.add_fact(cluster.cluster_id, 99).error.code == ErrorCode.UNKNOWN_ID

    def test_standalone_role_rejected(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(single_batch()).value
        fact = manager.register_fact("x")

        result = manager.add_fact(cluster.cluster_id, fact.fact_id, FactRole.STANDALONE)

        assert result.error.code == ErrorCode.INVALID_ROLE

    def test_demoting_sole_primary_rejected(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(single_batch()).value

        result = manager.add_fact(cluster.cluster_id, 1, FactRole.DEPENDENT)

        assert result.error.code == ErrorCode.MISSING_PRIMARY
        assert store.get(1).role == FactRole.PRIMARY


class TestRemoveFact:

    def test_removing_last_fact_deletes_cluster(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(single_batch()).value

        report = manager.remove_fact(1).value

        assert report.cluster_deleted is True
        assert manager.get_cluster(cluster.cluster_id) is None
        assert store.get(1).role == FactRole.STANDALONE
        assert store.get(1).cluster_id is None

    def test_removing_dependent_drops_its_relationships(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(chain_batch()).value

        report = manager.remove_fact(2).value

        assert report.removed_relationship_ids == ("rel_1", "rel_2")
        assert report.primary_removed is False
        assert store.get_cluster(cluster.cluster_id).relationships == ()
        assert manager.validate(cluster.cluster_id) == ()

    def test_removing_primary_is_reported_not_repaired(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(stock_batch()).value

        report = manager.remove_fact(1).value

        assert report.primary_removed is True
        assert codes(manager.validate(cluster.cluster_id)) == [ErrorCode.MISSING_PRIMARY]

        repair = manager.repair(cluster.cluster_id).value
        assert [a.action for a in repair.actions] == [RepairActionType.PROMOTED_PRIMARY]
        assert store.get(2).role == FactRole.PRIMARY

    def test_removing_standalone_fact(self, lifecycle):
        _, manager = lifecycle
        fact = manager.register_fact("x")

        report = manager.remove_fact(fact.fact_id).value

        assert report.cluster_id is None

    def test_delete_fact_drops_record(self, lifecycle):
        store, manager = lifecycle
        manager.create(stock_batch())

        assert manager.delete_fact(3).is_success
        assert store.get(3) is None
        assert manager.delete_fact(3).error.code == ErrorCode.UNKNOWN_ID

    def test_delete_primary_reports_orphaned_cluster(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(stock_batch()).value

        report = manager.delete_fact(1).value

        assert report.primary_removed is True
        assert store.get(1) is None
        assert codes(manager.validate(cluster.cluster_id)) == [ErrorCode.MISSING_PRIMARY]


# =============================================================================
# RELATIONSHIPS
# =============================================================================

class TestRelationships:

    def test_cycle_rejection_leaves_two_relationships(self, lifecycle):
        """Adding D2 -> P to P -> D1 -> D2 fails and mutates nothing."""
        store, manager = lifecycle
        cluster = manager.create(chain_batch()).value
        before = manager.validate(cluster.cluster_id)

        result = manager.add_relationship(cluster.cluster_id, 3, 1, RelationshipType.DIRECTION)

        assert result.error.code == ErrorCode.CYCLE_DETECTED
        assert len(store.get_cluster(cluster.cluster_id).relationships) == 2
        assert manager.validate(cluster.cluster_id) == before

    def test_add_relationship(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(chain_batch()).value

        result = manager.add_relationship(
            cluster.cluster_id, 1, 3, RelationshipType.COMPARISON,
            calculation_rule="vs last year", dependency_order=3, reference_fact_id=2
        )

        relationship = result.value
        assert relationship.relationship_id == "rel_3"
        assert relationship.reference_fact_id == 2
        assert manager.get_cluster(cluster.cluster_id).get_relationship("rel_3") == relationship

    def test_non_member_endpoint_rejected(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(chain_batch()).value
        outsider = manager.register_fact("x")

        result = manager.add_relationship(
            cluster.cluster_id, 1, outsider.fact_id, RelationshipType.DIRECTION
        )

        assert result.error.code == ErrorCode.DANGLING_RELATIONSHIP

    def test_self_loop_rejected(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(chain_batch()).value

        result = manager.add_relationship(cluster.cluster_id, 2, 2, RelationshipType.DIRECTION)

        assert result.error.code == ErrorCode.SELF_LOOP

    def test_update_relationship(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(chain_batch()).value

        updated = manager.update_relationship(
            cluster.cluster_id, "rel_2",
            relationship_type=RelationshipType.REFERENCE_POINT, dependency_order=4
        ).value

        assert updated.relationship_type == RelationshipType.REFERENCE_POINT
        assert updated.dependency_order == 4
        assert updated.source_fact_id == 2
        assert manager.get_cluster(cluster.cluster_id).get_relationship("rel_2") == updated

    def test_update_unknown_relationship(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(chain_batch()).value

        result = manager.update_relationship(cluster.cluster_id, "rel_99", calculation_rule="x")

        assert result.error.code == ErrorCode.UNKNOWN_ID

    def test_delete_relationship(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(chain_batch()).value

        removed = manager.delete_relationship(cluster.cluster_id, "rel_1").value

        assert removed.relationship_id == "rel_1"
        assert [r.relationship_id for r in manager.get_cluster(cluster.cluster_id).relationships] == ["rel_2"]

    def test_reset_reference_point_clears_anchor(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(chain_batch()).value
        anchored = replace(cluster.relationships[0], anchor_value="100")
        manager.store_relationship(anchored)

        result = manager.reset_reference_point(cluster.cluster_id, "rel_1")

        assert result.value.anchor_value is None
        assert store.get_cluster(cluster.cluster_id).relationships[0].anchor_value is None


# =============================================================================
# CLUSTER OPERATIONS
# =============================================================================

class TestClusterOperations:

    def test_update_cluster(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(single_batch()).value

        updated = manager.update_cluster(cluster.cluster_id, name="Renamed", is_active=False).value

        assert updated.name == "Renamed"
        assert updated.is_active is False
        assert updated.cluster_type == cluster.cluster_type

    def test_update_cluster_rejects_blank_type(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(single_batch()).value

        result = manager.update_cluster(cluster.cluster_id, cluster_type="")

        assert result.error.code == ErrorCode.INVALID_METADATA
        assert manager.get_cluster(cluster.cluster_id) == cluster

    def test_delete_cluster_keeps_facts(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(stock_batch()).value

        deletion = manager.delete_cluster(cluster.cluster_id).value

        assert deletion.affected_fact_ids == (1, 2, 3)
        assert store.get_cluster(cluster.cluster_id) is None
        assert all(store.get(i).role == FactRole.STANDALONE for i in (1, 2, 3))

    def test_delete_cluster_with_facts(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(stock_batch()).value

        manager.delete_cluster(cluster.cluster_id, keep_facts=False)

        assert store.fact_count == 0


class TestMerge:

    def test_secondary_primary_is_demoted(self, lifecycle):
        store, manager = lifecycle
        a = manager.create(stock_batch(), ClusterMetadata(semantic_rule="price moves")).value
        b = manager.create(chain_batch(), ClusterMetadata(semantic_rule="index moves")).value
        pa, pb = a.fact_ids[0], b.fact_ids[0]

        report = manager.merge_clusters(a.cluster_id, b.cluster_id).value

        assert store.get(pa).role == FactRole.PRIMARY
        assert store.get(pb).role == FactRole.DEPENDENT
        assert store.get(pb).value == "100"
        assert report.demoted_fact_ids == (pb,)
        assert len(report.diagnostics) == 1
        assert report.moved_fact_ids == b.fact_ids
        assert report.cluster.semantic_rule == "price moves | Merged with: index moves"
        assert len(report.cluster.relationships) == 4
        assert all(r.cluster_id == a.cluster_id for r in report.cluster.relationships)
        assert manager.get_cluster(b.cluster_id) is None
        assert manager.validate(a.cluster_id) == ()

    def test_self_merge_rejected(self, lifecycle):
        _, manager = lifecycle
        a = manager.create(single_batch()).value

        assert manager.merge_clusters(a.cluster_id, a.cluster_id).error.code == ErrorCode.SELF_MERGE

    def test_unknown_cluster_rejected(self, lifecycle):
        store, manager = lifecycle
        a = manager.create(single_batch()).value

        result = manager.merge_clusters(a.cluster_id, "cluster_99")

        assert result.error.code == ErrorCode.UNKNOWN_ID
        assert result.error.context_value("cluster_ids") == "cluster_99"
        assert store.get_cluster(a.cluster_id) == a


# =============================================================================
# VALIDATE & REPAIR
# =============================================================================

class TestValidateAndRepair:

    def test_unknown_cluster(self, lifecycle):
        _, manager = lifecycle

        assert codes(manager.validate("cluster_9")) == [ErrorCode.UNKNOWN_ID]

    def test_valid_cluster_needs_no_repair(self, lifecycle):
        _, manager = lifecycle
        cluster = manager.create(stock_batch()).value

        report = manager.repair(cluster.cluster_id).value

        assert report.repair_count == 0
        assert report.cluster == manager.get_cluster(cluster.cluster_id)

    def test_multiple_primaries_demoted_keeping_lowest_id(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(stock_batch()).value
        store.upsert(replace(store.get(3), role=FactRole.PRIMARY))
        assert codes(manager.validate(cluster.cluster_id)) == [ErrorCode.MULTIPLE_PRIMARIES]

        report = manager.repair(cluster.cluster_id).value

        assert [a.action for a in report.actions] == [RepairActionType.DEMOTED_PRIMARY]
        assert store.get(1).role == FactRole.PRIMARY
        assert store.get(3).role == FactRole.DEPENDENT
        assert manager.repair(cluster.cluster_id).value.repair_count == 0

    def test_dangling_and_self_loop_relationships_dropped(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(stock_batch()).value
        broken = replace(cluster, relationships=cluster.relationships + (
            Relationship("rel_90", cluster.cluster_id, 1, 99, RelationshipType.DIRECTION),
            Relationship("rel_91", cluster.cluster_id, 2, 2, RelationshipType.DIRECTION),
        ))
        store.upsert_cluster(broken)
        assert set(codes(manager.validate(cluster.cluster_id))) == {
            ErrorCode.DANGLING_RELATIONSHIP, ErrorCode.SELF_LOOP
        }

        report = manager.repair(cluster.cluster_id).value

        assert report.actions[0].action == RepairActionType.DROPPED_RELATIONSHIP
        assert report.actions[0].relationship_ids == ("rel_90", "rel_91")
        assert manager.validate(cluster.cluster_id) == ()

    def test_membership_resynced(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(single_batch()).value
        store.upsert(Fact(fact_id=50, value="x", cluster_id=cluster.cluster_id,
                          role=FactRole.DEPENDENT))
        assert codes(manager.validate(cluster.cluster_id)) == [ErrorCode.MEMBERSHIP_MISMATCH]

        report = manager.repair(cluster.cluster_id).value

        assert report.actions[0].action == RepairActionType.RESYNCED_MEMBERSHIP
        assert report.cluster.fact_ids == (1, 50)
        assert manager.validate(cluster.cluster_id) == ()

    def test_cluster_without_members_deleted(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(single_batch()).value
        store.upsert(replace(store.get(1), cluster_id=None, role=FactRole.STANDALONE))

        report = manager.repair(cluster.cluster_id).value

        assert report.cluster is None
        assert report.actions[-1].action == RepairActionType.DELETED_EMPTY_CLUSTER
        assert manager.get_cluster(cluster.cluster_id) is None

    def test_cycle_is_reported_but_not_repaired(self, lifecycle):
        store, manager = lifecycle
        cluster = manager.create(chain_batch()).value
        store.upsert_cluster(replace(cluster, relationships=cluster.relationships + (
            Relationship("rel_9", cluster.cluster_id, 3, 1, RelationshipType.DIRECTION),
        )))

        violations = manager.validate(cluster.cluster_id)

        assert codes(violations) == [ErrorCode.CYCLE_DETECTED]
        assert set(violations[0].relationship_ids) == {"rel_1", "rel_2", "rel_9"}
        assert manager.repair(cluster.cluster_id).value.repair_count == 0
