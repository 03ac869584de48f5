"""
Fact Store Tests

The store is a plain arena: ids are never reused and removal reports,
but never fixes, an orphaned primary.
"""

from cluster_engine.contracts import Cluster, Fact, FactRole
from cluster_engine.store import FactStore


def member(fact_id: int, role: FactRole, cluster_id: str = "cluster_1") -> Fact:
    return Fact(fact_id=fact_id, value=str(fact_id), cluster_id=cluster_id, role=role)


def cluster(cluster_id: str) -> Cluster:
    return Cluster(cluster_id=cluster_id, name=cluster_id, cluster_type="mathematical",
                   semantic_rule="")


class TestIdAllocation:

    def test_ids_are_never_reused(self):
        store = FactStore()
        first = store.next_fact_id()
        store.upsert(Fact(fact_id=first, value="x"))
        store.remove(first)

        assert store.next_fact_id() == first + 1

    def test_prefixed_ids(self):
        store = FactStore()

        assert store.next_cluster_id() == "cluster_1"
        assert store.next_cluster_id() == "cluster_2"
        assert store.next_relationship_id() == "rel_1"

    def test_advance_counters_never_moves_backwards(self):
        store = FactStore()
        store.advance_counters(fact_id=10, cluster_number=4, relationship_number=7)
        store.advance_counters(fact_id=3)

        assert store.next_fact_id() == 11
        assert store.next_cluster_id() == "cluster_5"
        assert store.next_relationship_id() == "rel_8"


class TestFacts:

    def test_remove_reports_orphaned_primary(self):
        store = FactStore()
        store.upsert(member(1, FactRole.PRIMARY))
        store.upsert(member(2, FactRole.DEPENDENT))

        removal = store.remove(1)

        assert removal.fact.fact_id == 1
        assert removal.cluster_id == "cluster_1"
        assert removal.orphaned_primary is True

    def test_remove_dependent_is_not_orphaning(self):
        store = FactStore()
        store.upsert(member(1, FactRole.PRIMARY))
        store.upsert(member(2, FactRole.DEPENDENT))

        assert store.remove(2).orphaned_primary is False

    def test_remove_unknown_fact(self):
        removal = FactStore().remove(99)

        assert removal.fact is None
        assert removal.orphaned_primary is False

    def test_all_in_cluster_is_ordered_by_id(self):
        store = FactStore()
        for fact_id in (5, 2, 9):
            store.upsert(member(fact_id, FactRole.DEPENDENT))
        store.upsert(member(3, FactRole.DEPENDENT, cluster_id="cluster_2"))

        assert [f.fact_id for f in store.all_in_cluster("cluster_1")] == [2, 5, 9]
        assert store.fact_count == 4


class TestClusters:

    def test_all_clusters_sort_numerically(self):
        store = FactStore()
        store.upsert_cluster(cluster("cluster_10"))
        store.upsert_cluster(cluster("cluster_9"))

        assert [c.cluster_id for c in store.all_clusters()] == ["cluster_9", "cluster_10"]

    def test_remove_cluster(self):
        store = FactStore()
        store.upsert_cluster(cluster("cluster_1"))

        assert store.remove_cluster("cluster_1").cluster_id == "cluster_1"
        assert store.get_cluster("cluster_1") is None
        assert store.remove_cluster("cluster_1") is None
        assert store.cluster_count == 0
