"""Tests for mnemo EntityGraph -- upserts, traversal, decay, soft delete."""
import pytest

from mnemo.errors import NotFoundError


def _chain(graph, *names):
    ids = [graph.add_entity(name, "topic", id=name) for name in names]
    for a, b in zip(ids, ids[1:]):
        graph.add_relationship(a, b, "related_to")
    return ids


class TestEntities:
    def test_add_entity_generates_id(self, graph):
        eid = graph.add_entity("Alice", "person")
        assert eid
        assert graph.get_entity(eid).name == "Alice"

    def test_add_entity_upserts_by_id(self, graph):
        graph.add_entity("Alice", "person", id="e1")
        graph.add_entity("Alice Smith", "person", id="e1")
        assert graph.get_entity("e1").name == "Alice Smith"

    def test_find_entity_any_type(self, graph):
        graph.add_entity("Mercury", "place", id="planet")
        graph.add_entity("Mercury", "project", id="proj")
        assert graph.find_entity("Mercury").id == "planet"
        assert graph.find_entity("Mercury", "project").id == "proj"
        assert graph.find_entity("Mercury", "").id == "planet"

    def test_find_entity_missing(self, graph):
        assert graph.find_entity("Nobody") is None


class TestRelationships:
    def test_relationships_in_both_directions(self, graph):
        a, b, c = _chain(graph, "A", "B", "C")
        rels = graph.get_relationships(b)
        assert {(r.source_id, r.target_id) for r in rels} == {(a, b), (b, c)}

    def test_neighbors_dedup(self, graph):
        a, b = _chain(graph, "A", "B")
        graph.add_relationship(b, a, "mentions")
        graph.add_relationship(a, b, "depends_on")
        neighbors = graph.get_neighbors(a)
        assert [n.id for n in neighbors] == [b]

    def test_default_weight(self, graph):
        a, b = _chain(graph, "A", "B")
        assert graph.get_relationships(a)[0].weight == 1.0


class TestFindPath:
    def test_same_node(self, graph):
        (a,) = _chain(graph, "A")
        assert graph.find_path(a, a) == [a]

    def test_linear_path(self, graph):
        a, b, c = _chain(graph, "A", "B", "C")
        assert graph.find_path(a, c) == [a, b, c]

    def test_path_is_undirected(self, graph):
        a, b, c = _chain(graph, "A", "B", "C")
        assert graph.find_path(c, a) == [c, b, a]

    def test_disconnected(self, graph):
        a, b, c = _chain(graph, "A", "B", "C")
        d = graph.add_entity("D", "topic", id="D")
        assert graph.find_path(a, d) == []

    def test_shortest_path_preferred(self, graph):
        a, b, c, d = _chain(graph, "A", "B", "C", "D")
        graph.add_relationship(a, d, "shortcut")
        assert graph.find_path(a, d) == [a, d]

    def test_cycle_terminates(self, graph):
        a, b, c = _chain(graph, "A", "B", "C")
        graph.add_relationship(c, a, "loops_back")
        x = graph.add_entity("X", "topic", id="X")
        assert graph.find_path(a, x) == []
        assert len(graph.find_path(a, c)) == 2

    def test_max_depth(self, graph):
        ids = _chain(graph, "N0", "N1", "N2", "N3", "N4")
        assert graph.find_path(ids[0], ids[4], max_depth=3) == []
        assert graph.find_path(ids[0], ids[4], max_depth=4) == ids


class TestDecay:
    def test_decay_scales_every_weight(self, graph):
        a, b, c = _chain(graph, "A", "B", "C")
        graph.add_relationship(a, c, "weak", weight=0.5)
        assert graph.decay(0.5) == 3
        weights = sorted(r["weight"] for r in graph.store.fetch_all("SELECT weight FROM relationships"))
        assert weights == [0.25, 0.5, 0.5]

    def test_decay_with_no_relationships(self, graph):
        assert graph.decay(0.9) == 0


class TestForget:
    def test_forget_sets_flag(self, graph):
        eid = graph.add_entity("Alice", "person")
        graph.forget(eid)
        assert graph.get_entity(eid).forgotten is True

    def test_forget_missing_raises(self, graph):
        with pytest.raises(NotFoundError):
            graph.forget("missing")


class TestEntityContext:
    def test_context_has_relationships_and_mentions(self, graph):
        store = graph.store
        a, b = _chain(graph, "A", "B")
        store.insert_chunk(id="c1", source_uri="doc", content="A met B")
        store.insert_mention(id="m1", entity_id=a, chunk_id="c1")

        ctx = graph.get_entity_context(a)
        assert ctx["entity"].id == a
        assert len(ctx["relationships"]) == 1
        assert ctx["recent_mentions"][0]["chunk_id"] == "c1"
        assert ctx["recent_mentions"][0]["content"] == "A met B"

    def test_mention_limit(self, graph):
        store = graph.store
        (a,) = _chain(graph, "A")
        for i in range(5):
            store.insert_chunk(id=f"c{i}", source_uri="doc", content=f"mention {i}")
            store.insert_mention(id=f"m{i}", entity_id=a, chunk_id=f"c{i}")
        assert len(graph.get_entity_context(a, mention_limit=2)["recent_mentions"]) == 2

    def test_context_for_forgotten_entity_raises(self, graph):
        eid = graph.add_entity("Alice", "person")
        graph.forget(eid)
        with pytest.raises(NotFoundError):
            graph.get_entity_context(eid)

    def test_context_for_missing_entity_raises(self, graph):
        with pytest.raises(NotFoundError):
            graph.get_entity_context("missing")
