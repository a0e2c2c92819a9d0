"""Tests for mnemo hybrid_search -- lexical + graph fusion."""
import pytest

from mnemo.search import GRAPH_MATCH_SCORE, hybrid_search


class TestLexical:
    def test_relevant_chunk_ranks_first(self, store):
        store.insert_chunk(id="dl", source_uri="a", content="deep learning neural networks")
        store.insert_chunk(id="cook", source_uri="b", content="cooking recipes pasta")

        results = hybrid_search(store, "deep learning")
        ids = [r.id for r in results]
        assert ids[0] == "dl"
        assert "cook" not in ids

    def test_scores_normalised(self, store):
        store.insert_chunk(id="c1", source_uri="a", content="python python python testing")
        store.insert_chunk(id="c2", source_uri="a", content="python testing guide for beginners and experts")
        store.insert_chunk(id="c3", source_uri="a", content="unrelated gardening notes")

        results = hybrid_search(store, "python")
        assert results
        assert results[0].score == pytest.approx(1.0)
        assert all(0.0 <= r.score <= 1.0 for r in results)
        assert all(r.source == "fts" for r in results)

    def test_sorted_descending(self, store):
        for i in range(5):
            store.insert_chunk(id=f"c{i}", source_uri="a", content="kernel " * (i + 1) + "filler " * 10)
        scores = [r.score for r in hybrid_search(store, "kernel")]
        assert scores == sorted(scores, reverse=True)

    def test_limit_and_min_score(self, store):
        for i in range(6):
            store.insert_chunk(id=f"c{i}", source_uri="a", content=f"shared term number {i}")
        assert len(hybrid_search(store, "shared", limit=3)) == 3
        assert hybrid_search(store, "shared", min_score=1.01) == []

    def test_result_carries_source_uri_and_metadata(self, store):
        store.insert_chunk(id="c1", source_uri="file:///x.md", content="metadata carrier",
                           metadata={"created_at": "2024-01-01T00:00:00+00:00"})
        result = hybrid_search(store, "carrier")[0]
        assert result.source_uri == "file:///x.md"
        assert result.metadata["created_at"].startswith("2024-01-01")


class TestGraphPass:
    def _mentioned(self, store, entity_name, content, description=None, chunk_id="c1", entity_id="e1"):
        store.insert_entity(id=entity_id, name=entity_name, type="person", description=description)
        store.insert_chunk(id=chunk_id, source_uri="doc", content=content)
        store.insert_mention(id=f"m-{chunk_id}", entity_id=entity_id, chunk_id=chunk_id)

    def test_entity_name_match_adds_chunk(self, store):
        self._mentioned(store, "Alice", "meeting notes about the roadmap")
        results = hybrid_search(store, "Alice")
        assert [r.id for r in results] == ["c1"]
        assert results[0].source == "graph"
        assert results[0].score == GRAPH_MATCH_SCORE

    def test_description_substring_match(self, store):
        self._mentioned(store, "Bob", "weekly sync", description="Infrastructure lead")
        assert [r.id for r in hybrid_search(store, "structure")] == ["c1"]

    def test_lexical_hit_wins_over_graph_hit(self, store):
        self._mentioned(store, "Alice", "Alice wrote the roadmap")
        results = hybrid_search(store, "Alice")
        assert len(results) == 1
        assert results[0].source == "fts"
        assert results[0].score == pytest.approx(1.0)

    def test_forgotten_entities_ignored(self, store):
        self._mentioned(store, "Alice", "meeting notes about the roadmap")
        store.execute_write("UPDATE entities SET forgotten = 1 WHERE id = 'e1'")
        assert hybrid_search(store, "Alice") == []


class TestMalformedInput:
    @pytest.mark.parametrize("query", [
        "",
        "   ",
        '"unbalanced',
        "AND",
        "OR OR",
        "NOT",
        "(",
        "*",
        "a:b",
        "-",
        "ünïcødé 日本語",
        "100%_done",
        "NEAR(",
        "abc\ud800",
        "\udfff",
    ])
    def test_never_raises(self, store, query):
        store.insert_chunk(id="c1", source_uri="a", content="some content to search")
        results = hybrid_search(store, query)
        assert isinstance(results, list)

    def test_lone_surrogate_dropped_from_query(self, store):
        store.insert_chunk(id="c1", source_uri="a", content="some content to search")
        assert [r.id for r in hybrid_search(store, "content\ud800")] == ["c1"]

    def test_graph_pass_runs_when_lexical_fails(self, store):
        store.insert_entity(id="e1", name='say "hi', type="topic")
        store.insert_chunk(id="c1", source_uri="doc", content="greeting log")
        store.insert_mention(id="m1", entity_id="e1", chunk_id="c1")
        results = hybrid_search(store, 'say "hi')
        assert [r.id for r in results] == ["c1"]

    def test_empty_store(self, store):
        assert hybrid_search(store, "anything") == []
