import numpy as np
import pytest

from conftest import TableEmbedder, UnloadableEmbedder

from issa.core.exceptions import (
    DimensionMismatchError,
    EmbeddingUnavailableError,
    ValidationError,
)
from issa.embeddings import EmbeddingVector, VectorIndex, cosine_similarity, l2_normalize
from issa.models.knowledge import KnowledgeEntry


def make_entry(entry_id, title):
    return KnowledgeEntry(id=entry_id, category="faq", title=title, content=f"contenu {title}")


@pytest.fixture
def entries():
    return [make_entry(1, "A"), make_entry(2, "B"), make_entry(3, "C")]


@pytest.fixture
def table_embedder():
    return TableEmbedder(
        {
            "A\ncontenu A": [1.0, 0.0, 0.0],
            "B\ncontenu B": [0.0, 1.0, 0.0],
            "C\ncontenu C": [0.0, 0.6, 0.8],
            "query": [0.0, 1.0, 0.0],
        }
    )


class TestCosine:
    def test_identical_and_orthogonal(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)

    def test_symmetric(self):
        a, b = [0.2, -1.0, 3.5], [1.5, 0.4, -0.7]
        assert cosine_similarity(a, b) == cosine_similarity(b, a)

    def test_zero_vector(self):
        assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1, 0], [1, 0, 0])


class TestEmbeddingVector:
    def test_normalized_on_create(self):
        vector = EmbeddingVector.create(1, [3.0, 4.0], "test/model")
        assert vector.dimension == 2
        assert np.linalg.norm(vector.values) == pytest.approx(1.0)

    def test_zero_vector_stays_zero(self):
        assert not l2_normalize([0.0, 0.0]).any()

    def test_bytes_round_trip(self):
        vector = EmbeddingVector.create(9, [0.1, 0.2, 0.3], "test/model")
        restored = EmbeddingVector.from_bytes(9, vector.to_bytes(), "test/model")
        assert np.allclose(restored.values, vector.values)


class TestVectorIndex:
    def test_scenario_identical_query_vector(self, table_embedder, entries):
        index = VectorIndex(table_embedder)
        for entry in entries:
            index.add(entry)

        hits = index.search("query", top_k=1)

        assert len(hits) == 1
        assert hits[0].entry_id == 2
        assert hits[0].score == pytest.approx(1.0)

    def test_results_sorted_and_bounded(self, table_embedder, entries):
        index = VectorIndex(table_embedder)
        index.precompute(entries)

        hits = index.search("query", top_k=5)

        assert [hit.entry_id for hit in hits] == [2, 3, 1]
        assert hits[1].score == pytest.approx(0.6)

    def test_ties_broken_by_id(self, entries):
        index = VectorIndex(TableEmbedder({}, default=[1.0, 0.0]))
        index.precompute(reversed(entries))

        assert [hit.entry_id for hit in index.search("anything", top_k=3)] == [1, 2, 3]

    def test_top_k_zero_and_empty_index(self, table_embedder, entries):
        index = VectorIndex(table_embedder)
        assert index.search("query") == []
        index.add(entries[0])
        assert index.search("query", top_k=0) == []

    def test_negative_top_k(self, table_embedder):
        with pytest.raises(ValidationError):
            VectorIndex(table_embedder).search("query", top_k=-1)

    def test_add_requires_id(self, table_embedder):
        entry = KnowledgeEntry(category="faq", title="A", content="contenu A")
        with pytest.raises(ValidationError):
            VectorIndex(table_embedder).add(entry)

    def test_no_embedder(self, entries):
        index = VectorIndex()
        assert not index.is_ready()
        with pytest.raises(EmbeddingUnavailableError):
            index.add(entries[0])
        with pytest.raises(EmbeddingUnavailableError):
            index.precompute(entries)

    def test_model_failure_is_wrapped(self, entries):
        index = VectorIndex(TableEmbedder({}))
        with pytest.raises(EmbeddingUnavailableError):
            index.add(entries[0])

    def test_dimension_mismatch_on_add(self, entries):
        embedder = TableEmbedder({"A\ncontenu A": [1.0, 0.0], "B\ncontenu B": [1.0, 0.0, 0.0]})
        index = VectorIndex(embedder)
        index.add(entries[0])

        with pytest.raises(DimensionMismatchError):
            index.add(entries[1])
        assert len(index) == 1

    def test_precompute_counts_failures_and_reports_progress(self, table_embedder, entries):
        broken = make_entry(4, "D")  # no vector registered
        progress = []
        index = VectorIndex(table_embedder)

        report = index.precompute(
            [*entries, broken], progress=lambda done, total: progress.append((done, total))
        )

        assert report.processed == 3
        assert report.failed == 1
        assert report.total == 4
        assert progress[-1] == (4, 4)
        assert 4 not in index

    def test_remove(self, table_embedder, entries):
        index = VectorIndex(table_embedder)
        index.precompute(entries)

        assert index.remove(2) is True
        assert index.remove(2) is False
        assert [hit.entry_id for hit in index.search("query", top_k=3)] == [3, 1]

    def test_vectors_persist_across_instances(self, db, seeded_store, table_embedder):
        entries = [seeded_store.get_entry(1), seeded_store.get_entry(2)]
        embedder = TableEmbedder(
            {entries[0].to_embedding_text(): [1.0, 0.0], entries[1].to_embedding_text(): [0.0, 1.0]}
        )
        VectorIndex(embedder, db).precompute(entries)

        reloaded = VectorIndex(embedder, db)
        assert reloaded.load_persisted() == 2
        assert reloaded.dimension == 2

        other_model = VectorIndex(TableEmbedder({}, model_name="test/other"), db)
        assert other_model.load_persisted() == 0

    def test_deleted_entry_vector_not_reloaded(self, db, seeded_store):
        entry = seeded_store.get_entry(1)
        embedder = TableEmbedder({entry.to_embedding_text(): [1.0, 0.0]})
        VectorIndex(embedder, db).add(entry)

        seeded_store.delete_entry(1)

        assert VectorIndex(embedder, db).load_persisted() == 0

    def test_stats(self, table_embedder, entries):
        index = VectorIndex(table_embedder)
        index.precompute(entries)
        stats = index.get_stats()
        assert stats["cached_embeddings"] == 3
        assert stats["vector_dimension"] == 3
        assert stats["model"] == "test/table-embedder"

    def test_entry_removed_during_precompute_is_not_published(self, table_embedder, entries):
        index = VectorIndex(table_embedder)

        def remove_next(done, total):
            if done == 1:
                index.remove(2)

        report = index.precompute(entries, progress=remove_next)

        assert 2 not in index
        assert report.processed == 2
        assert report.skipped == 1

    def test_precompute_skips_entries_no_longer_current(self, table_embedder, entries):
        index = VectorIndex(table_embedder)

        report = index.precompute(entries, is_current=lambda entry_id: entry_id != 3)

        assert 3 not in index
        assert report.skipped == 1

    def test_precompute_keeps_vector_added_meanwhile(self, entries):
        embedder = TableEmbedder({}, default=[1.0, 0.0])
        index = VectorIndex(embedder)
        fresh = KnowledgeEntry(id=2, category="faq", title="B2", content="nouveau")

        def re_embed(done, total):
            if done == 1:
                embedder.table[fresh.to_embedding_text()] = [0.0, 1.0]
                index.add(fresh)

        index.precompute(entries, progress=re_embed)

        assert index.get_vector(2).values.tolist() == pytest.approx([0.0, 1.0])

    def test_precompute_stops_when_model_does_not_load(self, entries):
        embedder = UnloadableEmbedder()
        index = VectorIndex(embedder)

        with pytest.raises(EmbeddingUnavailableError):
            index.precompute(entries)

        assert embedder.load_attempts == 1
        assert embedder.calls == 0
        assert len(index) == 0
