import pytest

from issa.models.knowledge import KnowledgeEntry
from issa.rag.retrieval.rerank import HybridReranker
from issa.rag.retrieval.results import ScoredEntry


def make_entry(entry_id, title="Entrée"):
    return KnowledgeEntry(id=entry_id, category="faq", title=f"{title} {entry_id}", content="")


@pytest.fixture
def reranker():
    return HybridReranker()


@pytest.fixture
def abc():
    return make_entry(1, "A"), make_entry(2, "B"), make_entry(3, "C")


class TestReciprocalRankFusion:
    def test_worked_example_b_above_a(self, reranker, abc):
        a, b, c = abc

        fused = reranker.reciprocal_rank_fusion([a, b, c], [(b, 0.9), (a, 0.8)], top_k=3)

        assert [s.entry_id for s in fused] == [2, 1, 3]
        scores = {s.entry_id: s.relevance_score for s in fused}
        assert scores[2] == pytest.approx(1 / 62 + 1.9 / 61)
        assert scores[1] == pytest.approx(1 / 61 + 1.8 / 62)
        assert scores[3] == pytest.approx(1 / 63)
        assert all(s.reason == "rrf" for s in fused)

    def test_lexical_only(self, reranker, abc):
        fused = reranker.reciprocal_rank_fusion(list(abc), [], top_k=2)
        assert [s.entry_id for s in fused] == [1, 2]
        assert fused[0].relevance_score == pytest.approx(1 / 61)

    def test_ties_keep_first_seen_order(self, reranker, abc):
        a, b, _ = abc
        # Same rank in each list, similarity 0: identical scores
        fused = reranker.reciprocal_rank_fusion([a], [(b, 0.0)], top_k=2)
        assert [s.entry_id for s in fused] == [1, 2]

    def test_top_k_zero_and_empty(self, reranker, abc):
        assert reranker.reciprocal_rank_fusion(list(abc), [], top_k=0) == []
        assert reranker.reciprocal_rank_fusion([], [], top_k=5) == []

    def test_custom_k(self, abc):
        fused = HybridReranker(rrf_k=1).reciprocal_rank_fusion([abc[0]], [], top_k=1)
        assert fused[0].relevance_score == pytest.approx(1 / 2)

    @pytest.mark.parametrize("similarity", [None, 0.0, 0.8])
    def test_contribution_strictly_decreases_with_rank(self, reranker, similarity):
        terms = [reranker.rrf_contribution(rank, similarity) for rank in range(50)]
        assert all(earlier > later for earlier, later in zip(terms, terms[1:]))

    def test_invalid_k(self):
        with pytest.raises(ValueError):
            HybridReranker(rrf_k=0)


class TestWeightedMerge:
    def test_multi_strategy_sum_is_not_clamped(self, reranker):
        entry = make_entry(1)
        keyword = [ScoredEntry(entry, 1.0, ["takaful"], "keyword")]
        fuzzy = [ScoredEntry(entry, 1.0, ["takaful"], "fuzzy_match")]
        intent = [ScoredEntry(entry, 1.2, ["islamique"], "intent_based:general_question")]

        merged = reranker.weighted_merge([(keyword, 0.4), (fuzzy, 0.3), (intent, 0.3)])

        assert len(merged) == 1
        assert merged[0].relevance_score == pytest.approx(1.06)
        assert merged[0].relevance_score > 1.0

    def test_first_reason_kept_and_keywords_unioned(self, reranker):
        entry = make_entry(1)
        keyword = [ScoredEntry(entry, 0.5, ["hajj"], "keyword")]
        fuzzy = [ScoredEntry(entry, 0.9, ["hajj", "omra"], "fuzzy_match")]

        merged = reranker.weighted_merge([(keyword, 0.4), (fuzzy, 0.3)], min_relevance=0.0)

        assert merged[0].reason == "keyword"
        assert merged[0].matched_keywords == ["hajj", "omra"]
        # Inputs are not modified
        assert keyword[0].matched_keywords == ["hajj"]
        assert keyword[0].relevance_score == 0.5

    def test_threshold_and_order(self, reranker):
        low, high = make_entry(1), make_entry(2)
        results = [
            ScoredEntry(low, 0.5, reason="keyword"),
            ScoredEntry(high, 1.0, reason="keyword"),
        ]

        merged = reranker.weighted_merge([(results, 0.4)], min_relevance=0.3)

        assert [s.entry_id for s in merged] == [2]
        assert merged[0].relevance_score == pytest.approx(0.4)

    def test_no_duplicates(self, reranker):
        entry = make_entry(1)
        results = [ScoredEntry(entry, 0.5, reason="keyword")]
        merged = reranker.weighted_merge([(results, 0.5), (results, 0.5)], min_relevance=0.0)
        assert len(merged) == 1
        assert merged[0].relevance_score == pytest.approx(0.5)

    def test_empty(self, reranker):
        assert reranker.weighted_merge([]) == []
        assert reranker.weighted_merge([([], 0.4)]) == []
