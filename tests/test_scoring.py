import pytest

from issa.models.knowledge import KnowledgeEntry
from issa.rag.retrieval.intent_search import IntentWeightedSearch
from issa.rag.retrieval.results import SearchQuery
from issa.rag.retrieval.scoring import score_entry


@pytest.fixture
def hajj_entry():
    return KnowledgeEntry(
        id=7,
        category="takaful_products",
        title="Pèlerinage Hajj",
        content="Couverture des pèlerins pendant le hajj à La Mecque.",
        keywords=["hajj", "omra"],
    )


class TestScoreEntry:
    def test_title_keyword_and_content_matches(self, hajj_entry):
        score, matched = score_entry(hajj_entry, ["hajj"])
        assert score == pytest.approx(0.3 + 0.25 + 0.15)
        assert matched == ["hajj"]

    def test_partial_matches(self, hajj_entry):
        score, matched = score_entry(hajj_entry, ["omra", "mecque", "xyz"])
        assert score == pytest.approx(0.25 + 0.15)
        assert matched == ["omra", "mecque"]

    def test_category_bonus(self, hajj_entry):
        score, _ = score_entry(hajj_entry, [], category="takaful_products")
        assert score == pytest.approx(0.2)
        score, _ = score_entry(hajj_entry, [], category="contact")
        assert score == 0.0

    def test_entity_bonus_per_value_found(self, hajj_entry):
        score, _ = score_entry(hajj_entry, [], entities=["La Mecque", "Médine"])
        assert score == pytest.approx(0.1)

    def test_priority_multiplier(self, hajj_entry):
        boosted = hajj_entry.model_copy(update={"priority": 2})
        score, _ = score_entry(boosted, ["omra"])
        assert score == pytest.approx(0.25 * 1.2)

    def test_clamped_to_one(self, hajj_entry):
        boosted = hajj_entry.model_copy(update={"priority": 10})
        score, _ = score_entry(boosted, ["hajj"], category="takaful_products")
        assert score == 1.0


class TestIntentWeightedSearch:
    def test_categories_for_intent(self, seeded_store, lexicon):
        search = IntentWeightedSearch(seeded_store, lexicon)
        assert search.categories_for("contact_info") == ("contact", "roi_general")
        assert search.categories_for("unknown_intent") == ()
        assert search.categories_for(None) == ()

    def test_no_intent_or_unmapped_intent(self, seeded_store, lexicon):
        search = IntentWeightedSearch(seeded_store, lexicon)
        assert search.search(SearchQuery(text="hajj"), ["hajj"]) == []
        assert search.search(SearchQuery(text="hajj", intent="weather"), ["hajj"]) == []

    def test_category_weight_applied(self, seeded_store, lexicon):
        search = IntentWeightedSearch(seeded_store, lexicon)
        query = SearchQuery(text="hajj", intent="product_inquiry", category="roi_products")

        results = search.search(query, ["hajj"])

        assert [r.entry_id for r in results] == [5]
        # title + keyword + content, takaful_products weighs 1.2
        assert results[0].relevance_score == pytest.approx(0.7 * 1.2)
        assert results[0].reason == "intent_based:product_inquiry"
        assert results[0].matched_keywords == ["hajj"]

    def test_entries_without_overlap_still_listed(self, seeded_store, lexicon):
        search = IntentWeightedSearch(seeded_store, lexicon)
        query = SearchQuery(text="joindre", intent="contact_info", category="contact")

        results = search.search(query, ["joindre"])

        assert [r.entry_id for r in results] == [2]
        assert results[0].relevance_score == pytest.approx(0.2)
