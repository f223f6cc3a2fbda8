import json
import time

import pytest
import yaml

from conftest import HashingEmbedder

from issa.core.exceptions import ExternalServiceError, ValidationError
from issa.models.knowledge import Intent, IntentEntity, KnowledgeEntry
from issa.rag.retrieval.results import ScoredEntry, SearchQuery, SearchResult
from issa.services.knowledge_service import (
    CONTEXT_ERROR_MESSAGE,
    NO_CONTEXT_MESSAGE,
    KnowledgeService,
)


class FailingLoadEmbedder(HashingEmbedder):
    def load(self):
        raise ExternalServiceError("Could not download model")


class TestSearch:
    @pytest.mark.asyncio
    async def test_definition_question_finds_takaful_entry(self, service):
        result = await service.search("qu'est-ce que le takaful")

        assert result.method == "multi_strategy"
        assert result.entries[0].entry_id == 1
        assert result.entries[0].relevance_score > 0
        assert "takaful" in result.entries[0].matched_keywords

    @pytest.mark.asyncio
    async def test_contact_intent_without_title_overlap(self, service):
        result = await service.search(
            "comment vous joindre", min_relevance=0.0, intent="contact_info"
        )

        assert result.query.category == "contact"
        ids = [s.entry_id for s in result.entries]
        assert ids[0] == 2
        services_entry = 3
        assert services_entry not in ids or ids.index(services_entry) > 0

    @pytest.mark.asyncio
    async def test_misspelled_query_found_by_fuzzy_strategy(self, service):
        result = await service.search("assurence islamique", min_relevance=0.0)
        assert 1 in [s.entry_id for s in result.entries]

    @pytest.mark.asyncio
    async def test_truncation_and_total_found(self, service):
        result = await service.search("takaful", max_results=1, min_relevance=0.0)
        assert len(result.entries) == 1
        assert result.total_found >= 2
        assert result.processing_time_ms >= 0

    @pytest.mark.asyncio
    async def test_results_respect_threshold_and_order(self, service):
        result = await service.search("takaful hajj douala", min_relevance=0.2)
        scores = [s.relevance_score for s in result.entries]
        assert scores == sorted(scores, reverse=True)
        assert all(score >= 0.2 for score in scores)

    @pytest.mark.asyncio
    async def test_zero_max_results(self, service):
        result = await service.search("takaful", max_results=0)
        assert result.entries == []
        assert result.total_found > 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [{"max_results": -1}, {"min_relevance": -0.1}])
    async def test_negative_bounds_rejected(self, service, kwargs):
        with pytest.raises(ValidationError):
            await service.search("takaful", **kwargs)

    @pytest.mark.asyncio
    async def test_query_without_keywords(self, service):
        result = await service.search("le la les")
        assert result.entries == []
        assert result.total_found == 0

    @pytest.mark.asyncio
    async def test_intent_model_entities_add_bonus(self, service):
        intent = Intent(
            name="contact_info", entities=[IntentEntity(type="phone", value="233 00 00 00")]
        )
        plain = await service.search("téléphone", min_relevance=0.0, intent="contact_info")
        boosted = await service.search("téléphone", min_relevance=0.0, intent=intent)

        assert boosted.query.entities == ("233 00 00 00",)
        assert boosted.entries[0].entry_id == 2
        assert boosted.entries[0].relevance_score > plain.entries[0].relevance_score

    @pytest.mark.asyncio
    async def test_explicit_category_wins(self, service):
        result = await service.search("hajj", intent="contact_info", category="takaful_products")
        assert result.query.category == "takaful_products"

    @pytest.mark.asyncio
    async def test_passed_deadline_keeps_best_effort(self, service):
        result = await service.search("takaful", deadline=time.monotonic() - 1)
        assert result.entries == []
        assert service.get_cache_stats()["keys"] == 0

    @pytest.mark.asyncio
    async def test_failing_strategy_degrades(self, service, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("index exploded")

        monkeypatch.setattr(service.lexical_index, "search", broken)
        result = await service.search("takaful", min_relevance=0.0)

        # fuzzy strategy still contributes
        assert 1 in [s.entry_id for s in result.entries]

    @pytest.mark.asyncio
    async def test_unexpected_failure_returns_empty_result(self, service, monkeypatch):
        def broken(text):
            raise RuntimeError("normalizer exploded")

        monkeypatch.setattr(service.normalizer, "analyze", broken)
        result = await service.search("takaful")
        assert result.entries == []
        assert result.method == "multi_strategy"


class TestCaching:
    @pytest.mark.asyncio
    async def test_repeated_search_hits_cache(self, service):
        first = await service.search("Takaful ?")
        second = await service.search("takaful")

        assert [s.entry_id for s in first.entries] == [s.entry_id for s in second.entries]
        assert service.get_cache_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_cached_ranking_serves_other_bounds(self, service):
        wide = await service.search("takaful", max_results=5, min_relevance=0.0)
        narrow = await service.search("takaful", max_results=1, min_relevance=0.0)

        assert narrow.entries[0].entry_id == wide.entries[0].entry_id
        assert service.get_cache_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_writes_invalidate_cache(self, service):
        await service.search("takaful")
        assert service.get_cache_stats()["keys"] == 1

        service.add_entry(
            KnowledgeEntry(category="faq", title="Takaful et épargne", content="Oui.")
        )
        assert service.get_cache_stats()["keys"] == 0

        result = await service.search("takaful", min_relevance=0.0)
        assert 6 in [s.entry_id for s in result.entries]

    @pytest.mark.asyncio
    async def test_cache_disabled(self, tmp_path, embedder, sample_entries):
        from issa.core.secure_config import Settings

        settings = Settings(
            overrides={
                "database": {"path": str(tmp_path / "nocache.db")},
                "cache": {"enabled": False},
            }
        )
        service = KnowledgeService(settings, embedder=embedder)
        try:
            service.store.add_entries(sample_entries)
            await service.search("takaful")
            await service.search("takaful")
            await service.get_context_for_query("takaful")
            assert service.get_cache_stats()["keys"] == 0
        finally:
            service.close()

    @pytest.mark.asyncio
    async def test_warmup(self, service):
        assert await service.warmup_cache(["takaful", "hajj"]) == 2
        assert service.get_cache_stats()["keys"] == 2

        await service.get_context_for_query("Takaful")
        assert service.get_cache_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_warmup_uses_lexicon_queries(self, service):
        count = await service.warmup_cache()
        assert count == len(service.lexicon.warmup_queries)

    def test_clear_cache(self, service):
        service.cache.set("k", "v")
        assert service.clear_cache() == 1


class TestContext:
    @pytest.mark.asyncio
    async def test_context_lists_top_entries(self, service):
        context = await service.get_context_for_query("takaful")

        assert context.startswith("Informations pertinentes :\n\n")
        assert "**Takaful Définition**\nLe takaful est une assurance islamique" in context
        assert context.count("**") <= 6

    @pytest.mark.asyncio
    async def test_no_match(self, service):
        assert await service.get_context_for_query("xyzzy qwerty") == NO_CONTEXT_MESSAGE

    @pytest.mark.asyncio
    async def test_failure_returns_error_message_not_cached(self, service, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(service, "_lexical_hits", broken)
        assert await service.get_context_for_query("takaful") == CONTEXT_ERROR_MESSAGE
        assert service.get_cache_stats()["keys"] == 0

    @pytest.mark.asyncio
    async def test_format_context_for_ai(self, service):
        result = await service.search("hajj", intent="product_inquiry")
        context = service.format_context_for_ai(result)

        assert context.search_query == "hajj"
        assert context.intent == "product_inquiry"
        assert context.category == "roi_products"
        assert context.formatted_context.startswith("[Source 1: Pèlerinage Hajj]\n")
        assert "Mots-clés: hajj\n" in context.formatted_context
        assert "Pertinence: " in context.formatted_context
        assert context.formatted_context.endswith("---")

    def test_format_context_renders_percentages(self, service):
        entry = service.store.get_entry(1)
        query = SearchQuery(text="takaful")
        result = SearchResult(
            entries=[ScoredEntry(entry, 0.856), ScoredEntry(entry, 1.06), ScoredEntry(entry, 0.4)],
            total_found=3,
            method="multi_strategy",
            processing_time_ms=1.0,
            query=query,
        )

        context = service.format_context_for_ai(result, max_entries=2)

        assert len(context.relevant_entries) == 2
        assert "Pertinence: 86%" in context.formatted_context
        assert "Pertinence: 106%" in context.formatted_context
        assert "[Source 3" not in context.formatted_context
        assert "Mots-clés: takaful, définition" in context.formatted_context
        assert context.formatted_context.count("\n---\n\n[Source") == 1


class TestHybridSearch:
    @pytest.mark.asyncio
    async def test_lexical_only_fusion(self, service):
        results = await service.search_hybrid("takaful", top_k=5)

        assert results
        assert all(r.reason == "rrf" for r in results)
        assert results[0].relevance_score == pytest.approx(1 / 61)

    @pytest.mark.asyncio
    async def test_top_k_bounds(self, service):
        assert await service.search_hybrid("takaful", top_k=0) == []
        with pytest.raises(ValidationError):
            await service.search_hybrid("takaful", top_k=-1)

    @pytest.mark.asyncio
    async def test_search_lexical_returns_entries(self, service):
        entries = await service.search_lexical("douala")
        assert [e.id for e in entries] == [4]

    @pytest.mark.asyncio
    async def test_vectors_enabled(self, service, embedder):
        stats = await service.enable_vector_search()
        assert stats["enabled"] is True
        assert stats["pending"] == 5

        report = await service.wait_for_vectors()
        assert report.processed == 5
        assert service.get_vector_stats()["cached_embeddings"] == 5

        results = await service.search_hybrid("pèlerins hajj", top_k=2)
        assert results[0].entry_id == 5
        # found by both lists: lexical rank 0 plus a boosted vector term
        assert results[0].relevance_score > 2 / 61

    @pytest.mark.asyncio
    async def test_vectors_reloaded_from_database(self, service, settings, embedder):
        await service.enable_vector_search()
        await service.wait_for_vectors()

        second = KnowledgeService(settings, embedder=HashingEmbedder())
        try:
            stats = await second.enable_vector_search()
            assert stats["loaded"] == 5
            assert stats["pending"] == 0
            assert await second.wait_for_vectors() is None
        finally:
            second.close()

    @pytest.mark.asyncio
    async def test_vector_index_follows_writes(self, service):
        await service.enable_vector_search()
        await service.wait_for_vectors()

        added = service.add_entry(
            KnowledgeEntry(category="faq", title="Omra", content="Le petit pèlerinage.")
        )
        assert added.id in service.vector_index

        service.update_entry(added.id, is_active=False)
        assert added.id not in service.vector_index

        service.delete_entry(4)
        assert 4 not in service.vector_index

    @pytest.mark.asyncio
    async def test_enable_failure_keeps_vectors_disabled(self, settings):
        service = KnowledgeService(settings, embedder=FailingLoadEmbedder())
        try:
            stats = await service.enable_vector_search()
            assert stats["enabled"] is False
            assert service.vector_search_enabled is False
            assert await service.search_hybrid("takaful") == []
        finally:
            service.close()

    @pytest.mark.asyncio
    async def test_entry_deleted_during_background_embedding(self, service):
        await service.enable_vector_search()
        service.delete_entry(3)

        await service.wait_for_vectors()

        assert 3 not in service.vector_index
        assert service.get_vector_stats()["cached_embeddings"] == 4

    @pytest.mark.asyncio
    async def test_vector_failure_falls_back_to_lexical(self, service, monkeypatch):
        await service.enable_vector_search()
        await service.wait_for_vectors()

        def broken(entries, vector, top_k):
            raise RuntimeError("fusion exploded")

        monkeypatch.setattr(service.reranker, "reciprocal_rank_fusion", broken)
        results = await service.search_hybrid("takaful", top_k=1)

        assert len(results) == 1
        assert results[0].reason == "lexical"


class TestMaintenance:
    def test_load_yaml_file(self, tmp_path, settings):
        path = tmp_path / "entries.yaml"
        path.write_text(
            yaml.safe_dump(
                {"entries": [{"category": "faq", "title": "Question", "content": "Réponse"}]},
                allow_unicode=True,
            ),
            encoding="utf-8",
        )
        service = KnowledgeService(settings)
        try:
            added = service.load_entries(path)
            assert [e.id for e in added] == [1]
        finally:
            service.close()

    def test_load_json_list(self, tmp_path, service):
        path = tmp_path / "entries.json"
        path.write_text(
            json.dumps([{"category": "legal", "title": "Résiliation", "content": "Préavis."}]),
            encoding="utf-8",
        )
        added = service.load_entries(str(path))
        assert added[0].id == 6
        assert service.store.count() == 6

    def test_invalid_entry_loads_nothing(self, tmp_path, service):
        path = tmp_path / "entries.yaml"
        path.write_text(
            yaml.safe_dump(
                [
                    {"category": "faq", "title": "Valide", "content": "Oui"},
                    {"category": "unknown", "title": "Invalide", "content": "Non"},
                ]
            ),
            encoding="utf-8",
        )
        with pytest.raises(ValidationError):
            service.load_entries(path)
        assert service.store.count() == 5

    def test_skip_existing_titles(self, tmp_path, service):
        path = tmp_path / "entries.yaml"
        path.write_text(
            yaml.safe_dump(
                [
                    {"category": "contact", "title": "Contact ROI", "content": "Doublon"},
                    {"category": "faq", "title": "Horaires", "content": "Du lundi au vendredi."},
                ],
                allow_unicode=True,
            ),
            encoding="utf-8",
        )

        added = service.load_entries(path, skip_existing=True)

        assert [entry.title for entry in added] == ["Horaires"]
        assert service.store.count() == 6
        assert service.load_entries(path, skip_existing=True) == []

    def test_bundled_seed_file(self, settings):
        from issa.cli import SEED_FILE

        service = KnowledgeService(settings)
        try:
            added = service.load_entries(SEED_FILE)
            assert len(added) == 13
            assert all(entry.is_active for entry in added)
        finally:
            service.close()

    def test_rebuild_index(self, service):
        if not service.db.fts_available:
            pytest.skip("SQLite built without FTS5")
        service.cache.set("k", "v")
        assert service.rebuild_index() == 5
        assert service.get_cache_stats()["keys"] == 0
