"""
Immutable search vocabulary.

The thesaurus, stop words and intent→category map are global configuration:
they are loaded once from YAML, normalized, frozen and shared by reference
between the normalizer, the intent strategy and the engine façade.
"""

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

import yaml

from issa.core.exceptions import ConfigurationError
from issa.core.logging import logger
from issa.rag.retrieval.text import normalize_text

DEFAULT_LEXICON_PATH = Path(__file__).resolve().parents[2] / "resources" / "lexicon.yaml"


def _ordered_unique(items) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return tuple(seen)


@dataclass(frozen=True)
class SearchLexicon:
    """
    Frozen vocabulary shared by every retrieval component.

    Attributes:
        stop_words: normalized stop words
        function_words: normalized words used for language detection
        synonyms: term → ordered synonyms (direct entries of the thesaurus)
        reverse_synonyms: synonym → ordered thesaurus keys listing it
        intent_categories: intent name → ordered categories
        category_weights: category → weight (missing categories weigh 1.0)
        warmup_queries: frequent questions used to pre-fill the cache
    """

    stop_words: FrozenSet[str]
    function_words: FrozenSet[str]
    synonyms: Mapping[str, Tuple[str, ...]]
    reverse_synonyms: Mapping[str, Tuple[str, ...]]
    intent_categories: Mapping[str, Tuple[str, ...]]
    category_weights: Mapping[str, float]
    warmup_queries: Tuple[str, ...] = field(default_factory=tuple)

    def category_weight(self, category: str) -> float:
        return self.category_weights.get(category, 1.0)

    def categories_for_intent(self, intent: Optional[str]) -> Tuple[str, ...]:
        if not intent:
            return ()
        return self.intent_categories.get(intent, ())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchLexicon":
        """Build a lexicon from a raw mapping, normalizing every term."""
        synonyms: Dict[str, Tuple[str, ...]] = {}
        for term, values in (data.get("synonyms") or {}).items():
            key = normalize_text(str(term))
            if not key:
                continue
            merged = synonyms.get(key, ()) + tuple(normalize_text(str(v)) for v in values or [])
            synonyms[key] = _ordered_unique(v for v in merged if v != key)

        reverse: Dict[str, List[str]] = {}
        for key, values in synonyms.items():
            for value in values:
                reverse.setdefault(value, []).append(key)

        intent_categories = {
            str(intent): _ordered_unique(str(c) for c in categories or [])
            for intent, categories in (data.get("intent_categories") or {}).items()
        }

        category_weights: Dict[str, float] = {}
        for category, weight in (data.get("category_weights") or {}).items():
            if not isinstance(weight, (int, float)) or weight < 0:
                raise ConfigurationError(
                    f"Invalid weight for category {category!r}: {weight!r}",
                    context={"category": category},
                )
            category_weights[str(category)] = float(weight)

        return cls(
            stop_words=frozenset(
                word
                for word in (normalize_text(str(w)) for w in data.get("stop_words") or [])
                if word
            ),
            function_words=frozenset(
                normalize_text(str(w)) for w in data.get("function_words") or []
            ),
            synonyms=MappingProxyType(synonyms),
            reverse_synonyms=MappingProxyType({k: tuple(v) for k, v in reverse.items()}),
            intent_categories=MappingProxyType(intent_categories),
            category_weights=MappingProxyType(category_weights),
            warmup_queries=tuple(str(q) for q in data.get("warmup_queries") or []),
        )


def load_lexicon(path: Optional[str] = None) -> SearchLexicon:
    """
    Load a lexicon YAML file (the bundled one by default).

    Raises:
        ConfigurationError: missing or malformed file
    """
    lexicon_path = Path(path) if path else DEFAULT_LEXICON_PATH
    try:
        with open(lexicon_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Error reading lexicon", path=str(lexicon_path), error=str(e))
        raise ConfigurationError(f"Cannot load lexicon {lexicon_path}: {e}", cause=e)

    if not isinstance(data, dict):
        raise ConfigurationError(f"Lexicon {lexicon_path} must contain a YAML mapping")

    lexicon = SearchLexicon.from_dict(data)
    logger.info(
        "Lexicon loaded",
        path=str(lexicon_path),
        synonyms=len(lexicon.synonyms),
        stop_words=len(lexicon.stop_words),
        intents=len(lexicon.intent_categories),
    )
    return lexicon
