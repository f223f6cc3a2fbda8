"""
Keyword-overlap scoring shared by the keyword and intent strategies.

Per query keyword:
- +0.30 if it appears in the title
- +0.25 if it appears in one of the entry keywords
- +0.15 if it appears in the content
Per entry:
- +0.20 if the requested category equals the entry category
- +0.10 per entity value found in the content
- × (1 + priority * 0.1)
- clamped to 1.0
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from issa.models.knowledge import KnowledgeEntry
from issa.rag.retrieval.text import normalize_text

TITLE_MATCH = 0.3
KEYWORD_MATCH = 0.25
CONTENT_MATCH = 0.15
CATEGORY_MATCH = 0.2
ENTITY_MATCH = 0.1
PRIORITY_FACTOR = 0.1
MAX_SCORE = 1.0


def score_entry(
    entry: KnowledgeEntry,
    keywords: Sequence[str],
    *,
    category: Optional[str] = None,
    entities: Iterable[str] = (),
) -> Tuple[float, List[str]]:
    """
    Score one entry against the query keywords.

    Args:
        entry: Candidate entry
        keywords: Normalized query keywords
        category: Category requested by the caller or derived from the intent
        entities: Entity values extracted upstream

    Returns:
        (score clamped to 1.0, keywords that matched somewhere)
    """
    title = normalize_text(entry.title)
    content = normalize_text(entry.content)
    entry_keywords = [normalize_text(k) for k in entry.keywords]

    score = 0.0
    matched: List[str] = []

    for keyword in keywords:
        hit = False
        if keyword in title:
            score += TITLE_MATCH
            hit = True
        if any(keyword in entry_keyword for entry_keyword in entry_keywords):
            score += KEYWORD_MATCH
            hit = True
        if keyword in content:
            score += CONTENT_MATCH
            hit = True
        if hit:
            matched.append(keyword)

    if category and entry.category == category:
        score += CATEGORY_MATCH

    for value in entities:
        normalized_value = normalize_text(value)
        if normalized_value and normalized_value in content:
            score += ENTITY_MATCH

    if entry.priority:
        score *= 1 + entry.priority * PRIORITY_FACTOR

    return min(score, MAX_SCORE), matched
