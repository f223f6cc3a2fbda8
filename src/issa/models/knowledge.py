"""
Knowledge base models.
Defines the entries the retrieval engine ranks and the intent it receives.
"""

from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import Field, field_validator
from issa.models.base import IssaBaseModel, TimestampMixin


class KnowledgeCategory(str, Enum):
    """
    Knowledge entry categories.
    Grouped by the part of the business they describe.
    """

    # Company
    ROI_GENERAL = "roi_general"
    ROI_PRODUCTS = "roi_products"
    ROI_SERVICES = "roi_services"
    ROI_AGENCES = "roi_agences"
    ROI_CONTACT = "roi_contact"

    # Takaful (islamic insurance)
    TAKAFUL_GENERAL = "takaful_general"
    TAKAFUL_DEFINITION = "takaful_definition"
    TAKAFUL_PRINCIPLES = "takaful_principles"
    TAKAFUL_PRODUCTS = "takaful_products"
    TAKAFUL_SERVICES = "takaful_services"
    TAKAFUL_GOUVERNANCE = "takaful_gouvernance"
    TAKAFUL_FONCTIONNEMENT = "takaful_fonctionnement"

    # Assistant persona
    ISSA_IDENTITY = "issa_identity"

    # Insurance lines
    AUTO_INSURANCE = "auto_insurance"
    HEALTH_INSURANCE = "health_insurance"
    HOME_INSURANCE = "home_insurance"
    LIFE_INSURANCE = "life_insurance"

    # Customer support
    PRICING = "pricing"
    CLAIMS = "claims"
    FAQ = "faq"
    LEGAL = "legal"
    CONTACT = "contact"

    OTHER = "other"  # Fallback


class KnowledgeEntry(IssaBaseModel, TimestampMixin):
    """
    One knowledge base article.
    Owned by the KnowledgeStore; the retrieval engine only reads it.
    """

    id: Optional[int] = Field(None, ge=1, description="Stable integer id assigned by the store")
    category: KnowledgeCategory = Field(..., description="Entry category")
    title: str = Field(..., min_length=1, description="Entry title")
    content: str = Field(..., description="Entry body")
    keywords: List[str] = Field(default_factory=list, description="Curated search keywords")
    tags: List[str] = Field(default_factory=list, description="Free-form tags")
    priority: Optional[int] = Field(None, ge=0, le=10, description="Editorial boost 0-10")
    is_active: bool = Field(True, description="Inactive entries never appear in results")
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Open map of opaque values (source, language...)"
    )

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title cannot be blank")
        return value

    def to_embedding_text(self) -> str:
        """Text embedded by the vector index."""
        return f"{self.title}\n{self.content}"

    def to_search_text(self) -> str:
        """Concatenation scanned by the fuzzy matcher."""
        return " ".join([self.title, self.content, " ".join(self.keywords)])


class IntentEntity(IssaBaseModel):
    """Entity extracted from the user message by the intent classifier."""

    type: str = Field(..., description="Entity type (product_name, location, amount...)")
    value: str = Field(..., description="Surface value found in the message")
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class Intent(IssaBaseModel):
    """
    Conversational intent detected upstream.
    The engine only reads its name and entities.
    """

    name: str = Field(..., min_length=1, description="Intent label (contact_info, support...)")
    confidence: float = Field(1.0, ge=0.0, le=1.0)
    entities: List[IntentEntity] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
