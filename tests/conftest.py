"""
Shared fixtures: temporary databases, sample knowledge and fake embedders.
"""

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Sequence

# Keep test logs out of the working tree; must be set before issa is imported
os.environ.setdefault("ISSA_LOG_FILE", str(Path(tempfile.gettempdir()) / "issa-tests.log"))

import pytest  # noqa: E402

from issa.core.database import DatabaseManager  # noqa: E402
from issa.core.exceptions import ExternalServiceError  # noqa: E402
from issa.core.secure_config import Settings  # noqa: E402
from issa.knowledge.store import KnowledgeStore  # noqa: E402
from issa.models.knowledge import KnowledgeEntry  # noqa: E402
from issa.rag.retrieval.lexicon import SearchLexicon, load_lexicon  # noqa: E402
from issa.rag.retrieval.normalizer import QueryNormalizer  # noqa: E402
from issa.rag.retrieval.text import tokenize  # noqa: E402
from issa.services.knowledge_service import KnowledgeService  # noqa: E402


class HashingEmbedder:
    """Bag-of-words embedder: every token is hashed into one of `dimension` slots."""

    def __init__(self, dimension: int = 64, model_name: str = "test/hashing-embedder"):
        self.dimension = dimension
        self._model_name = model_name
        self.calls = 0

    @property
    def model_name(self) -> str:
        return self._model_name

    def is_ready(self) -> bool:
        return True

    def embed(self, text: str) -> List[float]:
        self.calls += 1
        values = [0.0] * self.dimension
        for token in tokenize(text):
            slot = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimension
            values[slot] += 1.0
        norm = sum(v * v for v in values) ** 0.5
        return [v / norm for v in values] if norm else values


class UnloadableEmbedder(HashingEmbedder):
    """Embedder whose model never loads."""

    def __init__(self) -> None:
        super().__init__()
        self.load_attempts = 0

    def is_ready(self) -> bool:
        return False

    def load(self) -> None:
        self.load_attempts += 1
        raise ExternalServiceError("Could not download model")


class TableEmbedder:
    """Returns the vector registered for an exact text."""

    def __init__(
        self,
        table: Dict[str, Sequence[float]],
        model_name: str = "test/table-embedder",
        default: Optional[Sequence[float]] = None,
    ):
        self.table = table
        self.default = default
        self._model_name = model_name

    @property
    def model_name(self) -> str:
        return self._model_name

    def is_ready(self) -> bool:
        return True

    def embed(self, text: str) -> List[float]:
        if text in self.table:
            return list(self.table[text])
        if self.default is not None:
            return list(self.default)
        raise KeyError(f"No vector registered for {text!r}")


SAMPLE_ENTRIES = [
    {
        "category": "takaful_definition",
        "title": "Takaful Définition",
        "content": "Le takaful est une assurance islamique fondée sur l'entraide.",
        "keywords": ["takaful", "définition"],
    },
    {
        "category": "contact",
        "title": "Contact ROI",
        "content": "Appelez le service client au 233 00 00 00.",
        "keywords": ["téléphone"],
    },
    {
        "category": "takaful_services",
        "title": "Services Takaful",
        "content": "Nos produits takaful pour les familles et les entreprises.",
        "keywords": ["services"],
    },
    {
        "category": "roi_agences",
        "title": "Agences Douala",
        "content": "Notre agence de Douala est ouverte du lundi au vendredi.",
        "keywords": ["agence", "douala"],
    },
    {
        "category": "takaful_products",
        "title": "Pèlerinage Hajj",
        "content": "Couverture des pèlerins pendant le hajj.",
        "keywords": ["hajj"],
    },
]


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(str(tmp_path / "issa-test.db"))
    yield manager
    manager.close()


@pytest.fixture
def store(db):
    return KnowledgeStore(db)


@pytest.fixture
def sample_entries() -> List[KnowledgeEntry]:
    return [KnowledgeEntry(**data) for data in SAMPLE_ENTRIES]


@pytest.fixture
def seeded_store(store, sample_entries):
    """Store holding the sample entries; ids 1..5 in list order."""
    store.add_entries(sample_entries)
    return store


@pytest.fixture(scope="session")
def lexicon() -> SearchLexicon:
    return load_lexicon()


@pytest.fixture
def normalizer(lexicon) -> QueryNormalizer:
    return QueryNormalizer(lexicon)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(overrides={"database": {"path": str(tmp_path / "service.db")}})


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def service(settings, embedder, sample_entries):
    """KnowledgeService over a temporary database with the sample entries loaded."""
    knowledge_service = KnowledgeService(settings, embedder=embedder)
    knowledge_service.store.add_entries(sample_entries)
    yield knowledge_service
    knowledge_service.close()
