"""Abstract interfaces for the snippet/recipe search system."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Hashable, Sequence

from domain.entities import (
    Document,
    InvertedIndex,
    RankingFeatures,
    SearchFilter,
    VectorMatch,
    VectorRecord,
)


class DocumentRepository(ABC):
    """The live knowledge-base corpus (snippets and recipes)."""

    @abstractmethod
    def add(self, document: Document) -> None:
        """Store or overwrite a document."""

    @abstractmethod
    def list(self) -> list[Document]:
        """Return all stored documents."""

    @abstractmethod
    def get(self, document_id: str) -> Document | None:
        """Retrieve a document by id."""


class IndexRepository(ABC):
    """Persists inverted index generations."""

    @abstractmethod
    def load(self) -> InvertedIndex | None:
        """Return the persisted index, or ``None`` when absent or unreadable."""

    @abstractmethod
    def save(self, index: InvertedIndex) -> None:
        """Persist a full generation atomically."""

    @abstractmethod
    def stamp(self) -> Hashable | None:
        """Return a marker that changes whenever a new generation is saved."""


class Embedder(ABC):
    """Turns text (documents or queries) into vector embeddings."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Return the stable identifier for this embedding model."""

    @abstractmethod
    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed a batch of document texts."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed a query. An empty list means "no embedding available"."""


class EmbeddingStore(ABC):
    """Stores document embeddings and answers similarity queries."""

    @abstractmethod
    def replace(self, records: Sequence[VectorRecord]) -> None:
        """Swap the stored vectors for ``records`` as a whole."""

    @abstractmethod
    def search_vector(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        search_filter: SearchFilter | None = None,
    ) -> list[VectorMatch]:
        """Return the closest documents with similarity in ``[0, 1]``."""

    @abstractmethod
    def count(self) -> int:
        """Return the number of stored vectors."""


class ChatProvider(ABC):
    """A chat-completion endpoint used for keyword extraction."""

    @abstractmethod
    def chat(self, prompt: str) -> str:
        """Return the model reply for ``prompt``."""


class RankingModel(ABC):
    """Scores fine-ranking feature vectors; higher is better."""

    @abstractmethod
    def predict(self, features: Sequence[RankingFeatures]) -> list[float]:
        """Return one score per feature vector."""


__all__ = [
    "DocumentRepository",
    "IndexRepository",
    "Embedder",
    "EmbeddingStore",
    "ChatProvider",
    "RankingModel",
]
