"""Domain entities for the snippet/recipe search system."""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping


class DocumentType(str, Enum):
    """Kind of knowledge-base item."""

    SNIPPET = "snippet"
    RECIPE = "recipe"


class SearchStrategy(str, Enum):
    """Recall strategy resolved once per search call."""

    KEYWORD_ONLY = "keyword"
    SEMANTIC_ONLY = "semantic"
    FUSED = "fused"


@dataclass(frozen=True, slots=True)
class Document:
    """A snippet or recipe from the knowledge base."""

    id: str
    title: str
    content: str = ""
    code: str = ""
    type: DocumentType = DocumentType.RECIPE
    trigger: str | None = None
    language: str | None = None
    category: str | None = None
    updated_at: datetime | None = None
    usage_count: int = 0
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def index_text(self) -> str:
        """Text that keyword recall and BM25 see."""
        return f"{self.title}\n{self.content}"


@dataclass(frozen=True, slots=True)
class Query:
    """A user query after normalization and tokenization."""

    raw: str
    normalized: str
    tokens: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.normalized


@dataclass(frozen=True, slots=True)
class SearchFilter:
    """Narrows recall by document attributes. ``None`` means "any"."""

    type: DocumentType | None = None
    category: str | None = None
    language: str | None = None

    def matches(self, document: Document) -> bool:
        if self.type is not None and document.type != self.type:
            return False
        if self.category is not None and (document.category or "").lower() != self.category.lower():
            return False
        if self.language is not None and (document.language or "").lower() != self.language.lower():
            return False
        return True

    def as_dict(self) -> dict[str, str | None]:
        return {
            "type": self.type.value if self.type else None,
            "category": self.category,
            "language": self.language,
        }


@dataclass(frozen=True, slots=True)
class ScoreWeights:
    """Weights of the composite score. Defaults sum to 1."""

    bm25: float = 0.4
    semantic: float = 0.4
    freshness: float = 0.1
    popularity: float = 0.1

    def merged(self, overrides: Mapping[str, float] | None) -> "ScoreWeights":
        """Return a copy with the known keys of ``overrides`` applied."""
        if not overrides:
            return self
        known = {item.name for item in fields(self)}
        values = {key: float(value) for key, value in overrides.items() if key in known}
        return replace(self, **values)

    def as_dict(self) -> dict[str, float]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(frozen=True, slots=True)
class RankingContext:
    """Caller context used by the fine ranker's match features."""

    language: str | None = None
    category: str | None = None


@dataclass(slots=True)
class SearchOptions:
    """Per-call options. Unset fields fall back to settings, then defaults."""

    semantic: bool | None = None
    ranking: bool | None = None
    fine_ranking: bool | None = None
    limit: int | None = None
    filter: SearchFilter | None = None
    weights: ScoreWeights | Mapping[str, float] | None = None
    cache: bool | None = None
    use_index: bool | None = None
    rebuild_index: bool = False
    context: RankingContext | None = None


@dataclass(frozen=True, slots=True)
class SearchSettings:
    """Process-level defaults for search behaviour."""

    semantic: bool = False
    ranking: bool = True
    fine_ranking: bool = False
    cache: bool = True
    use_index: bool = True
    limit: int = 10
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    bm25_k1: float = 1.2
    bm25_b: float = 0.75
    cache_max_entries: int = 200
    cache_ttl_seconds: float = 300.0
    provider_timeout_seconds: float = 5.0
    index_embed_timeout_seconds: float = 120.0
    fine_top_n: int = 40
    ai_keyword_min_length: int = 16
    popularity_cap: int = 1000
    freshness_decay_days: float = 30.0


@dataclass(frozen=True, slots=True)
class ResolvedOptions:
    """Effective options after resolution; every field is concrete."""

    strategy: SearchStrategy
    semantic: bool
    ranking: bool
    fine_ranking: bool
    limit: int
    filter: SearchFilter
    weights: ScoreWeights
    cache: bool
    use_index: bool
    rebuild_index: bool
    context: RankingContext

    def cache_fields(self) -> dict[str, Any]:
        """Every field that affects the ranked output."""
        return {
            "strategy": self.strategy.value,
            "semantic": self.semantic,
            "ranking": self.ranking,
            "fine_ranking": self.fine_ranking,
            "limit": self.limit,
            "filter": self.filter.as_dict(),
            "weights": self.weights.as_dict(),
            "use_index": self.use_index,
            "context": {"language": self.context.language, "category": self.context.category},
        }


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    bm25: float = 0.0
    semantic: float = 0.0
    freshness: float = 0.0
    popularity: float = 0.0


@dataclass(slots=True)
class ScoredCandidate:
    """A document moving through fusion and fine ranking."""

    document: Document
    scores: ScoreBreakdown = field(default_factory=ScoreBreakdown)
    composite_score: float = 0.0
    match_count: int = 0
    matched_tokens: tuple[str, ...] = ()
    fine_score: float | None = None


@dataclass(frozen=True, slots=True)
class RankingFeatures:
    """Per-candidate features consumed by a fine-ranking model."""

    bm25: float
    semantic: float
    query_length: int
    title_length: int
    content_length: int
    freshness: float
    popularity: float
    language_match: int
    category_match: int

    def as_list(self) -> list[float]:
        return [float(getattr(self, item.name)) for item in fields(self)]


@dataclass(frozen=True, slots=True)
class SearchResult:
    """Result item handed to CLI and HTTP callers."""

    id: str
    title: str
    name: str
    content: str
    code: str
    type: DocumentType
    trigger: str | None = None
    similarity: float | None = None
    composite_score: float | None = None
    scores: ScoreBreakdown | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "title": self.title,
            "name": self.name,
            "content": self.content,
            "code": self.code,
            "type": self.type.value,
        }
        if self.trigger:
            payload["trigger"] = self.trigger
        if self.similarity is not None:
            payload["similarity"] = self.similarity
        if self.composite_score is not None:
            payload["compositeScore"] = self.composite_score
        return payload


@dataclass(frozen=True, slots=True)
class InvertedIndex:
    """One generation of the keyword index.

    ``postings`` maps a token to the ids of documents containing it. Every id
    in ``postings`` is present in ``documents``; a generation is never
    modified after construction, rebuilds produce a new object.
    """

    documents: tuple[Document, ...]
    postings: Mapping[str, frozenset[str]]
    created_at: int

    def document_frequency(self, token: str) -> int:
        return len(self.postings.get(token, ()))

    def lookup(self, tokens: tuple[str, ...] | list[str]) -> dict[str, list[str]]:
        """Union of postings: document id -> query tokens it contains."""
        matched: dict[str, list[str]] = {}
        for token in tokens:
            for doc_id in self.postings.get(token, ()):
                matched.setdefault(doc_id, []).append(token)
        return matched

    @property
    def size(self) -> int:
        return len(self.documents)


@dataclass(frozen=True, slots=True)
class VectorMatch:
    document_id: str
    similarity: float


@dataclass(frozen=True, slots=True)
class VectorRecord:
    """A stored document embedding plus the attributes filters need."""

    document_id: str
    vector: tuple[float, ...]
    type: DocumentType
    category: str | None = None
    language: str | None = None


__all__ = [
    "DocumentType",
    "SearchStrategy",
    "Document",
    "Query",
    "SearchFilter",
    "ScoreWeights",
    "RankingContext",
    "SearchOptions",
    "SearchSettings",
    "ResolvedOptions",
    "ScoreBreakdown",
    "ScoredCandidate",
    "RankingFeatures",
    "SearchResult",
    "InvertedIndex",
    "VectorMatch",
    "VectorRecord",
]
