"""Dependency wiring and environment settings for the search core."""
from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Callable, Literal, Mapping

from application.services.fine_ranker import LinearRankingModel
from application.use_cases.search import SearchService
from domain.entities import ScoreWeights, SearchSettings
from domain.interfaces import ChatProvider, DocumentRepository, Embedder, EmbeddingStore, IndexRepository, RankingModel
from infrastructure.embedding.http_embedder import HttpEmbedder
from infrastructure.embedding.mean_word_hash_embedder import MeanWordHashEmbedder
from infrastructure.query.llm_keyword_extractor import LLMKeywordExtractor, LLMProviderConfig
from infrastructure.repositories.project_corpus import ProjectCorpusRepository
from infrastructure.repositories.sqlite_document_repository import SqliteDocumentRepository
from infrastructure.storage.in_memory_embedding_store import InMemoryEmbeddingStore
from infrastructure.storage.json_index_repository import JsonIndexRepository

logger = logging.getLogger(__name__)

CorpusName = Literal["sqlite", "project"]
EmbedderName = Literal["none", "hash", "sentence-transformers", "ollama", "openai"]
VectorStoreName = Literal["memory", "hnsw"]
KeywordExtractorName = Literal["none", "ollama", "openai"]
RankingModelName = Literal["none", "linear"]

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}

# environment variable -> SearchSettings field
_BOOL_SETTINGS = {
    "ASD_SEARCH_SEMANTIC": "semantic",
    "ASD_SEARCH_RANKING": "ranking",
    "ASD_SEARCH_FINE_RANKING": "fine_ranking",
    "ASD_SEARCH_CACHE": "cache",
    "ASD_SEARCH_USE_INDEX": "use_index",
}
_INT_SETTINGS = {
    "ASD_SEARCH_LIMIT": "limit",
    "ASD_SEARCH_CACHE_SIZE": "cache_max_entries",
    "ASD_SEARCH_FINE_TOP_N": "fine_top_n",
    "ASD_SEARCH_AI_MIN_LENGTH": "ai_keyword_min_length",
    "ASD_SEARCH_POPULARITY_CAP": "popularity_cap",
}
_FLOAT_SETTINGS = {
    "ASD_SEARCH_BM25_K1": "bm25_k1",
    "ASD_SEARCH_BM25_B": "bm25_b",
    "ASD_SEARCH_CACHE_TTL": "cache_ttl_seconds",
    "ASD_SEARCH_PROVIDER_TIMEOUT": "provider_timeout_seconds",
    "ASD_SEARCH_INDEX_EMBED_TIMEOUT": "index_embed_timeout_seconds",
    "ASD_SEARCH_FRESHNESS_DAYS": "freshness_decay_days",
}
_WEIGHT_SETTINGS = {
    "ASD_SEARCH_W_BM25": "bm25",
    "ASD_SEARCH_W_SEMANTIC": "semantic",
    "ASD_SEARCH_W_FRESHNESS": "freshness",
    "ASD_SEARCH_W_POPULARITY": "popularity",
}


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_positive_int(value: str) -> int:
    parsed = int(value.strip())
    if parsed <= 0:
        raise ValueError(f"must be positive: {value!r}")
    return parsed


def _parse_non_negative_float(value: str) -> float:
    parsed = float(value.strip())
    if parsed < 0 or math.isnan(parsed):
        raise ValueError(f"must be a non-negative number: {value!r}")
    return parsed


def load_search_settings(environ: Mapping[str, str] | None = None) -> SearchSettings:
    """Build :class:`SearchSettings` from ``ASD_SEARCH_*`` variables.

    Malformed values are logged and the built-in default is kept.
    """

    env = os.environ if environ is None else environ
    values: dict[str, object] = {}
    weights: dict[str, float] = {}
    groups: list[tuple[Mapping[str, str], Callable[[str], object], dict]] = [
        (_BOOL_SETTINGS, _parse_bool, values),
        (_INT_SETTINGS, _parse_positive_int, values),
        (_FLOAT_SETTINGS, _parse_non_negative_float, values),
        (_WEIGHT_SETTINGS, _parse_non_negative_float, weights),
    ]
    for mapping, parser, target in groups:
        for variable, name in mapping.items():
            raw = env.get(variable)
            if raw is None or raw.strip() == "":
                continue
            try:
                target[name] = parser(raw)
            except ValueError as exc:
                logger.warning("Ignoring %s=%r: %s", variable, raw, exc)
    if weights:
        values["weights"] = ScoreWeights().merged(weights)
    known = {item.name for item in fields(SearchSettings)}
    return SearchSettings(**{name: value for name, value in values.items() if name in known})


@dataclass(slots=True)
class Container:
    """Simple container bundling concrete infrastructure implementations."""

    document_repository: DocumentRepository
    index_repository: IndexRepository
    settings: SearchSettings
    embedder: Embedder | None = None
    embedding_store: EmbeddingStore | None = None
    keyword_extractor: ChatProvider | None = None
    ranking_model: RankingModel | None = None


@dataclass(slots=True)
class ContainerConfig:
    """Configuration for selecting corpus, providers and storage."""

    corpus: CorpusName = "sqlite"
    project_root: str = "."
    db_path: str = "autosnippet.db"
    index_path: str = "autosnippet-search-index.json"
    embedder: EmbedderName = "none"
    vector_store: VectorStoreName = "memory"
    vector_index_dir: str | None = None
    keyword_extractor: KeywordExtractorName = "none"
    ranking_model: RankingModelName = "none"
    models_dir: str | None = None
    sentence_transformers_model: str | None = None
    settings: SearchSettings | None = None
    environ: Mapping[str, str] | None = field(default=None, repr=False)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ContainerConfig":
        env = os.environ if environ is None else environ
        return cls(
            corpus=env.get("ASD_CORPUS", "sqlite"),  # type: ignore[arg-type]
            project_root=env.get("ASD_PROJECT_ROOT", "."),
            db_path=env.get("ASD_DB_PATH", "autosnippet.db"),
            index_path=env.get("ASD_INDEX_PATH", "autosnippet-search-index.json"),
            embedder=env.get("ASD_EMBEDDER", "none"),  # type: ignore[arg-type]
            vector_store=env.get("ASD_VECTOR_STORE", "memory"),  # type: ignore[arg-type]
            vector_index_dir=env.get("ASD_VECTOR_INDEX_DIR"),
            keyword_extractor=env.get("ASD_KEYWORD_EXTRACTOR", "none"),  # type: ignore[arg-type]
            ranking_model=env.get("ASD_RANKING_MODEL", "none"),  # type: ignore[arg-type]
            models_dir=env.get("ASD_MODELS_DIR"),
            sentence_transformers_model=env.get("ASD_ST_MODEL"),
            environ=env,
        )


def _resolve_model_reference(model_ref: str, cfg: ContainerConfig) -> str:
    """Prefer a pre-downloaded copy under ``models_dir`` when it exists."""
    if cfg.models_dir:
        local = Path(cfg.models_dir) / model_ref
        if local.is_dir():
            return str(local)
    return model_ref


def _build_corpus(cfg: ContainerConfig) -> DocumentRepository:
    if cfg.corpus == "sqlite":
        return SqliteDocumentRepository(cfg.db_path)
    if cfg.corpus == "project":
        return ProjectCorpusRepository(cfg.project_root)
    raise ValueError(f"Unknown corpus '{cfg.corpus}'")


def _build_embedder(cfg: ContainerConfig) -> Embedder | None:
    if cfg.embedder == "none":
        return None
    if cfg.embedder == "hash":
        return MeanWordHashEmbedder()
    if cfg.embedder == "sentence-transformers":
        from infrastructure.embedding.sentence_transformers_embedder import (  # noqa: PLC0415
            DEFAULT_MODEL,
            SentenceTransformersConfig,
            SentenceTransformersEmbedder,
        )

        model_name = _resolve_model_reference(cfg.sentence_transformers_model or DEFAULT_MODEL, cfg)
        return SentenceTransformersEmbedder(SentenceTransformersConfig(model_name=model_name))
    if cfg.embedder in ("ollama", "openai"):
        return HttpEmbedder(LLMProviderConfig.from_env(cfg.embedder))
    raise ValueError(f"Unknown embedder '{cfg.embedder}'")


def _build_vector_store(cfg: ContainerConfig) -> EmbeddingStore:
    if cfg.vector_store == "memory":
        return InMemoryEmbeddingStore()
    if cfg.vector_store == "hnsw":
        from infrastructure.storage.hnsw_embedding_store import HnswEmbeddingStore  # noqa: PLC0415

        return HnswEmbeddingStore(index_root=cfg.vector_index_dir)
    raise ValueError(f"Unknown vector store '{cfg.vector_store}'")


def _build_keyword_extractor(cfg: ContainerConfig) -> ChatProvider | None:
    if cfg.keyword_extractor == "none":
        return None
    if cfg.keyword_extractor in ("ollama", "openai"):
        return LLMKeywordExtractor(LLMProviderConfig.from_env(cfg.keyword_extractor))
    raise ValueError(f"Unknown keyword extractor '{cfg.keyword_extractor}'")


def _build_ranking_model(cfg: ContainerConfig) -> RankingModel | None:
    if cfg.ranking_model == "none":
        return None
    if cfg.ranking_model == "linear":
        return LinearRankingModel()
    raise ValueError(f"Unknown ranking model '{cfg.ranking_model}'")


def build_default_container(config: ContainerConfig | None = None) -> Container:
    """Instantiate the default infrastructure stack."""

    cfg = config or ContainerConfig()
    embedder = _build_embedder(cfg)
    return Container(
        document_repository=_build_corpus(cfg),
        index_repository=JsonIndexRepository(cfg.index_path),
        settings=cfg.settings or load_search_settings(cfg.environ),
        embedder=embedder,
        embedding_store=_build_vector_store(cfg) if embedder is not None else None,
        keyword_extractor=_build_keyword_extractor(cfg),
        ranking_model=_build_ranking_model(cfg),
    )


def build_search_service(container: Container | None = None) -> SearchService:
    """Wire a :class:`SearchService` from ``container`` (default stack if omitted)."""

    current = container or build_default_container()
    logger.info(
        "Search service: corpus=%s embedder=%s keyword_extractor=%s",
        type(current.document_repository).__name__,
        current.embedder.model_id if current.embedder is not None else "none",
        type(current.keyword_extractor).__name__ if current.keyword_extractor is not None else "none",
    )
    return SearchService(
        current.document_repository,
        current.index_repository,
        settings=current.settings,
        embedder=current.embedder,
        embedding_store=current.embedding_store,
        keyword_extractor=current.keyword_extractor,
        ranking_model=current.ranking_model,
    )


__all__ = [
    "Container",
    "ContainerConfig",
    "build_default_container",
    "build_search_service",
    "load_search_settings",
]
