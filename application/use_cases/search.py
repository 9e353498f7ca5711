"""Use case that searches the snippet/recipe knowledge base."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

from application.services.bm25_index import BM25Index
from application.services.cancellation import CancellationToken, call_with_timeout
from application.services.fine_ranker import FineRanker
from application.services.fusion import FusionEngine, KeywordHit, SemanticHit
from application.services.inverted_index import IndexSnapshot, IndexStore
from application.services.query_normalizer import normalize_query
from application.services.result_cache import ResultCache, make_cache_key
from application.services.semantic_recall import SemanticRecallAdapter
from application.services.tokenizer import KeywordSplitter, tokenize_query
from application.use_cases.build_index import build_index as run_build_index
from application.use_cases.build_index import load_corpus, vector_records
from domain.entities import (
    Document,
    Query,
    RankingContext,
    ResolvedOptions,
    ScoredCandidate,
    ScoreWeights,
    SearchFilter,
    SearchOptions,
    SearchResult,
    SearchSettings,
    SearchStrategy,
)
from domain.errors import SearchCancelledError
from domain.interfaces import (
    ChatProvider,
    DocumentRepository,
    Embedder,
    EmbeddingStore,
    IndexRepository,
    RankingModel,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


class _CorpusView:
    """Documents visible to one request: the index snapshot or the live corpus."""

    def __init__(self, snapshot: IndexSnapshot | None, repository: DocumentRepository) -> None:
        self.snapshot = snapshot
        self._repository = repository
        self._live: dict[str, Document] | None = None

    def documents(self) -> list[Document]:
        if self.snapshot is not None:
            return list(self.snapshot.index.documents)
        return list(self._live_by_id().values())

    def get(self, document_id: str) -> Document | None:
        if self.snapshot is not None:
            return self.snapshot.documents_by_id.get(document_id)
        return self._live_by_id().get(document_id)

    def _live_by_id(self) -> dict[str, Document]:
        if self._live is None:
            live: dict[str, Document] = {}
            for document in load_corpus(self._repository):
                live.setdefault(document.id, document)
            self._live = live
        return self._live


class SearchService:
    """Hybrid keyword + semantic search with ranking and a result cache.

    One instance is shared by all request threads. Each call reads a single
    index snapshot; provider calls run on the service's own thread pool with
    a timeout so a slow provider only costs its time budget.
    """

    def __init__(
        self,
        document_repository: DocumentRepository,
        index_repository: IndexRepository,
        *,
        settings: SearchSettings | None = None,
        embedder: Embedder | None = None,
        embedding_store: EmbeddingStore | None = None,
        keyword_extractor: ChatProvider | None = None,
        ranking_model: RankingModel | None = None,
        clock: Callable[[], datetime] | None = None,
        max_workers: int = 4,
    ) -> None:
        self._settings = settings or SearchSettings()
        self._document_repository = document_repository
        self._embedder = embedder
        self._embedding_store = embedding_store
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="search-provider")
        self._index_store = IndexStore(index_repository, k1=self._settings.bm25_k1, b=self._settings.bm25_b)
        self._scan_bm25 = BM25Index(k1=self._settings.bm25_k1, b=self._settings.bm25_b)
        self._cache: ResultCache[tuple[SearchResult, ...]] = ResultCache(
            max_entries=self._settings.cache_max_entries,
            ttl_seconds=self._settings.cache_ttl_seconds,
        )
        self._splitter = KeywordSplitter(
            keyword_extractor,
            executor=self._executor,
            timeout_seconds=self._settings.provider_timeout_seconds,
            min_length=self._settings.ai_keyword_min_length,
        )
        self._semantic = SemanticRecallAdapter(
            embedder,
            embedding_store,
            executor=self._executor,
            timeout_seconds=self._settings.provider_timeout_seconds,
        )
        fusion_kwargs: dict[str, Any] = {
            "popularity_cap": self._settings.popularity_cap,
            "freshness_decay_days": self._settings.freshness_decay_days,
        }
        if clock is not None:
            fusion_kwargs["clock"] = clock
        self._fusion = FusionEngine(**fusion_kwargs)
        self._fine_ranker = FineRanker(ranking_model, top_n=self._settings.fine_top_n)
        self._rebuild_lock = threading.Lock()
        self._vectors_lock = threading.Lock()
        self._vectors_generation: int | None = None

    @property
    def settings(self) -> SearchSettings:
        return self._settings

    # ------------------------------------------------------------------ search
    def search(
        self,
        query: object,
        options: SearchOptions | None = None,
        *,
        token: CancellationToken | None = None,
    ) -> list[SearchResult]:
        """Return ranked results for ``query``.

        Provider failures and a missing index degrade to keyword or scan
        recall. Raises :class:`CorpusUnavailableError` when the corpus
        cannot be read and :class:`SearchCancelledError` on cancellation.
        """

        resolved = self._resolve_options(options)
        if token is not None:
            token.raise_if_cancelled()
        if resolved.rebuild_index:
            self.build_index(token=token)

        normalized = normalize_query(query)
        snapshot = self._index_store.current() if resolved.use_index else None
        generation = snapshot.generation if snapshot is not None else None
        key = make_cache_key(normalized, resolved.cache_fields(), generation)
        if resolved.cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Search cache hit for %r.", normalized)
                return list(cached)

        view = _CorpusView(snapshot, self._document_repository)
        if snapshot is None:
            logger.debug("No usable search index, scanning the live corpus for %r.", normalized)
        if normalized:
            candidates = self._rank(normalized, resolved, view, token)
        else:
            candidates = self._browse(resolved, view)
        results = tuple(self._to_result(candidate, resolved) for candidate in candidates)

        if token is not None:
            token.raise_if_cancelled()
        if resolved.cache:
            self._cache.set(key, results)
        return list(results)

    def _rank(
        self,
        normalized: str,
        resolved: ResolvedOptions,
        view: _CorpusView,
        token: CancellationToken | None,
    ) -> list[ScoredCandidate]:
        fusion_limit = resolved.limit
        if resolved.fine_ranking and self._fine_ranker.enabled:
            fusion_limit = max(resolved.limit, self._fine_ranker.top_n)

        keyword_hits: list[KeywordHit] = []
        semantic_hits: list[SemanticHit] = []
        tokens = tokenize_query(normalized)
        if resolved.strategy is not SearchStrategy.SEMANTIC_ONLY:
            tokens = self._splitter.split(normalized, token)
            keyword_hits = self._keyword_recall(tokens, resolved.filter, view)
        if resolved.semantic:
            semantic_hits = self._semantic_recall(normalized, resolved.filter, fusion_limit, view, token)
            if not semantic_hits:
                logger.debug("Semantic recall returned nothing for %r.", normalized)
        if resolved.strategy is SearchStrategy.SEMANTIC_ONLY and not semantic_hits:
            tokens = self._splitter.split(normalized, token)
            keyword_hits = self._keyword_recall(tokens, resolved.filter, view)

        candidates = self._fusion.fuse(keyword_hits, semantic_hits, weights=resolved.weights, limit=fusion_limit)
        if resolved.fine_ranking:
            query = Query(raw=normalized, normalized=normalized, tokens=tokens)
            candidates = self._fine_ranker.rerank(query, candidates, resolved.context)
        return candidates[: resolved.limit]

    def _browse(self, resolved: ResolvedOptions, view: _CorpusView) -> list[ScoredCandidate]:
        """Empty query: every matching document by freshness and popularity."""
        weights = ScoreWeights(
            bm25=0.0,
            semantic=0.0,
            freshness=resolved.weights.freshness,
            popularity=resolved.weights.popularity,
        )
        hits = [KeywordHit(document=document, bm25=0.0) for document in view.documents() if resolved.filter.matches(document)]
        return self._fusion.fuse(hits, [], weights=weights, limit=resolved.limit)

    def _keyword_recall(
        self,
        tokens: Sequence[str],
        search_filter: SearchFilter,
        view: _CorpusView,
    ) -> list[KeywordHit]:
        if not tokens:
            return []
        if view.snapshot is not None:
            snapshot = view.snapshot
            matched = snapshot.index.lookup(tuple(tokens))
            documents = [
                snapshot.documents_by_id[doc_id]
                for doc_id in matched
                if doc_id in snapshot.documents_by_id and search_filter.matches(snapshot.documents_by_id[doc_id])
            ]
            scores = snapshot.bm25.scores(tokens, [document.id for document in documents])
            return [
                KeywordHit(document=document, bm25=scores.get(document.id, 0.0), matched_tokens=tuple(matched[document.id]))
                for document in documents
            ]
        return self._scan(tokens, search_filter, view.documents())

    def _scan(self, tokens: Sequence[str], search_filter: SearchFilter, documents: list[Document]) -> list[KeywordHit]:
        """Linear match over the live corpus when no index is available."""
        state = self._scan_bm25.update_documents(documents)
        matched: dict[str, tuple[Document, list[str]]] = {}
        for document in documents:
            if not search_filter.matches(document):
                continue
            indexed = set(state.matched_tokens(document.id, tokens))
            haystack = " ".join(
                part for part in (document.title, document.content, document.trigger or "", document.name) if part
            ).lower()
            hit_tokens = [item for item in tokens if item in indexed or item in haystack]
            if hit_tokens:
                matched[document.id] = (document, hit_tokens)
        scores = state.scores(tokens, list(matched))
        return [
            KeywordHit(document=document, bm25=scores.get(doc_id, 0.0), matched_tokens=tuple(hit_tokens))
            for doc_id, (document, hit_tokens) in matched.items()
        ]

    def _semantic_recall(
        self,
        text: str,
        search_filter: SearchFilter,
        limit: int,
        view: _CorpusView,
        token: CancellationToken | None,
    ) -> list[SemanticHit]:
        matches = self._semantic.recall(text, limit=limit, search_filter=search_filter, token=token)
        hits: list[SemanticHit] = []
        for match in matches:
            document = view.get(match.document_id)
            if document is None:
                logger.debug("Vector store returned unknown document %s.", match.document_id)
                continue
            if search_filter.matches(document):
                hits.append(SemanticHit(document=document, similarity=match.similarity))
        return hits

    @staticmethod
    def _to_result(candidate: ScoredCandidate, resolved: ResolvedOptions) -> SearchResult:
        document = candidate.document
        return SearchResult(
            id=document.id,
            title=document.title,
            name=document.display_name,
            content=document.content,
            code=document.code,
            type=document.type,
            trigger=document.trigger,
            similarity=candidate.scores.semantic if resolved.semantic and candidate.scores.semantic > 0 else None,
            composite_score=round(candidate.composite_score, 6) if resolved.ranking else None,
            scores=candidate.scores,
        )

    # ----------------------------------------------------------------- options
    def _resolve_options(self, options: SearchOptions | None) -> ResolvedOptions:
        opts = options or SearchOptions()
        settings = self._settings
        semantic = settings.semantic if opts.semantic is None else bool(opts.semantic)
        ranking = settings.ranking if opts.ranking is None else bool(opts.ranking)
        fine_ranking = settings.fine_ranking if opts.fine_ranking is None else bool(opts.fine_ranking)
        cache = settings.cache if opts.cache is None else bool(opts.cache)
        use_index = settings.use_index if opts.use_index is None else bool(opts.use_index)

        default_limit = settings.limit if settings.limit > 0 else DEFAULT_LIMIT
        limit = opts.limit
        if limit is None:
            limit = default_limit
        elif isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            logger.warning("Invalid search limit %r, using %d.", limit, default_limit)
            limit = default_limit

        weights = self._resolve_weights(opts.weights)
        if not ranking:
            weights = replace(weights, freshness=0.0, popularity=0.0)

        if not semantic:
            strategy = SearchStrategy.KEYWORD_ONLY
        elif ranking:
            strategy = SearchStrategy.FUSED
        else:
            strategy = SearchStrategy.SEMANTIC_ONLY

        return ResolvedOptions(
            strategy=strategy,
            semantic=semantic,
            ranking=ranking,
            fine_ranking=fine_ranking,
            limit=limit,
            filter=opts.filter or SearchFilter(),
            weights=weights,
            cache=cache,
            use_index=use_index,
            rebuild_index=bool(opts.rebuild_index),
            context=opts.context or RankingContext(),
        )

    def _resolve_weights(self, weights: ScoreWeights | Mapping[str, float] | None) -> ScoreWeights:
        base = self._settings.weights
        if weights is None:
            return base
        if isinstance(weights, ScoreWeights):
            return weights
        known = set(base.as_dict())
        overrides: dict[str, float] = {}
        for name, value in weights.items():
            if name not in known:
                logger.warning("Unknown score weight %r ignored.", name)
                continue
            try:
                overrides[name] = float(value)
            except (TypeError, ValueError):
                logger.warning("Score weight %r has non-numeric value %r, ignored.", name, value)
        return base.merged(overrides)

    # ------------------------------------------------------------------- admin
    def build_index(self, *, token: CancellationToken | None = None) -> IndexSnapshot:
        """Rebuild the index from the corpus and drop cached results.

        The new generation becomes current under the rebuild lock; documents
        are embedded afterwards on the provider pool, bounded by
        ``index_embed_timeout_seconds`` and ``token``. A failed or timed out
        embedding keeps the previous vectors.
        """
        with self._rebuild_lock:
            previous = self._index_store.current()
            snapshot = run_build_index(
                document_repository=self._document_repository,
                index_store=self._index_store,
                previous_generation=previous.generation if previous is not None else None,
            )
            self._cache.clear()
        if self._embedder is not None and self._embedding_store is not None:
            self._embed_generation(snapshot, token)
        return snapshot

    def _embed_generation(self, snapshot: IndexSnapshot, token: CancellationToken | None) -> None:
        embedder = self._embedder
        documents = list(snapshot.index.documents)
        try:
            vectors: list[list[float]] = []
            if documents:
                vectors = call_with_timeout(
                    self._executor,
                    embedder.embed_texts,
                    [document.index_text for document in documents],
                    timeout=self._settings.index_embed_timeout_seconds,
                    token=token,
                )
            records = vector_records(documents, vectors)
        except SearchCancelledError:
            logger.warning("Embedding for index generation %s was cancelled, keeping previous vectors.", snapshot.generation)
            raise
        except Exception as exc:  # noqa: BLE001 - previous vectors stay in place
            logger.warning("Embedding documents with %s failed, keeping previous vectors: %s", embedder.model_id, exc)
            return
        with self._vectors_lock:
            if self._vectors_generation is not None and snapshot.generation < self._vectors_generation:
                logger.debug("Skipping vectors of superseded generation %s.", snapshot.generation)
                return
            self._embedding_store.replace(records)
            self._vectors_generation = snapshot.generation
        self._cache.clear()
        logger.info("Stored %d document vectors from %s.", len(records), embedder.model_id)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> dict[str, float]:
        return self._cache.stats()

    def stats(self) -> dict[str, Any]:
        snapshot = self._index_store.current()
        index_stats: dict[str, Any] | None = None
        if snapshot is not None:
            index_stats = {
                "generation": snapshot.generation,
                "documents": snapshot.index.size,
                "tokens": len(snapshot.index.postings),
            }
        return {
            "index": index_stats,
            "cache": self.cache_stats(),
            "semantic_available": self._semantic.available,
            "vectors": self._embedding_store.count() if self._embedding_store is not None else 0,
            "fine_ranking_available": self._fine_ranker.enabled,
        }

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "SearchService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["SearchService", "DEFAULT_LIMIT"]
