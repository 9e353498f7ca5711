"""Semantic recall: query embedding plus vector similarity search."""
from __future__ import annotations

import logging
from concurrent.futures import Executor

from application.services.cancellation import CancellationToken, ProviderTimeout, call_with_timeout
from domain.entities import SearchFilter, VectorMatch
from domain.errors import SearchCancelledError
from domain.interfaces import Embedder, EmbeddingStore

logger = logging.getLogger(__name__)


class SemanticRecallAdapter:
    """Turns a query into similarity-scored candidates.

    Every provider problem (missing provider, error, empty vector, timeout)
    yields an empty candidate list so the caller falls back to keyword
    recall. Only caller cancellation is raised.
    """

    def __init__(
        self,
        embedder: Embedder | None,
        embedding_store: EmbeddingStore | None,
        *,
        executor: Executor,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._embedder = embedder
        self._embedding_store = embedding_store
        self._executor = executor
        self._timeout = timeout_seconds

    @property
    def available(self) -> bool:
        return self._embedder is not None and self._embedding_store is not None

    def recall(
        self,
        text: str,
        *,
        limit: int,
        search_filter: SearchFilter | None = None,
        token: CancellationToken | None = None,
    ) -> list[VectorMatch]:
        if not self.available or not text:
            return []
        assert self._embedder is not None and self._embedding_store is not None
        vector = self._embed(text, token)
        if not vector:
            return []
        try:
            matches = self._embedding_store.search_vector(vector, limit=limit, search_filter=search_filter)
        except Exception as exc:  # noqa: BLE001 - vector store failures degrade to keyword recall
            logger.warning("Vector search failed, falling back to keyword recall: %s", exc)
            return []
        return [
            VectorMatch(document_id=match.document_id, similarity=min(max(match.similarity, 0.0), 1.0))
            for match in matches
        ]

    def _embed(self, text: str, token: CancellationToken | None) -> list[float]:
        assert self._embedder is not None
        try:
            vector = call_with_timeout(
                self._executor,
                self._embedder.embed_query,
                text,
                timeout=self._timeout,
                token=token,
            )
        except SearchCancelledError:
            raise
        except ProviderTimeout:
            logger.warning("Embedding provider %s timed out after %.2fs.", self._embedder.model_id, self._timeout)
            return []
        except Exception as exc:  # noqa: BLE001 - provider failures degrade to keyword recall
            logger.warning("Embedding provider %s failed: %s", self._embedder.model_id, exc)
            return []
        if vector is None or len(vector) == 0:
            logger.debug("Embedding provider %s returned an empty vector.", self._embedder.model_id)
            return []
        return list(vector)


__all__ = ["SemanticRecallAdapter"]
