"""Хранилище эмбеддингов документов в памяти."""
from __future__ import annotations

import heapq
import threading
from typing import Sequence

from domain.entities import SearchFilter, VectorMatch, VectorRecord
from domain.interfaces import EmbeddingStore


class InMemoryEmbeddingStore(EmbeddingStore):
    """Хранит векторы в списках Python и ищет перебором по косинусной близости."""

    def __init__(self) -> None:
        self._records: tuple[VectorRecord, ...] = ()
        self._lock = threading.Lock()

    def replace(self, records: Sequence[VectorRecord]) -> None:
        with self._lock:
            self._records = tuple(records)

    def count(self) -> int:
        return len(self._records)

    def search_vector(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        search_filter: SearchFilter | None = None,
    ) -> list[VectorMatch]:
        if limit <= 0:
            return []
        records = self._records
        scored: list[tuple[float, str]] = []
        for record in records:
            if search_filter is not None and not record_matches(record, search_filter):
                continue
            score = self._cosine_similarity(query_embedding, record.vector)
            heapq.heappush(scored, (score, record.document_id))
            if len(scored) > limit:
                heapq.heappop(scored)

        ordered = sorted(scored, key=lambda item: (-item[0], item[1]))
        return [VectorMatch(document_id=doc_id, similarity=min(max(score, 0.0), 1.0)) for score, doc_id in ordered]

    @staticmethod
    def _cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        numerator = sum(x * y for x, y in zip(a, b))
        denom_a = sum(x * x for x in a) ** 0.5 or 1.0
        denom_b = sum(x * x for x in b) ** 0.5 or 1.0
        return numerator / (denom_a * denom_b)


def record_matches(record: VectorRecord, search_filter: SearchFilter) -> bool:
    if search_filter.type is not None and record.type != search_filter.type:
        return False
    if search_filter.category is not None and (record.category or "").lower() != search_filter.category.lower():
        return False
    if search_filter.language is not None and (record.language or "").lower() != search_filter.language.lower():
        return False
    return True


__all__ = ["InMemoryEmbeddingStore", "record_matches"]
