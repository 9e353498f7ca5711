"""BM25 индекс с кэшированием для повторного использования между запросами."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping, Sequence

import numpy as np
from rank_bm25 import BM25

from application.services.tokenizer import tokenize_document
from domain.entities import Document


class LuceneBM25(BM25):
    """BM25 с неотрицательным IDF: ``log((N - df + 0.5) / (df + 0.5) + 1)``.

    ``document_frequency`` позволяет взять df из сохранённого инвертированного
    индекса вместо пересчёта по корпусу.
    """

    def __init__(
        self,
        corpus: Sequence[Sequence[str]],
        *,
        k1: float = 1.2,
        b: float = 0.75,
        document_frequency: Mapping[str, int] | None = None,
    ) -> None:
        self.k1 = k1
        self.b = b
        self._document_frequency = document_frequency
        super().__init__(corpus)

    def _calc_idf(self, nd: Mapping[str, int]) -> None:
        frequencies = self._document_frequency if self._document_frequency is not None else nd
        for word, freq in frequencies.items():
            self.idf[word] = math.log((self.corpus_size - freq + 0.5) / (freq + 0.5) + 1)

    def get_scores(self, query: Sequence[str]) -> np.ndarray:
        return np.array(self.get_batch_scores(query, list(range(self.corpus_size))))

    def get_batch_scores(self, query: Sequence[str], doc_ids: Sequence[int]) -> list[float]:
        if not doc_ids:
            return []
        score = np.zeros(len(doc_ids))
        doc_len = np.array(self.doc_len)[list(doc_ids)]
        length_norm = self.k1 * (1 - self.b + self.b * doc_len / self.avgdl)
        for token in query:
            q_freq = np.array([(self.doc_freqs[di].get(token) or 0) for di in doc_ids])
            score += (self.idf.get(token) or 0) * (q_freq * (self.k1 + 1) / (q_freq + length_norm))
        return score.tolist()


@dataclass(frozen=True, slots=True)
class BM25State:
    """Неизменяемый снимок модели; один запрос работает с одним снимком."""

    model: LuceneBM25 | None
    positions: dict[str, int] = field(default_factory=dict)
    token_sets: list[frozenset[str]] = field(default_factory=list)
    fingerprint: str = ""

    def scores(self, query_tokens: Sequence[str], document_ids: Sequence[str]) -> dict[str, float]:
        known = [doc_id for doc_id in document_ids if doc_id in self.positions]
        if self.model is None or not query_tokens or not known:
            return {doc_id: 0.0 for doc_id in known}
        values = self.model.get_batch_scores(list(query_tokens), [self.positions[doc_id] for doc_id in known])
        return {doc_id: float(score) for doc_id, score in zip(known, values)}

    def matched_tokens(self, document_id: str, query_tokens: Sequence[str]) -> list[str]:
        position = self.positions.get(document_id)
        if position is None:
            return []
        tokens = self.token_sets[position]
        return [token for token in query_tokens if token in tokens]


class BM25Index:
    """Кэширует BM25 модель, перестраивая её только при изменении коллекции."""

    def __init__(self, *, k1: float = 1.2, b: float = 0.75) -> None:
        self.k1 = k1
        self.b = b
        self._state = BM25State(model=None)

    def update_documents(
        self,
        documents: Sequence[Document],
        document_frequency: Mapping[str, int] | None = None,
    ) -> BM25State:
        """Перестроить модель при изменении коллекции и вернуть актуальный снимок."""
        fingerprint = self._fingerprint(documents)
        state = self._state
        if fingerprint == state.fingerprint and state.positions:
            return state
        corpus = [tokenize_document(doc.index_text) for doc in documents]
        positions = {doc.id: position for position, doc in enumerate(documents)}
        token_sets = [frozenset(tokens) for tokens in corpus]
        model = None
        if documents and any(corpus):
            model = LuceneBM25(corpus, k1=self.k1, b=self.b, document_frequency=document_frequency)
        state = BM25State(model=model, positions=positions, token_sets=token_sets, fingerprint=fingerprint)
        self._state = state
        return state

    @property
    def corpus_size(self) -> int:
        return len(self._state.positions)

    def scores(self, query_tokens: Sequence[str], document_ids: Sequence[str]) -> dict[str, float]:
        return self._state.scores(query_tokens, document_ids)

    def matched_tokens(self, document_id: str, query_tokens: Sequence[str]) -> list[str]:
        return self._state.matched_tokens(document_id, query_tokens)

    @staticmethod
    def _fingerprint(documents: Sequence[Document]) -> str:
        parts = [f"{doc.id}:{hash((doc.title, doc.content))}" for doc in documents]
        return "|".join(sorted(parts))


__all__ = ["BM25Index", "BM25State", "LuceneBM25"]
