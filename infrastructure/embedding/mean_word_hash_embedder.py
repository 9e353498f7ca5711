"""Embedder that averages hashed token vectors (offline, dependency-free)."""
from __future__ import annotations

import hashlib
import math
from collections import Counter
from typing import Sequence

from application.services.tokenizer import tokenize_document
from domain.interfaces import Embedder


class MeanWordHashEmbedder(Embedder):
    """Produces deterministic vectors by hashing search tokens.

    Each token contributes a pseudo-random vector with components in
    ``[-1, 1]``; texts sharing tokens get a positive cosine similarity.
    """

    def __init__(self, dimension: int = 64) -> None:
        self.dimension = dimension

    @property
    def model_id(self) -> str:
        return f"mean-word-hash-{self.dimension}"

    def _word_vector(self, word: str) -> list[float]:
        digest = hashlib.sha256(word.encode("utf-8")).digest()
        return [digest[i % len(digest)] / 127.5 - 1.0 for i in range(self.dimension)]

    def _combine(self, words: Sequence[str]) -> list[float]:
        counts = Counter(words)
        if not counts:
            return []
        vector = [0.0] * self.dimension
        total = sum(counts.values())
        for word, count in counts.items():
            for idx, value in enumerate(self._word_vector(word)):
                vector[idx] += value * count / total
        norm = math.sqrt(sum(value * value for value in vector)) or 1.0
        return [value / norm for value in vector]

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._combine(tokenize_document(text)) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._combine(tokenize_document(text))


__all__ = ["MeanWordHashEmbedder"]
