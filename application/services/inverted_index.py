"""Inverted index construction and the shared handle to the current generation."""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Iterable

from application.services.bm25_index import BM25Index
from application.services.tokenizer import tokenize_document
from domain.entities import Document, InvertedIndex
from domain.interfaces import IndexRepository

logger = logging.getLogger(__name__)

_UNSET = object()


def build_inverted_index(documents: Iterable[Document], *, created_at: int | None = None) -> InvertedIndex:
    """Tokenize every document's title and content into ``token -> doc ids``."""

    unique: dict[str, Document] = {}
    for document in documents:
        if document.id in unique:
            logger.warning("Duplicate document id %s skipped while indexing.", document.id)
            continue
        unique[document.id] = document

    postings: dict[str, set[str]] = {}
    for document in unique.values():
        for token in set(tokenize_document(document.index_text)):
            postings.setdefault(token, set()).add(document.id)

    return InvertedIndex(
        documents=tuple(unique.values()),
        postings={token: frozenset(ids) for token, ids in postings.items()},
        created_at=created_at if created_at is not None else int(time.time() * 1000),
    )


@dataclass(frozen=True, slots=True)
class IndexSnapshot:
    """A loaded generation with its BM25 model and id lookup."""

    index: InvertedIndex
    bm25: BM25Index
    documents_by_id: dict[str, Document]

    @classmethod
    def create(cls, index: InvertedIndex, *, k1: float = 1.2, b: float = 0.75) -> "IndexSnapshot":
        bm25 = BM25Index(k1=k1, b=b)
        bm25.update_documents(
            index.documents,
            document_frequency={token: len(ids) for token, ids in index.postings.items()},
        )
        return cls(index=index, bm25=bm25, documents_by_id={doc.id: doc for doc in index.documents})

    @property
    def generation(self) -> int:
        return self.index.created_at


class IndexStore:
    """Holds the current index generation and swaps it atomically.

    Readers call :meth:`current` once per search and keep the returned
    snapshot for the whole request, so a concurrent rebuild is never
    observed half-way.
    """

    def __init__(self, repository: IndexRepository, *, k1: float = 1.2, b: float = 0.75) -> None:
        self._repository = repository
        self._k1 = k1
        self._b = b
        self._lock = threading.Lock()
        self._snapshot: IndexSnapshot | None = None
        self._stamp: object = _UNSET

    def current(self) -> IndexSnapshot | None:
        stamp = self._repository.stamp()
        if stamp is None:
            return None
        if stamp == self._stamp:
            return self._snapshot
        with self._lock:
            if stamp == self._stamp:
                return self._snapshot
            index = self._repository.load()
            self._snapshot = IndexSnapshot.create(index, k1=self._k1, b=self._b) if index is not None else None
            self._stamp = stamp
            if self._snapshot is not None:
                logger.info(
                    "Loaded search index generation %s (%d documents, %d tokens).",
                    index.created_at,
                    index.size,
                    len(index.postings),
                )
            return self._snapshot

    def replace(self, index: InvertedIndex) -> IndexSnapshot:
        """Persist ``index`` and make it the current generation."""
        snapshot = IndexSnapshot.create(index, k1=self._k1, b=self._b)
        self._repository.save(index)
        with self._lock:
            self._snapshot = snapshot
            self._stamp = self._repository.stamp()
        return snapshot


__all__ = ["IndexSnapshot", "IndexStore", "build_inverted_index"]
