"""Use case that rebuilds the keyword index from the corpus."""
from __future__ import annotations

import logging
import time
from typing import Sequence

from application.services.inverted_index import IndexSnapshot, IndexStore, build_inverted_index
from domain.entities import Document, VectorRecord
from domain.errors import CorpusUnavailableError
from domain.interfaces import DocumentRepository

logger = logging.getLogger(__name__)


def load_corpus(document_repository: DocumentRepository) -> list[Document]:
    """Read every document, turning repository failures into a search error."""
    try:
        return list(document_repository.list())
    except CorpusUnavailableError:
        raise
    except Exception as exc:
        raise CorpusUnavailableError(f"Knowledge base could not be read: {exc}") from exc


def vector_records(documents: Sequence[Document], vectors: Sequence[Sequence[float]]) -> list[VectorRecord]:
    """Pair documents with their vectors; empty vectors are skipped."""
    if len(vectors) != len(documents):
        raise ValueError(f"Embedder returned {len(vectors)} vectors for {len(documents)} documents")
    return [
        VectorRecord(
            document_id=document.id,
            vector=tuple(float(value) for value in vector),
            type=document.type,
            category=document.category,
            language=document.language,
        )
        for document, vector in zip(documents, vectors)
        if vector is not None and len(vector) > 0
    ]


def build_index(
    *,
    document_repository: DocumentRepository,
    index_store: IndexStore,
    previous_generation: int | None = None,
) -> IndexSnapshot:
    """Build a new index generation and make it current.

    The generation id is the build time in epoch milliseconds, bumped past
    ``previous_generation`` so consecutive builds never share an id.
    """

    started = time.perf_counter()
    documents = load_corpus(document_repository)
    created_at = int(time.time() * 1000)
    if previous_generation is not None and created_at <= previous_generation:
        created_at = previous_generation + 1

    index = build_inverted_index(documents, created_at=created_at)
    snapshot = index_store.replace(index)
    logger.info(
        "Built search index generation %s: %d documents, %d tokens in %.3fs.",
        created_at,
        index.size,
        len(index.postings),
        time.perf_counter() - started,
    )
    return snapshot


__all__ = ["build_index", "load_corpus", "vector_records"]
