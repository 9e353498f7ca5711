"""Document repository kept in a Python dict (tests and embedding in other tools)."""
from __future__ import annotations

import threading
from typing import Iterable

from domain.entities import Document
from domain.interfaces import DocumentRepository


class InMemoryDocumentRepository(DocumentRepository):
    def __init__(self, documents: Iterable[Document] = ()) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, Document] = {}
        for document in documents:
            self.add(document)

    def add(self, document: Document) -> None:
        with self._lock:
            self._documents[document.id] = document

    def remove(self, document_id: str) -> None:
        with self._lock:
            self._documents.pop(document_id, None)

    def list(self) -> list[Document]:
        with self._lock:
            return list(self._documents.values())

    def get(self, document_id: str) -> Document | None:
        with self._lock:
            return self._documents.get(document_id)


__all__ = ["InMemoryDocumentRepository"]
