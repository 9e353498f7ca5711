"""Persisted inverted index as a single JSON file."""
from __future__ import annotations

import json
import logging
import math
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Hashable

from domain.entities import Document, DocumentType, InvertedIndex
from domain.errors import IndexCorruptedError
from domain.interfaces import IndexRepository

logger = logging.getLogger(__name__)


def document_to_json(document: Document) -> dict[str, Any]:
    return {
        "id": document.id,
        "title": document.title,
        "content": document.content,
        "code": document.code,
        "type": document.type.value,
        "trigger": document.trigger,
        "language": document.language,
        "category": document.category,
        "name": document.name,
        "updatedAt": int(document.updated_at.timestamp() * 1000) if document.updated_at else None,
        "usageCount": document.usage_count,
    }


def _finite(value: Any, field_name: str) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"'{field_name}' must be a finite number, got {value!r}")
    return value


def document_from_json(payload: dict[str, Any]) -> Document:
    try:
        updated_at_ms = _finite(payload.get("updatedAt"), "updatedAt")
        usage_count = _finite(payload.get("usageCount") or 0, "usageCount")
        return Document(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            content=str(payload.get("content") or ""),
            code=str(payload.get("code") or ""),
            type=DocumentType(payload.get("type", DocumentType.RECIPE.value)),
            trigger=payload.get("trigger"),
            language=payload.get("language"),
            category=payload.get("category"),
            name=str(payload.get("name") or ""),
            updated_at=(
                datetime.fromtimestamp(updated_at_ms / 1000, tz=timezone.utc) if updated_at_ms is not None else None
            ),
            usage_count=max(int(usage_count), 0),
        )
    except (KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
        raise IndexCorruptedError(f"Invalid document entry: {exc}") from exc


def index_to_json(index: InvertedIndex) -> dict[str, Any]:
    return {
        "documents": [document_to_json(document) for document in index.documents],
        "invertedIndex": {
            token: {"docIds": sorted(ids)} for token, ids in sorted(index.postings.items())
        },
        "createdAt": index.created_at,
    }


def index_from_json(payload: Any) -> InvertedIndex:
    """Parse and validate a persisted index; raises :class:`IndexCorruptedError`."""
    if not isinstance(payload, dict):
        raise IndexCorruptedError("Index root must be an object")
    raw_documents = payload.get("documents")
    raw_postings = payload.get("invertedIndex")
    created_at = payload.get("createdAt")
    if not isinstance(raw_documents, list) or not isinstance(raw_postings, dict):
        raise IndexCorruptedError("Index must contain 'documents' and 'invertedIndex'")
    if isinstance(created_at, bool) or not isinstance(created_at, int):
        raise IndexCorruptedError("Index 'createdAt' must be an integer")

    documents = tuple(document_from_json(item) for item in raw_documents if isinstance(item, dict))
    known_ids = {document.id for document in documents}
    postings: dict[str, frozenset[str]] = {}
    for token, entry in raw_postings.items():
        doc_ids = entry.get("docIds") if isinstance(entry, dict) else None
        if not isinstance(doc_ids, list):
            raise IndexCorruptedError(f"Posting for {token!r} has no docIds list")
        ids = frozenset(str(doc_id) for doc_id in doc_ids)
        missing = ids - known_ids
        if missing:
            raise IndexCorruptedError(f"Posting for {token!r} references unknown documents {sorted(missing)}")
        postings[str(token)] = ids
    return InvertedIndex(documents=documents, postings=postings, created_at=created_at)


class JsonIndexRepository(IndexRepository):
    """Stores the index in ``path``; each save replaces the file atomically."""

    def __init__(self, path: str | Path = "autosnippet-search-index.json") -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def stamp(self) -> Hashable | None:
        try:
            stat = self._path.stat()
        except FileNotFoundError:
            return None
        return (stat.st_mtime_ns, stat.st_size, stat.st_ino)

    def load(self) -> InvertedIndex | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Cannot read search index %s: %s", self._path, exc)
            return None
        try:
            return index_from_json(json.loads(raw))
        except (json.JSONDecodeError, IndexCorruptedError) as exc:
            logger.warning("Ignoring corrupted search index %s: %s", self._path, exc)
            return None

    def save(self, index: InvertedIndex) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(index_to_json(index), handle, ensure_ascii=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class InMemoryIndexRepository(IndexRepository):
    """Keeps the index in memory; the generation id doubles as the stamp."""

    def __init__(self) -> None:
        self._index: InvertedIndex | None = None
        self._version = 0

    def stamp(self) -> Hashable | None:
        if self._index is None:
            return None
        return self._version

    def load(self) -> InvertedIndex | None:
        return self._index

    def save(self, index: InvertedIndex) -> None:
        self._index = index
        self._version += 1


__all__ = [
    "InMemoryIndexRepository",
    "JsonIndexRepository",
    "document_from_json",
    "document_to_json",
    "index_from_json",
    "index_to_json",
]
