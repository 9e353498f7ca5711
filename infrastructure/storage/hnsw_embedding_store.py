"""ANN-хранилище эмбеддингов документов на базе hnswlib."""
from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import hnswlib
import numpy as np

from domain.entities import DocumentType, SearchFilter, VectorMatch, VectorRecord
from domain.interfaces import EmbeddingStore

from infrastructure.storage.in_memory_embedding_store import record_matches

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HnswParams:
    ef_construction: int = 200
    M: int = 16
    ef_search: int = 50


@dataclass(slots=True)
class _Generation:
    index: hnswlib.Index | None = None
    records: list[VectorRecord] = field(default_factory=list)


class HnswEmbeddingStore(EmbeddingStore):
    """Косинусный HNSW-индекс; ``replace`` строит новый индекс и подменяет ссылку.

    Если задан ``index_root``, индекс и метаданные документов сохраняются
    на диск и загружаются при старте.
    """

    def __init__(self, *, index_root: str | Path | None = None, params: HnswParams | None = None) -> None:
        self._params = params or HnswParams()
        self._index_root = Path(index_root) if index_root is not None else None
        self._lock = threading.Lock()
        self._generation = _Generation()
        if self._index_root is not None:
            self._index_root.mkdir(parents=True, exist_ok=True)
            self._load()

    def count(self) -> int:
        return len(self._generation.records)

    def replace(self, records: Sequence[VectorRecord]) -> None:
        records = list(records)
        if not records:
            generation = _Generation()
        else:
            vectors = self._normalize(np.array([record.vector for record in records], dtype="float32"))
            if vectors.ndim != 2:
                raise ValueError("Все эмбеддинги должны иметь одинаковую размерность.")
            index = hnswlib.Index(space="cosine", dim=vectors.shape[1])
            index.init_index(
                max_elements=len(records),
                ef_construction=self._params.ef_construction,
                M=self._params.M,
            )
            index.add_items(vectors, np.arange(len(records)))
            index.set_ef(self._params.ef_search)
            generation = _Generation(index=index, records=records)
        with self._lock:
            self._generation = generation
        if self._index_root is not None:
            self._save(generation)

    def search_vector(
        self,
        query_embedding: Sequence[float],
        limit: int = 10,
        search_filter: SearchFilter | None = None,
    ) -> list[VectorMatch]:
        generation = self._generation
        if generation.index is None or limit <= 0:
            return []
        allowed = [
            position
            for position, record in enumerate(generation.records)
            if search_filter is None or record_matches(record, search_filter)
        ]
        k = min(limit, len(allowed))
        if k == 0:
            return []
        allowed_set = set(allowed)
        generation.index.set_ef(max(self._params.ef_search, k))
        vector = self._normalize(np.array([query_embedding], dtype="float32"))
        labels, distances = generation.index.knn_query(
            vector,
            k=k,
            filter=None if search_filter is None else (lambda label: label in allowed_set),
        )
        matches = [
            VectorMatch(
                document_id=generation.records[int(label)].document_id,
                similarity=min(max(1.0 - float(distance), 0.0), 1.0),
            )
            for label, distance in zip(labels[0].tolist(), distances[0].tolist())
        ]
        return sorted(matches, key=lambda match: (-match.similarity, match.document_id))

    def _index_path(self) -> Path:
        assert self._index_root is not None
        return self._index_root / "documents.bin"

    def _meta_path(self) -> Path:
        assert self._index_root is not None
        return self._index_root / "documents.json"

    def _save(self, generation: _Generation) -> None:
        meta = {
            "dim": len(generation.records[0].vector) if generation.records else 0,
            "records": [
                {
                    "id": record.document_id,
                    "type": record.type.value,
                    "category": record.category,
                    "language": record.language,
                }
                for record in generation.records
            ],
        }
        if generation.index is not None:
            tmp_index = self._index_path().with_suffix(".bin.tmp")
            generation.index.save_index(str(tmp_index))
            os.replace(tmp_index, self._index_path())
        tmp_meta = self._meta_path().with_suffix(".json.tmp")
        tmp_meta.write_text(json.dumps(meta, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_meta, self._meta_path())

    def _load(self) -> None:
        if not self._meta_path().exists() or not self._index_path().exists():
            return
        try:
            payload = json.loads(self._meta_path().read_text(encoding="utf-8"))
            meta = payload.get("records") or []
            if not meta:
                return
            logger.info("Загрузка HNSW индекса %s", self._index_path())
            index = hnswlib.Index(space="cosine", dim=int(payload["dim"]))
            index.load_index(str(self._index_path()), max_elements=len(meta))
            index.set_ef(self._params.ef_search)
            vectors = index.get_items(list(range(len(meta))))
        except (OSError, RuntimeError, ValueError, KeyError, AttributeError) as exc:
            logger.warning("Не удалось загрузить HNSW индекс %s: %s", self._index_path(), exc)
            return
        records = [
            VectorRecord(
                document_id=item["id"],
                vector=tuple(float(value) for value in vector),
                type=DocumentType(item["type"]),
                category=item.get("category"),
                language=item.get("language"),
            )
            for item, vector in zip(meta, vectors)
        ]
        self._generation = _Generation(index=index, records=records)

    @staticmethod
    def _normalize(vectors: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return vectors / norms


__all__ = ["HnswEmbeddingStore", "HnswParams"]
